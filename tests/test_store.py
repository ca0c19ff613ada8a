"""
Tests for app/services/store.py: conditional writes and read primitives.
"""
import pytest
from datetime import datetime, timedelta

from app.services.store import PaymentStore
from tests.conftest import fetch_payment, make_payment

BASE_TIME = datetime(2025, 3, 10, 8, 0, 0)


class TestCompareAndSet:
    def test_applies_when_expected_status_matches(self, db):
        make_payment(db, "ORD-1")
        rows = PaymentStore(db).compare_and_set("ORD-1", "pending", "completed", transaction_id="TXN-1")

        assert rows == 1
        stored = fetch_payment(db, "ORD-1")
        assert stored.status == "completed"
        assert stored.transaction_id == "TXN-1"
        assert stored.updated_at is not None

    def test_zero_rows_when_status_moved_on(self, db):
        make_payment(db, "ORD-1", status="failed")
        assert PaymentStore(db).compare_and_set("ORD-1", "pending", "completed") == 0
        assert fetch_payment(db, "ORD-1").status == "failed"

    def test_zero_rows_for_unknown_order(self, db):
        assert PaymentStore(db).compare_and_set("ORD-missing", "pending", "completed") == 0

    def test_webhook_and_poller_converge(self, db, session_factory):
        """Both writers target the same terminal status: exactly one wins."""
        make_payment(db, "ORD-1001")
        webhook_session = session_factory()
        try:
            poller_rows = PaymentStore(db).compare_and_set("ORD-1001", "pending", "completed")
            webhook_rows = PaymentStore(webhook_session).compare_and_set("ORD-1001", "pending", "completed")
        finally:
            webhook_session.close()

        assert sorted([poller_rows, webhook_rows]) == [0, 1]
        assert fetch_payment(db, "ORD-1001").status == "completed"

    def test_refuses_to_leave_a_terminal_status(self, db):
        make_payment(db, "ORD-1", status="completed")
        with pytest.raises(ValueError, match="terminal"):
            PaymentStore(db).compare_and_set("ORD-1", "completed", "failed")

    def test_refuses_no_op_transition(self, db):
        make_payment(db, "ORD-1")
        with pytest.raises(ValueError):
            PaymentStore(db).compare_and_set("ORD-1", "pending", "pending")


class TestReads:
    def test_list_pending_oldest_first(self, db):
        make_payment(db, "ORD-new", created_at=BASE_TIME + timedelta(hours=2))
        make_payment(db, "ORD-old", created_at=BASE_TIME)
        make_payment(db, "ORD-mid", created_at=BASE_TIME + timedelta(hours=1))
        make_payment(db, "ORD-done", status="completed", created_at=BASE_TIME - timedelta(hours=1))

        codes = [p.order_code for p in PaymentStore(db).list_pending(10)]
        assert codes == ["ORD-old", "ORD-mid", "ORD-new"]

    def test_list_pending_respects_limit_and_exclude(self, db):
        for i in range(5):
            make_payment(db, f"ORD-{i}", created_at=BASE_TIME + timedelta(minutes=i))

        codes = [p.order_code for p in PaymentStore(db).list_pending(2, exclude=["ORD-0"])]
        assert codes == ["ORD-1", "ORD-2"]

    def test_count_orphans_only_counts_completed_missing_linkage(self, db):
        make_payment(db, "ORD-linked", status="completed", patient_id="PAT1", record_id="REC1")
        make_payment(db, "ORD-no-patient", status="completed", record_id="REC2")
        make_payment(db, "ORD-no-record", status="completed", patient_id="PAT3")
        make_payment(db, "ORD-nothing", status="completed")
        make_payment(db, "ORD-pending")
        make_payment(db, "ORD-failed", status="failed")

        assert PaymentStore(db).count_orphans() == 3
