"""
Payment store: read primitives plus the conditional (compare-and-set) writes.

Every mutation of status or linkage goes through a WHERE clause on the value
being overwritten, so a concurrent writer in another process (the webhook
handler) can never be silently overwritten.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from app import models
from app.models import PaymentStatus, TERMINAL_STATUSES, utcnow

logger = logging.getLogger(__name__)


def orphan_filter():
    return and_(
        models.Payment.status == PaymentStatus.COMPLETED.value,
        or_(models.Payment.patient_id.is_(None), models.Payment.record_id.is_(None)),
    )


class PaymentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_code: str) -> Optional[models.Payment]:
        return self.db.query(models.Payment).filter(
            models.Payment.order_code == order_code
        ).first()

    def compare_and_set(
        self,
        order_code: str,
        expected_status: str,
        new_status: str,
        **fields,
    ) -> int:
        """
        UPDATE payments SET status=new_status, ... WHERE order_code=? AND status=expected_status.

        Returns the number of rows affected: 1 when this writer won, 0 when the
        record had already moved on (or does not exist).

        Raises:
            ValueError: the transition would leave a terminal state
        """
        if expected_status in TERMINAL_STATUSES:
            raise ValueError(f"Cannot transition out of terminal status {expected_status}")
        if new_status == expected_status:
            raise ValueError(f"No-op transition {expected_status} -> {new_status}")

        values = dict(fields)
        values["status"] = new_status
        values.setdefault("updated_at", utcnow())

        stmt = (
            update(models.Payment)
            .where(
                models.Payment.order_code == order_code,
                models.Payment.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount

    def list_pending(self, limit: int, exclude: Iterable[str] = ()) -> List[models.Payment]:
        """Oldest pending payments first, skipping order codes in exclude."""
        query = self.db.query(models.Payment).filter(
            models.Payment.status == PaymentStatus.PENDING.value
        )
        excluded = list(exclude)
        if excluded:
            query = query.filter(models.Payment.order_code.notin_(excluded))
        return query.order_by(models.Payment.created_at.asc(), models.Payment.id.asc()).limit(limit).all()

    def count_orphans(self) -> int:
        return self.db.query(models.Payment).filter(orphan_filter()).count()

    def list_orphans(self, limit: int) -> List[models.Payment]:
        """Completed payments missing patient or record linkage, newest first."""
        return (
            self.db.query(models.Payment)
            .filter(orphan_filter())
            .order_by(models.Payment.created_at.desc(), models.Payment.id.desc())
            .limit(limit)
            .all()
        )
