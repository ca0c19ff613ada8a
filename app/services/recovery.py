"""
Orphan payment recovery service.

Orchestrates:
1. Fetch completed payments missing patient_id or record_id
2. Try each matching strategy, strongest evidence first
3. Link payment and booking in one transaction, both writes conditional
4. Report totals and publish recovery_completed

Unresolved orphans are left untouched; they are only counted.
"""
import logging
from typing import List, Optional, Sequence

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app import models
from app.config import RECOVERY_BATCH_LIMIT
from app.models import BookingStatus, PaymentStatus, utcnow
from app.schemas.events import RecoveryCompleted
from app.services.events import EventBus
from app.services.matching import DEFAULT_STRATEGIES, MatchStrategy
from app.services.store import PaymentStore

logger = logging.getLogger(__name__)

RECOVERED = "recovered"
UNRESOLVED = "unresolved"
CONFLICT = "conflict"


class OrphanOutcome:
    def __init__(
        self,
        order_code: str,
        status: str,
        source: Optional[str] = None,
        patient_id: Optional[str] = None,
        record_id: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.order_code = order_code
        self.status = status
        self.source = source
        self.patient_id = patient_id
        self.record_id = record_id
        self.message = message


class RecoveryReport:
    def __init__(self, total: int, recovered: int, results: List[OrphanOutcome]):
        self.total = total
        self.recovered = recovered
        self.results = results

    @property
    def unresolved(self) -> int:
        return self.total - self.recovered


def count_orphans(db: Session) -> int:
    return PaymentStore(db).count_orphans()


def link_payment(db: Session, order_code: str, booking: models.BookingRecord) -> bool:
    """
    Attach booking to the payment identified by order_code.

    Payment write is keyed on record_id IS NULL (or patient_id IS NULL when the
    record is already known); the booking claim is keyed on order_code IS NULL.
    Both commit together or not at all. Returns False when another writer got there first.
    """
    payment = PaymentStore(db).get(order_code)
    if payment is None or payment.status != PaymentStatus.COMPLETED.value:
        return False
    if payment.patient_id is not None and payment.patient_id != booking.patient_id:
        logger.warning(
            f"Refusing to link {order_code} ({payment.patient_id}) to {booking.record_id} "
            f"of patient {booking.patient_id}"
        )
        return False

    values = {"updated_at": utcnow()}
    if payment.record_id is None:
        guard = models.Payment.record_id.is_(None)
        values["record_id"] = booking.record_id
        if payment.patient_id is None:
            values["patient_id"] = booking.patient_id
    elif payment.patient_id is None:
        guard = models.Payment.patient_id.is_(None)
        values["patient_id"] = booking.patient_id
    else:
        return False
    if payment.doctor_id is None and booking.doctor_id:
        values["doctor_id"] = booking.doctor_id

    payment_rows = db.execute(
        update(models.Payment)
        .where(
            models.Payment.order_code == order_code,
            models.Payment.status == PaymentStatus.COMPLETED.value,
            guard,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    ).rowcount
    if payment_rows == 0:
        db.rollback()
        return False

    booking_rows = db.execute(
        update(models.BookingRecord)
        .where(
            models.BookingRecord.record_id == booking.record_id,
            or_(
                models.BookingRecord.order_code.is_(None),
                models.BookingRecord.order_code == order_code,
            ),
        )
        .values(order_code=order_code, status=BookingStatus.CONFIRMED.value)
        .execution_options(synchronize_session=False)
    ).rowcount
    if booking_rows == 0:
        db.rollback()
        return False

    db.commit()
    return True


def recover_orphans(
    db: Session,
    bus: Optional[EventBus] = None,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
    limit: int = RECOVERY_BATCH_LIMIT,
) -> RecoveryReport:
    """
    Attempt to restore patient/record linkage on every orphan payment.

    Idempotent: linked payments are no longer orphans and claimed bookings are
    no longer eligible, so an immediate re-run recovers nothing new.
    """
    orphans = PaymentStore(db).list_orphans(limit)
    # Snapshot what we need; link/rollback expires the ORM instances
    order_codes = [p.order_code for p in orphans]
    logger.info(f"Orphan recovery: {len(order_codes)} payments missing linkage")

    results: List[OrphanOutcome] = []
    recovered = 0

    for order_code in order_codes:
        payment = PaymentStore(db).get(order_code)
        if payment is None:
            continue

        booking = None
        source = None
        for strategy in strategies:
            booking = strategy.find(payment, db)
            if booking is not None:
                source = strategy.name
                break

        if booking is None:
            results.append(OrphanOutcome(
                order_code=order_code,
                status=UNRESOLVED,
                message="No correlating booking found",
            ))
            continue

        patient_id = booking.patient_id
        record_id = booking.record_id
        if link_payment(db, order_code, booking):
            recovered += 1
            logger.info(f"Recovered payment {order_code} -> record {record_id} via {source}")
            results.append(OrphanOutcome(
                order_code=order_code,
                status=RECOVERED,
                source=source,
                patient_id=patient_id,
                record_id=record_id,
            ))
        else:
            logger.debug(f"Conflict no-op linking {order_code}: resolved by another writer")
            results.append(OrphanOutcome(
                order_code=order_code,
                status=CONFLICT,
                source=source,
                message="Linkage changed concurrently",
            ))

    report = RecoveryReport(total=len(order_codes), recovered=recovered, results=results)
    logger.info(f"Orphan recovery completed: {recovered}/{report.total} payments recovered")
    if bus is not None:
        bus.publish(RecoveryCompleted(total=report.total, recovered=report.recovered))
    return report
