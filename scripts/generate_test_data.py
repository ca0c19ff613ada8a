"""
Seeds the database with payments and booking records for local reconciliation runs.

Distribution:
- 40 pending payments (the poller's sweep target)
- 30 completed payments with full linkage
- 10 failed / cancelled payments
- Orphans (completed, missing linkage) recoverable by each kind of evidence:
  transaction id, order code on the booking, record_id in the description,
  amount + time window; plus a few with no evidence at all
"""
import os
import random
import sys
from datetime import datetime, timedelta

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import SessionLocal, engine
from app import models

random.seed(42)

BASE_TIME = datetime(2025, 3, 10, 8, 0, 0)
FEES = [150000.0, 200000.0, 250000.0, 300000.0, 500000.0]

_order_seq = 100000


def order_code():
    global _order_seq
    _order_seq += 1
    return str(_order_seq)


def make_payment(status, created_at, amount=None, **fields):
    return models.Payment(
        order_code=order_code(),
        status=status,
        amount=amount if amount is not None else random.choice(FEES),
        payment_method="payos",
        description=fields.pop("description", "Consultation fee"),
        created_at=created_at,
        paid_at=created_at + timedelta(minutes=2) if status == "completed" else None,
        **fields,
    )


def make_booking(record_id, patient_id, amount, created_at, **fields):
    return models.BookingRecord(
        record_id=record_id,
        patient_id=patient_id,
        doctor_id=fields.pop("doctor_id", f"DOC{random.randint(1, 20):06d}"),
        amount=amount,
        created_at=created_at,
        **fields,
    )


def generate():
    payments = []
    bookings = []

    # --- 1. Pending payments ---
    for i in range(40):
        created_at = BASE_TIME + timedelta(minutes=random.randint(0, 48 * 60))
        payments.append(make_payment("pending", created_at))

    # --- 2. Completed with linkage ---
    for i in range(30):
        created_at = BASE_TIME + timedelta(minutes=random.randint(0, 48 * 60))
        record_id = f"REC{i:06d}"
        patient_id = f"PAT{random.randint(1, 60):06d}"
        payment = make_payment(
            "completed", created_at,
            patient_id=patient_id, record_id=record_id,
            transaction_id=f"TXN{i:06d}",
        )
        payments.append(payment)
        bookings.append(make_booking(
            record_id, patient_id, payment.amount, created_at,
            order_code=payment.order_code, status="confirmed",
        ))

    # --- 3. Failed / cancelled ---
    for i in range(10):
        created_at = BASE_TIME + timedelta(minutes=random.randint(0, 48 * 60))
        payments.append(make_payment(random.choice(["failed", "cancelled"]), created_at))

    # --- 4. Orphans ---
    # transaction id evidence
    for i in range(5):
        created_at = BASE_TIME + timedelta(hours=random.uniform(0, 48))
        amount = random.choice(FEES)
        payments.append(make_payment("completed", created_at, amount, transaction_id=f"TXN9{i:05d}"))
        bookings.append(make_booking(
            f"REC9{i:05d}", f"PAT{random.randint(1, 60):06d}", amount,
            created_at - timedelta(minutes=1), transaction_id=f"TXN9{i:05d}",
        ))

    # booking recorded the order code
    for i in range(3):
        created_at = BASE_TIME + timedelta(hours=random.uniform(0, 48))
        payment = make_payment("completed", created_at)
        payments.append(payment)
        bookings.append(make_booking(
            f"REC8{i:05d}", f"PAT{random.randint(1, 60):06d}", payment.amount,
            created_at, order_code=payment.order_code,
        ))

    # record_id written in the description
    for i in range(3):
        created_at = BASE_TIME + timedelta(hours=random.uniform(0, 48))
        record_id = f"REC7{i:05d}"
        payments.append(make_payment(
            "completed", created_at, 250000.0,
            description=f"Consultation fee record_id: {record_id}",
        ))
        bookings.append(make_booking(record_id, f"PAT{random.randint(1, 60):06d}", 250000.0, created_at))

    # only amount + time window
    for i in range(3):
        created_at = BASE_TIME + timedelta(days=3, hours=i * 2)
        amount = 180000.0 + i * 1000
        payments.append(make_payment("completed", created_at, amount))
        bookings.append(make_booking(
            f"REC6{i:05d}", f"PAT{random.randint(1, 60):06d}", amount,
            created_at - timedelta(minutes=3),
        ))

    # no evidence at all
    for i in range(2):
        created_at = BASE_TIME + timedelta(days=5, hours=i)
        payments.append(make_payment("completed", created_at, 999000.0 + i))

    return payments, bookings


def main():
    print("Creating database tables...")
    models.Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        existing = db.query(models.Payment).count()
        if existing > 0:
            print(f"Database already has {existing} payments. Skipping seed.")
            return

        print("Generating payments and booking records...")
        payments, bookings = generate()

        db.add_all(bookings)
        db.add_all(payments)
        db.commit()

        print(f"Successfully seeded {len(payments)} payments and {len(bookings)} booking records.")

        from sqlalchemy import func as sqlfunc
        states = db.query(
            models.Payment.status,
            sqlfunc.count(models.Payment.id)
        ).group_by(models.Payment.status).all()
        print("\nStatus distribution:")
        for state, cnt in states:
            print(f"  {state}: {cnt}")

        from app.services.store import PaymentStore
        print(f"\nOrphan payments: {PaymentStore(db).count_orphans()}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
