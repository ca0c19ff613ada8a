from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.config import RECOVERY_BATCH_LIMIT
from app.database import get_db
from app.models import utcnow
from app.routers.deps import get_bus
from app.schemas.requests import RecoverRequest
from app.schemas.responses import OrphanCount, RecoveryReportResponse
from app.services.events import EventBus
from app.services.recovery import count_orphans, recover_orphans

router = APIRouter()


@router.get("/orphans", response_model=OrphanCount)
def get_orphan_count(db: Session = Depends(get_db)):
    """Completed payments still missing patient_id or record_id."""
    return OrphanCount(missing_count=count_orphans(db), timestamp=utcnow())


@router.post("/orphans/recover", response_model=RecoveryReportResponse)
def recover(
    request: Optional[RecoverRequest] = None,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_bus),
):
    """
    Re-link orphan payments to their booking records.

    Evidence is tried strongest first: transaction id, order code recorded by
    the booking, record reference, then a same-amount booking nearby in time.
    Orphans without evidence are left untouched and reported as unresolved.
    """
    limit = request.limit if request and request.limit else RECOVERY_BATCH_LIMIT
    report = recover_orphans(db, bus, limit=limit)
    return RecoveryReportResponse.model_validate(report)
