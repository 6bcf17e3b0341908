from fastapi import APIRouter, Depends
from sqlmodel import Session, func, select
from ..auth import require_admin_access
from ..db import get_session
from ..models import OutboxEvent
from ..outbox import process_pending

router = APIRouter()

@router.post("/outbox/process")
def process_outbox(session: Session = Depends(get_session), ctx=Depends(require_admin_access)):
    return process_pending(session)

@router.get("/outbox")
def outbox_summary(session: Session = Depends(get_session), ctx=Depends(require_admin_access)):
    rows = session.exec(select(OutboxEvent.status, func.count()).group_by(OutboxEvent.status)).all()
    return {status: count for status, count in rows}
