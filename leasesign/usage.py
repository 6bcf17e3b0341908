import logging
from datetime import datetime
from typing import Optional
from sqlmodel import Session, select
from .models import SignatureUsage
from .utils import utcnow

logger = logging.getLogger(__name__)

def current_period(now: Optional[datetime] = None) -> str:
    return (now or utcnow()).strftime("%Y-%m")

def record_signature_usage(session: Session, owner_profile_id: int, now: Optional[datetime] = None) -> bool:
    """Count one signature against the owner's monthly quota; failures only log."""
    period = current_period(now)
    try:
        usage = session.exec(
            select(SignatureUsage).where(
                SignatureUsage.owner_profile_id == owner_profile_id, SignatureUsage.period == period
            )
        ).first()
        if usage is None:
            usage = SignatureUsage(owner_profile_id=owner_profile_id, period=period, count=0)
        usage.count += 1
        session.add(usage)
        session.commit()
        return True
    except Exception:
        session.rollback()
        logger.exception("signature usage not recorded for owner %s", owner_profile_id)
        return False

def signatures_used(session: Session, owner_profile_id: int, now: Optional[datetime] = None) -> int:
    usage = session.exec(
        select(SignatureUsage).where(
            SignatureUsage.owner_profile_id == owner_profile_id, SignatureUsage.period == current_period(now)
        )
    ).first()
    return usage.count if usage else 0
