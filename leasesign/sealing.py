"""Side effects that follow a lease reaching ``fully_signed``.

Nothing here may fail the calling request: the signature or signer change is
already committed. A failed seal is queued for retry through the outbox, and
a status recompute that could not run is queued the same way.
"""
import logging
from sqlmodel import Session
from . import sealer
from .lease_status import LeaseStatus
from .lifecycle import refresh_lease_status
from .models import Lease, LeaseSigner, Property
from .notifications import enqueue_fully_signed_events, enqueue_signing_events
from .outbox import SEAL_RETRY, STATUS_RECOMPUTE, enqueue, handler

logger = logging.getLogger(__name__)


def entered_fully_signed(previous_status, new_status) -> bool:
    return new_status == LeaseStatus.FULLY_SIGNED and previous_status != LeaseStatus.FULLY_SIGNED


def trigger_seal(session: Session, lease_id: int) -> sealer.SealResult:
    try:
        result = sealer.seal_lease(session, lease_id)
    except Exception as exc:
        logger.exception("seal call for lease %s raised", lease_id)
        result = sealer.SealResult(False, error=str(exc) or exc.__class__.__name__)
    if not result.success:
        logger.warning("seal of lease %s failed (%s); queued for retry", lease_id, result.error)
        enqueue(session, SEAL_RETRY, {"lease_id": lease_id, "reason": result.error})
    return result


def after_signature(session: Session, lease: Lease, signer: LeaseSigner, signer_name: str,
                    previous_status, new_status: LeaseStatus):
    if entered_fully_signed(previous_status, new_status):
        trigger_seal(session, lease.id)
    try:
        prop = session.get(Property, lease.property_id)
        enqueue_signing_events(session, lease, prop, signer, signer_name, new_status)
    except Exception:
        session.rollback()
        logger.exception("could not queue notifications for lease %s", lease.id)


def after_status_change(session: Session, lease: Lease, previous_status, new_status: LeaseStatus):
    """Seal and announce a lease that a recompute, not a signature, completed."""
    if not entered_fully_signed(previous_status, new_status):
        return
    trigger_seal(session, lease.id)
    try:
        prop = session.get(Property, lease.property_id)
        enqueue_fully_signed_events(session, lease, prop)
    except Exception:
        session.rollback()
        logger.exception("could not queue notifications for lease %s", lease.id)


def settle_lease_status(session: Session, lease: Lease) -> LeaseStatus:
    """Recompute the lease status after a signer change and run what follows."""
    previous_status, new_status = refresh_lease_status(session, lease)
    after_status_change(session, lease, previous_status, new_status)
    return new_status


def queue_status_recompute(session: Session, lease_id: int, reason: str):
    logger.warning("status of lease %s queued for recompute (%s)", lease_id, reason)
    enqueue(session, STATUS_RECOMPUTE, {"lease_id": lease_id, "reason": reason})


@handler(SEAL_RETRY)
def _retry_seal(session: Session, payload: dict):
    result = sealer.seal_lease(session, payload["lease_id"])
    if not result.success:
        raise RuntimeError(result.error or "seal failed")


@handler(STATUS_RECOMPUTE)
def _recompute_status(session: Session, payload: dict):
    lease = session.get(Lease, payload["lease_id"])
    if lease is None:
        logger.warning("recompute for missing lease %s ignored", payload["lease_id"])
        return
    settle_lease_status(session, lease)
