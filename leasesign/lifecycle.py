"""Named lease transitions outside the signing flow.

Each transition lists the states it may start from, its target, and a guard
returning blocking errors and non-blocking warnings. ``force`` overrides the
errors but never the source-state check.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple
from sqlmodel import Session, select
from .audit import try_append_audit
from .errors import TransitionRejected
from .lease_status import LeaseStatus as S, derive_status, is_owner_role, is_tenant_role, next_lease_status
from .models import Lease, LeaseSigner
from .outbox import enqueue
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class LeaseContext:
    lease_id: int
    current_status: str
    signers_count: int
    owner_signer_exists: bool
    tenant_signer_exists: bool
    all_signers_signed: bool
    start_date_reached: bool
    notice_exists: bool


@dataclass
class TransitionResult:
    name: str
    previous_status: str
    new_status: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


Guard = Callable[[LeaseContext], Tuple[List[str], List[str]]]


@dataclass(frozen=True)
class Transition:
    sources: Tuple[S, ...]
    target: S
    guard: Guard
    event_type: Optional[str] = None


def _initiate(ctx: LeaseContext):
    errors = []
    if not ctx.owner_signer_exists:
        errors.append("an owner signer is required")
    if not ctx.tenant_signer_exists:
        errors.append("a tenant signer is required")
    if ctx.signers_count < 2:
        errors.append("at least 2 signers are required")
    return errors, []


def _activate(ctx: LeaseContext):
    warnings = []
    if not ctx.start_date_reached:
        warnings.append("the lease start date has not been reached")
    return [], warnings


def _give_notice(ctx: LeaseContext):
    return ([] if ctx.notice_exists else ["no notice date has been recorded"]), []


def _allow(ctx: LeaseContext):
    return [], []


TRANSITIONS: Dict[str, Transition] = {
    "INITIATE_SIGNATURE": Transition((S.DRAFT,), S.PENDING_SIGNATURE, _initiate, "Lease.SentForSignature"),
    "ACTIVATE": Transition((S.FULLY_SIGNED,), S.ACTIVE, _activate, "Lease.Activated"),
    "GIVE_NOTICE": Transition((S.ACTIVE,), S.NOTICE_GIVEN, _give_notice, "Lease.NoticeGiven"),
    "TERMINATE": Transition((S.ACTIVE, S.NOTICE_GIVEN), S.TERMINATED, _allow, "Lease.Terminated"),
    "ARCHIVE": Transition((S.TERMINATED,), S.ARCHIVED, _allow),
    "CANCEL": Transition(
        (S.DRAFT, S.PENDING_SIGNATURE, S.PARTIALLY_SIGNED, S.PENDING_OWNER_SIGNATURE),
        S.CANCELLED, _allow, "Lease.Cancelled",
    ),
}


def refresh_lease_status(session: Session, lease: Lease) -> Tuple[str, S]:
    """Recompute the cached lease status from its signers and store it.

    No version check: concurrent recomputes are last-writer-wins.
    """
    signers = session.exec(select(LeaseSigner).where(LeaseSigner.lease_id == lease.id)).all()
    previous = lease.status
    new_status = next_lease_status(previous, derive_status(signers))
    if new_status.value != previous:
        lease.status = new_status.value
        lease.updated_at = utcnow()
        session.add(lease)
        session.commit()
        session.refresh(lease)
        logger.info("lease %s status %s -> %s", lease.id, previous, new_status.value)
    return previous, new_status


def build_context(session: Session, lease: Lease, today: Optional[date] = None) -> LeaseContext:
    signers = session.exec(
        select(LeaseSigner).where(LeaseSigner.lease_id == lease.id, LeaseSigner.is_active == True)  # noqa: E712
    ).all()
    today = today or date.today()
    return LeaseContext(
        lease_id=lease.id,
        current_status=lease.status,
        signers_count=len(signers),
        owner_signer_exists=any(is_owner_role(s.role) for s in signers),
        tenant_signer_exists=any(is_tenant_role(s.role) for s in signers),
        all_signers_signed=bool(signers) and all(s.signature_status == "signed" for s in signers),
        start_date_reached=lease.start_date is None or lease.start_date <= today,
        notice_exists=lease.notice_given_on is not None,
    )


def can_transition(name: str, ctx: LeaseContext) -> Tuple[bool, List[str], List[str]]:
    transition = TRANSITIONS.get(name)
    if transition is None:
        return False, [f"unknown transition {name}"], []
    if ctx.current_status not in {s.value for s in transition.sources}:
        sources = ", ".join(s.value for s in transition.sources)
        return False, [f"{name} is not possible from {ctx.current_status} (valid from: {sources})"], []
    errors, warnings = transition.guard(ctx)
    return not errors, errors, warnings


def available_transitions(ctx: LeaseContext) -> List[dict]:
    result = []
    for name, transition in TRANSITIONS.items():
        if ctx.current_status not in {s.value for s in transition.sources}:
            continue
        errors, warnings = transition.guard(ctx)
        result.append({
            "name": name,
            "target_status": transition.target.value,
            "allowed": not errors,
            "errors": errors,
            "warnings": warnings,
        })
    return result


def execute_transition(session: Session, lease: Lease, name: str, actor_profile_id: int,
                       force: bool = False, metadata: Optional[dict] = None) -> TransitionResult:
    transition = TRANSITIONS.get(name)
    if transition is None:
        raise TransitionRejected(f"unknown transition {name}")
    ctx = build_context(session, lease)
    allowed, errors, warnings = can_transition(name, ctx)
    source_ok = ctx.current_status in {s.value for s in transition.sources}
    if not source_ok or (not allowed and not force):
        raise TransitionRejected(errors=errors)

    previous = lease.status
    lease.status = transition.target.value
    lease.updated_at = utcnow()
    if name == "ACTIVATE":
        lease.activated_at = lease.updated_at
    session.add(lease)
    session.commit()
    session.refresh(lease)
    logger.info("lease %s: %s -> %s via %s%s", lease.id, previous, lease.status, name, " (forced)" if force else "")

    meta = {
        "previous_status": previous,
        "new_status": lease.status,
        "transition": name,
        "forced": force,
        "warnings": warnings,
        **(metadata or {}),
    }
    try_append_audit(session, f"profile:{actor_profile_id}", f"lease_transition_{name.lower()}", "lease", lease.id, meta)
    if transition.event_type:
        enqueue(session, transition.event_type, {
            "lease_id": lease.id,
            "previous_status": previous,
            "new_status": lease.status,
            "actor_profile_id": actor_profile_id,
            "forced": force,
        })
    return TransitionResult(name, previous, lease.status, errors if force else [], warnings)
