"""Work out which signer record an authenticated profile may sign as.

Rules are tried in order and the first match wins:

1. a signer already linked to the profile;
2. a signer invited with the profile's email and not linked yet;
3. an unlinked tenant-role signer, by email, else the single anonymous
   tenant placeholder (no invited email) on the lease;
4. the property owner, who gets an owner signer created if none exists.

Rules 2 to 4 link the record to the profile as a side effect, so an invited
placeholder becomes permanently the profile's once it authenticates.
"""
import logging
from typing import Optional
from sqlalchemy import func, update
from sqlmodel import Session, select
from . import config
from .errors import AlreadySigned, SignerNotAuthorized
from .lease_status import OWNER_ROLES, TENANT_ROLES
from .models import Lease, LeaseSigner, Property

logger = logging.getLogger(__name__)


def _check_signable(signer: LeaseSigner, owner: bool = False) -> LeaseSigner:
    if signer.signature_status == "signed":
        raise AlreadySigned("already signed this lease as owner" if owner else "already signed")
    if signer.signature_status == "refused":
        raise SignerNotAuthorized("signature was refused for this lease")
    return signer


def _active(lease_id: int):
    return select(LeaseSigner).where(LeaseSigner.lease_id == lease_id, LeaseSigner.is_active == True)  # noqa: E712


def _claim(session: Session, signer: LeaseSigner, profile_id: int, email: Optional[str] = None) -> bool:
    """Link an unlinked signer; False when another request linked it first."""
    values = {"profile_id": profile_id}
    if email and not signer.invited_email:
        values["invited_email"] = email
    result = session.connection().execute(
        update(LeaseSigner)
        .where(LeaseSigner.id == signer.id, LeaseSigner.profile_id.is_(None))
        .values(**values)
    )
    session.commit()
    session.refresh(signer)
    if result.rowcount != 1:
        logger.info("signer %s was linked concurrently; skipping", signer.id)
        return False
    logger.info("linked signer %s of lease %s to profile %s", signer.id, signer.lease_id, profile_id)
    return True


def resolve_signer(session: Session, lease: Lease, profile_id: int, email: Optional[str]) -> LeaseSigner:
    """Return the signer the profile acts as, or raise ``SignerNotAuthorized``.

    The unlinked-tenant fallback is narrower than "take the single unlinked
    tenant signer": a placeholder invited under a different email is never
    claimed, even when it is the only one. Only an exact invited-email match,
    or a lone placeholder with no invited email at all, is linked.
    """
    email_norm = (email or "").strip().lower()

    # 1. already linked
    linked = session.exec(_active(lease.id).where(LeaseSigner.profile_id == profile_id)).first()
    if linked:
        return _check_signable(linked, owner=linked.role in OWNER_ROLES)

    if email_norm:
        # 2. invited by email
        invited = session.exec(
            _active(lease.id)
            .where(LeaseSigner.profile_id.is_(None), func.lower(LeaseSigner.invited_email) == email_norm)
            .order_by(LeaseSigner.id)
        ).first()
        if invited:
            _check_signable(invited)
            if _claim(session, invited, profile_id):
                return invited

        # 3. unlinked tenant-role signer
        candidates = session.exec(
            _active(lease.id)
            .where(
                LeaseSigner.profile_id.is_(None),
                LeaseSigner.role.in_(sorted(TENANT_ROLES)),
                LeaseSigner.signature_status == "pending",
            )
            .order_by(LeaseSigner.id)
        ).all()
        exact = [c for c in candidates if (c.invited_email or "").lower() == email_norm]
        if exact:
            if _claim(session, exact[0], profile_id):
                return exact[0]
        else:
            # a placeholder invited under another email is reserved for it
            anonymous = [c for c in candidates if not c.invited_email]
            if len(anonymous) == 1 and not config.STRICT_SIGNER_MATCHING:
                if _claim(session, anonymous[0], profile_id, email=email_norm):
                    return anonymous[0]
            elif len(anonymous) > 1:
                logger.info("lease %s has %s anonymous tenant placeholders; not guessing", lease.id, len(anonymous))

    # 4. property owner
    prop = session.get(Property, lease.property_id)
    if prop is not None and prop.owner_id == profile_id:
        owner_signer = session.exec(
            _active(lease.id).where(LeaseSigner.role.in_(sorted(OWNER_ROLES))).order_by(LeaseSigner.id)
        ).first()
        if owner_signer is None:
            owner_signer = LeaseSigner(
                lease_id=lease.id, role="owner", profile_id=profile_id,
                invited_email=email_norm or None, signature_status="pending",
            )
            session.add(owner_signer)
            session.commit()
            session.refresh(owner_signer)
            logger.info("created owner signer %s for lease %s", owner_signer.id, lease.id)
            return owner_signer
        _check_signable(owner_signer, owner=True)
        if owner_signer.profile_id is None and not _claim(session, owner_signer, profile_id):
            raise SignerNotAuthorized()
        if owner_signer.profile_id != profile_id:
            raise SignerNotAuthorized()
        return owner_signer

    raise SignerNotAuthorized()
