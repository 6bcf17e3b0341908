import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session
from ..auth import Identity, get_identity, get_profile
from ..audit import try_append_audit
from ..db import get_session
from ..errors import LeaseNotSignable, SignatureValidationError
from ..lease_status import CLOSED_STATUSES
from ..lifecycle import refresh_lease_status
from ..models import Lease, Profile, Property
from ..rate_limit import rate_limiter
from ..recorder import ClientMetadata, record_signature
from ..resolver import resolve_signer
from ..schemas import SignRequest
from ..sealing import after_signature, queue_status_recompute
from ..usage import record_signature_usage
from ..utils import full_name
from ..validation import validate_signature_image

logger = logging.getLogger(__name__)

router = APIRouter()

def _client_metadata(request: Request, payload: SignRequest) -> ClientMetadata:
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    meta = payload.metadata
    return ClientMetadata(
        ip_address=ip,
        user_agent=request.headers.get("user-agent"),
        screen_size=meta.screen_size if meta else None,
        touch_device=meta.touch_device if meta else False,
    )

@router.post("/{lease_id}/sign")
def sign_lease(
    lease_id: int,
    payload: SignRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
    profile: Profile = Depends(get_profile),
    session: Session = Depends(get_session),
):
    rate_limiter.check("sign", identity.user_id)

    # nothing is read or written for an invalid image
    image, errors = validate_signature_image(payload.signature_image)
    if errors:
        raise SignatureValidationError("invalid signature image", errors=errors)

    lease = session.get(Lease, lease_id)
    if not lease:
        raise HTTPException(404, "lease not found")
    if lease.status in {s.value for s in CLOSED_STATUSES}:
        raise LeaseNotSignable(f"lease is {lease.status} and can no longer be signed")

    email = identity.email or profile.email
    signer = resolve_signer(session, lease, profile.id, email)
    recorded = record_signature(session, lease, signer, profile, email, image, _client_metadata(request, payload))

    previous_status = lease.status
    new_status = None
    try:
        previous_status, new_status = refresh_lease_status(session, lease)
    except Exception:
        session.rollback()
        logger.exception("lease %s status not recomputed after signature %s", lease.id, recorded.proof_id)
        queue_status_recompute(session, lease.id, f"recompute failed after signature {recorded.proof_id}")

    try_append_audit(session, f"user:{identity.user_id}", "lease_signed", "lease", lease.id, {
        "role": signer.role,
        "signer_id": signer.id,
        "proof_id": recorded.proof_id,
    })
    prop = session.get(Property, lease.property_id)
    if prop is not None:
        record_signature_usage(session, prop.owner_id)

    if new_status is not None:
        signer_name = full_name(profile.first_name, profile.last_name, email)
        after_signature(session, lease, signer, signer_name, previous_status, new_status)

    return {
        "success": True,
        "proof_id": recorded.proof_id,
        "lease_status": new_status.value if new_status is not None else previous_status,
    }
