import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Response, status
from minio.error import S3Error
from sqlmodel import Session, select
from ..auth import get_profile
from ..audit import try_append_audit
from ..db import get_session
from ..lease_status import SIGNER_ROLES, LeaseStatus
from ..lifecycle import available_transitions, build_context, execute_transition
from ..models import Lease, LeaseDocument, LeaseSigner, Profile, Property
from ..schemas import LeaseCreate, SignerCreate, TransitionRequest
from ..sealing import settle_lease_status
from ..storage import get_bytes
from ..utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

def _serialize_signer(s: LeaseSigner):
    return {
        "id": s.id,
        "role": s.role,
        "signature_status": s.signature_status,
        "profile_id": s.profile_id,
        "invited_email": s.invited_email,
        "invited_name": s.invited_name,
        "signed_at": s.signed_at,
        "proof_id": s.proof_id,
        "is_active": s.is_active,
    }

def _signers(session: Session, lease_id: int, include_removed: bool = False):
    stmt = select(LeaseSigner).where(LeaseSigner.lease_id == lease_id)
    if not include_removed:
        stmt = stmt.where(LeaseSigner.is_active == True)  # noqa: E712
    return session.exec(stmt.order_by(LeaseSigner.id)).all()

def _load_lease(session: Session, lease_id: int):
    lease = session.get(Lease, lease_id)
    if not lease:
        raise HTTPException(404, "lease not found")
    prop = session.get(Property, lease.property_id)
    return lease, prop

def _owned_lease(session: Session, lease_id: int, profile: Profile):
    lease, prop = _load_lease(session, lease_id)
    if not prop or prop.owner_id != profile.id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "only the property owner can manage this lease")
    return lease, prop

def _visible_lease(session: Session, lease_id: int, profile: Profile):
    lease, prop = _load_lease(session, lease_id)
    if prop and prop.owner_id == profile.id:
        return lease, prop
    party = session.exec(
        select(LeaseSigner).where(LeaseSigner.lease_id == lease_id, LeaseSigner.profile_id == profile.id)
    ).first()
    if not party:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "not a party to this lease")
    return lease, prop

def _new_signer(lease_id: int, data: SignerCreate) -> LeaseSigner:
    role = data.role.strip().lower()
    if role not in SIGNER_ROLES:
        raise HTTPException(400, f"unknown signer role {data.role}")
    return LeaseSigner(
        lease_id=lease_id,
        role=role,
        profile_id=data.profile_id,
        invited_email=(data.invited_email or "").strip().lower() or None,
        invited_name=data.invited_name,
    )

@router.post("", status_code=201)
def create_lease(data: LeaseCreate, profile: Profile = Depends(get_profile), session: Session = Depends(get_session)):
    prop = session.get(Property, data.property_id)
    if not prop or prop.owner_id != profile.id:
        raise HTTPException(404, "property not found")
    lease = Lease(
        property_id=prop.id,
        lease_type=data.lease_type,
        rent=data.rent,
        charges=data.charges,
        deposit=data.deposit,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    session.add(lease)
    session.flush()
    for s in data.signers:
        session.add(_new_signer(lease.id, s))
    session.commit()
    session.refresh(lease)
    try_append_audit(session, f"profile:{profile.id}", "lease_created", "lease", lease.id,
                     {"signers": len(data.signers)})
    return {"id": lease.id, "status": lease.status, "signers": [_serialize_signer(s) for s in _signers(session, lease.id)]}

@router.get("/{lease_id}")
def get_lease(lease_id: int, profile: Profile = Depends(get_profile), session: Session = Depends(get_session)):
    lease, prop = _visible_lease(session, lease_id, profile)
    sealed = session.exec(select(LeaseDocument).where(LeaseDocument.lease_id == lease_id)).first()
    return {
        "id": lease.id,
        "status": lease.status,
        "lease_type": lease.lease_type,
        "rent": lease.rent,
        "charges": lease.charges,
        "deposit": lease.deposit,
        "start_date": lease.start_date,
        "end_date": lease.end_date,
        "property": {"id": prop.id, "address": prop.address} if prop else None,
        "signers": [_serialize_signer(s) for s in _signers(session, lease_id)],
        "sealed_document": {"sha256_final": sealed.sha256_final, "sealed_at": sealed.sealed_at} if sealed else None,
    }

@router.post("/{lease_id}/signers", status_code=201)
def invite_signer(lease_id: int, data: SignerCreate, profile: Profile = Depends(get_profile),
                  session: Session = Depends(get_session)):
    lease, _ = _owned_lease(session, lease_id, profile)
    if lease.status not in {LeaseStatus.DRAFT.value, LeaseStatus.PENDING_SIGNATURE.value,
                            LeaseStatus.PARTIALLY_SIGNED.value, LeaseStatus.PENDING_OWNER_SIGNATURE.value}:
        raise HTTPException(409, f"cannot add signers to a {lease.status} lease")
    signer = _new_signer(lease_id, data)
    session.add(signer)
    session.commit()
    session.refresh(signer)
    new_status = settle_lease_status(session, lease)
    try_append_audit(session, f"profile:{profile.id}", "signer_invited", "lease", lease_id,
                     {"signer_id": signer.id, "role": signer.role})
    return {"signer": _serialize_signer(signer), "lease_status": new_status.value}

@router.delete("/{lease_id}/signers/{signer_id}")
def remove_signer(lease_id: int, signer_id: int, profile: Profile = Depends(get_profile),
                  session: Session = Depends(get_session)):
    lease, _ = _owned_lease(session, lease_id, profile)
    signer = session.get(LeaseSigner, signer_id)
    if not signer or signer.lease_id != lease_id or not signer.is_active:
        raise HTTPException(404, "signer not found")
    if signer.signature_status == "signed":
        raise HTTPException(409, "a signed signer cannot be removed")
    signer.is_active = False
    signer.removed_at = utcnow()
    session.add(signer)
    session.commit()
    new_status = settle_lease_status(session, lease)
    try_append_audit(session, f"profile:{profile.id}", "signer_removed", "lease", lease_id,
                     {"signer_id": signer_id, "role": signer.role})
    return {"ok": True, "lease_status": new_status.value}

@router.get("/{lease_id}/signers/{signer_id}/proof")
def get_signer_proof(lease_id: int, signer_id: int, profile: Profile = Depends(get_profile),
                     session: Session = Depends(get_session)):
    _visible_lease(session, lease_id, profile)
    signer = session.get(LeaseSigner, signer_id)
    if not signer or signer.lease_id != lease_id:
        raise HTTPException(404, "signer not found")
    if signer.signature_status != "signed" or not signer.proof_metadata:
        raise HTTPException(404, "no signature proof for this signer")
    return json.loads(signer.proof_metadata)

@router.get("/{lease_id}/transitions")
def list_transitions(lease_id: int, profile: Profile = Depends(get_profile), session: Session = Depends(get_session)):
    lease, _ = _owned_lease(session, lease_id, profile)
    return {"status": lease.status, "transitions": available_transitions(build_context(session, lease))}

@router.post("/{lease_id}/transitions/{name}")
def run_transition(lease_id: int, name: str, data: TransitionRequest, profile: Profile = Depends(get_profile),
                   session: Session = Depends(get_session)):
    lease, _ = _owned_lease(session, lease_id, profile)
    transition = name.upper()
    if transition == "GIVE_NOTICE" and data.notice_given_on and lease.notice_given_on is None:
        lease.notice_given_on = data.notice_given_on
        session.add(lease)
        session.commit()
        session.refresh(lease)
    result = execute_transition(session, lease, transition, profile.id, force=data.force)
    return {
        "success": True,
        "previous_status": result.previous_status,
        "new_status": result.new_status,
        "errors": result.errors,
        "warnings": result.warnings,
    }

@router.get("/{lease_id}/sealed-pdf")
def download_sealed_pdf(lease_id: int, profile: Profile = Depends(get_profile), session: Session = Depends(get_session)):
    _visible_lease(session, lease_id, profile)
    doc = session.exec(select(LeaseDocument).where(LeaseDocument.lease_id == lease_id)).first()
    if not doc:
        raise HTTPException(404, "sealed lease not available yet")
    try:
        pdf_bytes = get_bytes(doc.s3_key_pdf)
    except S3Error:
        logger.warning("sealed pdf %s for lease %s is missing from storage", doc.s3_key_pdf, lease_id)
        raise HTTPException(404, "stored file missing for this lease")
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="lease-{lease_id}.pdf"'},
    )
