# Seal a fully signed lease: render the lease with reportlab, stamp the stored
# signature images, append a certificate page and store the result.

import json, hashlib, logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional
from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from sqlmodel import Session, select
from .lease_status import LeaseStatus
from .models import Lease, LeaseDocument, LeaseSigner, Profile, Property
from .notifications import ROLE_LABELS
from .storage import get_bytes, put_bytes
from .utils import full_name, utcnow

logger = logging.getLogger(__name__)

SEALABLE = {LeaseStatus.FULLY_SIGNED.value, LeaseStatus.ACTIVE.value}


@dataclass
class SealResult:
    success: bool
    document_path: Optional[str] = None
    sha256_final: Optional[str] = None
    error: Optional[str] = None


def sealed_pdf_key(lease_id: int) -> str:
    return f"leases/{lease_id}/sealed/lease-{lease_id}.pdf"


def _signer_label(session: Session, signer: LeaseSigner) -> str:
    profile = session.get(Profile, signer.profile_id) if signer.profile_id else None
    if profile:
        return full_name(profile.first_name, profile.last_name, profile.email)
    return signer.invited_name or signer.invited_email or f"signer {signer.id}"


def _signed_at(signer: LeaseSigner) -> str:
    return signer.signed_at.strftime("%Y-%m-%d %H:%M:%S UTC") if signer.signed_at else "-"


def _render_lease(session: Session, lease: Lease, prop: Optional[Property], signers) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    c.setFont("Helvetica-Bold", 16)
    c.drawString(56, height - 72, f"Residential lease #{lease.id}")
    c.setFont("Helvetica", 10)
    y = height - 100
    lines = [
        f"Property: {prop.address if prop else '-'}",
        f"Lease type: {lease.lease_type}",
        f"Term: {lease.start_date or '-'} to {lease.end_date or 'open-ended'}",
        f"Rent: {lease.rent:.2f}  Charges: {lease.charges:.2f}  Deposit: {lease.deposit:.2f}",
    ]
    for line in lines:
        c.drawString(56, y, line[:100])
        y -= 14
    y -= 10
    c.setFont("Helvetica-Bold", 12)
    c.drawString(56, y, "Signatures")
    y -= 20
    for signer in signers:
        if y < 140:
            c.showPage(); y = height - 72
        c.setFont("Helvetica", 10)
        label = f"{ROLE_LABELS.get(signer.role, signer.role)}: {_signer_label(session, signer)}"
        c.drawString(56, y, label[:100])
        c.drawString(56, y - 14, f"Signed at {_signed_at(signer)}")
        if signer.signature_image_path:
            png = get_bytes(signer.signature_image_path)
            c.drawImage(ImageReader(BytesIO(png)), 330, y - 60, width=180, height=70,
                        preserveAspectRatio=True, mask="auto")
        y -= 90
    c.showPage(); c.save()
    return buf.getvalue()


def _signature_record(session: Session, signer: LeaseSigner) -> dict:
    return {
        "signer_id": signer.id,
        "role": signer.role,
        "name": _signer_label(session, signer),
        "signed_at": _signed_at(signer),
        "proof_id": signer.proof_id,
        "lease_hash": signer.document_hash,
        "ip_address": signer.ip_address,
    }


def render_certificate(audit: dict) -> bytes:
    """Signature certificate: one block per signer proof, then the document digest."""
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    _, height = A4
    c.setFont("Helvetica-Bold", 14)
    c.drawString(56, height - 72, f"Signature certificate, lease #{audit['lease_id']}")
    c.setFont("Helvetica", 9)
    c.drawString(56, height - 88, f"{audit['property'] or '-'}  |  sealed {audit['sealed_at']}")
    y = height - 120
    for record in audit["signatures"]:
        if y < 120:
            c.showPage(); y = height - 72
        c.setFont("Helvetica-Bold", 10)
        c.drawString(56, y, f"{ROLE_LABELS.get(record['role'], record['role'])}: {record['name']}"[:95])
        c.setFont("Helvetica", 9)
        details = [
            f"Proof {record['proof_id'] or 'not recorded'} signed {record['signed_at']}",
            f"Lease terms hash {record['lease_hash'] or '-'}",
            f"From {record['ip_address'] or 'unknown address'}",
        ]
        for offset, line in enumerate(details, start=1):
            c.drawString(68, y - 12 * offset, line[:100])
        y -= 60
    c.setFont("Helvetica-Bold", 9)
    c.drawString(56, max(y, 56), f"Lease document SHA-256: {audit['sha256_document']}")
    c.showPage(); c.save()
    return buf.getvalue()


def _build_pdf(session: Session, lease: Lease, prop: Optional[Property], signers) -> tuple[bytes, dict]:
    body = _render_lease(session, lease, prop, signers)
    audit = {
        "lease_id": lease.id,
        "property": prop.address if prop else None,
        "sha256_document": hashlib.sha256(body).hexdigest(),
        "sealed_at": utcnow().isoformat(),
        "signatures": [_signature_record(session, s) for s in signers],
    }

    writer = PdfWriter()
    for page in PdfReader(BytesIO(body)).pages:
        writer.add_page(page)
    for page in PdfReader(BytesIO(render_certificate(audit))).pages:
        writer.add_page(page)
    out = BytesIO(); writer.write(out)
    return out.getvalue(), audit


def seal_lease(session: Session, lease_id: int, document_path: Optional[str] = None) -> SealResult:
    """Produce the sealed lease PDF once. Safe to call repeatedly; never raises."""
    try:
        existing = session.exec(select(LeaseDocument).where(LeaseDocument.lease_id == lease_id)).first()
        if existing:
            return SealResult(True, existing.s3_key_pdf, existing.sha256_final)

        lease = session.get(Lease, lease_id)
        if lease is None:
            return SealResult(False, error=f"lease {lease_id} not found")
        if lease.status not in SEALABLE:
            return SealResult(False, error=f"lease {lease_id} is {lease.status}, not fully signed")
        prop = session.get(Property, lease.property_id)
        signers = session.exec(
            select(LeaseSigner)
            .where(LeaseSigner.lease_id == lease_id, LeaseSigner.is_active == True)  # noqa: E712
            .order_by(LeaseSigner.id)
        ).all()

        final_pdf, audit = _build_pdf(session, lease, prop, signers)
        sha_final = hashlib.sha256(final_pdf).hexdigest()
        key_pdf = document_path or sealed_pdf_key(lease_id)
        key_audit = f"{key_pdf.rsplit('.', 1)[0]}.audit.json"
        put_bytes(key_pdf, final_pdf, content_type="application/pdf")
        put_bytes(key_audit, json.dumps({**audit, "sha256_final": sha_final}).encode(), content_type="application/json")

        doc = LeaseDocument(lease_id=lease_id, s3_key_pdf=key_pdf, s3_key_audit_json=key_audit, sha256_final=sha_final)
        session.add(doc)
        session.commit()
        logger.info("sealed lease %s as %s (%s)", lease_id, key_pdf, sha_final)
        return SealResult(True, key_pdf, sha_final)
    except Exception as exc:
        session.rollback()
        logger.exception("sealing lease %s failed", lease_id)
        return SealResult(False, error=str(exc) or exc.__class__.__name__)
