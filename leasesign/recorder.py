"""Persist a signature: proof, image upload, signer update.

The recorder either commits a fully signed signer backed by a stored image or
leaves no trace. An upload failure aborts before any row changes; an update
failure after the upload reverts the signer to pending and deletes the image.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy import update
from sqlmodel import Session
from .db import writable_signer_columns
from .errors import SigningFailed
from .models import Lease, LeaseSigner, Profile, Property
from .proof import build_signature_proof, with_image_path
from .storage import put_bytes, delete_object
from .utils import full_name, utcnow
from .validation import SignatureImage

logger = logging.getLogger(__name__)


@dataclass
class ClientMetadata:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    screen_size: Optional[str] = None
    touch_device: bool = False


@dataclass
class RecordedSignature:
    signer: LeaseSigner
    proof: dict
    image_path: str

    @property
    def proof_id(self) -> str:
        return self.proof["proof_id"]


def identity_method(signer: LeaseSigner) -> str:
    if signer.role == "owner":
        return "authenticated owner account"
    return "authenticated account (verified email)"


def signature_path(lease_id: int, user_id: str, signed_at: datetime, extension: str) -> str:
    return f"signatures/{lease_id}/{user_id}_{int(signed_at.timestamp() * 1000)}.{extension}"


def record_signature(
    session: Session,
    lease: Lease,
    signer: LeaseSigner,
    profile: Profile,
    email: str,
    image: SignatureImage,
    client: ClientMetadata,
) -> RecordedSignature:
    prop = session.get(Property, lease.property_id)
    signed_at = utcnow()
    proof = build_signature_proof(
        lease=lease,
        prop=prop,
        signer_name=full_name(profile.first_name, profile.last_name, email),
        signer_email=email,
        profile_id=profile.id,
        identity_method=identity_method(signer),
        image_bytes=image.data,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        screen_size=client.screen_size,
        touch_device=client.touch_device,
    )

    path = signature_path(lease.id, profile.user_id, signed_at, image.extension)
    try:
        put_bytes(path, image.data, content_type=image.content_type)
    except Exception as exc:
        logger.exception("signature upload failed for lease %s signer %s", lease.id, signer.id)
        raise SigningFailed() from exc

    proof = with_image_path(proof, path)
    try:
        values = _signer_values(proof, signed_at, path)
        result = session.connection().execute(
            update(LeaseSigner)
            .where(LeaseSigner.id == signer.id, LeaseSigner.signature_status == "pending")
            .values(**values)
        )
        if result.rowcount != 1:
            raise RuntimeError(f"signer {signer.id} is no longer pending")
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception("signer update failed for lease %s signer %s; rolling back", lease.id, signer.id)
        _compensate(session, signer, path)
        raise SigningFailed() from exc

    session.refresh(signer)
    logger.info("lease %s signed by signer %s (%s), proof %s", lease.id, signer.id, signer.role, proof["proof_id"])
    return RecordedSignature(signer=signer, proof=proof, image_path=path)


def _signer_values(proof: dict, signed_at: datetime, path: str) -> dict:
    values = {
        "signature_status": "signed",
        "signed_at": signed_at,
        "signature_image_path": path,
    }
    optional = {
        "ip_address": proof["metadata"]["ip_address"],
        "user_agent": proof["metadata"]["user_agent"],
        "proof_id": proof["proof_id"],
        "proof_metadata": json.dumps(proof),
        "document_hash": proof["document"]["hash"],
    }
    columns = writable_signer_columns()
    values.update({k: v for k, v in optional.items() if k in columns})
    return values


def _compensate(session: Session, signer: LeaseSigner, path: str):
    """Undo a half-applied signature: signer back to pending, image removed."""
    try:
        session.connection().execute(
            update(LeaseSigner)
            .where(LeaseSigner.id == signer.id, LeaseSigner.signature_image_path == path)
            .values(signature_status="pending", signed_at=None, signature_image_path=None)
        )
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("could not revert signer %s to pending", signer.id)
    try:
        delete_object(path)
    except Exception:
        logger.exception("could not delete orphaned signature image %s", path)
