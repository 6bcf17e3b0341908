"""Signature proof records.

A proof binds the signer's identity, a hash of the lease as it stood when it
was signed, and the client's metadata. It never embeds the raw image, only
its hash and storage path.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from .utils import canonical_json, sha256_bytes


LEASE_TERMS = ("id", "property_id", "lease_type", "rent", "charges", "deposit", "start_date", "end_date", "created_at")


def lease_snapshot(lease, prop) -> dict:
    # attribute access reloads instances expired by an earlier commit
    return {
        "lease": {name: getattr(lease, name) for name in LEASE_TERMS},
        "property": {"id": prop.id, "owner_id": prop.owner_id, "address": prop.address} if prop else None,
    }


def snapshot_hash(lease, prop) -> str:
    """Tamper evidence: any later change to the lease terms changes this hash."""
    return sha256_bytes(canonical_json(lease_snapshot(lease, prop)).encode())


def build_signature_proof(
    *,
    lease,
    prop,
    signer_name: str,
    signer_email: str,
    profile_id: int,
    identity_method: str,
    image_bytes: bytes,
    ip_address: Optional[str],
    user_agent: Optional[str],
    screen_size: Optional[str] = None,
    touch_device: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    proof = {
        "proof_id": f"SIG-{uuid.uuid4().hex[:20].upper()}",
        "version": 1,
        "timestamp": {"iso": now.isoformat(), "unix_ms": int(now.timestamp() * 1000)},
        "document": {"type": "LEASE", "id": lease.id, "hash": snapshot_hash(lease, prop)},
        "signer": {
            "name": signer_name,
            "email": signer_email,
            "profile_id": profile_id,
            "identity_verified": True,
            "identity_method": identity_method,
        },
        "signature": {"type": "draw", "image_hash": sha256_bytes(image_bytes), "image_path": None},
        "metadata": {
            "ip_address": ip_address or "unknown",
            "user_agent": user_agent or "unknown",
            "screen_size": screen_size or "unspecified",
            "touch_device": bool(touch_device),
        },
    }
    return seal_proof(proof)


def seal_proof(proof: dict) -> dict:
    body = {k: v for k, v in proof.items() if k != "integrity"}
    proof["integrity"] = {"algorithm": "sha256", "hash": sha256_bytes(canonical_json(body).encode())}
    return proof


def with_image_path(proof: dict, path: str) -> dict:
    """Copy of the proof pointing at the stored image, re-hashed."""
    updated = {k: v for k, v in proof.items() if k != "integrity"}
    updated["signature"] = dict(updated["signature"], image_path=path)
    return seal_proof(updated)


def verify_proof(proof: dict) -> bool:
    integrity = proof.get("integrity") or {}
    body = {k: v for k, v in proof.items() if k != "integrity"}
    return integrity.get("hash") == sha256_bytes(canonical_json(body).encode())
