import logging
from sqlmodel import Session, select
from .models import AuditLog
from .utils import canonical_json, sha256_bytes

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

def append_audit(session: Session, actor: str, action: str, entity_type: str, entity_id: int, meta: dict) -> AuditLog:
    """Append a hash-chained audit entry and commit it."""
    last = session.exec(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id.desc())
    ).first()
    prev_hash = last.hash if last else GENESIS_HASH
    payload = {"actor": actor, "action": action, "meta": meta}
    entry = AuditLog(
        actor=actor, action=action, entity_type=entity_type, entity_id=entity_id,
        meta_json=canonical_json(payload), prev_hash=prev_hash,
    )
    entry.hash = sha256_bytes((prev_hash + entry.meta_json).encode())
    session.add(entry)
    session.commit()
    return entry

def try_append_audit(session: Session, actor: str, action: str, entity_type: str, entity_id: int, meta: dict):
    try:
        return append_audit(session, actor, action, entity_type, entity_id, meta)
    except Exception:
        session.rollback()
        logger.exception("audit entry %s for %s %s was not written", action, entity_type, entity_id)
        return None

def verify_chain(session: Session, entity_type: str, entity_id: int) -> bool:
    entries = session.exec(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id)
    ).all()
    prev_hash = GENESIS_HASH
    for entry in entries:
        if entry.prev_hash != prev_hash:
            return False
        if entry.hash != sha256_bytes((prev_hash + entry.meta_json).encode()):
            return False
        prev_hash = entry.hash
    return True
