import logging
from typing import Optional, Set
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)

# proof columns added after the first releases; older databases may lack some of them
OPTIONAL_SIGNER_COLUMNS = ("ip_address", "user_agent", "proof_id", "proof_metadata", "document_hash")

_signer_columns: Optional[Set[str]] = None

def init_db():
    from .models import (  # noqa: F401
        Profile, Property, Lease, LeaseSigner, LeaseDocument,
        OutboxEvent, AuditLog, Notification, SignatureUsage,
    )
    SQLModel.metadata.create_all(engine)
    detect_signer_columns(engine)

def get_session():
    with Session(engine) as session:
        yield session

def detect_signer_columns(bind) -> Set[str]:
    """Record which optional proof columns the signer table actually has."""
    global _signer_columns
    inspector = inspect(bind)
    try:
        columns = {col["name"] for col in inspector.get_columns("leasesigner")}
    except Exception:
        logger.warning("could not inspect leasesigner columns; writing all proof fields")
        _signer_columns = None
        return set(OPTIONAL_SIGNER_COLUMNS)
    _signer_columns = {name for name in OPTIONAL_SIGNER_COLUMNS if name in columns}
    missing = set(OPTIONAL_SIGNER_COLUMNS) - _signer_columns
    if missing:
        logger.warning("leasesigner is missing optional columns: %s", ", ".join(sorted(missing)))
    return _signer_columns

def writable_signer_columns() -> Set[str]:
    if _signer_columns is None:
        return set(OPTIONAL_SIGNER_COLUMNS)
    return set(_signer_columns)

def reset_signer_columns():
    global _signer_columns
    _signer_columns = None
