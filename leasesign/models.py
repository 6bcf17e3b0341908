from typing import Optional
from datetime import date, datetime, timezone
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow

class UTCDateTime(TypeDecorator):
    """Stored as naive UTC, loaded as aware UTC. Naive input is taken as UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

def Timestamp(**kwargs):
    return ORMField(sa_type=UTCDateTime, **kwargs)

class Profile(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: str = ORMField(index=True, unique=True)
    email: str
    first_name: str = ""
    last_name: str = ""
    role: str = "tenant"  # owner|tenant|guarantor|admin

class Property(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    owner_id: int = ORMField(index=True)
    address: str = ""

class Lease(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    property_id: int = ORMField(index=True)
    status: str = "draft"
    lease_type: str = "standard"
    rent: float = 0.0
    charges: float = 0.0
    deposit: float = 0.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notice_given_on: Optional[date] = None
    activated_at: Optional[datetime] = Timestamp(default=None)
    created_at: datetime = Timestamp(default_factory=utcnow)
    updated_at: datetime = Timestamp(default_factory=utcnow)

class LeaseSigner(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    lease_id: int = ORMField(index=True)
    role: str  # owner|principal_tenant|tenant|co_tenant|guarantor
    signature_status: str = "pending"  # pending|signed|refused
    profile_id: Optional[int] = ORMField(default=None, index=True)
    invited_email: Optional[str] = None
    invited_name: Optional[str] = None
    signed_at: Optional[datetime] = Timestamp(default=None)
    signature_image_path: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    proof_id: Optional[str] = None
    proof_metadata: Optional[str] = None
    document_hash: Optional[str] = None
    is_active: bool = True
    removed_at: Optional[datetime] = Timestamp(default=None)
    created_at: datetime = Timestamp(default_factory=utcnow)

class LeaseDocument(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    lease_id: int = ORMField(index=True, unique=True)
    s3_key_pdf: str
    s3_key_audit_json: str
    sha256_final: str
    sealed_at: datetime = Timestamp(default_factory=utcnow)

class OutboxEvent(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    event_type: str = ORMField(index=True)
    payload_json: str = "{}"
    status: str = ORMField(default="pending", index=True)  # pending|processing|completed|failed
    retry_count: int = 0
    max_retries: int = 3
    scheduled_at: datetime = Timestamp(default_factory=utcnow)
    processed_at: Optional[datetime] = Timestamp(default=None)
    error_message: Optional[str] = None
    created_at: datetime = Timestamp(default_factory=utcnow)

class AuditLog(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    actor: str  # system|user:<id>
    action: str
    entity_type: str
    entity_id: int
    meta_json: str = "{}"
    at: datetime = Timestamp(default_factory=utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None

class Notification(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    profile_id: int = ORMField(index=True)
    type: str
    title: str
    body: str = ""
    meta_json: str = "{}"
    read: bool = False
    event_key: Optional[str] = ORMField(default=None, index=True, unique=True)  # <outbox event>:<profile>
    created_at: datetime = Timestamp(default_factory=utcnow)

class SignatureUsage(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    owner_profile_id: int = ORMField(index=True)
    period: str  # YYYY-MM
    count: int = 0
