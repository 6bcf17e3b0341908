"""Durable outbox for side effects that must not block the primary request.

Rows are appended by request handlers and consumed by :func:`process_pending`,
which the Celery beat task and the admin endpoint both call. Delivery is
at-least-once, so handlers must be idempotent.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from sqlmodel import Session, select
from .config import OUTBOX_BATCH_SIZE, OUTBOX_MAX_RETRIES
from .models import OutboxEvent
from .utils import canonical_json, utcnow

logger = logging.getLogger(__name__)

SEAL_RETRY = "Lease.SealRetry"
TENANT_SIGNED = "Lease.TenantSigned"
OWNER_SIGNED = "Lease.OwnerSigned"
FULLY_SIGNED = "Lease.FullySigned"
STATUS_RECOMPUTE = "Lease.StatusRecompute"

# added to every payload handed to a handler
OUTBOX_EVENT_ID = "outbox_event_id"

_handlers: Dict[str, Callable[[Session, dict], None]] = {}


def handler(event_type: str):
    def register(fn):
        _handlers[event_type] = fn
        return fn
    return register


def registered_handlers() -> Dict[str, Callable[[Session, dict], None]]:
    # handler modules register themselves on import
    from . import notifications, sealing  # noqa: F401
    return dict(_handlers)


def enqueue(session: Session, event_type: str, payload: dict) -> Optional[OutboxEvent]:
    """Append an event in its own transaction; failures are logged, never raised."""
    try:
        with Session(session.get_bind()) as outbox_session:
            event = OutboxEvent(
                event_type=event_type,
                payload_json=canonical_json(payload),
                max_retries=OUTBOX_MAX_RETRIES,
            )
            outbox_session.add(event)
            outbox_session.commit()
            outbox_session.refresh(event)
            return event
    except Exception:
        logger.exception("could not enqueue outbox event %s", event_type)
        return None


def backoff_delay(retry_count: int) -> timedelta:
    return timedelta(minutes=2 ** retry_count)


def process_pending(session: Session, now: Optional[datetime] = None, batch_size: int = OUTBOX_BATCH_SIZE) -> dict:
    now = now or utcnow()
    handlers = registered_handlers()
    events = session.exec(
        select(OutboxEvent)
        .where(OutboxEvent.status == "pending", OutboxEvent.scheduled_at <= now)
        .order_by(OutboxEvent.scheduled_at, OutboxEvent.id)
        .limit(batch_size)
    ).all()

    processed = failed = 0
    for event in events:
        event.status = "processing"
        event.processed_at = now
        session.add(event)
        session.commit()

        fn = handlers.get(event.event_type)
        try:
            if fn is None:
                raise LookupError(f"no handler for {event.event_type}")
            payload = json.loads(event.payload_json or "{}")
            payload[OUTBOX_EVENT_ID] = event.id
            fn(session, payload)
        except Exception as exc:
            session.rollback()
            logger.warning("outbox event %s (%s) failed: %s", event.id, event.event_type, exc)
            _schedule_retry(event, exc, now, permanent=fn is None)
            session.add(event)
            session.commit()
            failed += 1
            continue

        event.status = "completed"
        event.error_message = None
        session.add(event)
        session.commit()
        processed += 1

    if events:
        logger.info("outbox batch done: %s processed, %s failed", processed, failed)
    return {"processed": processed, "failed": failed, "total": len(events)}


def _schedule_retry(event: OutboxEvent, exc: Exception, now: datetime, permanent: bool = False):
    event.retry_count = (event.retry_count or 0) + 1
    event.error_message = str(exc) or exc.__class__.__name__
    if permanent or event.retry_count >= (event.max_retries or OUTBOX_MAX_RETRIES):
        event.status = "failed"
        return
    event.status = "pending"
    event.scheduled_at = now + backoff_delay(event.retry_count)
