import logging
from celery import Celery
from sqlmodel import Session
from . import db
from .config import OUTBOX_INTERVAL_SECONDS, REDIS_URL, WORKER_QUEUE
from .outbox import process_pending
from .sealing import trigger_seal

logger = logging.getLogger(__name__)

cel = Celery("leasesign", broker=REDIS_URL, backend=REDIS_URL)
cel.conf.task_default_queue = WORKER_QUEUE
cel.conf.beat_schedule = {
    "process-outbox": {
        "task": "process_outbox",
        "schedule": OUTBOX_INTERVAL_SECONDS,
        "options": {"queue": WORKER_QUEUE},
    },
}

@cel.task(name="process_outbox", queue=WORKER_QUEUE)
def process_outbox():
    with Session(db.engine) as session:
        result = process_pending(session)
    if result["total"]:
        logger.info("outbox run: %s", result)
    return result

@cel.task(name="seal_lease", queue=WORKER_QUEUE)
def seal_lease_task(lease_id: int):
    with Session(db.engine) as session:
        result = trigger_seal(session, lease_id)
    return {"success": result.success, "pdf": result.document_path, "sha256_final": result.sha256_final}
