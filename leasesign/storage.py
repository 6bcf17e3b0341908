import io
import logging
from typing import Optional
from minio import Minio
from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_BUCKET, MINIO_SECURE

logger = logging.getLogger(__name__)

_client: Optional[Minio] = None
_bucket_ready = False

def client() -> Minio:
    global _client
    if _client is None:
        _client = Minio(MINIO_ENDPOINT, access_key=MINIO_ACCESS_KEY, secret_key=MINIO_SECRET_KEY, secure=MINIO_SECURE)
    return _client

def ensure_bucket():
    global _bucket_ready
    if _bucket_ready:
        return
    if not client().bucket_exists(MINIO_BUCKET):
        client().make_bucket(MINIO_BUCKET)
        logger.info("created bucket %s", MINIO_BUCKET)
    _bucket_ready = True

def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    client().put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)

def get_bytes(key: str) -> bytes:
    resp = client().get_object(MINIO_BUCKET, key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()

def delete_object(key: str):
    client().remove_object(MINIO_BUCKET, key)
    logger.info("deleted object %s", key)
