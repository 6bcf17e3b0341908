import base64, binascii, hashlib, json
from datetime import datetime, timezone
from itsdangerous import URLSafeSerializer
from .config import SECRET_KEY

def b64image_to_bytes(data_url: str) -> bytes:
    # accepts "data:image/png;base64,....." or bare base64
    if "," in data_url:
        data_url = data_url.split(",", 1)[1]
    try:
        return base64.b64decode(data_url, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 payload") from exc

def declared_mime(data_url: str):
    if data_url.startswith("data:") and ";" in data_url:
        return data_url[5:data_url.index(";")]
    return None

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="session")
    return s.dumps(payload)

def read_token(token: str) -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt="session")
    return s.loads(token)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def full_name(first: str, last: str, fallback: str = "") -> str:
    return f"{first or ''} {last or ''}".strip() or fallback
