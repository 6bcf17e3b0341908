import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./leasesign.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "documents")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "leases")
WEB_BASE_URL = os.getenv("WEB_BASE_URL", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# outbox
OUTBOX_INTERVAL_SECONDS = float(os.getenv("OUTBOX_INTERVAL_SECONDS", "60"))
OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "50"))
OUTBOX_MAX_RETRIES = int(os.getenv("OUTBOX_MAX_RETRIES", "3"))

# signature images
SIGNATURE_MAX_BYTES = int(os.getenv("SIGNATURE_MAX_BYTES", str(2 * 1024 * 1024)))
SIGNATURE_MIN_DIMENSION = int(os.getenv("SIGNATURE_MIN_DIMENSION", "1"))

# rate limiting (per acting identity)
RATE_LIMIT_REDIS_URL = os.getenv("RATE_LIMIT_REDIS_URL")
SIGN_RATE_LIMIT = int(os.getenv("SIGN_RATE_LIMIT", "10"))
SIGN_RATE_WINDOW = int(os.getenv("SIGN_RATE_WINDOW", "60"))

# when set, an authenticated tenant is never matched to an anonymous placeholder
STRICT_SIGNER_MATCHING = os.getenv("STRICT_SIGNER_MATCHING", "false").lower() in ("1", "true", "yes")

# outgoing mail; without credentials messages are only logged
EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")
EMAIL_SENDER = os.getenv("EMAIL_SENDER", EMAIL_USER or "noreply@example.com")
EMAIL_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "Lease Signing")
