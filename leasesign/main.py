import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import LOG_LEVEL
from .db import init_db
from .errors import SigningError, signing_error_handler
from .routers import accounts, admin, leases, signing


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()

app = FastAPI(title="Lease Signing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(SigningError, signing_error_handler)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(accounts.router, prefix="/api", tags=["accounts"])
app.include_router(leases.router, prefix="/api/leases", tags=["leases"])
app.include_router(signing.router, prefix="/api/leases", tags=["signing"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

@app.get("/")
def root():
    return {"ok": True, "service": "lease-signing-api"}
