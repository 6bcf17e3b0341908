import base64
import io
import os
from types import SimpleNamespace
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from minio.error import S3Error
from PIL import Image
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.pop("RATE_LIMIT_REDIS_URL", None)

from leasesign.main import app  # noqa: E402
from leasesign import config  # noqa: E402
from leasesign import db as db_module  # noqa: E402
from leasesign.db import get_session  # noqa: E402
from leasesign import notifications  # noqa: E402
from leasesign import recorder  # noqa: E402
from leasesign import sealer  # noqa: E402
from leasesign import storage as storage_module  # noqa: E402
from leasesign.models import Lease, LeaseSigner, Profile, Property  # noqa: E402
from leasesign.rate_limit import rate_limiter  # noqa: E402
from leasesign.routers import leases as leases_router  # noqa: E402
from leasesign.utils import make_token  # noqa: E402

ADMIN_TOKEN = "admin-test-token"


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine, monkeypatch):
    monkeypatch.setattr(db_module, "engine", test_engine)
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def _reset_state(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_ACCESS_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr(config, "STRICT_SIGNER_MATCHING", False)
    rate_limiter.reset()
    db_module.reset_signer_columns()
    yield
    db_module.reset_signer_columns()


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        if key not in store:
            raise S3Error("NoSuchKey", "missing", f"/{key}", "test-request", "test-host", None)
        return store[key]

    def fake_delete_object(key: str):
        store.pop(key, None)

    for target in (storage_module, recorder, sealer, leases_router):
        if hasattr(target, "put_bytes"):
            monkeypatch.setattr(target, "put_bytes", fake_put_bytes)
        if hasattr(target, "get_bytes"):
            monkeypatch.setattr(target, "get_bytes", fake_get_bytes)
        if hasattr(target, "delete_object"):
            monkeypatch.setattr(target, "delete_object", fake_delete_object)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None, sender_name=None, reply_to=None):
        messages.append({"to": to, "subject": subject, "text": body, "html": html_body})

    monkeypatch.setattr(notifications, "send_email", fake_send_email)
    return messages


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails):
    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def png_bytes(width: int = 40, height: int = 20, fmt: str = "PNG") -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    img = Image.new(mode, (width, height), (20, 20, 120, 255)[: len(mode)])
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def data_url():
    def _make(width: int = 40, height: int = 20, fmt: str = "PNG", mime: str = "image/png") -> str:
        return f"data:{mime};base64," + base64.b64encode(png_bytes(width, height, fmt)).decode()
    return _make


@pytest.fixture
def signature_data_url(data_url):
    return data_url()


def auth_headers(user_id: str, email: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token({'user_id': user_id, 'email': email})}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def parties(session):
    owner = Profile(user_id="owner-1", email="olivia@example.com", first_name="Olivia", last_name="Martin", role="owner")
    tenant = Profile(user_id="tenant-1", email="tina@example.com", first_name="Tina", last_name="Durand")
    cotenant = Profile(user_id="tenant-2", email="carl@example.com", first_name="Carl", last_name="Petit")
    stranger = Profile(user_id="stranger-1", email="sam@example.com", first_name="Sam", last_name="Roux")
    for profile in (owner, tenant, cotenant, stranger):
        session.add(profile)
    session.commit()
    for profile in (owner, tenant, cotenant, stranger):
        session.refresh(profile)
    prop = Property(owner_id=owner.id, address="12 rue des Lilas, Lyon")
    session.add(prop)
    session.commit()
    session.refresh(prop)
    return SimpleNamespace(owner=owner, tenant=tenant, cotenant=cotenant, stranger=stranger, prop=prop)


@pytest.fixture
def make_lease(session, parties):
    def _make(*signers, status: str = "draft", **fields):
        lease = Lease(property_id=parties.prop.id, status=status, rent=950.0, charges=50.0, deposit=950.0, **fields)
        session.add(lease)
        session.commit()
        session.refresh(lease)
        rows = [LeaseSigner(lease_id=lease.id, **values) for values in signers]
        for row in rows:
            session.add(row)
        session.commit()
        for row in rows:
            session.refresh(row)
        return lease, rows
    return _make
