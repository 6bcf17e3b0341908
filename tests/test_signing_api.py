import json
from io import BytesIO

from pypdf import PdfReader
from sqlmodel import Session, select

from leasesign.audit import verify_chain
from leasesign.models import LeaseSigner, Notification, OutboxEvent
from leasesign.rate_limit import rate_limiter
from leasesign.routers import signing as signing_router

ADMIN_HEADERS = {"X-Access-Token": "admin-test-token"}


def register(client, headers_for, user_id, email, first_name, last_name, role="tenant"):
    headers = headers_for(user_id, email)
    response = client.post(
        "/api/profiles/me",
        json={"first_name": first_name, "last_name": last_name, "role": role},
        headers=headers,
    )
    assert response.status_code == 200
    return headers, response.json()["id"]


def create_lease(client, owner_headers, owner_id, tenants):
    prop_resp = client.post("/api/properties", json={"address": "8 quai Saint-Vincent, Lyon"}, headers=owner_headers)
    assert prop_resp.status_code == 201
    signers = [{"role": "owner", "profile_id": owner_id}] + tenants
    lease_resp = client.post(
        "/api/leases",
        json={"property_id": prop_resp.json()["id"], "rent": 880, "deposit": 880,
              "start_date": "2026-11-01", "signers": signers},
        headers=owner_headers,
    )
    assert lease_resp.status_code == 201
    return lease_resp.json()["id"]


def sign(client, lease_id, headers, image, **metadata):
    return client.post(
        f"/api/leases/{lease_id}/sign",
        json={"signature_image": image, "metadata": metadata or None},
        headers=headers,
    )


def setup_lease(client, headers_for):
    owner_headers, owner_id = register(client, headers_for, "owner-1", "olivia@example.com", "Olivia", "Martin", "owner")
    tenant_headers, tenant_id = register(client, headers_for, "tenant-1", "tina@example.com", "Tina", "Durand")
    lease_id = create_lease(client, owner_headers, owner_id, [{"role": "tenant", "invited_email": "tina@example.com"}])
    return owner_headers, tenant_headers, lease_id


def test_full_signing_flow_seals_and_notifies(client, headers_for, signature_data_url, mock_storage,
                                              sent_emails, test_engine):
    owner_headers, tenant_headers, lease_id = setup_lease(client, headers_for)
    assert client.get(f"/api/leases/{lease_id}", headers=owner_headers).json()["status"] == "draft"

    first = sign(client, lease_id, tenant_headers, signature_data_url, screenSize="390x844", touchDevice=True)
    assert first.status_code == 200, first.text
    body = first.json()
    assert body["success"] is True
    assert body["proof_id"].startswith("SIG-")
    assert body["lease_status"] == "pending_owner_signature"

    second = sign(client, lease_id, owner_headers, signature_data_url)
    assert second.status_code == 200, second.text
    assert second.json()["lease_status"] == "fully_signed"

    lease = client.get(f"/api/leases/{lease_id}", headers=tenant_headers).json()
    assert lease["status"] == "fully_signed"
    assert all(s["signature_status"] == "signed" for s in lease["signers"])
    assert lease["sealed_document"]["sha256_final"]

    pdf = client.get(f"/api/leases/{lease_id}/sealed-pdf", headers=tenant_headers)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert len(PdfReader(BytesIO(pdf.content)).pages) >= 2
    assert f"leases/{lease_id}/sealed/lease-{lease_id}.audit.json" in mock_storage

    with Session(test_engine) as session:
        events = session.exec(select(OutboxEvent).order_by(OutboxEvent.id)).all()
        assert [e.event_type for e in events] == [
            "Lease.TenantSigned", "Lease.OwnerSigned", "Lease.FullySigned", "Lease.FullySigned",
        ]
        assert verify_chain(session, "lease", lease_id)

    result = client.post("/api/admin/outbox/process", headers=ADMIN_HEADERS)
    assert result.status_code == 200
    assert result.json() == {"processed": 4, "failed": 0, "total": 4}
    assert sorted(m["to"] for m in sent_emails) == [
        "olivia@example.com", "olivia@example.com", "tina@example.com", "tina@example.com",
    ]
    with Session(test_engine) as session:
        owner_notes = session.exec(select(Notification).where(Notification.type == "lease_fully_signed")).all()
        assert len(owner_notes) == 2

    me = client.get("/api/profiles/me", headers=owner_headers).json()
    assert me["signatures_this_month"] == 2


def test_second_signature_is_rejected(client, headers_for, signature_data_url, test_engine):
    _, tenant_headers, lease_id = setup_lease(client, headers_for)
    assert sign(client, lease_id, tenant_headers, signature_data_url).status_code == 200

    again = sign(client, lease_id, tenant_headers, signature_data_url)
    assert again.status_code == 403
    assert again.json() == {"error": "already signed"}
    with Session(test_engine) as session:
        tenant = session.exec(select(LeaseSigner).where(LeaseSigner.role == "tenant")).one()
        first_proof = tenant.proof_id
    proof = client.get(f"/api/leases/{lease_id}/signers/{tenant.id}/proof", headers=tenant_headers)
    assert proof.status_code == 200
    assert proof.json()["proof_id"] == first_proof


def test_invalid_image_writes_nothing(client, headers_for, mock_storage, test_engine):
    _, tenant_headers, lease_id = setup_lease(client, headers_for)
    response = sign(client, lease_id, tenant_headers, "data:image/png;base64,aGVsbG8=")
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "invalid signature image"
    assert body["errors"] == ["signature_image is not a readable image"]

    missing = sign(client, lease_id, tenant_headers, None)
    assert missing.status_code == 400
    assert missing.json()["errors"] == ["signature_image is required"]

    assert mock_storage == {}
    with Session(test_engine) as session:
        signers = session.exec(select(LeaseSigner)).all()
        assert all(s.signature_status == "pending" for s in signers)
        tenant = next(s for s in signers if s.role == "tenant")
        assert tenant.profile_id is None


def test_stranger_cannot_sign(client, headers_for, signature_data_url, mock_storage):
    _, _, lease_id = setup_lease(client, headers_for)
    stranger_headers, _ = register(client, headers_for, "stranger-1", "sam@example.com", "Sam", "Roux")
    response = sign(client, lease_id, stranger_headers, signature_data_url)
    assert response.status_code == 403
    assert response.json()["error"] == "not authorized to sign this lease"
    assert mock_storage == {}


def test_sign_requires_authentication(client, signature_data_url):
    response = client.post("/api/leases/1/sign", json={"signature_image": signature_data_url})
    assert response.status_code == 401


def test_unknown_lease_is_not_found(client, headers_for, signature_data_url):
    headers, _ = register(client, headers_for, "tenant-1", "tina@example.com", "Tina", "Durand")
    assert sign(client, 999, headers, signature_data_url).status_code == 404


def test_cancelled_lease_cannot_be_signed(client, headers_for, signature_data_url):
    owner_headers, tenant_headers, lease_id = setup_lease(client, headers_for)
    cancel = client.post(f"/api/leases/{lease_id}/transitions/cancel", json={}, headers=owner_headers)
    assert cancel.status_code == 200
    assert cancel.json()["new_status"] == "cancelled"

    response = sign(client, lease_id, tenant_headers, signature_data_url)
    assert response.status_code == 409
    assert "cancelled" in response.json()["error"]


def test_signing_is_rate_limited(client, headers_for, monkeypatch):
    monkeypatch.setitem(rate_limiter.limits, "sign", {"requests": 2, "window": 60})
    _, tenant_headers, lease_id = setup_lease(client, headers_for)
    for _ in range(2):
        assert sign(client, lease_id, tenant_headers, "not-an-image").status_code == 400
    limited = sign(client, lease_id, tenant_headers, "not-an-image")
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1
    assert limited.json()["error"] == "too many requests, please retry later"


def test_admin_outbox_requires_token(client):
    assert client.post("/api/admin/outbox/process").status_code == 401
    assert client.post("/api/admin/outbox/process", headers={"X-Access-Token": "nope"}).status_code == 403


def test_removing_last_pending_cotenant_seals_the_lease(client, headers_for, signature_data_url, mock_storage,
                                                       test_engine):
    owner_headers, owner_id = register(client, headers_for, "owner-1", "olivia@example.com", "Olivia", "Martin", "owner")
    tenant_headers, _ = register(client, headers_for, "tenant-1", "tina@example.com", "Tina", "Durand")
    lease_id = create_lease(client, owner_headers, owner_id, [
        {"role": "tenant", "invited_email": "tina@example.com"},
        {"role": "co_tenant", "invited_email": "carl@example.com"},
    ])
    assert sign(client, lease_id, tenant_headers, signature_data_url).status_code == 200
    owner_signed = sign(client, lease_id, owner_headers, signature_data_url)
    assert owner_signed.json()["lease_status"] == "partially_signed"

    signers = client.get(f"/api/leases/{lease_id}", headers=owner_headers).json()["signers"]
    carl = next(s for s in signers if s["role"] == "co_tenant")
    removed = client.delete(f"/api/leases/{lease_id}/signers/{carl['id']}", headers=owner_headers)
    assert removed.json() == {"ok": True, "lease_status": "fully_signed"}

    lease = client.get(f"/api/leases/{lease_id}", headers=owner_headers).json()
    assert lease["sealed_document"]["sha256_final"]
    assert f"leases/{lease_id}/sealed/lease-{lease_id}.pdf" in mock_storage
    with Session(test_engine) as session:
        events = session.exec(select(OutboxEvent).order_by(OutboxEvent.id)).all()
        assert [e.event_type for e in events] == [
            "Lease.TenantSigned", "Lease.OwnerSigned", "Lease.FullySigned", "Lease.FullySigned",
        ]

    # a sealed lease takes no new signers, so nothing is announced twice
    again = client.post(f"/api/leases/{lease_id}/signers", json={"role": "guarantor", "invited_email": "g@example.com"},
                        headers=owner_headers)
    assert again.status_code == 409
    with Session(test_engine) as session:
        assert len(session.exec(select(OutboxEvent)).all()) == 4


def test_failed_recompute_is_healed_by_the_outbox(client, headers_for, signature_data_url, mock_storage,
                                                   test_engine, monkeypatch):
    owner_headers, tenant_headers, lease_id = setup_lease(client, headers_for)
    assert sign(client, lease_id, tenant_headers, signature_data_url).status_code == 200

    def broken_refresh(session, lease):
        raise RuntimeError("database went away")

    monkeypatch.setattr(signing_router, "refresh_lease_status", broken_refresh)
    response = sign(client, lease_id, owner_headers, signature_data_url)
    assert response.status_code == 200
    assert response.json()["lease_status"] == "pending_owner_signature"
    assert client.get(f"/api/leases/{lease_id}", headers=owner_headers).json()["sealed_document"] is None

    with Session(test_engine) as session:
        recompute = session.exec(select(OutboxEvent).where(OutboxEvent.event_type == "Lease.StatusRecompute")).one()
        assert json.loads(recompute.payload_json)["lease_id"] == lease_id

    result = client.post("/api/admin/outbox/process", headers=ADMIN_HEADERS)
    assert result.json()["failed"] == 0

    lease = client.get(f"/api/leases/{lease_id}", headers=owner_headers).json()
    assert lease["status"] == "fully_signed"
    assert lease["sealed_document"]["sha256_final"]
    with Session(test_engine) as session:
        fully = session.exec(select(OutboxEvent).where(OutboxEvent.event_type == "Lease.FullySigned")).all()
        assert len(fully) == 2
