import json
import logging
from datetime import timedelta

import pytest
from sqlmodel import select

from leasesign import email as email_module
from leasesign import notifications
from leasesign.lease_status import LeaseStatus
from leasesign.models import Notification, OutboxEvent, Profile
from leasesign.notifications import enqueue_signing_events, notify
from leasesign.outbox import FULLY_SIGNED, enqueue, process_pending, registered_handlers
from leasesign.utils import utcnow


def queued(session):
    rows = session.exec(select(OutboxEvent).order_by(OutboxEvent.id)).all()
    return [(e.event_type, json.loads(e.payload_json)) for e in rows]


def test_guarantor_signature_notifies_owner(session, parties, make_lease):
    lease, (_, _, guarantor) = make_lease(
        {"role": "owner", "profile_id": parties.owner.id},
        {"role": "tenant", "profile_id": parties.tenant.id, "signature_status": "signed"},
        {"role": "guarantor", "profile_id": parties.cotenant.id, "signature_status": "signed"},
    )
    enqueue_signing_events(session, lease, parties.prop, guarantor, "Carl Petit", LeaseStatus.PENDING_OWNER_SIGNATURE)
    [(kind, payload)] = queued(session)
    assert kind == "Lease.TenantSigned"
    assert payload["owner_profile_id"] == parties.owner.id
    assert payload["signer_role"] == "Guarantor"


def test_owner_signature_notifies_each_linked_party(session, parties, make_lease):
    lease, (owner_row, _, _) = make_lease(
        {"role": "owner", "profile_id": parties.owner.id, "signature_status": "signed"},
        {"role": "tenant", "profile_id": parties.tenant.id},
        {"role": "co_tenant", "invited_email": "later@example.com"},
    )
    enqueue_signing_events(session, lease, parties.prop, owner_row, "Olivia Martin", LeaseStatus.PARTIALLY_SIGNED)
    events = queued(session)
    assert [kind for kind, _ in events] == ["Lease.OwnerSigned"]
    assert events[0][1]["tenant_profile_id"] == parties.tenant.id


def test_fully_signed_sends_role_specific_next_steps(session, parties, make_lease):
    lease, (_, tenant_row) = make_lease(
        {"role": "owner", "profile_id": parties.owner.id, "signature_status": "signed"},
        {"role": "tenant", "profile_id": parties.tenant.id, "signature_status": "signed"},
    )
    enqueue_signing_events(session, lease, parties.prop, tenant_row, "Tina Durand", LeaseStatus.FULLY_SIGNED)
    fully = [payload for kind, payload in queued(session) if kind == "Lease.FullySigned"]
    assert [(p["profile_id"], p["is_owner"], p["next_step"]) for p in fully] == [
        (parties.owner.id, True, "create_entry_inspection"),
        (parties.tenant.id, False, "await_entry_inspection"),
    ]


def test_notify_stores_notification_and_emails(session, parties, sent_emails):
    notify(session, parties.tenant.id, "lease_fully_signed", "Lease fully signed", "All done.",
           {"lease_id": 1}, cta_label="View my lease", cta_path="/tenant/lease")
    note = session.exec(select(Notification)).one()
    assert note.profile_id == parties.tenant.id
    assert json.loads(note.meta_json) == {"lease_id": 1}
    [message] = sent_emails
    assert message["to"] == "tina@example.com"
    assert "View my lease: " in message["text"]
    assert 'href="' in message["html"]


def test_notify_without_email_only_stores(session, sent_emails):
    profile = Profile(user_id="no-mail", email="")
    session.add(profile)
    session.commit()
    session.refresh(profile)
    notify(session, profile.id, "lease_activated", "Lease active", "Active.", {})
    assert sent_emails == []
    assert session.exec(select(Notification)).one().profile_id == profile.id


def test_notify_unknown_profile_raises(session):
    with pytest.raises(LookupError):
        notify(session, 404, "lease_activated", "Lease active", "Active.", {})


def test_email_without_credentials_is_logged(monkeypatch, caplog):
    monkeypatch.setattr(email_module, "EMAIL_USER", None)
    caplog.set_level(logging.INFO, logger="leasesign.email")
    email_module.send_email("tina@example.com", "Lease active", "Your lease is active.")
    assert "email (stub)" in caplog.text
    assert "tina@example.com" in caplog.text


def test_build_message_headers(monkeypatch):
    monkeypatch.setattr(email_module, "EMAIL_SENDER", "noreply@example.com")
    monkeypatch.setattr(email_module, "EMAIL_SENDER_NAME", "Lease Signing")
    msg = email_module.build_message("tina@example.com", "Hello", "Plain", "<p>Html</p>", reply_to="olivia@example.com")
    assert msg["From"] == "Lease Signing <noreply@example.com>"
    assert msg["Reply-To"] == "olivia@example.com"
    assert msg.get_body(preferencelist=("html",)).get_content().strip() == "<p>Html</p>"


def test_redelivered_event_stores_one_notification(session, parties, monkeypatch):
    attempts = []

    def flaky_send(to, subject, body, html_body=None, sender_name=None, reply_to=None):
        attempts.append(to)
        if len(attempts) == 1:
            raise ConnectionError("smtp unavailable")

    monkeypatch.setattr(notifications, "send_email", flaky_send)
    enqueue(session, FULLY_SIGNED, {"lease_id": 1, "profile_id": parties.tenant.id, "is_owner": False,
                                    "next_step": "await_entry_inspection", "property_address": "12 rue des Lilas"})

    now = utcnow() + timedelta(seconds=1)
    assert process_pending(session, now=now)["failed"] == 1
    assert session.exec(select(Notification)).all() == []

    assert process_pending(session, now=now + timedelta(minutes=3))["processed"] == 1
    note = session.exec(select(Notification)).one()
    assert note.profile_id == parties.tenant.id
    assert attempts == ["tina@example.com", "tina@example.com"]

    # a second delivery of the same event is a no-op
    event = session.exec(select(OutboxEvent)).one()
    payload = {**json.loads(event.payload_json), "outbox_event_id": event.id}
    registered_handlers()[FULLY_SIGNED](session, payload)
    assert len(session.exec(select(Notification)).all()) == 1
    assert len(attempts) == 2


def test_lifecycle_notice_is_keyed_per_recipient(session, parties, make_lease, sent_emails):
    lease, _ = make_lease(
        {"role": "owner", "profile_id": parties.owner.id, "signature_status": "signed"},
        {"role": "tenant", "profile_id": parties.tenant.id, "signature_status": "signed"},
        {"role": "co_tenant", "profile_id": parties.cotenant.id, "signature_status": "signed"},
        status="active",
    )
    payload = {"lease_id": lease.id, "actor_profile_id": parties.owner.id, "outbox_event_id": 7}
    handle = registered_handlers()["Lease.Terminated"]
    handle(session, payload)
    handle(session, payload)
    keys = sorted(n.event_key for n in session.exec(select(Notification)).all())
    assert keys == sorted([f"7:{parties.tenant.id}", f"7:{parties.cotenant.id}"])
    assert len(sent_emails) == 2
