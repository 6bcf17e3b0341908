import logging
from html import escape
from sqlmodel import Session, select
from .config import WEB_BASE_URL
from .email import send_email
from .lease_status import LeaseStatus, is_owner_role
from .models import Lease, LeaseSigner, Notification, Profile, Property
from .outbox import FULLY_SIGNED, OUTBOX_EVENT_ID, OWNER_SIGNED, TENANT_SIGNED, enqueue, handler
from .utils import canonical_json

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    "owner": "Owner",
    "principal_tenant": "Principal tenant",
    "tenant": "Tenant",
    "co_tenant": "Co-tenant",
    "guarantor": "Guarantor",
}

OWNER_NEXT_STEP = "create_entry_inspection"
TENANT_NEXT_STEP = "await_entry_inspection"


def enqueue_signing_events(session: Session, lease: Lease, prop: Property, signer: LeaseSigner,
                           signer_name: str, new_status: LeaseStatus):
    """Queue the notifications for one recorded signature.

    Every event is enqueued on its own; a failure is logged and the rest still go out.
    """
    address = prop.address if prop else ""
    signers = session.exec(
        select(LeaseSigner).where(LeaseSigner.lease_id == lease.id, LeaseSigner.is_active == True)  # noqa: E712
    ).all()

    if is_owner_role(signer.role):
        for other in signers:
            if is_owner_role(other.role) or other.profile_id is None:
                continue
            enqueue(session, OWNER_SIGNED, {
                "lease_id": lease.id,
                "tenant_profile_id": other.profile_id,
                "owner_name": signer_name,
                "property_address": address,
            })
    elif prop is not None:
        enqueue(session, TENANT_SIGNED, {
            "lease_id": lease.id,
            "owner_profile_id": prop.owner_id,
            "tenant_name": signer_name,
            "signer_role": ROLE_LABELS.get(signer.role, "Signer"),
            "property_address": address,
        })

    if new_status == LeaseStatus.FULLY_SIGNED:
        enqueue_fully_signed_events(session, lease, prop, signers)


def enqueue_fully_signed_events(session: Session, lease: Lease, prop: Property, signers=None):
    """One Lease.FullySigned event per linked party, the owner first."""
    address = prop.address if prop else ""
    if signers is None:
        signers = session.exec(
            select(LeaseSigner).where(LeaseSigner.lease_id == lease.id, LeaseSigner.is_active == True)  # noqa: E712
        ).all()
    recipients = {}
    if prop is not None:
        recipients[prop.owner_id] = True
    for other in signers:
        if other.profile_id is not None and other.profile_id not in recipients:
            recipients[other.profile_id] = is_owner_role(other.role)
    for profile_id, is_owner in recipients.items():
        enqueue(session, FULLY_SIGNED, {
            "lease_id": lease.id,
            "profile_id": profile_id,
            "is_owner": is_owner,
            "next_step": OWNER_NEXT_STEP if is_owner else TENANT_NEXT_STEP,
            "property_address": address,
        })


def event_key(payload: dict, profile_id: int) -> str | None:
    event_id = payload.get(OUTBOX_EVENT_ID)
    return f"{event_id}:{profile_id}" if event_id is not None else None


def notify(session: Session, profile_id: int, type_: str, title: str, message: str, meta: dict,
           cta_label: str | None = None, cta_path: str | None = None, key: str | None = None):
    """Email the profile, then store the in-app notification.

    ``key`` identifies one delivery. A key already stored means an earlier
    attempt finished, so a redelivered outbox event neither emails nor
    stores twice. The row is written after the email so a failed send
    leaves nothing behind for the retry to duplicate.
    """
    profile = session.get(Profile, profile_id)
    if profile is None:
        raise LookupError(f"profile {profile_id} not found")
    if key is not None and session.exec(select(Notification).where(Notification.event_key == key)).first():
        logger.info("notification %s already delivered", key)
        return
    if profile.email:
        text_body = message
        html_body = f"<p>{escape(message)}</p>"
        if cta_label and cta_path:
            link = f"{WEB_BASE_URL}{cta_path}"
            text_body = f"{message}\n\n{cta_label}: {link}"
            html_body += f'<p><a href="{escape(link)}">{escape(cta_label)}</a></p>'
        send_email(profile.email, title, text_body, html_body=html_body)
    session.add(Notification(
        profile_id=profile_id, type=type_, title=title, body=message, meta_json=canonical_json(meta),
        event_key=key,
    ))
    session.commit()


@handler(TENANT_SIGNED)
def _tenant_signed(session: Session, payload: dict):
    address = payload.get("property_address") or "the property"
    name = payload.get("tenant_name") or "A tenant"
    notify(
        session, payload["owner_profile_id"], "lease_tenant_signed",
        f"{name} signed the lease",
        f"{name} ({payload.get('signer_role') or 'Signer'}) signed the lease for {address}. "
        "It is your turn to sign.",
        {"lease_id": payload["lease_id"], "action": "sign_required"},
        cta_label="Sign the lease", cta_path=f"/owner/leases/{payload['lease_id']}",
        key=event_key(payload, payload["owner_profile_id"]),
    )


@handler(OWNER_SIGNED)
def _owner_signed(session: Session, payload: dict):
    address = payload.get("property_address") or "the property"
    notify(
        session, payload["tenant_profile_id"], "lease_owner_signed",
        "The owner signed the lease",
        f"{payload.get('owner_name') or 'The owner'} also signed the lease for {address}.",
        {"lease_id": payload["lease_id"]},
        key=event_key(payload, payload["tenant_profile_id"]),
    )


@handler(FULLY_SIGNED)
def _fully_signed(session: Session, payload: dict):
    address = payload.get("property_address") or "the property"
    if payload.get("is_owner"):
        message = (f"All signatures are complete for {address}. "
                   "Next step: schedule the entry inspection.")
        cta = ("Create the entry inspection", f"/owner/inspections/new?lease_id={payload['lease_id']}")
    else:
        message = (f"Your lease for {address} is signed by every party. "
                   "Your owner will schedule the entry inspection.")
        cta = ("View my lease", "/tenant/lease")
    notify(
        session, payload["profile_id"], "lease_fully_signed", "Lease fully signed", message,
        {"lease_id": payload["lease_id"], "next_step": payload.get("next_step")},
        cta_label=cta[0], cta_path=cta[1],
        key=event_key(payload, payload["profile_id"]),
    )


LIFECYCLE_MESSAGES = {
    "Lease.SentForSignature": ("lease_sent_for_signature", "Lease ready for signature",
                               "A lease for {address} is waiting for your signature."),
    "Lease.Activated": ("lease_activated", "Lease active",
                        "Your lease for {address} is now active."),
    "Lease.NoticeGiven": ("lease_notice_given", "Notice recorded",
                          "Notice has been recorded for the lease on {address}."),
    "Lease.Terminated": ("lease_terminated", "Lease terminated",
                         "The lease for {address} has been terminated."),
    "Lease.Cancelled": ("lease_cancelled", "Lease cancelled",
                        "The lease for {address} was cancelled before signature."),
}


def _notify_parties(session: Session, payload: dict, event_type: str):
    type_, title, template = LIFECYCLE_MESSAGES[event_type]
    lease = session.get(Lease, payload["lease_id"])
    if lease is None:
        logger.warning("%s for missing lease %s ignored", event_type, payload["lease_id"])
        return
    prop = session.get(Property, lease.property_id)
    address = (prop.address if prop else "") or "the property"
    signers = session.exec(
        select(LeaseSigner).where(LeaseSigner.lease_id == lease.id, LeaseSigner.is_active == True)  # noqa: E712
    ).all()
    actor_profile_id = payload.get("actor_profile_id")
    for profile_id in {s.profile_id for s in signers if s.profile_id is not None}:
        if profile_id == actor_profile_id:
            continue
        notify(session, profile_id, type_, title, template.format(address=address), {"lease_id": lease.id},
               key=event_key(payload, profile_id))


for _event_type in LIFECYCLE_MESSAGES:
    handler(_event_type)(lambda session, payload, _et=_event_type: _notify_parties(session, payload, _et))
