"""Aggregate lease status derived from the signer rows.

Signer rows are the source of truth; ``Lease.status`` is a cached projection
recomputed after every signer mutation with :func:`derive_status`.
"""
from enum import Enum
from typing import Iterable


class LeaseStatus(str, Enum):
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    PARTIALLY_SIGNED = "partially_signed"
    PENDING_OWNER_SIGNATURE = "pending_owner_signature"
    FULLY_SIGNED = "fully_signed"
    ACTIVE = "active"
    NOTICE_GIVEN = "notice_given"
    TERMINATED = "terminated"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


OWNER_ROLES = frozenset({"owner"})
TENANT_ROLES = frozenset({"principal_tenant", "tenant", "co_tenant"})
SIGNER_ROLES = OWNER_ROLES | TENANT_ROLES | {"guarantor"}

SIGNING_STATUSES = frozenset({
    LeaseStatus.DRAFT,
    LeaseStatus.PENDING_SIGNATURE,
    LeaseStatus.PARTIALLY_SIGNED,
    LeaseStatus.PENDING_OWNER_SIGNATURE,
    LeaseStatus.FULLY_SIGNED,
})

# no signature may be recorded against these
CLOSED_STATUSES = frozenset({LeaseStatus.TERMINATED, LeaseStatus.ARCHIVED, LeaseStatus.CANCELLED})


def is_owner_role(role) -> bool:
    return (role or "").lower() in OWNER_ROLES


def is_tenant_role(role) -> bool:
    return (role or "").lower() in TENANT_ROLES


def _is_signed(signer) -> bool:
    return signer.signature_status == "signed"


def derive_status(signers: Iterable) -> LeaseStatus:
    """Derive the lease status from its signers.

    Only active signers count. The result does not depend on ordering.
    """
    active = [s for s in signers if getattr(s, "is_active", True)]
    if not active:
        return LeaseStatus.DRAFT

    any_signed = any(_is_signed(s) for s in active)
    owners = [s for s in active if is_owner_role(s.role)]
    tenants = [s for s in active if is_tenant_role(s.role)]

    if len(active) < 2 or not owners or not tenants:
        return LeaseStatus.PARTIALLY_SIGNED if any_signed else LeaseStatus.DRAFT

    if all(_is_signed(s) for s in active):
        # an unclaimed tenant signature has no accountable party behind it
        if all(s.profile_id is not None for s in tenants):
            return LeaseStatus.FULLY_SIGNED
        return LeaseStatus.PARTIALLY_SIGNED

    others = [s for s in active if not is_owner_role(s.role)]
    if all(_is_signed(s) for s in others) and not any(_is_signed(s) for s in owners):
        return LeaseStatus.PENDING_OWNER_SIGNATURE

    if any_signed:
        return LeaseStatus.PARTIALLY_SIGNED
    return LeaseStatus.PENDING_SIGNATURE


def next_lease_status(current, derived: LeaseStatus) -> LeaseStatus:
    """Status to store after a recompute; later lifecycle states are kept."""
    try:
        current = LeaseStatus(current)
    except ValueError:
        return derived
    if current not in SIGNING_STATUSES:
        return current
    # a draft leaves draft through INITIATE_SIGNATURE or a first signature
    if current == LeaseStatus.DRAFT and derived == LeaseStatus.PENDING_SIGNATURE:
        return current
    return derived
