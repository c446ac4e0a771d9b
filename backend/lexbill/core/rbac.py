from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from lexbill.core.errors import PermissionDeniedError
from lexbill.models.enums import Role


ROLE_CAPABILITIES: dict[Role, Dict[str, bool]] = {
    Role.ADMIN: {
        "view_invoices": True,
        "create_invoice": True,
        "modify_invoice": True,
        "approve_invoice": True,
        "mark_invoice_paid": True,
        "record_finder_fee_payment": True,
        "log_time": True,
    },
    Role.MANAGER: {
        "view_invoices": True,
        "create_invoice": True,
        "modify_invoice": True,
        "approve_invoice": True,
        "mark_invoice_paid": True,
        "record_finder_fee_payment": False,
        "log_time": True,
    },
    Role.STAFF: {
        "view_invoices": True,
        "create_invoice": True,
        "modify_invoice": True,
        "approve_invoice": False,
        "mark_invoice_paid": False,
        "record_finder_fee_payment": False,
        "log_time": True,
    },
    Role.CLIENT: {
        "view_invoices": True,
        "create_invoice": False,
        "modify_invoice": False,
        "approve_invoice": False,
        "mark_invoice_paid": False,
        "record_finder_fee_payment": False,
        "log_time": False,
    },
}


@dataclass(frozen=True)
class Actor:
    """The user performing an engine operation, passed in explicitly by the caller."""

    user_id: int
    role: Role
    capability_overrides: Mapping[str, Optional[bool]] = field(default_factory=dict)


def merge_capabilities(
    base: Mapping[str, bool],
    overrides: Optional[Mapping[str, Optional[bool]]] = None,
) -> Dict[str, bool]:
    merged = dict(base)
    if not overrides:
        return merged
    for key, value in overrides.items():
        if key not in merged:
            continue
        if value is None:
            continue
        merged[key] = bool(value)
    return merged


def get_capabilities(role: Role, overrides: Optional[Mapping[str, Optional[bool]]] = None) -> Dict[str, bool]:
    return merge_capabilities(ROLE_CAPABILITIES.get(role, {}), overrides)


def get_capabilities_for_actor(actor: Actor) -> Dict[str, bool]:
    return get_capabilities(actor.role, actor.capability_overrides)


def can(actor: Actor, capability: str) -> bool:
    return get_capabilities_for_actor(actor).get(capability, False)


def require_capability(actor: Actor, capability: str) -> None:
    if not can(actor, capability):
        raise PermissionDeniedError(f"Not authorised: {capability.replace('_', ' ')}")
