from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status

from lexbill.core.rbac import Actor
from lexbill.models.enums import Role


def get_actor(
    x_actor_id: Optional[int] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """Actor identified by the upstream gateway; authentication happens before this service."""
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing actor headers")
    try:
        role = Role(x_actor_role.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown actor role") from exc
    return Actor(user_id=x_actor_id, role=role)
