from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class Role(str, Enum):
    DINER = "diner"
    FRANCHISEE = "franchisee"
    ADMIN = "admin"


@dataclass(frozen=True)
class AuthUser:
    """Identity attached to an authenticated request (decoded token claims)."""

    id: int
    name: str
    email: str
    roles: List[Dict[str, Any]] = field(default_factory=list)
    token: str = ""

    def public(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email, "roles": list(self.roles)}


def is_role(identity: Any, role: Role | str) -> bool:
    """Return whether `identity` holds `role`.

    Accepts an AuthUser or a plain user dict (as returned by the repository).
    """
    if identity is None:
        return False
    wanted = Role(role).value
    roles = identity.get("roles") if isinstance(identity, dict) else getattr(identity, "roles", None)
    return any(str(r.get("role")) == wanted for r in (roles or []))


def identity_id(identity: Any) -> int | None:
    if identity is None:
        return None
    raw = identity.get("id") if isinstance(identity, dict) else getattr(identity, "id", None)
    return int(raw) if raw is not None else None
