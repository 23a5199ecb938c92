"""
auth/access.py -- Pure admission decisions for role and ownership gates.

The FastAPI dependencies in auth/dependencies.py gather the inputs (bound
identity, role membership, target id) and call these functions. Keeping the
decisions free of I/O makes every branch testable without a database.

AccessDirectory is the capability the gates need from storage. UserStore
answers has_role(); ProfileStore answers owner_of_profile(). Any backend that
provides both can sit behind the gate.

Failure semantics:
  - A decision that says "no" raises Forbidden.
  - An identity that cannot be coerced to an int raises InternalError. An
    unexpected representation means a bug upstream, and a silent deny would
    hide it.

Layer rule: no imports from api/, audit/ or profiles/.
"""

from __future__ import annotations

from typing import Protocol

from core.errors import Forbidden, InternalError


class AccessDirectory(Protocol):
    def has_role(self, user_id: int, role: str) -> bool: ...

    def owner_of_profile(self, profile_id: int) -> int | None: ...


def coerce_identity(value: object) -> int:
    """Normalize a bound identity to int.

    Accepts int, integral float and decimal strings. bool is rejected even
    though it subclasses int -- True must never mean user 1.
    """
    if isinstance(value, bool):
        raise InternalError("Unrecognized identity representation.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InternalError("Unrecognized identity representation.")


def require_admin_decision(is_admin: bool) -> None:
    if not is_admin:
        raise Forbidden("Admin access required.", code="admin_required")


def owner_or_admin_decision(identity: object, target_id: int, is_admin: bool) -> None:
    """Allow when the caller is an admin or is the owner of target_id."""
    user_id = coerce_identity(identity)
    if is_admin:
        return
    if user_id != target_id:
        raise Forbidden("You may only access your own resources.", code="not_owner")
