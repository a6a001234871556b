# safetrip/Core/permissions.py
"""
Authorization table.

A single (role, action) -> allow mapping consulted once per request, before
any core service is reached. The core itself only encodes ownership and
state checks; it trusts the decision made here.
"""

from typing import Dict, FrozenSet

from safetrip.Core.errors import Forbidden

ROLES = ("tourist", "police", "admin")

# Actions a role may perform. Anything not listed is denied.
PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "tourist": frozenset({
        "session:create",
        "session:activate",
        "session:complete",
        "session:terminate",
        "session:read",
        "session:check_in",
        "location:ingest",
        "location:read",
        "alert:panic",
        "alert:read",
    }),
    "police": frozenset({
        "session:read",
        "session:read_all",
        "location:read",
        "location:read_all",
        "alert:read",
        "alert:read_all",
        "alert:assign",
        "alert:update_status",
        "alert:resolve",
        "alert:escalate",
        "alert:statistics",
    }),
    "admin": frozenset({
        "session:read",
        "session:read_all",
        "session:terminate",
        "location:read",
        "location:read_all",
        "alert:read",
        "alert:read_all",
        "alert:assign",
        "alert:update_status",
        "alert:resolve",
        "alert:escalate",
        "alert:statistics",
    }),
}


def is_allowed(role: str, action: str) -> bool:
    return action in PERMISSIONS.get(role, frozenset())


def authorize(role: str, action: str) -> None:
    """Raise Forbidden unless `role` may perform `action`."""
    if not is_allowed(role, action):
        raise Forbidden(
            f"Role '{role}' is not allowed to perform '{action}'",
            {"role": role, "action": action},
        )
