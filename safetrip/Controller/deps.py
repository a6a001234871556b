# safetrip/Controller/deps.py

from dataclasses import dataclass
from typing import Callable, Generator

from fastapi import Depends, Header

from safetrip.Core.errors import Forbidden
from safetrip.Core.permissions import ROLES, authorize
from safetrip.DB.session import SessionLocal


def get_DB() -> Generator:
    DB = SessionLocal()
    try:
        yield DB
    finally:
        DB.close()


@dataclass(frozen=True)
class Actor:
    """Verified identity handed over by the upstream identity service."""
    user_id: str
    role: str


def get_current_actor(
    x_user_id: str = Header(..., alias="X-User-Id"),
    x_user_role: str = Header(..., alias="X-User-Role")
) -> Actor:
    role = x_user_role.strip().lower()
    if role not in ROLES:
        raise Forbidden(f"Unknown role '{x_user_role}'", {"role": x_user_role})
    return Actor(user_id=x_user_id.strip(), role=role)


def require(action: str) -> Callable[..., Actor]:
    """
    Dependency factory: resolve the actor and consult the authorization
    table once, before the handler body runs.

    Example:
        @router.post("/")
        def create(actor: Actor = Depends(require("session:create"))):
            ...
    """
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        authorize(actor.role, action)
        return actor

    return dependency
