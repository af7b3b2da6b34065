"""
Caller identity and the project access rule.

Admins are unrestricted; clients may only act on projects they own.
Every service checks access through ``authorize_project`` before it
touches anything, so authorization failures abort before any write.
"""

from dataclasses import dataclass

from phaseflow.core.exceptions import AccessDeniedError
from phaseflow.models.auth import ROLE_ADMIN, VALID_ROLES


@dataclass(frozen=True)
class Actor:
    """Identity supplied for every call: user id plus role (admin | client)."""

    id: int
    role: str

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValueError(f"Unknown role {self.role!r}")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def can_access_project(actor: Actor, project) -> bool:
    return actor.is_admin or (project.client_id is not None and project.client_id == actor.id)


def authorize_project(actor: Actor, project) -> None:
    if not can_access_project(actor, project):
        raise AccessDeniedError(f"Access denied to project {project.id}")


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise AccessDeniedError("Admin access required")
