"""
Exception hierarchy shared by every PhaseFlow service.

Services raise these types; blueprints translate them into JSON errors
through ``phaseflow.utils.errors.register_error_handlers`` so every endpoint
reports the same error kind with the same HTTP status.

Usage:
    from phaseflow.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="Project", resource_id=42)
    raise InvalidStateError("Proof is not ready for approval", current_state="created")
"""


class AuthenticationError(Exception):
    """Raised when a request carries no usable identity.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AccessDeniedError(Exception):
    """Raised when the actor is neither an admin nor the project's owning client.

    Maps to HTTP 403. Never retried.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a referenced project, proof, requirement or override does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "ProofSession").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when request input is malformed or violates a field rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when an operation violates a workflow precondition.

    Examples: approving a proof that is not ``ready``, advancing a project
    already in its terminal phase, reviewing an override twice.

    Maps to HTTP 409. The current state is reported back so the caller can
    tell what it collided with.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class TransientStoreError(Exception):
    """Raised when the database is unavailable or a concurrent write collided.

    The whole operation is safe to retry.  Maps to HTTP 503.
    """

    def __init__(self, message: str = "Data store temporarily unavailable; retry the request") -> None:
        super().__init__(message)
