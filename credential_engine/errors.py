"""
Error taxonomy for the Credential Lifecycle Engine.

All engine operations raise one of these typed errors; callers render a
message per ``kind`` rather than retrying.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    kind = "error"

    def __init__(self, message: str, *, entity: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self):
        return {"error": self.kind, "detail": self.message}


class NotFoundError(EngineError):
    """Identity, grant, or credential type does not exist."""

    kind = "not_found"


class ConflictError(EngineError):
    """Duplicate grant, duplicate email, or already-applied status."""

    kind = "conflict"


class InvalidTransitionError(EngineError):
    """Operation forbidden in the identity's current status."""

    kind = "invalid_transition"


class UnauthorizedError(EngineError):
    """Grant does not belong to the caller, or caller lacks the required role."""

    kind = "unauthorized"


class LockTimeoutError(EngineError):
    """Per-identity lock could not be acquired in time; nothing was committed."""

    kind = "lock_timeout"
