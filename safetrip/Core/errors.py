# safetrip/Core/errors.py
"""
Typed failures raised by the core services.

Each error carries a stable `kind` plus a `context` dict with enough
structure for the HTTP layer (or any other caller) to render a precise
message. Per-sample ValidationErrors raised during batch ingestion are
caught by the pipeline and reported in the batch result; everything else
propagates to the caller.
"""

from typing import Any, Dict, Optional


class SafeTripError(Exception):
    """Base class for every domain failure."""

    kind = "error"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "context": self.context}


class ValidationError(SafeTripError):
    """Malformed coordinate, missing required field, bad date range."""

    kind = "validation_error"


class Forbidden(SafeTripError):
    """Ownership or role mismatch."""

    kind = "forbidden"


class NotFound(SafeTripError):
    kind = "not_found"


class InvalidState(SafeTripError):
    """Entity is not in a state that allows the requested operation."""

    kind = "invalid_state"


class PreconditionFailed(InvalidState):
    """Activation preconditions (pending, consent, date window) not met."""

    kind = "precondition_failed"


class ConcurrentModification(InvalidState):
    """Another writer changed the entity between read and write."""

    kind = "concurrent_modification"


class ConsentRequired(SafeTripError):
    kind = "consent_required"


class InvalidTransition(SafeTripError):
    """Alert status change outside the transition table."""

    kind = "invalid_transition"

    def __init__(self, source: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Transition '{source}' -> '{target}' is not allowed",
            {"source": source, "target": target},
        )
        self.source = source
        self.target = target


class InvalidEscalation(SafeTripError):
    """Severity change that does not move strictly up the ladder."""

    kind = "invalid_escalation"

    def __init__(self, source: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot escalate severity '{source}' -> '{target}'",
            {"source": source, "target": target},
        )
        self.source = source
        self.target = target
