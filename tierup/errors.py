"""
Typed error taxonomy for the voting engine.

Every error carries a stable machine-readable ``kind`` plus a ``reason`` code
and a human-readable message.  Only ``PersistenceError`` is retryable, and
only by the caller (the engine never retries a ledger write itself).
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    kind: str = "engine_error"
    retryable: bool = False
    default_message: str = "Request could not be completed."

    def __init__(
        self,
        reason: str,
        message: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        self.reason  = reason
        self.message = message or self.default_message
        self.details = details
        super().__init__(f"{self.kind}:{reason}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind":    self.kind,
            "reason":  self.reason,
            "message": self.message,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(EngineError):
    kind = "validation"
    default_message = "Invalid request data."


class WindowClosedError(EngineError):
    kind = "window_closed"
    default_message = "This window is not currently open."


class DuplicateVoteError(EngineError):
    kind = "duplicate_vote"
    default_message = "You have already voted for this participant."


class RateLimitExceededError(EngineError):
    kind = "rate_limited"
    default_message = "Too many votes from this address. Please wait before voting again."


class PermissionDeniedError(EngineError):
    kind = "permission"
    default_message = "You are not allowed to perform this action."


class NotFoundError(EngineError):
    kind = "not_found"
    default_message = "Requested object does not exist."


class CapacityError(EngineError):
    kind = "capacity"
    default_message = "Competition has reached its maximum participant limit."


class StateError(EngineError):
    kind = "state"
    default_message = "Operation is not allowed in the current state."


class NoQualifiersError(EngineError):
    kind = "no_qualifiers"
    default_message = "No participants meet the qualification criteria."


class PersistenceError(EngineError):
    kind = "persistence"
    retryable = True
    default_message = "Storage is temporarily unavailable."
