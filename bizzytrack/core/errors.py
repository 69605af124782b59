from __future__ import annotations


class BizzyError(Exception):
    """Base error for BizzyTrack."""


class NotFoundError(BizzyError):
    """Referenced row does not exist within the caller's business."""

    def __init__(self, message: str, *, resource_type: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource_type = resource_type


class ConflictError(BizzyError):
    """Natural key already taken within the caller's business."""

    def __init__(self, message: str, *, resource_type: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource_type = resource_type


class InvalidArgumentError(BizzyError):
    """Caller supplied no usable fields or a value failed a domain check."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidTransitionError(InvalidArgumentError):
    """Requested status change is not an edge of the lifecycle."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move from {current} to {requested}")
        self.current = current
        self.requested = requested


class DomainRuleError(BizzyError):
    """A business precondition blocked the operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PoolExhaustedError(BizzyError):
    """No pooled database connection became available in time."""


class SignatureVerificationError(BizzyError):
    """Webhook signature missing, stale, or not matching the payload."""
