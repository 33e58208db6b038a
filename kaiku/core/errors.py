from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Message

class KaikuError(Exception):
    """Base for every error the engine reports to its caller."""

class RateLimitExceeded(KaikuError):
    """Cooldown or quota hit. Retry at or after `retry_after` (ms)."""

    def __init__(self, retry_after: int, reason: str):
        super().__init__(f"rate limited ({reason}), retry after {retry_after}")
        self.retry_after = retry_after
        self.reason = reason

class ModerationRejected(KaikuError):
    """Terminal for this text; needs edited content."""

    def __init__(self, reason: str):
        super().__init__(f"message blocked by moderation ({reason})")
        self.reason = reason

class LocationUnavailable(KaikuError):
    pass

class PersistenceFailure(KaikuError):
    """
    Transport or storage error. For submissions the optimistic copy stays in
    the canonical collection, unconfirmed, and is carried on `message`.
    """

    def __init__(self, operation: str, detail: str = "", message: Optional["Message"] = None):
        super().__init__(f"{operation} failed: {detail}" if detail else f"{operation} failed")
        self.operation = operation
        self.detail = detail
        self.message = message

class NotOwner(KaikuError):
    pass

class UnknownMessage(KaikuError):
    pass
