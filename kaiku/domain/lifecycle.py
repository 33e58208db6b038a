from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from ..core.constants import MESSAGE_LIFESPAN_MS, SCORE_THRESHOLD_HIDE
from ..core.models import Message

class Visibility(str, Enum):
    ACTIVE = "active"
    HIDDEN = "hidden"
    EXPIRED = "expired"

@dataclass(frozen=True)
class LifecyclePolicy:
    lifespan_ms: int = MESSAGE_LIFESPAN_MS
    hide_threshold: int = SCORE_THRESHOLD_HIDE

DEFAULT_POLICY = LifecyclePolicy()

def visibility_of(message: Message, now: int, policy: LifecyclePolicy = DEFAULT_POLICY) -> Visibility:
    """
    Active -> Hidden -> Expired, derived fresh from (now, created_at, score).

    Nothing is stored on the message. Expiry wins over score. A Hidden message
    whose score climbs back above the threshold is Active again.
    """
    if now - message.created_at >= policy.lifespan_ms:
        return Visibility.EXPIRED
    if message.score <= policy.hide_threshold:
        return Visibility.HIDDEN
    return Visibility.ACTIVE

def is_visible(message: Message, now: int, policy: LifecyclePolicy = DEFAULT_POLICY) -> bool:
    return visibility_of(message, now, policy) is Visibility.ACTIVE

def prune(messages: Iterable[Message], now: int, policy: LifecyclePolicy = DEFAULT_POLICY) -> List[Message]:
    return [m for m in messages if is_visible(m, now, policy)]

def expires_at(message: Message, policy: LifecyclePolicy = DEFAULT_POLICY) -> int:
    return message.created_at + policy.lifespan_ms
