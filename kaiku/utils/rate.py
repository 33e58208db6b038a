import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from .log import log_line
from .time import HOUR_MS
from ..core.constants import SPAM_COOLDOWN_MS, RATE_LIMIT_WINDOW_MS, MAX_POSTS_PER_WINDOW

@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: Optional[int] = None   # ms timestamp, set on reject
    reason: str = ""                    # "cooldown" | "quota" | "cooldown+quota"

@dataclass(frozen=True)
class RateLimitStatus:
    is_limited: bool
    cooldown_until: Optional[int] = None

class RateLimiter:
    """
    Per-actor submission limits: a short cooldown between consecutive posts
    and a rolling-window quota. Each call is one locked read-modify-write.

    A timestamp ts stays in the window while ts + window > now, so the
    reported retry_after is the first instant that is admissible again.
    """

    def __init__(
        self,
        cooldown_ms: int = SPAM_COOLDOWN_MS,
        window_ms: int = RATE_LIMIT_WINDOW_MS,
        quota: int = MAX_POSTS_PER_WINDOW,
    ):
        self.cooldown_ms = int(cooldown_ms)
        self.window_ms = int(window_ms)
        self.quota = int(quota)
        self._windows: Dict[str, Deque[int]] = {}
        self._lock = threading.Lock()

    def _evict(self, actor_id: str, now: int) -> Deque[int]:
        win = self._windows.get(actor_id)
        if win is None:
            return deque()
        while win and win[0] + self.window_ms <= now:
            win.popleft()
        if not win:
            del self._windows[actor_id]
        return win

    def _decide(self, win: Deque[int], now: int) -> RateDecision:
        waits = []
        if win and now < win[-1] + self.cooldown_ms:
            waits.append(("cooldown", win[-1] + self.cooldown_ms))
        if self.quota > 0 and len(win) >= self.quota:
            # oldest entry that must leave before one more fits
            waits.append(("quota", win[len(win) - self.quota] + self.window_ms))
        if not waits:
            return RateDecision(True)
        return RateDecision(
            False,
            retry_after=max(t for _, t in waits),
            reason="+".join(r for r, _ in waits),
        )

    def check_and_record(self, actor_id: str, now: int) -> RateDecision:
        with self._lock:
            win = self._evict(actor_id, now)
            decision = self._decide(win, now)
            if decision.allowed:
                self._windows.setdefault(actor_id, deque()).append(now)
            return decision

    def status(self, actor_id: str, now: int) -> RateLimitStatus:
        """Read-only peek, nothing is recorded."""
        with self._lock:
            decision = self._decide(self._evict(actor_id, now), now)
        if decision.allowed:
            return RateLimitStatus(False, None)
        return RateLimitStatus(True, decision.retry_after)

    def window_of(self, actor_id: str) -> list:
        with self._lock:
            return list(self._windows.get(actor_id, ()))

    def transfer(self, old_id: str, new_id: str) -> None:
        """Carry old_id's window over to new_id (identity rotation)."""
        with self._lock:
            old = self._windows.pop(old_id, None)
            if not old:
                return
            merged = sorted(list(old) + list(self._windows.get(new_id, ())))
            self._windows[new_id] = deque(merged)

    def restore(self, actor_id: str, timestamps) -> None:
        with self._lock:
            ts = sorted(int(t) for t in timestamps)
            if ts:
                self._windows[actor_id] = deque(ts)

class RateStats:
    """
    Hourly RATE line: submissions and deletions, ok vs failed.
    """

    KINDS = ("submit", "delete", "vote")

    def __init__(self, every_ms: int = HOUR_MS):
        self.every_ms = every_ms
        self.next_log: Optional[int] = None
        self.counts: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._reset()

    def _reset(self) -> None:
        self.counts = {f"{k}_{s}": 0 for k in self.KINDS for s in ("ok", "fail")}

    def inc(self, kind: str, ok: bool) -> None:
        if kind not in self.KINDS:
            return
        with self._lock:
            k = f"{kind}_{'ok' if ok else 'fail'}"
            self.counts[k] += 1

    def maybe_log(self, now: int) -> bool:
        with self._lock:
            if self.next_log is None:
                self.next_log = now + self.every_ms
                return False
            if now < self.next_log:
                return False
            c = dict(self.counts)
            self._reset()
            self.next_log = now + self.every_ms
        w = int(self.every_ms // 60000)
        log_line(
            f"RATE | window={w}m | "
            + " | ".join(f"{k}s={c[k + '_ok']} ok/{c[k + '_fail']} fail" for k in self.KINDS)
        )
        return True
