"""
Tests for lifecycle.py - Active / Hidden / Expired, derived from (now, created_at, score).
"""

from kaiku.core.models import Location, Message
from kaiku.domain.lifecycle import (
    DEFAULT_POLICY,
    LifecyclePolicy,
    Visibility,
    expires_at,
    is_visible,
    prune,
    visibility_of,
)
from kaiku.utils.time import HOUR_MS

NOW = 1_700_000_000_000


def msg(mid="m1", age_ms=0, score=0):
    return Message(mid, "hello", "a1", Location(60.17, 24.94), NOW - age_ms, score=score)


class TestVisibility:
    """48h lifespan, hidden at or below -5."""

    def test_fresh_message_is_active(self):
        assert visibility_of(msg(), NOW) is Visibility.ACTIVE

    def test_expires_at_lifespan(self):
        assert visibility_of(msg(age_ms=48 * HOUR_MS - 1), NOW) is Visibility.ACTIVE
        assert visibility_of(msg(age_ms=48 * HOUR_MS), NOW) is Visibility.EXPIRED

    def test_score_threshold(self):
        assert visibility_of(msg(score=-4), NOW) is Visibility.ACTIVE
        assert visibility_of(msg(score=-5), NOW) is Visibility.HIDDEN
        assert visibility_of(msg(score=-6), NOW) is Visibility.HIDDEN

    def test_expiry_wins_over_score(self):
        assert visibility_of(msg(age_ms=49 * HOUR_MS, score=-10), NOW) is Visibility.EXPIRED

    def test_hidden_comes_back(self):
        """Nothing is stored; a score above the threshold is visible again."""
        m = msg(score=-6)
        assert not is_visible(m, NOW)
        m.score = -4
        assert is_visible(m, NOW)

    def test_custom_policy(self):
        policy = LifecyclePolicy(lifespan_ms=HOUR_MS, hide_threshold=0)
        assert visibility_of(msg(age_ms=HOUR_MS), NOW, policy) is Visibility.EXPIRED
        assert visibility_of(msg(score=0), NOW, policy) is Visibility.HIDDEN


class TestPrune:

    def test_prune_keeps_only_visible(self):
        items = [msg("a"), msg("b", score=-6), msg("c", age_ms=50 * HOUR_MS), msg("d", score=3)]
        assert [m.id for m in prune(items, NOW)] == ["a", "d"]

    def test_expires_at(self):
        m = msg(age_ms=HOUR_MS)
        assert expires_at(m) == m.created_at + DEFAULT_POLICY.lifespan_ms
