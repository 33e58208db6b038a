"""
Tests for engine.py - the session surface: submit, vote, delete, read side.

Runs against the in-process store with a fake clock and a seeded rng.
"""

import random

import pytest

from kaiku.adapters.store_api import InMemoryMessageStore
from kaiku.core.config import EngineConfig
from kaiku.core.engine import Engine
from kaiku.core.errors import (
    LocationUnavailable,
    ModerationRejected,
    NotOwner,
    PersistenceFailure,
    RateLimitExceeded,
    UnknownMessage,
)
from kaiku.core.models import ActorContext, Location, Message, Viewport
from kaiku.domain.geo import haversine_m
from kaiku.domain.reconcile import Event
from kaiku.domain.votes import VoteDirection
from kaiku.utils.time import HOUR_MS, SECOND_MS, now_ms

T = 1_700_000_000_000
HELSINKI = Location(60.1699, 24.9384)
BERLIN = Location(52.5200, 13.4050)


class FakeClock:
    def __init__(self, t=T):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, ms):
        self.t += ms


class FlakyStore(InMemoryMessageStore):
    """In-memory store that can be told to fail."""

    def __init__(self, messages=None):
        super().__init__(messages)
        self.fail = set()

    def submit(self, message):
        if "submit" in self.fail:
            raise PersistenceFailure("submit", "connection reset")
        return super().submit(message)

    def vote(self, message_id, delta):
        if "vote" in self.fail:
            raise PersistenceFailure("vote", "timeout")
        return super().vote(message_id, delta)

    def delete(self, message_id):
        if "delete" in self.fail:
            raise PersistenceFailure("delete", "503")
        super().delete(message_id)


def make_engine(store=None, cfg=None, messages=None):
    clock = FakeClock()
    store = store or FlakyStore(messages)
    engine = Engine(cfg or EngineConfig(), store, ActorContext("me-0001"),
                    clock=clock, rng=random.Random(7))
    return engine, store, clock


def other(mid, lat=60.17, lng=24.94, age_ms=0, score=0, author="someone"):
    return Message(mid, "hi", author, Location(lat, lng), T - age_ms, score=score)


class TestSubmit:

    def test_submit_is_obfuscated_and_confirmed(self):
        engine, store, _ = make_engine()
        m = engine.submit("  hello   world ", HELSINKI)

        assert m.confirmed
        assert m.text == "hello world"
        assert m.author_id == "me-0001"
        assert m.location != HELSINKI
        assert 990 <= haversine_m(*HELSINKI, *m.location) <= 5050
        assert engine.reconciler.get(m.id).confirmed
        assert [s.id for s in store.all()] == [m.id]

    def test_missing_location(self):
        engine, _, _ = make_engine()
        with pytest.raises(LocationUnavailable):
            engine.submit("hello", None)

    def test_invalid_target(self):
        engine, _, _ = make_engine()
        with pytest.raises(LocationUnavailable):
            engine.submit("hello", HELSINKI, target=Location(120.0, 0.0))

    @pytest.mark.parametrize("text", ["", "   ", "x" * 281, "cheap CRYPTO here"])
    def test_moderation(self, text):
        engine, store, _ = make_engine()
        with pytest.raises(ModerationRejected):
            engine.submit(text, HELSINKI)
        assert store.all() == []

    def test_rejected_text_does_not_use_quota(self):
        engine, _, _ = make_engine()
        with pytest.raises(ModerationRejected):
            engine.submit("buy now", HELSINKI)
        engine.submit("fine", HELSINKI)

    def test_cooldown(self):
        engine, _, clock = make_engine()
        engine.submit("first", HELSINKI)
        clock.advance(2 * SECOND_MS)

        with pytest.raises(RateLimitExceeded) as exc:
            engine.submit("second", HELSINKI)
        assert exc.value.retry_after == T + 4 * SECOND_MS
        assert engine.rate_status().is_limited

        clock.advance(2 * SECOND_MS)
        engine.submit("third", HELSINKI)

    def test_remote_post(self):
        engine, _, _ = make_engine()
        m = engine.submit("greetings from afar", HELSINKI, target=BERLIN)
        assert m.is_remote
        assert haversine_m(*BERLIN, *m.location) <= 5050

    def test_local_post_not_remote(self):
        engine, _, _ = make_engine()
        assert not engine.submit("hello", HELSINKI).is_remote

    def test_store_failure_keeps_unconfirmed_copy(self):
        engine, store, clock = make_engine()
        store.fail.add("submit")

        with pytest.raises(PersistenceFailure) as exc:
            engine.submit("hello", HELSINKI)
        pending = exc.value.message
        assert pending is not None
        assert not engine.reconciler.get(pending.id).confirmed
        assert [m.id for m in engine.reconciler.unconfirmed()] == [pending.id]

        store.fail.clear()
        clock.advance(SECOND_MS)
        stored = engine.retry(pending.id)
        assert stored.id == pending.id
        assert engine.reconciler.get(pending.id).confirmed
        assert len(store.all()) == 1

    def test_rollback(self):
        engine, store, _ = make_engine()
        store.fail.add("submit")
        with pytest.raises(PersistenceFailure) as exc:
            engine.submit("hello", HELSINKI)

        engine.rollback(exc.value.message.id)
        assert engine.reconciler.messages() == []

    def test_retry_unknown(self):
        engine, _, _ = make_engine()
        with pytest.raises(UnknownMessage):
            engine.retry("nope")

    def test_echo_not_duplicated(self):
        engine, _, clock = make_engine()
        m = engine.submit("hello", HELSINKI)
        clock.advance(300)
        engine.on_event(Event.insert(m, clock()))
        assert len(engine.reconciler.messages()) == 1


class TestReplies:

    def test_reply_at_parent_location(self):
        engine, store, _ = make_engine(messages=[other("p", 60.2, 24.9)])
        engine.refresh()

        r = engine.submit("me too", HELSINKI, parent_id="p")
        assert r.is_reply
        assert r.location == Location(60.2, 24.9)
        assert engine.reconciler.get("p").reply_count == 1
        assert [m.id for m in engine.replies("p")] == [r.id]

    def test_reply_echo_counted_once(self):
        engine, _, clock = make_engine(messages=[other("p")])
        engine.refresh()
        r = engine.submit("me too", HELSINKI, parent_id="p")
        clock.advance(200)
        engine.on_event(Event.insert(r, clock()))
        assert engine.reconciler.get("p").reply_count == 1

    def test_replies_not_clustered(self):
        engine, _, _ = make_engine(messages=[other("p")])
        engine.refresh()
        engine.submit("me too", HELSINKI, parent_id="p")
        assert sum(c.count for c in engine.clusters(12)) == 1


class TestVote:

    def test_vote_toggle(self):
        engine, store, _ = make_engine(messages=[other("m1", score=3)])
        engine.refresh()

        out = engine.vote("m1", "up")
        assert (out.direction, out.delta, out.score, out.committed) == (VoteDirection.UP, 1, 4, True)

        out = engine.vote("m1", VoteDirection.UP)
        assert (out.direction, out.delta, out.score) == (VoteDirection.NONE, -1, 3)
        assert store.all()[0].score == 3
        assert engine.my_votes() == {"m1": "none"}

    def test_vote_flip(self):
        engine, _, _ = make_engine(messages=[other("m1")])
        engine.refresh()
        engine.vote("m1", "up")
        assert engine.vote("m1", "down").score == -1

    def test_vote_store_failure_keeps_local_score(self):
        engine, store, _ = make_engine(messages=[other("m1")])
        engine.refresh()
        store.fail.add("vote")

        out = engine.vote("m1", "down")
        assert out.committed is False
        assert engine.reconciler.get("m1").score == -1

    def test_downvoted_out_of_view(self):
        engine, _, _ = make_engine(messages=[other("m1", score=-4)])
        engine.refresh()
        engine.vote("m1", "down")
        assert engine.visible() == []


class TestDelete:

    def test_delete_own(self):
        engine, store, _ = make_engine()
        m = engine.submit("oops", HELSINKI)
        engine.delete(m.id)
        assert engine.reconciler.get(m.id) is None
        assert store.all() == []

    def test_delete_foreign(self):
        engine, _, _ = make_engine(messages=[other("m1")])
        engine.refresh()
        with pytest.raises(NotOwner):
            engine.delete("m1")

    def test_delete_unknown(self):
        engine, _, _ = make_engine()
        with pytest.raises(UnknownMessage):
            engine.delete("nope")

    def test_failed_delete_restores(self):
        engine, store, _ = make_engine()
        m = engine.submit("oops", HELSINKI)
        store.fail.add("delete")
        with pytest.raises(PersistenceFailure):
            engine.delete(m.id)
        assert engine.reconciler.get(m.id) is not None

    def test_stale_snapshot_does_not_resurrect(self):
        engine, store, clock = make_engine()
        m = engine.submit("oops", HELSINKI)
        engine.delete(m.id)
        clock.advance(SECOND_MS)
        engine.reconciler.dispatch(Event.snapshot([m], clock()))
        assert engine.reconciler.get(m.id) is None

    def test_delete_after_rotate(self):
        engine, _, _ = make_engine()
        m = engine.submit("oops", HELSINKI)
        engine.rotate_actor()
        assert engine.actor.actor_id != "me-0001"
        engine.delete(m.id)


class TestRotateActor:
    """A new id does not give the session a fresh rate window or vote record."""

    def test_cooldown_survives_rotation(self):
        engine, _, clock = make_engine()
        engine.submit("first", HELSINKI)
        clock.advance(SECOND_MS)
        engine.rotate_actor()

        with pytest.raises(RateLimitExceeded) as exc:
            engine.submit("second", HELSINKI)
        assert exc.value.retry_after == T + 4 * SECOND_MS

    def test_vote_survives_rotation(self):
        engine, store, _ = make_engine(messages=[other("p")])
        engine.refresh()
        engine.vote("p", "up")
        engine.rotate_actor()

        out = engine.vote("p", "up")
        assert (out.direction, out.delta, out.score) == (VoteDirection.NONE, -1, 0)
        assert store.all()[0].score == 0
        assert engine.my_votes() == {"p": "none"}

    def test_saved_state_keeps_window(self, tmp_path):
        engine, _, _ = make_engine()
        engine.submit("first", HELSINKI)
        engine.rotate_actor()
        engine.save_state(tmp_path / "state.json")

        cfg = EngineConfig(state_path=str(tmp_path / "state.json"))
        restored = Engine.from_config(cfg, store=InMemoryMessageStore())
        assert restored.limiter.window_of(engine.actor.actor_id) == [T]


class TestReadSide:

    def test_prune_after_lifespan(self):
        engine, _, clock = make_engine(messages=[other("m1"), other("m2", age_ms=HOUR_MS)])
        engine.refresh()
        clock.advance(47 * HOUR_MS + 1)
        assert engine.prune() == 1
        assert [m.id for m in engine.visible()] == ["m1"]

    def test_clusters_merge_below_hub_zoom(self):
        # ~3.3 km apart, separate cells at resolution 9
        engine, _, _ = make_engine(messages=[other("a", 60.005, 24.935), other("b", 60.033, 24.935)])
        engine.refresh()
        assert len(engine.clusters(13)) == 2
        assert len(engine.clusters(13, merge_radius_m=5000)) == 1
        assert len(engine.clusters(2)) == 1

    def test_clusters_in_viewport(self):
        engine, _, _ = make_engine(messages=[other("a", 60.17, 24.94), other("b", 52.52, 13.40)])
        engine.refresh()
        vp = Viewport(north=61, south=59, east=26, west=23, zoom=5)
        clusters = engine.clusters(5, viewport=vp)
        assert [c.member_ids for c in clusters] == [frozenset({"a"})]

    def test_feed_order_by_zoom(self):
        engine, _, _ = make_engine(messages=[other("old-top", age_ms=HOUR_MS, score=9), other("new", score=0)])
        engine.refresh()
        world = Viewport(north=90, south=-90, east=179.99, west=-180, zoom=3)
        street = Viewport(north=90, south=-90, east=179.99, west=-180, zoom=14)
        assert [m.id for m in engine.feed(world)] == ["old-top", "new"]
        assert [m.id for m in engine.feed(street)] == ["new", "old-top"]

    def test_on_payload(self):
        engine, _, _ = make_engine()
        row = {"id": "x1", "text": "hi", "latitude": 60.1, "longitude": 24.9,
               "created_at": T, "session_id": "s"}
        assert engine.on_payload({"eventType": "INSERT", "new": row}) is True
        assert engine.reconciler.get("x1") is not None
        assert engine.on_payload({"eventType": "DELETE", "old": {"id": "x1"}}) is True
        assert engine.reconciler.get("x1") is None
        assert engine.on_payload({"eventType": "TRUNCATE"}) is False


class TestSessionState:

    def test_state_roundtrip(self, tmp_path):
        cfg = EngineConfig(state_path=str(tmp_path / "state.json"))
        fresh = Message("m1", "hi", "someone", HELSINKI, now_ms())
        engine = Engine.from_config(cfg, store=FlakyStore([fresh]))
        engine.refresh()
        engine.vote("m1", "up")
        engine.save_state()

        again = Engine.from_config(cfg, store=FlakyStore([fresh]))
        assert again.actor.actor_id == engine.actor.actor_id
        assert again.my_votes() == {"m1": "up"}
