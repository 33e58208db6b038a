import random
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Set

from .config import EngineConfig
from .errors import (
    LocationUnavailable, ModerationRejected, NotOwner, PersistenceFailure,
    RateLimitExceeded, UnknownMessage,
)
from .models import ActorContext, Location, Message, Viewport, new_message_id
from .state import load_session_state, restore_session, save_session_state
from ..adapters.geocode_api import Geocoder
from ..adapters.store_api import (
    InMemoryMessageStore, MessageStore, RestMessageStore, event_from_payload,
)
from ..domain.cluster import Cluster, aggregate
from ..domain.geo import is_remote_post
from ..domain.lifecycle import is_visible
from ..domain.privacy import obfuscate
from ..domain.reconcile import CanonicalState, Event, EventType, RealtimeReconciler
from ..domain.spatial import resolution_for
from ..domain.validate import moderate_content, validate_submission_text, valid_coordinate
from ..domain.viewport import feed_order, in_viewport
from ..domain.votes import VoteBook, VoteDirection
from ..utils.log import log_line
from ..utils.rate import RateLimiter, RateLimitStatus, RateStats
from ..utils.time import now_ms

@dataclass(frozen=True)
class VoteOutcome:
    message_id: str
    direction: VoteDirection
    delta: int
    score: Optional[int]        # local score after the vote, None if not in view
    committed: bool             # store accepted the delta

class Engine:
    """
    One client session: this actor's submissions, votes and deletions plus
    the reconciled view of everyone else's messages.

    Store calls are made without holding any reconciler lock. Optimistic
    changes are dispatched before the call, the outcome is a separate event.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        store: MessageStore,
        actor: ActorContext,
        geocoder: Optional[Geocoder] = None,
        votes: Optional[VoteBook] = None,
        limiter: Optional[RateLimiter] = None,
        tombstones: Optional[Dict[str, int]] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
    ):
        self.cfg = cfg
        self.store = store
        self.actor = actor
        self.geocoder = geocoder
        self.clock = clock
        self.rng = rng
        self.policy = cfg.lifecycle
        self.votes = votes or VoteBook()
        self.limiter = limiter or RateLimiter(cfg.cooldown_ms, cfg.window_ms, cfg.quota)
        self.stats = RateStats()
        self.reconciler = RealtimeReconciler(self.policy, CanonicalState(tombstones=dict(tombstones or {})))

        # replies never enter the canonical collection; keep the ones we know
        # about for ownership checks, retries and deletes
        self._replies: Dict[str, Message] = {}
        self._own_ids: Set[str] = set()
        self._lock = threading.Lock()

    # =========================
    # SUBMIT
    # =========================

    def submit(
        self,
        text: str,
        author_location: Optional[Location],
        target: Optional[Location] = None,
        parent_id: Optional[str] = None,
    ) -> Message:
        """
        Rate check -> obfuscation -> optimistic insert -> store.

        author_location is the device's true position; it is only used for
        the remote test and is never stored. target is where the post should
        appear (map center); replies appear at their parent's location.

        Raises:
            LocationUnavailable, ModerationRejected, RateLimitExceeded,
            PersistenceFailure (the optimistic copy stays, unconfirmed)
        """
        now = self.clock()
        if author_location is None or not valid_coordinate(*author_location):
            raise LocationUnavailable("a device location is required to post")
        if target is None:
            target = author_location
        elif not valid_coordinate(*target):
            raise LocationUnavailable(f"invalid target location {tuple(target)}")

        reason = validate_submission_text(text, self.cfg.max_text_len) or \
            moderate_content(text, self.cfg.banned_words)
        if reason:
            log_line(f"SUBMIT REJECTED | actor={self.actor.actor_id[:8]} reason={reason}")
            raise ModerationRejected(reason)

        parent = self.reconciler.get(parent_id) if parent_id else None

        decision = self.limiter.check_and_record(self.actor.actor_id, now)
        if not decision.allowed:
            log_line(f"SUBMIT RATE LIMITED | actor={self.actor.actor_id[:8]} "
                     f"reason={decision.reason} retry_after={decision.retry_after}")
            raise RateLimitExceeded(decision.retry_after, decision.reason)

        remote = is_remote_post(author_location.lat, author_location.lng,
                                target.lat, target.lng, self.cfg.remote_distance_km)
        if parent is not None:
            # parent location is already obfuscated
            loc = parent.location
        else:
            loc = Location(*obfuscate(target.lat, target.lng, self.rng,
                                      self.cfg.obfuscation_min_m, self.cfg.obfuscation_max_m))

        city, origin = self._describe(loc, author_location, remote)
        msg = Message(
            id=new_message_id(),
            text=" ".join(text.split()),
            author_id=self.actor.actor_id,
            location=loc,
            created_at=now,
            parent_id=parent_id,
            is_remote=remote,
            origin_region=origin if remote else None,
            city=city if parent is None else parent.city,
            confirmed=False,
        )

        with self._lock:
            self._own_ids.add(msg.id)
            if msg.is_reply:
                self._replies[msg.id] = msg
        self.reconciler.dispatch(Event.local(EventType.LOCAL_INSERT, now, message=msg))
        return self._persist(msg)

    def _describe(self, loc: Location, author_location: Location, remote: bool):
        origin = self.actor.origin_region
        if self.geocoder is None or not self.cfg.reverse_geocode:
            return None, origin
        city, _ = self.geocoder.reverse(loc.lat, loc.lng)
        if remote:
            alat, alng = obfuscate(author_location.lat, author_location.lng, self.rng,
                                   self.cfg.obfuscation_min_m, self.cfg.obfuscation_max_m)
            _, cc = self.geocoder.reverse(alat, alng)
            origin = cc or origin
        return city, origin

    def _persist(self, msg: Message) -> Message:
        try:
            stored = self.store.submit(msg)
        except PersistenceFailure as e:
            self.reconciler.dispatch(Event.local(EventType.FAIL, self.clock(), message_id=msg.id))
            self.stats.inc("submit", False)
            log_line(f"SUBMIT UNCONFIRMED | id={msg.id} err={e.detail}", "WARN")
            raise PersistenceFailure("submit", e.detail, message=msg) from e

        stored = replace(stored, confirmed=True)
        self.reconciler.dispatch(Event.local(EventType.CONFIRM, self.clock(), message=stored))
        if stored.is_reply:
            with self._lock:
                self._replies[stored.id] = stored
        self.stats.inc("submit", True)
        log_line(f"SUBMIT OK | id={stored.id} reply={stored.is_reply} remote={stored.is_remote}")
        return stored

    def _own_unconfirmed(self, message_id: str) -> Message:
        msg = self.reconciler.get(message_id)
        if msg is None:
            with self._lock:
                msg = self._replies.get(message_id)
        if msg is None or message_id not in self._own_ids:
            raise UnknownMessage(message_id)
        return msg

    def retry(self, message_id: str) -> Message:
        """Resend an own write that failed earlier; same id, so no duplicate."""
        msg = self._own_unconfirmed(message_id)
        if msg.confirmed:
            return msg
        return self._persist(msg)

    def rollback(self, message_id: str) -> None:
        self._own_unconfirmed(message_id)
        self.reconciler.dispatch(Event.local(EventType.ROLLBACK, self.clock(), message_id=message_id))
        with self._lock:
            self._replies.pop(message_id, None)
            self._own_ids.discard(message_id)
        log_line(f"SUBMIT ROLLED BACK | id={message_id}")

    # =========================
    # READ SIDE
    # =========================

    def refresh(self, viewport: Optional[Viewport] = None) -> int:
        """Bulk reload; returns the size of the reconciled collection."""
        rows = self.store.fetch(viewport, only_top_level=True)
        st = self.reconciler.dispatch(Event.snapshot(rows, self.clock()))
        return len(st.messages)

    def on_event(self, event: Event) -> None:
        self.reconciler.on_event(event)

    def on_payload(self, payload: Dict) -> bool:
        ev = event_from_payload(payload, self.clock())
        if ev is None:
            return False
        self.on_event(ev)
        return True

    def prune(self) -> int:
        before = len(self.reconciler.state.messages)
        st = self.reconciler.dispatch(Event.local(EventType.PRUNE, self.clock()))
        return before - len(st.messages)

    def visible(self, viewport: Optional[Viewport] = None) -> List[Message]:
        return in_viewport(self.reconciler.messages(), viewport, self.clock(), self.policy)

    def feed(self, viewport: Optional[Viewport] = None) -> List[Message]:
        zoom = viewport.zoom if viewport is not None else 0.0
        return feed_order(self.visible(viewport), zoom)

    def clusters(self, zoom: float, viewport: Optional[Viewport] = None,
                 merge_radius_m: Optional[float] = None) -> List[Cluster]:
        """
        Recomputed from scratch on every call. Hub merging applies below
        hub_max_zoom unless merge_radius_m is passed explicitly (0 disables).
        """
        if merge_radius_m is None:
            merge_radius_m = self.cfg.hub_merge_radius_m if zoom < self.cfg.hub_max_zoom else 0.0
        resolution = resolution_for(zoom, self.cfg.zoom_steps)
        return aggregate(self.visible(viewport), resolution, merge_radius_m,
                         now=self.clock(), policy=self.policy)

    def replies(self, parent_id: str) -> List[Message]:
        """Thread under one message, oldest first. Not cached in the collection."""
        rows = self.store.fetch_replies(parent_id)
        tombstones = self.reconciler.state.tombstones
        now = self.clock()
        out = [m for m in rows if m.id not in tombstones and is_visible(m, now, self.policy)]
        with self._lock:
            for m in out:
                self._replies[m.id] = m
        return out

    def rate_status(self) -> RateLimitStatus:
        return self.limiter.status(self.actor.actor_id, self.clock())

    def my_votes(self) -> Dict[str, str]:
        return self.votes.for_actor(self.actor.actor_id)

    # =========================
    # VOTE / DELETE
    # =========================

    def vote(self, message_id: str, direction) -> VoteOutcome:
        """
        Toggle vote. The local score moves at once and stays authoritative for
        display; the store call is fire-and-forget (logged when it fails).
        """
        new, delta = self.votes.cast(self.actor.actor_id, message_id, VoteDirection(direction))
        if delta:
            self.reconciler.dispatch(Event.local(EventType.SCORE, self.clock(), message_id=message_id, delta=delta))

        committed = delta == 0
        if delta:
            try:
                self.store.vote(message_id, delta)
                committed = True
                self.stats.inc("vote", True)
            except PersistenceFailure as e:
                self.stats.inc("vote", False)
                log_line(f"VOTE NOT COMMITTED | id={message_id} delta={delta} err={e.detail}", "WARN")

        current = self.reconciler.get(message_id)
        return VoteOutcome(message_id, new, delta, current.score if current else None, committed)

    def delete(self, message_id: str) -> None:
        """
        Optimistic removal, restored when the store refuses.

        Raises:
            UnknownMessage, NotOwner, PersistenceFailure (after restoring)
        """
        msg = self.reconciler.get(message_id)
        if msg is None:
            with self._lock:
                msg = self._replies.get(message_id)
        if msg is None:
            raise UnknownMessage(message_id)
        if msg.author_id != self.actor.actor_id and message_id not in self._own_ids:
            raise NotOwner(message_id)

        self.reconciler.dispatch(Event.local(EventType.LOCAL_DELETE, self.clock(), message_id=message_id))
        try:
            self.store.delete(message_id)
        except PersistenceFailure as e:
            self.reconciler.dispatch(Event.local(EventType.RESTORE, self.clock(), message_id=message_id))
            self.stats.inc("delete", False)
            log_line(f"DELETE FAILED, RESTORED | id={message_id} err={e.detail}", "WARN")
            raise

        self.reconciler.dispatch(Event.local(EventType.FORGET, self.clock(), message_id=message_id))
        with self._lock:
            self._replies.pop(message_id, None)
        self.stats.inc("delete", True)
        log_line(f"DELETE OK | id={message_id}")

    def rotate_actor(self) -> ActorContext:
        """
        New pseudonymous id. Messages posted so far stay deletable, and the
        rate window and vote records move to the new id with the session.
        """
        old_id = self.actor.actor_id
        with self._lock:
            self.actor = self.actor.rotate()
            new_id = self.actor.actor_id
        self.limiter.transfer(old_id, new_id)
        self.votes.transfer(old_id, new_id)
        log_line(f"ACTOR ROTATED | old={old_id[:8]} new={new_id[:8]}")
        return self.actor

    # =========================
    # SESSION STATE
    # =========================

    @classmethod
    def from_config(cls, cfg: EngineConfig, store: Optional[MessageStore] = None,
                    geocoder: Optional[Geocoder] = None) -> "Engine":
        """Engine with actor, votes, tombstones and rate window restored from cfg.state_path."""
        if store is None:
            store = RestMessageStore.from_config(cfg) if cfg.store_url else InMemoryMessageStore()
        limiter = RateLimiter(cfg.cooldown_ms, cfg.window_ms, cfg.quota)
        actor, votes, tombstones = restore_session(load_session_state(cfg.state_path), limiter)
        return cls(cfg, store, actor, geocoder=geocoder, votes=votes,
                   limiter=limiter, tombstones=tombstones)

    def save_state(self, path=None) -> None:
        save_session_state(path or self.cfg.state_path, self.actor, self.votes,
                           self.reconciler.state.tombstones, self.limiter)
