"""
Canonical message collection: one reducer, one writer.

Three producers feed it: this actor's optimistic writes, the store's realtime
push stream, and bulk snapshots. All of them become Events, and
reduce(state, event) -> state is the only code that changes the collection.
RealtimeReconciler wraps the reducer in a single-consumer queue so that the
push thread and the submitting thread never interleave partial updates.

Self-echo suppression is keyed by the locally generated message id: every
own write is registered in `pending` and the echoed Insert that carries the
same id is folded into the existing entry instead of being counted again.
"""
import queue
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .lifecycle import LifecyclePolicy, DEFAULT_POLICY, is_visible
from ..core.constants import PENDING_ECHO_TTL_MS, ECHO_MATCH_WINDOW_MS
from ..core.models import Message, merge_mutable
from ..utils.log import log_line

class EventType(str, Enum):
    # authoritative push stream
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    # bulk refresh
    SNAPSHOT = "snapshot"
    # local
    LOCAL_INSERT = "local_insert"
    CONFIRM = "confirm"
    FAIL = "fail"
    ROLLBACK = "rollback"
    LOCAL_DELETE = "local_delete"
    RESTORE = "restore"
    FORGET = "forget"
    SCORE = "score"
    PRUNE = "prune"

@dataclass(frozen=True)
class Event:
    type: EventType
    at: int                                   # ms, when the event was produced
    message: Optional[Message] = None
    id: Optional[str] = None
    messages: Tuple[Message, ...] = ()
    delta: int = 0

    @property
    def target_id(self) -> Optional[str]:
        if self.id is not None:
            return self.id
        return self.message.id if self.message is not None else None

    @classmethod
    def insert(cls, message: Message, at: int) -> "Event":
        return cls(EventType.INSERT, at, message=message)

    @classmethod
    def update(cls, message: Message, at: int) -> "Event":
        return cls(EventType.UPDATE, at, message=message)

    @classmethod
    def delete(cls, message_id: str, at: int) -> "Event":
        return cls(EventType.DELETE, at, id=message_id)

    @classmethod
    def snapshot(cls, messages: Iterable[Message], at: int) -> "Event":
        return cls(EventType.SNAPSHOT, at, messages=tuple(messages))

    @classmethod
    def local(cls, kind: EventType, at: int, message: Message = None,
              message_id: str = None, delta: int = 0) -> "Event":
        return cls(kind, at, message=message, id=message_id, delta=delta)

@dataclass(frozen=True)
class PendingWrite:
    id: str
    author_id: str
    parent_id: Optional[str]
    created_at: int
    applied_at: int
    confirmed: bool = False
    failed: bool = False

@dataclass
class CanonicalState:
    messages: Dict[str, Message] = field(default_factory=dict)
    # own writes awaiting their echo, by message id
    pending: Dict[str, PendingWrite] = field(default_factory=dict)
    # replies counted into a parent's reply_count: reply id -> parent id
    counted_replies: Dict[str, str] = field(default_factory=dict)
    # optimistic deletions awaiting the store, for RESTORE
    removed: Dict[str, Message] = field(default_factory=dict)
    removed_replies: Dict[str, str] = field(default_factory=dict)
    # locally deleted ids -> deletion time; stale snapshots must not resurrect them
    tombstones: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> "CanonicalState":
        return CanonicalState(
            messages=dict(self.messages),
            pending=dict(self.pending),
            counted_replies=dict(self.counted_replies),
            removed=dict(self.removed),
            removed_replies=dict(self.removed_replies),
            tombstones=dict(self.tombstones),
        )

# ---------------------------------------------------------------------------
# reducer helpers (all operate on an already-copied state)
# ---------------------------------------------------------------------------

def _bump_parent(st: CanonicalState, reply_id: str, parent_id: str, delta: int) -> None:
    if delta > 0:
        if reply_id in st.counted_replies:
            return
        st.counted_replies[reply_id] = parent_id
    else:
        if st.counted_replies.pop(reply_id, None) is None:
            return
    parent = st.messages.get(parent_id)
    if parent is not None:
        st.messages[parent_id] = replace(parent, reply_count=max(0, parent.reply_count + delta))

def _echo_of_pending_reply(st: CanonicalState, msg: Message) -> Optional[str]:
    """
    Fallback match for replies only: same author, same parent, created within
    ECHO_MATCH_WINDOW_MS of a pending own reply. Used when the store assigns
    its own id and the reply is never part of the top-level collection.
    """
    best = None
    for pid, pw in st.pending.items():
        if pw.parent_id is None or pw.parent_id != msg.parent_id:
            continue
        if pw.author_id != msg.author_id:
            continue
        gap = abs(pw.created_at - msg.created_at)
        if gap <= ECHO_MATCH_WINDOW_MS and (best is None or gap < best[0]):
            best = (gap, pid)
    return None if best is None else best[1]

def _expire_pending(st: CanonicalState, now: int) -> None:
    # unacknowledged and failed writes stay until confirmed or rolled back
    stale = [pid for pid, pw in st.pending.items()
             if pw.confirmed and now - pw.applied_at > PENDING_ECHO_TTL_MS]
    for pid in stale:
        del st.pending[pid]

def _expire_tombstones(st: CanonicalState, now: int, policy: LifecyclePolicy) -> None:
    stale = [mid for mid, at in st.tombstones.items() if now - at >= policy.lifespan_ms]
    for mid in stale:
        del st.tombstones[mid]

def _apply_push_upsert(st: CanonicalState, msg: Message, is_insert: bool) -> None:
    if msg.id in st.tombstones:
        return

    if msg.is_reply:
        pw = st.pending.get(msg.id)
        if pw is None and is_insert:
            echo_id = _echo_of_pending_reply(st, msg)
            if echo_id is not None:
                # carry the count over to the store's id
                parent = st.counted_replies.pop(echo_id, None)
                if parent is not None:
                    st.counted_replies[msg.id] = parent
                del st.pending[echo_id]
                return
        if pw is not None:
            del st.pending[msg.id]
            return
        if is_insert:
            _bump_parent(st, msg.id, msg.parent_id, +1)
        return

    current = st.messages.get(msg.id)
    if current is not None:
        merged = merge_mutable(current, msg)
        if msg.id in st.pending:
            merged = replace(merged, confirmed=True)
            del st.pending[msg.id]
        st.messages[msg.id] = merged
    else:
        st.pending.pop(msg.id, None)
        st.messages[msg.id] = replace(msg, confirmed=True)

def reduce(state: CanonicalState, event: Event, policy: LifecyclePolicy = DEFAULT_POLICY) -> CanonicalState:
    """
    Apply one event and return the next state; `state` is left untouched.

    Merge rules:
    - INSERT/UPDATE for a known id replace the mutable fields, identity stays.
    - INSERT/UPDATE for an unknown top-level id appends it.
    - DELETE removes by id unconditionally.
    - An INSERT echoing one of our pending writes (same id) is folded in, it
      never creates a second entry or a second reply count.
    """
    st = state.copy()
    now = event.at
    t = EventType(event.type)

    if t in (EventType.INSERT, EventType.UPDATE):
        if event.message is not None:
            _apply_push_upsert(st, event.message, t is EventType.INSERT)

    elif t is EventType.DELETE:
        mid = event.target_id
        if mid:
            st.messages.pop(mid, None)
            st.pending.pop(mid, None)
            parent = st.counted_replies.get(mid)
            if parent is not None:
                _bump_parent(st, mid, parent, -1)

    elif t is EventType.LOCAL_INSERT:
        msg = event.message
        if msg is not None:
            st.pending[msg.id] = PendingWrite(
                id=msg.id, author_id=msg.author_id, parent_id=msg.parent_id,
                created_at=msg.created_at, applied_at=now,
            )
            if msg.is_reply:
                _bump_parent(st, msg.id, msg.parent_id, +1)
            else:
                st.messages[msg.id] = replace(msg, confirmed=False)

    elif t is EventType.CONFIRM:
        msg = event.message
        if msg is not None:
            pw = st.pending.get(msg.id)
            if pw is not None:
                st.pending[msg.id] = replace(pw, confirmed=True, failed=False, applied_at=now)
            current = st.messages.get(msg.id)
            if current is not None:
                st.messages[msg.id] = replace(merge_mutable(current, msg), confirmed=True)

    elif t is EventType.FAIL:
        mid = event.target_id
        pw = st.pending.get(mid) if mid else None
        if pw is not None:
            st.pending[mid] = replace(pw, failed=True)
        current = st.messages.get(mid) if mid else None
        if current is not None:
            st.messages[mid] = replace(current, confirmed=False)

    elif t is EventType.ROLLBACK:
        mid = event.target_id
        if mid:
            st.pending.pop(mid, None)
            st.messages.pop(mid, None)
            parent = st.counted_replies.get(mid)
            if parent is not None:
                _bump_parent(st, mid, parent, -1)

    elif t is EventType.LOCAL_DELETE:
        mid = event.target_id
        if mid:
            current = st.messages.pop(mid, None)
            if current is not None:
                st.removed[mid] = current
            st.tombstones[mid] = now
            parent = st.counted_replies.get(mid)
            if parent is not None:
                _bump_parent(st, mid, parent, -1)
                st.removed_replies[mid] = parent

    elif t is EventType.RESTORE:
        mid = event.target_id
        if mid:
            st.tombstones.pop(mid, None)
            current = st.removed.pop(mid, None)
            if current is not None:
                st.messages[mid] = current
            parent = st.removed_replies.pop(mid, None)
            if parent is not None:
                _bump_parent(st, mid, parent, +1)

    elif t is EventType.FORGET:
        mid = event.target_id
        if mid:
            st.removed.pop(mid, None)
            st.removed_replies.pop(mid, None)

    elif t is EventType.SCORE:
        mid = event.target_id
        current = st.messages.get(mid) if mid else None
        if current is not None and event.delta:
            st.messages[mid] = replace(current, score=current.score + event.delta)

    elif t is EventType.SNAPSHOT:
        fresh: Dict[str, Message] = {}
        for m in event.messages:
            if m.is_reply or m.id in st.tombstones:
                continue
            if not is_visible(m, now, policy):
                continue
            fresh[m.id] = replace(m, confirmed=True)
        for mid, cur in st.messages.items():
            # own writes the store has not returned yet are kept, never lost
            if mid not in fresh and mid in st.pending and not cur.confirmed:
                fresh[mid] = cur
        for mid in list(st.pending):
            if mid in fresh and fresh[mid].confirmed:
                del st.pending[mid]
        st.messages = fresh
        # snapshot reply counts are authoritative; forget local tallies
        st.counted_replies = {rid: pid for rid, pid in st.counted_replies.items()
                              if rid in st.pending}
        # a reply the store has not acknowledged cannot be in those counts
        for rid, pid in st.counted_replies.items():
            if st.pending[rid].confirmed:
                continue
            parent = st.messages.get(pid)
            if parent is not None:
                st.messages[pid] = replace(parent, reply_count=parent.reply_count + 1)

    elif t is EventType.PRUNE:
        st.messages = {mid: m for mid, m in st.messages.items()
                       if is_visible(m, now, policy) or (mid in st.pending and not m.confirmed)}

    _expire_pending(st, now)
    _expire_tombstones(st, now, policy)
    return st

def reduce_all(state: CanonicalState, events: Iterable[Event],
               policy: LifecyclePolicy = DEFAULT_POLICY) -> CanonicalState:
    """Apply a batch in order: last write wins per id."""
    for ev in events:
        state = reduce(state, ev, policy)
    return state

class RealtimeReconciler:
    """
    Owner of the canonical collection.

    Producers call on_event()/dispatch() from any thread. Events go through
    a FIFO queue and are applied by whichever caller holds the drain lock,
    one at a time. Readers get the current immutable state reference.
    """

    def __init__(self, policy: LifecyclePolicy = DEFAULT_POLICY, state: CanonicalState = None):
        self.policy = policy
        self._state = state or CanonicalState()
        self._inbox: "queue.Queue[Event]" = queue.Queue()
        self._drain_lock = threading.Lock()
        self._listeners: List[Callable[[CanonicalState], None]] = []
        # drain generation; listeners never see an older state after a newer one
        self._version = 0
        self._notified = 0
        self._notify_lock = threading.RLock()

    @property
    def state(self) -> CanonicalState:
        return self._state

    def subscribe(self, listener: Callable[[CanonicalState], None]) -> None:
        self._listeners.append(listener)

    def enqueue(self, event: Event) -> None:
        self._inbox.put(event)

    def drain(self) -> int:
        applied = 0
        with self._drain_lock:
            st = self._state
            while True:
                try:
                    ev = self._inbox.get_nowait()
                except queue.Empty:
                    break
                st = reduce(st, ev, self.policy)
                applied += 1
            if applied:
                self._version += 1
            version = self._version
            self._state = st
        if applied:
            self._notify(st, version)
        return applied

    def _notify(self, st: CanonicalState, version: int) -> None:
        with self._notify_lock:
            if version <= self._notified:
                return
            self._notified = version
            for listener in list(self._listeners):
                try:
                    listener(st)
                except Exception as e:
                    log_line(f"RECONCILE LISTENER FAILED | err={e!r}", "ERROR")

    def dispatch(self, event: Event) -> CanonicalState:
        self.enqueue(event)
        self.drain()
        return self._state

    # push stream ingress
    def on_event(self, event: Event) -> None:
        if EventType(event.type) not in (EventType.INSERT, EventType.UPDATE, EventType.DELETE):
            raise ValueError(f"not a push event: {event.type}")
        self.dispatch(event)

    def get(self, message_id: str) -> Optional[Message]:
        return self._state.messages.get(message_id)

    def messages(self) -> List[Message]:
        """Top-level collection, newest first."""
        return sorted(self._state.messages.values(), key=lambda m: (-m.created_at, m.id))

    def visible(self, now: int) -> List[Message]:
        return [m for m in self.messages() if is_visible(m, now, self.policy)]

    def unconfirmed(self) -> List[Message]:
        return [m for m in self.messages() if not m.confirmed]
