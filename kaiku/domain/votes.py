import threading
from enum import Enum
from typing import Dict, Tuple

class VoteDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"

_VALUE = {VoteDirection.UP: 1, VoteDirection.DOWN: -1, VoteDirection.NONE: 0}

def apply_vote(current: VoteDirection, requested: VoteDirection) -> Tuple[VoteDirection, int]:
    """
    Toggle semantics.

    Repeating the current direction clears it, the opposite direction flips
    it (delta +-2), NONE clears whatever is there. The delta is always
    value(new) - value(current), so the table is self-inverse.
    """
    current = VoteDirection(current)
    requested = VoteDirection(requested)
    if requested is VoteDirection.NONE or requested is current:
        new = VoteDirection.NONE
    else:
        new = requested
    return new, _VALUE[new] - _VALUE[current]

class VoteBook:
    """Local vote records keyed by (actor id, message id)."""

    def __init__(self, records: Dict[Tuple[str, str], VoteDirection] = None):
        self._records: Dict[Tuple[str, str], VoteDirection] = dict(records or {})
        self._lock = threading.Lock()

    def direction_of(self, actor_id: str, message_id: str) -> VoteDirection:
        return self._records.get((actor_id, message_id), VoteDirection.NONE)

    def cast(self, actor_id: str, message_id: str, requested: VoteDirection) -> Tuple[VoteDirection, int]:
        key = (actor_id, message_id)
        with self._lock:
            new, delta = apply_vote(self._records.get(key, VoteDirection.NONE), requested)
            self._records[key] = new
            return new, delta

    def transfer(self, old_id: str, new_id: str) -> None:
        """Move old_id's records to new_id; records new_id already has win."""
        with self._lock:
            moved = {mid: d for (aid, mid), d in self._records.items() if aid == old_id}
            for mid, d in moved.items():
                del self._records[(old_id, mid)]
                self._records.setdefault((new_id, mid), d)

    def for_actor(self, actor_id: str) -> Dict[str, str]:
        with self._lock:
            return {mid: d.value for (aid, mid), d in self._records.items() if aid == actor_id}

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        out: Dict[str, Dict[str, str]] = {}
        with self._lock:
            for (aid, mid), d in self._records.items():
                out.setdefault(aid, {})[mid] = d.value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, str]]) -> "VoteBook":
        records = {}
        for aid, votes in (data or {}).items():
            if not isinstance(votes, dict):
                continue
            for mid, d in votes.items():
                try:
                    records[(str(aid), str(mid))] = VoteDirection(d)
                except ValueError:
                    continue
        return cls(records)
