from pathlib import Path
from typing import Any, Dict, Tuple, Union

from .models import ActorContext
from ..domain.votes import VoteBook
from ..utils.files import load_json, save_json
from ..utils.rate import RateLimiter

STATE_VERSION = 1

def load_session_state(path: Union[str, Path]) -> Dict[str, Any]:
    data = load_json(Path(path), {})
    if data and int(data.get("version") or 0) != STATE_VERSION:
        return {}
    return data

def restore_session(
    data: Dict[str, Any],
    limiter: RateLimiter,
) -> Tuple[ActorContext, VoteBook, Dict[str, int]]:
    """
    Rebuild actor identity, votes, tombstones and the actor's rate window
    from a loaded state dict. Empty dict -> fresh anonymous session.
    """
    actor_id = str(data.get("actor_id") or "")
    actor = ActorContext(actor_id, data.get("origin_region") or None) if actor_id else ActorContext.new()
    votes = VoteBook.from_dict(data.get("votes") or {})
    tombstones = {str(k): int(v) for k, v in (data.get("tombstones") or {}).items()}
    limiter.restore(actor.actor_id, data.get("rate_window") or [])
    return actor, votes, tombstones

def save_session_state(
    path: Union[str, Path],
    actor: ActorContext,
    votes: VoteBook,
    tombstones: Dict[str, int],
    limiter: RateLimiter,
) -> None:
    save_json(Path(path), {
        "version": STATE_VERSION,
        "actor_id": actor.actor_id,
        "origin_region": actor.origin_region,
        "votes": votes.to_dict(),
        "tombstones": dict(tombstones),
        "rate_window": limiter.window_of(actor.actor_id),
    }, sort_keys=True)
