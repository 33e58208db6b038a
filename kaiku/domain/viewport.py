from typing import Iterable, List, Optional

from .lifecycle import LifecyclePolicy, DEFAULT_POLICY, is_visible
from ..core.constants import FEED_SCORE_SORT_MAX_ZOOM
from ..core.models import Message, Viewport

def in_viewport(
    messages: Iterable[Message],
    viewport: Optional[Viewport],
    now: int,
    policy: LifecyclePolicy = DEFAULT_POLICY,
) -> List[Message]:
    """Visible top-level messages inside the box (no box = whole world)."""
    out = []
    for m in messages:
        if m.is_reply or not is_visible(m, now, policy):
            continue
        if viewport is not None and not viewport.contains(m.location):
            continue
        out.append(m)
    return out

def feed_order(messages: Iterable[Message], zoom: float,
               score_sort_max_zoom: float = FEED_SCORE_SORT_MAX_ZOOM) -> List[Message]:
    """
    Zoomed out the feed is "top rated", zoomed in it is "latest".
    Ties fall back to recency, then id, so the order is stable.
    """
    if zoom < score_sort_max_zoom:
        key = lambda m: (-m.score, -m.created_at, m.id)
    else:
        key = lambda m: (-m.created_at, m.id)
    return sorted(messages, key=key)
