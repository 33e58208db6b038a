from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Tuple, Union

from . import constants as C
from ..domain.lifecycle import LifecyclePolicy
from ..utils.files import load_json
from ..utils.time import HOUR_MS, SECOND_MS

def _parse_zoom_steps(v) -> Tuple[Tuple[float, int], ...]:
    """(min_zoom, resolution) rows; both columns must be non-decreasing."""
    steps = tuple((float(z), int(r)) for z, r in v)
    for (z0, r0), (z1, r1) in zip(steps, steps[1:]):
        if z1 < z0 or r1 < r0:
            raise ValueError(f"zoom_steps not sorted: {(z0, r0)} -> {(z1, r1)}")
    return steps

@dataclass(frozen=True)
class EngineConfig:
    lifespan_ms: int = C.MESSAGE_LIFESPAN_MS
    hide_threshold: int = C.SCORE_THRESHOLD_HIDE
    cooldown_ms: int = C.SPAM_COOLDOWN_MS
    window_ms: int = C.RATE_LIMIT_WINDOW_MS
    quota: int = C.MAX_POSTS_PER_WINDOW
    obfuscation_min_m: float = C.OBFUSCATION_MIN_M
    obfuscation_max_m: float = C.OBFUSCATION_MAX_M
    remote_distance_km: float = C.REMOTE_DISTANCE_KM
    hub_merge_radius_m: float = C.HUB_MERGE_RADIUS_M
    hub_max_zoom: float = C.HUB_MAX_ZOOM
    zoom_steps: Tuple[Tuple[float, int], ...] = C.ZOOM_RESOLUTION_STEPS
    max_text_len: int = C.MAX_TEXT_LEN
    banned_words: Tuple[str, ...] = C.BANNED_WORDS
    # transport
    store_url: str = ""
    store_key: str = ""
    store_table: str = "kaiku_posts"
    store_vote_rpc: str = "kaiku_vote"
    user_agent: str = "Kaiku/1.0"
    reverse_geocode: bool = False
    # service loop
    refresh_interval_s: int = C.REFRESH_INTERVAL_S
    state_path: str = "session_state.json"
    log_dir: str = "logs"
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def lifecycle(self) -> LifecyclePolicy:
        return LifecyclePolicy(lifespan_ms=self.lifespan_ms, hide_threshold=self.hide_threshold)

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "EngineConfig":
        """
        Build from a config.json dict: start from cfg["profile"] (default
        "default"), then apply every known key. Unknown keys land in `extra`.
        """
        cfg = dict(cfg or {})
        profile = str(cfg.pop("profile", "default") or "default")
        if profile not in PROFILES:
            raise ValueError(f"unknown profile: {profile}")
        base = PROFILES[profile]

        known = {f.name for f in fields(cls)} - {"extra"}
        updates: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for k, v in cfg.items():
            if k not in known:
                extra[k] = v
            elif k == "zoom_steps":
                updates[k] = _parse_zoom_steps(v)
            elif k == "banned_words":
                updates[k] = tuple(str(w) for w in v)
            elif isinstance(getattr(base, k), bool):
                updates[k] = v if isinstance(v, bool) else str(v).strip().lower() in ("1", "true", "yes")
            else:
                updates[k] = type(getattr(base, k))(v)
        return replace(base, extra=extra, **updates)

# Variant constant sets, one entry per observed flavour of the feed.
PROFILES: Dict[str, EngineConfig] = {
    "default": EngineConfig(),
    # short-lived local chatter, tighter hubs
    "local": EngineConfig(
        lifespan_ms=24 * HOUR_MS,
        hub_merge_radius_m=2000.0,
        quota=20,
    ),
    # demo / seeding: no cooldown pressure, long lifespan
    "demo": EngineConfig(
        lifespan_ms=7 * 24 * HOUR_MS,
        cooldown_ms=1 * SECOND_MS,
        quota=1000,
    ),
}

def load_config(path: Union[str, Path]) -> EngineConfig:
    return EngineConfig.from_dict(load_json(Path(path), {}))
