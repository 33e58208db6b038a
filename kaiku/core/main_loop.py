import time
from pathlib import Path

import kaiku
from .config import EngineConfig
from .engine import Engine
from .errors import KaikuError
from .models import CycleResult
from ..adapters.geocode_api import NominatimGeocoder
from ..utils.log import log_line, set_log_file
from ..utils.time import now_helsinki

def setup_log_paths(cfg: EngineConfig) -> Path:
    date_str = now_helsinki().strftime("%Y-%m-%d")
    return set_log_file(Path(cfg.log_dir), date_str)

def run_cycle(engine: Engine) -> CycleResult:
    """refresh -> prune -> aggregate, once."""
    res = CycleResult()
    try:
        engine.refresh()
    except KaikuError as e:
        # keep serving the last reconciled collection
        res.errors.append(repr(e))
        log_line(f"REFRESH FAILED | err={e!r}", "WARN")
    res.pruned_count = engine.prune()
    res.live_count = len(engine.visible())
    res.cluster_count = len(engine.clusters(0))
    return res

def run_loop(cfg: EngineConfig, one_shot: bool = False) -> None:
    setup_log_paths(cfg)
    log_line(f"MAIN LOOP STARTED (Kaiku engine v{kaiku.__version__})")

    geocoder = NominatimGeocoder(cfg.user_agent) if cfg.reverse_geocode else None
    engine = Engine.from_config(cfg, geocoder=geocoder)
    mode = "rest" if cfg.store_url else "local"
    log_line(f"SESSION | actor={engine.actor.actor_id[:8]} store={mode}")

    while True:
        try:
            res = run_cycle(engine)
            unconfirmed = len(engine.reconciler.unconfirmed())
            log_line(f"CHECKS | live={res.live_count} pruned={res.pruned_count} "
                     f"clusters={res.cluster_count} unconfirmed={unconfirmed}")
            engine.stats.maybe_log(engine.clock())

            if one_shot:
                break
            time.sleep(cfg.refresh_interval_s)

        except KeyboardInterrupt:
            log_line("MAIN LOOP STOPPED (KeyboardInterrupt)")
            break
        except KaikuError as e:
            log_line(f"MAIN LOOP ERROR | err={e!r}", "ERROR")
            if one_shot:
                break
            time.sleep(cfg.refresh_interval_s)
        finally:
            # Always persist the session, even on error: votes and tombstones
            # must survive a restart.
            try:
                engine.save_state()
            except OSError as se:
                log_line(f"STATE SAVE ERROR | {se!r}", "ERROR")
