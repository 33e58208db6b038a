import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Any
from .time import TZ_HELSINKI

# Set by the service loop; None means stdout only
ENGINE_LOG_PATH: Optional[Path] = None

_LOG_LOCK = threading.Lock()

def set_log_file(log_dir: Path, date_str: str) -> Path:
    global ENGINE_LOG_PATH
    log_dir.mkdir(parents=True, exist_ok=True)
    ENGINE_LOG_PATH = log_dir / f"engine-{date_str}.log"
    return ENGINE_LOG_PATH

def _append(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")

def log_line(msg: Any, level: str = "INFO") -> None:
    """
    Logging wrapper (single timestamp, readable):
    - Prefix every line with: YYYY-MM-DD // HH:MM:SS+HH:MM -
    - Non-INFO levels are tagged in front of the message: "WARN | ..."
    """
    line = str(msg).strip()
    lvl = (level or "INFO").upper()
    if lvl != "INFO" and not line.startswith(f"{lvl} |"):
        line = f"{lvl} | {line}"

    with _LOG_LOCK:
        ts = datetime.now(TZ_HELSINKI)
        prefix = ts.strftime("%Y-%m-%d // %H:%M:%S%z")
        if len(prefix) >= 5:
            prefix = prefix[:-2] + ":" + prefix[-2:]

        full = f"{prefix} - {line}" if line else f"{prefix} -"

        if ENGINE_LOG_PATH:
            _append(ENGINE_LOG_PATH, full)

        print(full, flush=True)
