import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

from .log import log_line

def load_json(path: Union[str, Path], default: Any) -> Any:
    """Load JSON state.
    Missing file -> default. Unreadable file or a top-level type that does not
    match the default's type -> default, with a WARN line so the operator sees
    that local state was discarded.
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log_line(f"STATE LOAD FAILED | path={path} err={e!r}", "WARN")
        return default
    if default is not None and not isinstance(data, type(default)):
        log_line(f"STATE LOAD FAILED | path={path} err=unexpected {type(data).__name__}", "WARN")
        return default
    return data

def save_json(path: Union[str, Path], obj: Any, sort_keys: bool = False) -> None:
    """
    Atomic JSON write: unique temp file in the target dir, fsync, then replace.
    The service loop and the tools may write the same state file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=sort_keys)
    if not data.endswith("\n"):
        data += "\n"

    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    finally:
        if tmp_name:
            Path(tmp_name).unlink(missing_ok=True)
