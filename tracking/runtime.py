"""Runtime counters recording how often instrumented functions execute."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Dict, Optional

_LOCK = threading.RLock()
_DEFAULT_FILE = Path(__file__).resolve().parent / "function_call_counts.json"
_COUNTS: Dict[str, int] = {}
_LOADED = False


def _enabled() -> bool:
    return os.getenv("RCBOT_TRACKING_DISABLED", "false").strip().lower() not in {
        "1",
        "true",
        "yes",
        "on",
    }


def tracking_file() -> Path:
    """Return the counts file, honouring ``RCBOT_TRACKING_FILE``."""
    override = os.getenv("RCBOT_TRACKING_FILE")
    return Path(override) if override else _DEFAULT_FILE


def _load_counts_locked() -> None:
    global _LOADED
    _LOADED = True
    path = tracking_file()
    if not path.exists():
        return

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError, TypeError):
        return

    if not isinstance(data, dict):
        return

    for name, raw_count in data.items():
        if not name:
            continue
        try:
            count = int(raw_count)
        except (TypeError, ValueError):
            continue
        _COUNTS[str(name)] = max(count, 0)


def _persist_counts_locked() -> None:
    """Persist the in-memory counts to disk. Caller must hold ``_LOCK``."""
    path = tracking_file()
    tmp_path: Optional[Path] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, delete=False
        ) as handle:
            json.dump(_COUNTS, handle, sort_keys=True)
            handle.write("\n")
            handle.flush()
            tmp_path = Path(handle.name)

        if tmp_path is not None:
            tmp_path.replace(path)
    except OSError:
        if tmp_path is not None:
            try:
                tmp_path.unlink()
            except OSError:
                pass


def t(func_name: str) -> None:
    """Record the provided function name each time it runs."""
    if not func_name or not _enabled():
        return

    with _LOCK:
        if not _LOADED:
            _load_counts_locked()
        _COUNTS[func_name] = _COUNTS.get(func_name, 0) + 1
        _persist_counts_locked()


def snapshot() -> Dict[str, int]:
    """Return a copy of the counts gathered so far."""
    with _LOCK:
        return dict(_COUNTS)
