"""JSON-file key-value persistence for run records and user settings."""

from __future__ import annotations

import json
import time
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Dict, Optional

from tracking import t


class KeyValueRepository:
    """Read/write a flat JSON object of per-installation state."""

    def __init__(self, file_path: str, *, logger: Any) -> None:
        t('reservations.repository.KeyValueRepository.__init__')
        self._path = Path(file_path)
        self._logger = logger
        self._unreadable = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, Any]:
        """Load the whole store, returning an empty mapping when absent or invalid."""

        t('reservations.repository.KeyValueRepository.load')
        self._unreadable = False
        if not self._path.exists():
            self._logger.debug("Store file %s does not exist; starting empty", self._path)
            return {}
        try:
            with self._path.open('r', encoding='utf-8') as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            self._logger.error("Failed to load store from %s: %s", self._path, exc)
            self._unreadable = True
            return {}
        if not isinstance(payload, dict):
            self._logger.warning(
                "Invalid store format in %s; expected object, received %s",
                self._path,
                type(payload).__name__,
            )
            self._unreadable = True
            return {}
        self._logger.debug("Loaded %s key(s) from %s", len(payload), self._path)
        return payload

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        t('reservations.repository.KeyValueRepository.get')
        return self.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Replace one key and persist the whole store."""

        t('reservations.repository.KeyValueRepository.set')
        payload = self.load()
        if self._unreadable:
            self._set_aside_unreadable()
        payload[key] = value
        self.save(payload)

    def _set_aside_unreadable(self) -> None:
        """Keep an unreadable store file instead of overwriting it."""
        backup = self._path.with_name(f"{self._path.name}.corrupt-{time.strftime('%Y%m%d%H%M%S')}")
        self._path.replace(backup)
        self._unreadable = False
        self._logger.warning("Unreadable store %s moved to %s before writing", self._path, backup)

    def save(self, payload: Dict[str, Any]) -> None:
        """Persist atomically: write a temp file beside the target, then replace."""

        t('reservations.repository.KeyValueRepository.save')
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: Optional[Path] = None
        try:
            with NamedTemporaryFile(
                'w', encoding='utf-8', dir=self._path.parent, delete=False, suffix='.tmp'
            ) as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.flush()
                tmp_path = Path(handle.name)
            tmp_path.replace(self._path)
        except OSError:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise
        self._logger.debug("Store saved to %s", self._path)
