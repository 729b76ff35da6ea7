"""
Small per-user settings file (a flat JSON object).

Every read parses the whole file; every mutation rewrites the whole file through a temporary file
and an atomic rename, so a concurrent reader never observes a half-written document.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import (
    Any,
    Dict,
)

logger = logging.getLogger(__name__)


class SettingsError(RuntimeError):
    """The settings file cannot be read as a JSON object."""


class SettingsStore:
    """Narrow get/set/delete interface over the settings file at *path*."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        if not self.path.exists():
            self._write({})

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> Dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SettingsError(f"Settings file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {self.path} must contain a JSON object.")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Settings written to %s", self.path)
