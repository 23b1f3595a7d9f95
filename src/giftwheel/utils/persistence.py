"""Durable key/value storage backed by a single JSON document."""

from __future__ import annotations

import copy
import json
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Union

from giftwheel.utils.logger import get_logger

logger = get_logger(__name__)


class JsonFileStore:
    """Get/set store for JSON-serializable values, persisted across restarts.

    Every ``set`` rewrites the whole document atomically (temp file +
    ``os.replace``). Write failures are logged and reported through the return
    value; the in-memory copy stays authoritative for the rest of the process
    lifetime. With ``path=None`` nothing touches the disk.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self._path = Path(path) if path else None
        self._lock = Lock()
        self._data: Dict[str, Any] = {}
        self.reload()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def reload(self) -> None:
        """Re-read the backing file, replacing the in-memory copy."""
        data: Dict[str, Any] = {}
        if self._path is not None and self._path.exists():
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    data = loaded
                else:
                    logger.error("State file %s does not hold a JSON object; starting empty", self._path)
            except (OSError, ValueError) as exc:
                logger.error("Failed to read state file %s: %s", self._path, exc)
        with self._lock:
            self._data = data
        logger.info("Loaded %d persisted keys from %s", len(data), self._path or "memory")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> bool:
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.error("Refusing to store non-JSON value for %s: %s", key, exc)
            return False
        with self._lock:
            self._data[key] = copy.deepcopy(value)
            return self._flush()

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return True
            del self._data[key]
            return self._flush()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def _flush(self) -> bool:
        if self._path is None:
            return True
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".wheel-", suffix=".json", dir=str(self._path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_name, self._path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to persist state to %s: %s", self._path, exc)
            if tmp_name and os.path.exists(tmp_name):
                try:
                    os.remove(tmp_name)
                except OSError:
                    logger.debug("Could not remove temp file %s", tmp_name)
            return False
