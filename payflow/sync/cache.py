"""Durable local cache: one JSON document per key, written atomically."""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from payflow.errors import CacheCorruptError

logger = logging.getLogger(__name__)


class LocalCache:
    """
    Keeps the last-known state on disk so a session survives restarts and
    outages. Only the synchronization engine writes to it.
    """

    def __init__(self, directory: str, key: str = "payflow_state"):
        self.directory = Path(directory)
        self.key = key

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def save(self, payload: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, sort_keys=True)
        os.replace(tmp, self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored payload, None if nothing was cached yet."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheCorruptError(f"Local cache {self.path} is unreadable: {e}")
        if not isinstance(payload, dict):
            raise CacheCorruptError(f"Local cache {self.path} does not hold a state document")
        return payload

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Cleared local cache {self.path}")
