"""Response cache keyed by request URL and parameters."""

import hashlib
import json
import logging
import os
import threading
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


def cache_key(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    encoded = json.dumps(
        {"url": url, "params": dict(params or {})}, sort_keys=True, default=str
    )
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


class ResponseCache:
    """In-memory JSON cache, mirrored to ``directory`` when one is given."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory
        self._memory: Dict[str, Any] = {}
        self._lock = threading.Lock()
        if directory:
            os.makedirs(directory, exist_ok=True)

    def get(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Any]:
        key = cache_key(url, params)
        with self._lock:
            if key in self._memory:
                return self._memory[key]
        if not self.directory:
            return None
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable cache entry %s", path, exc_info=True)
            return None
        with self._lock:
            self._memory[key] = payload
        return payload

    def put(self, url: str, params: Optional[Mapping[str, Any]], payload: Any) -> None:
        key = cache_key(url, params)
        with self._lock:
            self._memory[key] = payload
        if self.directory:
            with open(self._path(key), "w", encoding="utf-8") as fh:
                json.dump(payload, fh)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
        if self.directory:
            for name in os.listdir(self.directory):
                if name.endswith(".json"):
                    os.remove(os.path.join(self.directory, name))

    def __len__(self) -> int:
        return len(self._memory)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")
