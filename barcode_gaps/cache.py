"""
Key-value caches for query results.

The pipeline only talks to the get/put/delete interface, so tests can use
MemoryCache and runs can use JsonFileCache without filesystem side effects
leaking into the workflow code. Invalidation is manual: delete the entry
(or the file, or run with --refresh).
"""

import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ResultCache:
    """Interface for cached payloads keyed by a string."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def put(self, key: str, payload: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError


class MemoryCache(ResultCache):
    """In-process cache, mainly for tests."""

    def __init__(self) -> None:
        self._store: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        if key not in self._store:
            return None
        return copy.deepcopy(self._store[key])

    def put(self, key: str, payload: Any) -> None:
        self._store[key] = copy.deepcopy(payload)

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def __contains__(self, key: str) -> bool:
        return key in self._store


class JsonFileCache(ResultCache):
    """
    One JSON file per key in a cache directory.

    A file that cannot be read or parsed counts as a miss and is logged; the
    next put overwrites it. Writes go to a temp file first and are moved into
    place with os.replace, so an interrupted run never leaves half a file.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        safe = re.sub(r'[^A-Za-z0-9_.-]+', '_', key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache file {path}: {e}")
            return None

    def put(self, key: str, payload: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix='.tmp', prefix=path.stem)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as tmp_f:
                json.dump(payload, tmp_f, indent=1, ensure_ascii=False)
                tmp_f.write('\n')
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"Cached '{key}' to {path}")

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
            logger.info(f"Removed cache file {path}")
            return True
        return False
