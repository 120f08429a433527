# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Process-local and JSON-file cache stores."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from py_trial_match.cache.base import BaseCacheStore

logger = logging.getLogger(__name__)


class MemoryCacheStore(BaseCacheStore):
    """Keeps entries in a dict; a fresh instance starts empty."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        value = self._data.get(namespace, {}).get(key)
        return dict(value) if value is not None else None

    def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        self._data.setdefault(namespace, {})[key] = dict(value)

    def delete(self, namespace: str, key: str) -> None:
        self._data.get(namespace, {}).pop(key, None)

    async def aget(self, namespace: str, key: str) -> dict[str, Any] | None:
        return self.get(namespace, key)

    async def aset(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        self.set(namespace, key, value)

    async def adelete(self, namespace: str, key: str) -> None:
        self.delete(namespace, key)


class JsonFileCacheStore(BaseCacheStore):
    """Persists each namespace as one JSON document inside `cache_dir`.

    Writes go to a temporary file that replaces the namespace file, so a crash
    mid-write leaves the previous version intact.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, namespace: str) -> Path:
        return self.cache_dir / f"{namespace}.json"

    def _read(self, namespace: str) -> dict[str, Any]:
        path = self._path(namespace)
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, namespace: str, data: dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self._path(namespace))
        except OSError as e:
            logger.warning("Could not write cache namespace %s: %s", namespace, e)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        value = self._read(namespace).get(key)
        return value if isinstance(value, dict) else None

    def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        data = self._read(namespace)
        data[key] = value
        self._write(namespace, data)

    def delete(self, namespace: str, key: str) -> None:
        data = self._read(namespace)
        if data.pop(key, None) is not None:
            self._write(namespace, data)
