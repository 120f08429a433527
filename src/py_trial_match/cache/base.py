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
"""Defines the abstract base class for cache stores."""

import abc
import asyncio
from typing import Any


class BaseCacheStore(abc.ABC):
    """Abstract Base Class for key -> JSON blob stores.

    Entries are grouped by namespace (geocode, ai_scores, webhook_health).
    No transactional guarantees are offered beyond last-write-wins: concurrent
    writers may race, and readers tolerate a stale value.
    """

    @abc.abstractmethod
    def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        """Return the stored value, or None when the key is absent."""
        raise NotImplementedError

    @abc.abstractmethod
    def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        """Store `value` under `key`, replacing any previous value."""
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        """Remove `key` if present."""
        raise NotImplementedError

    # Async callers go through these so blocking backends run off the event loop.
    async def aget(self, namespace: str, key: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self.get, namespace, key)

    async def aset(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        await asyncio.to_thread(self.set, namespace, key, value)

    async def adelete(self, namespace: str, key: str) -> None:
        await asyncio.to_thread(self.delete, namespace, key)
