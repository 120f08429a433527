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
"""Typed views over a cache store for geocodes, oracle scores and webhook health."""

import logging
from collections.abc import Callable

import psycopg
from pydantic import ValidationError

from py_trial_match.cache.base import BaseCacheStore
from py_trial_match.cache.local import JsonFileCacheStore, MemoryCacheStore
from py_trial_match.cache.postgres import PostgresCacheStore
from py_trial_match.config import Settings
from py_trial_match.models.scoring import (
    AIScoreCacheEntry,
    GeoResult,
    WebhookHealthEntry,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

GEOCODE_NAMESPACE = "geocode"
AI_SCORE_NAMESPACE = "ai_scores"
WEBHOOK_HEALTH_NAMESPACE = "webhook_health"

Clock = Callable[[], float]


class GeocodeCache:
    """Location text -> coordinates. Entries never expire."""

    def __init__(self, store: BaseCacheStore):
        self.store = store

    def _parse(self, text: str, raw: dict | None) -> GeoResult | None:
        if raw is None:
            return None
        try:
            return GeoResult.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed geocode cache entry for %r", text)
            return None

    def get(self, text: str) -> GeoResult | None:
        return self._parse(text, self.store.get(GEOCODE_NAMESPACE, text))

    async def aget(self, text: str) -> GeoResult | None:
        return self._parse(text, await self.store.aget(GEOCODE_NAMESPACE, text))

    def set(self, text: str, result: GeoResult) -> None:
        self.store.set(GEOCODE_NAMESPACE, text, result.model_dump())

    async def aset(self, text: str, result: GeoResult) -> None:
        await self.store.aset(GEOCODE_NAMESPACE, text, result.model_dump())


class AIScoreCache:
    """Oracle scores keyed by profile fingerprint and trial identifier.

    Entries older than `ttl_seconds` are ignored but left in place.
    """

    def __init__(
        self,
        store: BaseCacheStore,
        ttl_seconds: float = 7 * 24 * 60 * 60,
        clock: Clock = utc_timestamp,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    @staticmethod
    def key(fingerprint: str, trial_id: str) -> str:
        return f"{fingerprint}|{trial_id}"

    def _fresh(self, trial_id: str, raw: dict | None) -> AIScoreCacheEntry | None:
        if raw is None:
            return None
        try:
            entry = AIScoreCacheEntry.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed AI score entry for %s", trial_id)
            return None
        if self.clock() - entry.timestamp >= self.ttl_seconds:
            return None
        return entry

    def get(self, fingerprint: str, trial_id: str) -> AIScoreCacheEntry | None:
        """Return the entry only while it is fresh."""
        raw = self.store.get(AI_SCORE_NAMESPACE, self.key(fingerprint, trial_id))
        return self._fresh(trial_id, raw)

    async def aget(self, fingerprint: str, trial_id: str) -> AIScoreCacheEntry | None:
        raw = await self.store.aget(AI_SCORE_NAMESPACE, self.key(fingerprint, trial_id))
        return self._fresh(trial_id, raw)

    def set(
        self, fingerprint: str, trial_id: str, score: int, rationale: str | None
    ) -> AIScoreCacheEntry:
        entry = AIScoreCacheEntry(score=score, rationale=rationale, timestamp=self.clock())
        self.store.set(
            AI_SCORE_NAMESPACE, self.key(fingerprint, trial_id), entry.model_dump()
        )
        return entry

    async def aset(
        self, fingerprint: str, trial_id: str, score: int, rationale: str | None
    ) -> AIScoreCacheEntry:
        entry = AIScoreCacheEntry(score=score, rationale=rationale, timestamp=self.clock())
        await self.store.aset(
            AI_SCORE_NAMESPACE, self.key(fingerprint, trial_id), entry.model_dump()
        )
        return entry


class WebhookHealthCache:
    """Last known health of each oracle endpoint, independent of profile."""

    def __init__(
        self,
        store: BaseCacheStore,
        suppress_seconds: float = 10 * 60,
        clock: Clock = utc_timestamp,
    ):
        self.store = store
        self.suppress_seconds = suppress_seconds
        self.clock = clock

    def _suppressed(self, raw: dict | None) -> bool:
        if raw is None:
            return False
        try:
            entry = WebhookHealthEntry.model_validate(raw)
        except ValidationError:
            return False
        if entry.healthy:
            return False
        return self.clock() - entry.timestamp < self.suppress_seconds

    def is_suppressed(self, endpoint: str) -> bool:
        """True while a recent unhealthy mark is on record for `endpoint`."""
        return self._suppressed(self.store.get(WEBHOOK_HEALTH_NAMESPACE, endpoint))

    async def ais_suppressed(self, endpoint: str) -> bool:
        return self._suppressed(await self.store.aget(WEBHOOK_HEALTH_NAMESPACE, endpoint))

    def mark(self, endpoint: str, healthy: bool) -> None:
        entry = WebhookHealthEntry(healthy=healthy, timestamp=self.clock())
        self.store.set(WEBHOOK_HEALTH_NAMESPACE, endpoint, entry.model_dump())

    async def amark(self, endpoint: str, healthy: bool) -> None:
        entry = WebhookHealthEntry(healthy=healthy, timestamp=self.clock())
        await self.store.aset(WEBHOOK_HEALTH_NAMESPACE, endpoint, entry.model_dump())


def create_cache_store(settings: Settings) -> BaseCacheStore:
    """Builds the cache store selected by `settings.cache_backend`.

    An unreachable database falls back to the in-memory store.
    """
    backend = settings.cache_backend.lower()
    if backend == "file":
        return JsonFileCacheStore(settings.cache_dir)
    if backend == "postgres":
        store = PostgresCacheStore(
            settings.db_connection_string,
            schema=settings.cache_schema,
            table=settings.cache_table,
            connect_timeout=settings.db_connect_timeout,
        )
        try:
            store.prepare_schema()
        except psycopg.Error as e:
            logger.warning("PostgreSQL cache unavailable (%s); using memory", e)
            return MemoryCacheStore()
        return store
    if backend != "memory":
        logger.warning("Unknown cache backend %r; using memory", settings.cache_backend)
    return MemoryCacheStore()
