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
import pytest

from py_trial_match.cache.entries import (
    AI_SCORE_NAMESPACE,
    AIScoreCache,
    GeocodeCache,
    WebhookHealthCache,
)
from py_trial_match.models.scoring import GeoResult

pytestmark = pytest.mark.unit

ENDPOINT = "https://scorer.example.org/score"


def test_geocode_cache_roundtrip(store):
    cache = GeocodeCache(store)
    assert cache.get("14301") is None
    cache.set("14301", GeoResult(latitude=43.09, longitude=-79.05, label="Niagara Falls, NY"))
    hit = cache.get("14301")
    assert hit.label == "Niagara Falls, NY"
    assert hit.latitude == 43.09


def test_geocode_cache_discards_malformed(store):
    store.set("geocode", "bad", {"latitude": "north"})
    assert GeocodeCache(store).get("bad") is None


def test_ai_score_fresh_within_ttl(store, clock):
    cache = AIScoreCache(store, ttl_seconds=100, clock=clock)
    cache.set("fp", "NCT1", 81, "Good fit")
    clock.advance(99)
    entry = cache.get("fp", "NCT1")
    assert entry.score == 81
    assert entry.rationale == "Good fit"


def test_ai_score_stale_after_ttl(store, clock):
    cache = AIScoreCache(store, ttl_seconds=100, clock=clock)
    cache.set("fp", "NCT1", 81, None)
    clock.advance(100)
    assert cache.get("fp", "NCT1") is None
    # stale entries stay in the store
    assert store.get(AI_SCORE_NAMESPACE, "fp|NCT1") is not None


def test_ai_score_keyed_by_fingerprint(store, clock):
    cache = AIScoreCache(store, clock=clock)
    cache.set("fp-a", "NCT1", 81, None)
    assert cache.get("fp-b", "NCT1") is None
    assert cache.get("fp-a", "NCT2") is None


def test_webhook_suppressed_after_unhealthy_mark(store, clock):
    health = WebhookHealthCache(store, suppress_seconds=600, clock=clock)
    assert not health.is_suppressed(ENDPOINT)
    health.mark(ENDPOINT, False)
    assert health.is_suppressed(ENDPOINT)
    clock.advance(599)
    assert health.is_suppressed(ENDPOINT)
    clock.advance(1)
    assert not health.is_suppressed(ENDPOINT)


def test_webhook_healthy_mark_clears_suppression(store, clock):
    health = WebhookHealthCache(store, clock=clock)
    health.mark(ENDPOINT, False)
    health.mark(ENDPOINT, True)
    assert not health.is_suppressed(ENDPOINT)


@pytest.mark.asyncio
async def test_async_twins_share_parsing(store, clock):
    geocode = GeocodeCache(store)
    await geocode.aset("14301", GeoResult(latitude=43.09, longitude=-79.05, label="Niagara Falls, NY"))
    assert (await geocode.aget("14301")).label == "Niagara Falls, NY"
    store.set("geocode", "bad", {"latitude": "north"})
    assert await geocode.aget("bad") is None

    scores = AIScoreCache(store, ttl_seconds=100, clock=clock)
    await scores.aset("fp", "NCT1", 81, "Good fit")
    assert (await scores.aget("fp", "NCT1")).score == 81
    clock.advance(100)
    assert await scores.aget("fp", "NCT1") is None


@pytest.mark.asyncio
async def test_async_webhook_health(store, clock):
    health = WebhookHealthCache(store, suppress_seconds=600, clock=clock)
    await health.amark(ENDPOINT, False)
    assert await health.ais_suppressed(ENDPOINT)
    await health.amark(ENDPOINT, True)
    assert not await health.ais_suppressed(ENDPOINT)
