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
"""Background refinement of the top heuristic matches by the scoring oracle."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable

from py_trial_match.cache.entries import AIScoreCache
from py_trial_match.config import Settings
from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.scoring import AIScoreCacheEntry, RankedMatch
from py_trial_match.oracle import ScoringOracle, build_scoring_prompt
from py_trial_match.registry.ctgov import CtgovClient
from py_trial_match.scoring.ranking import rank_matches

logger = logging.getLogger(__name__)

ScoreUpdates = dict[str, AIScoreCacheEntry]
Listener = Callable[[str, ScoreUpdates], None]


class ScoreUpdateBus:
    """Tells consumers that refined scores for a fingerprint were cached.

    Listeners are called synchronously on publish. Consumers that poll can
    compare `version(fingerprint)` against the value they last saw.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._versions: dict[str, int] = defaultdict(int)

    def subscribe(self, fingerprint: str, listener: Listener) -> None:
        self._listeners[fingerprint].append(listener)

    def unsubscribe(self, fingerprint: str, listener: Listener) -> None:
        listeners = self._listeners.get(fingerprint, [])
        if listener in listeners:
            listeners.remove(listener)

    def version(self, fingerprint: str) -> int:
        return self._versions.get(fingerprint, 0)

    def publish(self, fingerprint: str, updates: ScoreUpdates) -> None:
        self._versions[fingerprint] += 1
        for listener in list(self._listeners.get(fingerprint, [])):
            try:
                listener(fingerprint, updates)
            except Exception:
                logger.exception("Score update listener failed for %s", fingerprint[:12])


class RescoringOverlay:
    """Asks the oracle to rescore the top-k matches without blocking the caller."""

    def __init__(
        self,
        settings: Settings,
        registry: CtgovClient,
        oracle: ScoringOracle,
        cache: AIScoreCache,
        bus: ScoreUpdateBus | None = None,
    ):
        self.settings = settings
        self.registry = registry
        self.oracle = oracle
        self.cache = cache
        self.bus = bus or ScoreUpdateBus()

    async def score_trial(
        self, trial_id: str, profile: NormalizedProfile, fingerprint: str
    ) -> tuple[AIScoreCacheEntry | None, bool]:
        """Scores one trial; returns (entry, fetched from the network)."""
        cached = await self.cache.aget(fingerprint, trial_id)
        if cached is not None:
            logger.debug("AI score cache hit for %s", trial_id)
            return cached, False
        if not self.oracle.configured:
            return None, False

        detail = await self.registry.get_by_identifier(trial_id)
        if not detail.ok or not detail.value:
            logger.warning("No detail for %s (%s); skipping rescoring", trial_id, detail.error)
            return None, False

        prompt = build_scoring_prompt(profile, detail.value)
        result = await self.oracle.score(profile, trial_id, detail.value, prompt)
        if not result.ok:
            logger.info("Oracle gave no usable score for %s: %s %s", trial_id, result.error.value, result.detail)
            return None, False
        entry = await self.cache.aset(fingerprint, trial_id, result.value.score, result.value.rationale)
        return entry, True

    async def rescore(
        self, trial_ids: list[str], profile: NormalizedProfile, fingerprint: str
    ) -> ScoreUpdates:
        """Runs the workers over `trial_ids` and returns every score obtained.

        Worker n handles indices n, n + workers, n + 2 * workers and so on,
        so no item is scored twice and none is skipped.
        """
        workers = max(1, self.settings.rescoring_workers)
        scores: ScoreUpdates = {}
        fresh: ScoreUpdates = {}

        async def worker(start: int) -> None:
            for index in range(start, len(trial_ids), workers):
                trial_id = trial_ids[index]
                try:
                    entry, fetched = await self.score_trial(trial_id, profile, fingerprint)
                except Exception:
                    logger.exception("Rescoring %s failed", trial_id)
                    continue
                if entry is None:
                    continue
                scores[trial_id] = entry
                if fetched:
                    fresh[trial_id] = entry

        await asyncio.gather(*(worker(n) for n in range(min(workers, len(trial_ids)))))
        if fresh:
            logger.info("Cached %d refined score(s) for profile %s", len(fresh), fingerprint[:12])
            self.bus.publish(fingerprint, fresh)
        return scores

    def refine_top_k(
        self,
        ranked: list[RankedMatch],
        profile: NormalizedProfile,
        fingerprint: str,
        k: int | None = None,
    ) -> tuple[list[RankedMatch], asyncio.Task]:
        """Returns the heuristic order now and a task that refines the top k.

        Must be called from a running event loop. The task result maps
        trial id to cache entry.
        """
        ordered = rank_matches(ranked)
        top = ordered[: k if k is not None else self.settings.rescoring_top_k]
        task = asyncio.create_task(
            self.rescore([m.trial_id for m in top], profile, fingerprint),
            name=f"rescore-{fingerprint[:12]}",
        )
        return ordered, task
