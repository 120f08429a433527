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
"""Entry point that turns a raw profile into a ranked, explained trial list."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx

from py_trial_match.cache.base import BaseCacheStore
from py_trial_match.cache.entries import (
    AIScoreCache,
    GeocodeCache,
    WebhookHealthCache,
    create_cache_store,
)
from py_trial_match.catalog import catalog_to_scorable, default_catalog
from py_trial_match.config import Settings
from py_trial_match.eligibility import detailed_exclusion, passes_eligibility
from py_trial_match.geo.distance import haversine_miles
from py_trial_match.geo.geocoder import GeocodeResolver
from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.scoring import GeoResult, RankedMatch
from py_trial_match.models.trial import CatalogTrial, ScorableTrial
from py_trial_match.oracle import ScoringOracle
from py_trial_match.orchestrator import QueryFallbackOrchestrator
from py_trial_match.profile import RawProfile, normalize
from py_trial_match.registry import mapping
from py_trial_match.registry.ctgov import CtgovClient
from py_trial_match.rescoring import RescoringOverlay, ScoreUpdateBus
from py_trial_match.scoring.catalog import score_catalog_trial
from py_trial_match.scoring.ranking import rank_matches
from py_trial_match.scoring.rationale import build_rationale
from py_trial_match.scoring.registry import score_registry_trial

logger = logging.getLogger(__name__)

FALLBACK_SIMILAR_LIMIT = 10
NO_MATCHES_MESSAGE = (
    "No matching trials found. Try a wider travel radius, a nearby city, "
    "or a simpler description of your condition."
)
NO_MATCHES_IN_RADIUS_MESSAGE = (
    "No trials found within {radius}. Similar trials outside your radius are listed instead."
)


@dataclass
class MatchReport:
    """Everything a caller needs to render one matching request."""

    matches: list[RankedMatch]
    fingerprint: str
    profile: NormalizedProfile
    location: GeoResult | None = None
    strategy: str | None = None
    exhausted: bool = False
    no_results_within_radius: bool = False
    fallback_similar: list[RankedMatch] = field(default_factory=list)
    message: str | None = None
    rescoring: asyncio.Task | None = None


class MatchingEngine:
    def __init__(
        self,
        settings: Settings,
        geocoder: GeocodeResolver,
        registry: CtgovClient,
        overlay: RescoringOverlay,
        ai_cache: AIScoreCache,
        orchestrator: QueryFallbackOrchestrator | None = None,
        catalog: list[CatalogTrial] | None = None,
    ):
        self.settings = settings
        self.geocoder = geocoder
        self.registry = registry
        self.overlay = overlay
        self.ai_cache = ai_cache
        self.orchestrator = orchestrator or QueryFallbackOrchestrator(settings, registry)
        self.catalog = catalog
        # Latest rescoring task per fingerprint, plus every task not yet finished.
        self._rescoring: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: BaseCacheStore | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "MatchingEngine":
        """Wires the default collaborators around one cache store.

        Args:
            settings: Engine settings.
            store: Cache backend; built from settings when omitted.
            client: Shared HTTP client, mainly for tests. Each component
                opens its own when omitted.
        """
        store = store or create_cache_store(settings)
        ai_cache = AIScoreCache(store, ttl_seconds=settings.ai_score_ttl_seconds)
        health = WebhookHealthCache(store, suppress_seconds=settings.webhook_unhealthy_seconds)
        registry = CtgovClient(settings, client=client)
        oracle = ScoringOracle.from_settings(settings, health, client=client)
        return cls(
            settings=settings,
            geocoder=GeocodeResolver(settings, GeocodeCache(store), client=client),
            registry=registry,
            overlay=RescoringOverlay(settings, registry, oracle, ai_cache, ScoreUpdateBus()),
            ai_cache=ai_cache,
        )

    @property
    def bus(self) -> ScoreUpdateBus:
        return self.overlay.bus

    async def aclose(self) -> None:
        """Cancels outstanding rescoring, then closes the HTTP clients."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._rescoring.clear()
        await self.geocoder.aclose()
        await self.registry.aclose()
        await self.overlay.oracle.aclose()

    async def __aenter__(self) -> "MatchingEngine":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _supersede(self, fingerprint: str) -> None:
        """Cancels background rescoring started for other fingerprints."""
        for other, task in list(self._rescoring.items()):
            if other != fingerprint:
                if not task.done():
                    logger.debug("Cancelling stale rescoring for %s", other[:12])
                    task.cancel()
                del self._rescoring[other]

    async def match(
        self, raw_profile: RawProfile, limit: int = 50, today: date | None = None
    ) -> MatchReport:
        """Ranks registry trials for `raw_profile`.

        Never raises for network problems; the worst case is an empty list
        with a coaching message.
        """
        profile, fingerprint = normalize(raw_profile, today=today)
        self._supersede(fingerprint)

        geo = None
        if profile.location_preference:
            geo = await self.geocoder.resolve(profile.location_preference)
            if geo is None:
                logger.info("Location %r not resolved; geo strategies skipped", profile.location_preference)

        page_size = max(10, min(100, limit))
        search = await self.orchestrator.find_candidates(profile, geo, page_size=page_size)
        trials = [t for t in search.trials if passes_eligibility(profile, t)]
        if len(trials) < len(search.trials):
            logger.info("Eligibility gate removed %d trial(s)", len(search.trials) - len(trials))

        distances = await self._nearest_sites(trials, geo) if geo else {}
        matches = []
        for trial in trials:
            label, distance = distances.get(trial.trial_id, (None, None))
            if label:
                trial = trial.model_copy(update={"location": label})
            matches.append(self._ranked(trial, profile, distance))

        report = MatchReport(
            matches=matches,
            fingerprint=fingerprint,
            profile=profile,
            location=geo,
            strategy=search.strategy,
            exhausted=search.exhausted,
        )
        if profile.travel_radius_mi is not None and geo is not None:
            self._enforce_radius(report, profile.travel_radius_mi)
        if report.matches:
            report.matches = await self._detail_gate(rank_matches(report.matches), profile)

        await self.apply_cached_scores(report.matches, fingerprint)
        if report.matches:
            self._start_rescoring(report, profile, min(self.settings.rescoring_top_k, limit))
        report.matches = report.matches[:limit]

        if report.no_results_within_radius:
            report.message = NO_MATCHES_IN_RADIUS_MESSAGE.format(radius=profile.travel_radius)
        elif not report.matches:
            report.message = NO_MATCHES_MESSAGE
        return report

    def _start_rescoring(self, report: MatchReport, profile: NormalizedProfile, k: int) -> None:
        """Starts background rescoring, or reuses the task still running for
        the same fingerprint so no trial is sent to the oracle twice."""
        running = self._rescoring.get(report.fingerprint)
        if running is not None and not running.done():
            logger.debug("Rescoring for %s already running; reusing it", report.fingerprint[:12])
            report.matches = rank_matches(report.matches)
            report.rescoring = running
            return
        ordered, task = self.overlay.refine_top_k(report.matches, profile, report.fingerprint, k=k)
        report.matches = ordered
        report.rescoring = task
        self._rescoring[report.fingerprint] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _detail_gate(
        self, matches: list[RankedMatch], profile: NormalizedProfile
    ) -> list[RankedMatch]:
        """Re-checks the top matches against their full eligibility criteria.

        Trials whose detail cannot be fetched stay in the list.
        """
        top = matches[: max(0, self.settings.eligibility_detail_top_n)]
        if not top:
            return matches
        semaphore = asyncio.Semaphore(max(1, self.settings.eligibility_detail_concurrency))

        async def exclusion(match: RankedMatch) -> str | None:
            async with semaphore:
                detail = await self.registry.get_by_identifier(match.trial_id)
            if not detail.ok or not detail.value:
                return None
            criteria = mapping.eligibility_criteria(detail.value)
            return detailed_exclusion(profile, match.trial, criteria)

        reasons = await asyncio.gather(*(exclusion(m) for m in top))
        removed = set()
        for match, reason in zip(top, reasons):
            if reason:
                logger.info("Eligibility criteria exclude %s: %s", match.trial_id, reason)
                removed.add(match.trial_id)
        return [m for m in matches if m.trial_id not in removed]

    def _ranked(
        self, trial: ScorableTrial, profile: NormalizedProfile, distance: float | None
    ) -> RankedMatch:
        rationale = build_rationale(trial, profile)
        heuristic = score_registry_trial(trial, profile).model_copy(update={"rationale": rationale})
        radius = profile.travel_radius_mi
        return RankedMatch(
            trial=trial,
            score=heuristic.score,
            heuristic=heuristic,
            rationale=rationale,
            distance_mi=distance,
            within_radius=(distance <= radius) if distance is not None and radius is not None else None,
        )

    async def _nearest_sites(
        self, trials: list[ScorableTrial], geo: GeoResult
    ) -> dict[str, tuple[str, float | None]]:
        """Maps trial id to (nearest site label, distance in miles)."""
        labels = sorted(
            {label for t in trials for label in (t.locations or [t.location]) if label}
        )
        resolved = await asyncio.gather(*(self.geocoder.resolve(label) for label in labels))
        coordinates = dict(zip(labels, resolved))

        nearest: dict[str, tuple[str, float | None]] = {}
        for trial in trials:
            best_label, best_distance = "", math.inf
            for label in trial.locations or [trial.location]:
                site = coordinates.get(label)
                if site is None:
                    best_label = best_label or label
                    continue
                distance = haversine_miles(geo.latitude, geo.longitude, site.latitude, site.longitude)
                if distance < best_distance:
                    best_label, best_distance = label, distance
            if best_label:
                nearest[trial.trial_id] = (
                    best_label,
                    round(best_distance, 1) if best_distance != math.inf else None,
                )
        return nearest

    def _enforce_radius(self, report: MatchReport, radius_mi: float) -> None:
        within = [
            m for m in report.matches if m.distance_mi is not None and m.distance_mi <= radius_mi
        ]
        if within:
            report.matches = within
            return
        report.no_results_within_radius = True
        report.fallback_similar = sorted(
            report.matches,
            key=lambda m: (m.distance_mi if m.distance_mi is not None else math.inf, -m.score),
        )[:FALLBACK_SIMILAR_LIMIT]
        report.matches = []

    async def apply_cached_scores(self, matches: list[RankedMatch], fingerprint: str) -> int:
        """Overlays fresh oracle scores onto `matches`; returns how many changed."""
        applied = 0
        for match in matches:
            entry = await self.ai_cache.aget(fingerprint, match.trial_id)
            if entry is None:
                continue
            match.score = entry.score
            match.ai_rationale = entry.rationale
            match.rescored = True
            applied += 1
        return applied

    async def refresh(self, report: MatchReport) -> MatchReport:
        """Re-reads cached oracle scores into the report and re-sorts it."""
        if await self.apply_cached_scores(report.matches, report.fingerprint):
            report.matches = rank_matches(report.matches)
        return report

    @staticmethod
    def summary(report: MatchReport, n: int = 3) -> list[RankedMatch]:
        """The top `n` matches for the dashboard."""
        return report.matches[:n]

    def match_catalog(self, raw_profile: RawProfile, today: date | None = None) -> list[RankedMatch]:
        """Ranks the static catalog with the catalog policy, highest score first."""
        profile, _ = normalize(raw_profile, today=today)
        trials = self.catalog if self.catalog is not None else list(default_catalog())
        matches = []
        for entry in trials:
            trial = catalog_to_scorable(entry)
            heuristic = score_catalog_trial(trial, profile)
            matches.append(
                RankedMatch(
                    trial=trial,
                    score=heuristic.score,
                    heuristic=heuristic,
                    rationale=build_rationale(trial, profile),
                )
            )
        return sorted(matches, key=lambda m: -m.score)
