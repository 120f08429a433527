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
"""Progressive query relaxation against the trial registry."""

import asyncio
import logging
from dataclasses import dataclass, field

from py_trial_match.config import Settings
from py_trial_match.geo.states import normalize_location
from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.scoring import GeoResult
from py_trial_match.models.trial import ScorableTrial
from py_trial_match.query import build_loose_query, build_smart_query
from py_trial_match.registry.ctgov import CtgovClient, RegistryQuery, Study
from py_trial_match.registry.mapping import nct_id, overall_status, study_to_scorable
from py_trial_match.scoring.tokenizer import is_recruiting_like, tokenize

logger = logging.getLogger(__name__)

NOTES_QUERY_TOKENS = 3


@dataclass
class CandidateSearch:
    """Outcome of `find_candidates`.

    `exhausted` is True when every strategy came back empty; that is a
    normal outcome, not an error.
    """

    trials: list[ScorableTrial] = field(default_factory=list)
    strategy: str | None = None
    attempted: list[str] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return not self.trials


@dataclass(frozen=True)
class _Step:
    name: str
    cond: str
    with_geo: bool
    with_status: bool
    radii: tuple[float, ...] = ()
    require_terms: str = ""


def radius_sequence(start: float, escalation: list[float]) -> list[float]:
    """`start` followed by every escalation step wider than it."""
    return [start] + [r for r in escalation if r > start]


def matches_terms(trial: ScorableTrial, terms: str) -> bool:
    """True when every word of `terms` appears in the title or conditions."""
    tokens = tokenize(terms)
    if not tokens:
        return True
    haystack = " ".join([trial.title, *trial.conditions]).lower()
    return all(token in haystack for token in tokens)


class QueryFallbackOrchestrator:
    """Finds registry candidates, relaxing constraints until something matches.

    Steps run in order and stop at the first that yields at least one
    recruiting trial:

    1. geo filter with status filter, widening the radius step by step
    2. geo filter without status filter
    3. location text with status filter
    4. condition alone with geo and status, when notes changed the query
    5. location text without status filter
    6. any recruiting trial near the user, kept only if relevant

    Within a step the strict (AND) query runs first and the loose (OR) form
    only when the strict one found nothing. Geo steps are skipped when the
    location could not be resolved.
    """

    def __init__(self, settings: Settings, registry: CtgovClient):
        self.settings = settings
        self.registry = registry

    def build_queries(self, profile: NormalizedProfile) -> tuple[str, str]:
        """Returns (main query text, condition-only query text)."""
        condition = (profile.primary_condition or "").strip()
        note_terms = " ".join(tokenize(profile.additional_notes)[:NOTES_QUERY_TOKENS])
        main = " ".join(p for p in (condition, note_terms) if p)
        return main, condition

    def plan(self, profile: NormalizedProfile, geo: GeoResult | None) -> list[_Step]:
        main, primary = self.build_queries(profile)
        has_geo = geo is not None
        start = profile.travel_radius_mi or self.settings.default_radius_mi
        radii = tuple(radius_sequence(start, self.settings.radius_escalation_mi))

        steps = []
        if has_geo:
            steps.append(_Step("geo_status", main, True, True, radii))
            steps.append(_Step("geo_any_status", main, True, False, (start,)))
        steps.append(_Step("location_status", main, False, True))
        if has_geo and primary and primary != main:
            steps.append(_Step("primary_geo_status", primary, True, True, (start,)))
        steps.append(_Step("location_any_status", main, False, False))
        steps.append(
            _Step("nearby_recruiting", "", has_geo, True, (start,), require_terms=primary or main)
        )
        return steps

    async def find_candidates(
        self,
        profile: NormalizedProfile,
        geo: GeoResult | None = None,
        page_size: int | None = None,
    ) -> CandidateSearch:
        """Runs the strategy sequence for `profile`.

        Args:
            profile: The normalized profile.
            geo: Resolved location preference; None skips geo steps.
            page_size: Registry page size per query.
        """
        location_text = normalize_location(profile.location_preference) or (
            geo.label if geo else ""
        )
        search = CandidateSearch()
        for step in self.plan(profile, geo):
            search.attempted.append(step.name)
            trials = await self._run_step(step, geo, location_text, page_size)
            if trials:
                logger.info("Strategy %s found %d candidate(s)", step.name, len(trials))
                search.trials = trials
                search.strategy = step.name
                return search
            logger.info("Strategy %s found nothing; relaxing", step.name)
        logger.info("All strategies exhausted without candidates")
        return search

    async def _run_step(
        self,
        step: _Step,
        geo: GeoResult | None,
        location_text: str,
        page_size: int | None,
    ) -> list[ScorableTrial]:
        queries = [build_smart_query(step.cond)]
        loose = build_loose_query(step.cond)
        if loose != queries[0]:
            queries.append(loose)

        for radius in step.radii or (None,):
            for cond in queries:
                base = RegistryQuery(cond=cond, page_size=page_size)
                if step.with_geo and geo is not None:
                    base = base.model_copy(
                        update={
                            "latitude": geo.latitude,
                            "longitude": geo.longitude,
                            "radius_mi": radius,
                        }
                    )
                else:
                    base = base.model_copy(update={"location": location_text})
                studies = await self._fetch(base, step.with_status)
                trials = self._collect(studies, step.require_terms)
                if trials:
                    return trials
        return []

    async def _fetch(self, query: RegistryQuery, with_status: bool) -> list[Study]:
        if with_status:
            queries = [
                query.model_copy(update={"status": status})
                for status in self.settings.recruiting_statuses
            ]
        else:
            queries = [query]
        results = await asyncio.gather(*(self.registry.search(q) for q in queries))
        studies: list[Study] = []
        for q, result in zip(queries, results):
            if result.ok:
                studies.extend(result.value or [])
            else:
                logger.warning(
                    "Registry query %r (status=%s) treated as empty: %s",
                    q.cond,
                    q.status or "any",
                    result.error.value,
                )
        return studies

    def _collect(self, studies: list[Study], require_terms: str) -> list[ScorableTrial]:
        """Dedupes by identifier and keeps only recruiting-like studies."""
        seen: set[str] = set()
        trials = []
        for study in studies:
            identifier = nct_id(study)
            if not identifier or identifier in seen:
                continue
            seen.add(identifier)
            if not is_recruiting_like(overall_status(study)):
                continue
            trial = study_to_scorable(study)
            if trial is None or not matches_terms(trial, require_terms):
                continue
            trials.append(trial)
        return trials
