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
"""Scoring policy for registry search summaries.

Registry summaries carry only a title, conditions and site list, so this
policy leans harder on condition overlap and has no age-band component.
"""

from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.scoring import ScoreBreakdown, ScoreResult
from py_trial_match.models.trial import ScorableTrial
from py_trial_match.scoring.tokenizer import (
    clamp,
    intersect_count,
    is_recruiting_like,
    round_half_up,
    tokenize,
    tokenize_all,
)

RECRUITING_BASE = 25
OTHER_BASE = 10
CONDITION_WEIGHT = 0.60
LOCATION_POINTS_PER_TOKEN = 5
LOCATION_CAP = 15


def score_registry_trial(trial: ScorableTrial, profile: NormalizedProfile) -> ScoreResult:
    trial_tokens = tokenize(trial.title) + tokenize_all(trial.conditions)
    condition_tokens = tokenize(profile.primary_condition)
    notes_tokens = tokenize(profile.additional_notes)

    base = RECRUITING_BASE if is_recruiting_like(trial.status) else OTHER_BASE

    overlap = intersect_count(trial_tokens, condition_tokens + notes_tokens)
    ratio = clamp(overlap / max(1, len(condition_tokens) + len(notes_tokens)) * 100)
    condition = round_half_up(CONDITION_WEIGHT * ratio)

    site_tokens = tokenize(trial.location)
    location_overlap = intersect_count(
        site_tokens, notes_tokens + tokenize(profile.location_preference)
    )
    location = int(clamp(location_overlap * LOCATION_POINTS_PER_TOKEN, 0, LOCATION_CAP))

    breakdown = ScoreBreakdown(
        base=base,
        condition=condition,
        location=location,
        completeness=profile.completeness_bonus,
    )
    return ScoreResult(score=int(clamp(breakdown.total())), breakdown=breakdown)
