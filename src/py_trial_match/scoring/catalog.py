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
"""Scoring policy for the curated static catalog."""

from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.scoring import ScoreBreakdown, ScoreResult
from py_trial_match.models.trial import ScorableTrial
from py_trial_match.scoring.tokenizer import (
    clamp,
    intersect_count,
    round_half_up,
    tokenize,
    tokenize_all,
)

STATUS_BASE = {"Now Recruiting": 20, "Active": 12}
DEFAULT_BASE = 5
CONDITION_WEIGHT = 0.40
UNKNOWN_AGE_SCORE = 15


def age_fit(age: int | None, min_age: float | None, max_age: float | None) -> int:
    """30 inside the band, 22 within 2 years of it, 15 within 5, else 0."""
    if age is None:
        return UNKNOWN_AGE_SCORE
    low = min_age if min_age is not None else float("-inf")
    high = max_age if max_age is not None else float("inf")
    if low <= age <= high:
        return 30
    distance = low - age if age < low else age - high
    if distance <= 2:
        return 22
    if distance <= 5:
        return 15
    return 0


def gender_fit(gender: str | None, restriction: str | None) -> int:
    patient = (gender or "").strip().lower()
    if not patient:
        return 5
    restriction = (restriction or "all").lower()
    if restriction == "all":
        return 10
    if restriction == "female" and patient.startswith("fem"):
        return 10
    if restriction == "male" and patient.startswith("male"):
        return 10
    return 0


def score_catalog_trial(trial: ScorableTrial, profile: NormalizedProfile) -> ScoreResult:
    """Weighted sum of status, condition, age, gender, medication and allergy signals."""
    trial_tokens = tokenize(trial.corpus)
    condition_tokens = tokenize(profile.primary_condition)
    notes_tokens = tokenize(profile.additional_notes)

    base = STATUS_BASE.get(trial.status, DEFAULT_BASE)

    overlap = intersect_count(condition_tokens, trial_tokens) + 0.5 * intersect_count(
        notes_tokens, trial_tokens
    )
    ratio = clamp(overlap / max(1, len(condition_tokens)) * 100)
    condition = round_half_up(CONDITION_WEIGHT * ratio)

    medications = int(
        clamp(intersect_count(tokenize_all(sorted(profile.medications)), trial_tokens) * 3, 0, 10)
    )
    allergies = int(
        clamp(-5 * intersect_count(tokenize_all(sorted(profile.allergies)), trial_tokens), -10, 0)
    )

    breakdown = ScoreBreakdown(
        base=base,
        condition=condition,
        age=age_fit(profile.age, trial.min_age, trial.max_age),
        gender=gender_fit(profile.gender, trial.sex),
        medications=medications,
        allergies=allergies,
        completeness=profile.completeness_bonus,
    )
    return ScoreResult(score=int(clamp(breakdown.total())), breakdown=breakdown)
