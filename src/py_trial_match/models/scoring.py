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
"""Pydantic models for scores and ranked results."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from py_trial_match.models.trial import ScorableTrial


class ScoreBreakdown(BaseModel):
    """Weighted components; each one is clamped before summing."""

    base: int = 0
    condition: int = 0
    age: int = 0
    gender: int = 0
    medications: int = 0
    allergies: int = 0
    location: int = 0
    completeness: int = 0

    def total(self) -> int:
        return (
            self.base
            + self.condition
            + self.age
            + self.gender
            + self.medications
            + self.allergies
            + self.location
            + self.completeness
        )


class ScoreResult(BaseModel):
    score: int = Field(..., ge=0, le=100)
    breakdown: ScoreBreakdown
    rationale: str | None = None


class RankedMatch(BaseModel):
    """A scored trial as returned to the caller.

    Only `score`, `rationale` and `ai_rationale` change after creation, when
    a refined oracle score becomes available for the same fingerprint.
    """

    trial: ScorableTrial
    score: int
    heuristic: ScoreResult
    rationale: str | None = None
    ai_rationale: str | None = None
    rescored: bool = False
    distance_mi: float | None = None
    within_radius: bool | None = None

    @property
    def trial_id(self) -> str:
        return self.trial.trial_id


class GeoResult(BaseModel):
    latitude: float
    longitude: float
    label: str = ""


class AIScoreCacheEntry(BaseModel):
    score: int = Field(..., ge=0, le=100)
    rationale: str | None = None
    timestamp: float


class WebhookHealthEntry(BaseModel):
    healthy: bool
    timestamp: float


def utc_timestamp() -> float:
    """Seconds since the epoch, used as the default cache clock."""
    return datetime.now(timezone.utc).timestamp()
