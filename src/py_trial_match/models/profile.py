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
"""Pydantic models for the normalized patient profile."""

from pydantic import BaseModel, ConfigDict, Field


class ProfileCompletion(BaseModel):
    """Account-setup completion, as shown on the patient dashboard.

    Each section is capped: basics 20, consent 20, documents 20,
    notifications 5, health profile 35.
    """

    basics: int = 0
    consent: int = 0
    documents: int = 0
    notifications: int = 0
    health_profile: int = 0
    percent: int = 0


class NormalizedProfile(BaseModel):
    """The canonical scoring input derived once per matching request."""

    model_config = ConfigDict(frozen=True)

    age: int | None = None
    gender: str | None = None
    primary_condition: str | None = None
    medications: frozenset[str] = Field(default_factory=frozenset)
    allergies: frozenset[str] = Field(default_factory=frozenset)
    additional_notes: str | None = None
    location_preference: str | None = None
    travel_radius: str | None = Field(
        default=None, description="Radius as entered, e.g. '50mi' or '80km'."
    )
    travel_radius_mi: float | None = None
    completion: ProfileCompletion = Field(default_factory=ProfileCompletion)

    @property
    def completeness_bonus(self) -> int:
        """Up to 10 points, proportional to the health-profile section."""
        return int(self.completion.health_profile / 35 * 10 + 0.5)
