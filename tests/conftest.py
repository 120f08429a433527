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
from pathlib import Path
from typing import Any

import pytest

from py_trial_match.cache.local import MemoryCacheStore
from py_trial_match.config import Settings
from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.trial import ScorableTrial


def build_study(
    nct_id: str,
    title: str = "",
    status: str = "RECRUITING",
    conditions: tuple[str, ...] = (),
    sites: tuple[tuple[str, str], ...] = (),
    phases: tuple[str, ...] = (),
    min_age: str | None = None,
    max_age: str | None = None,
    sex: str | None = None,
    summary: str = "",
    criteria: str = "",
    sponsor: str = "",
) -> dict[str, Any]:
    """A registry study document shaped like the v2 API returns it."""
    eligibility: dict[str, Any] = {}
    if min_age is not None:
        eligibility["minimumAge"] = min_age
    if max_age is not None:
        eligibility["maximumAge"] = max_age
    if sex is not None:
        eligibility["sex"] = sex
    if criteria:
        eligibility["eligibilityCriteria"] = criteria
    return {
        "protocolSection": {
            "identificationModule": {"nctId": nct_id, "briefTitle": title},
            "statusModule": {"overallStatus": status},
            "conditionsModule": {"conditions": list(conditions)},
            "designModule": {"phases": list(phases)},
            "contactsLocationsModule": {
                "locations": [
                    {"city": city, "state": state, "country": "United States"}
                    for city, state in sites
                ]
            },
            "sponsorCollaboratorsModule": {"leadSponsor": {"name": sponsor}},
            "descriptionModule": {"briefSummary": summary},
            "eligibilityModule": eligibility,
        }
    }


@pytest.fixture
def make_study():
    return build_study


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the network-facing defaults that matter in tests."""
    return Settings(
        cache_dir=tmp_path / "cache",
        cache_backend="memory",
        ai_scorer_url=None,
        openai_api_key=None,
        trusted_context=False,
        webhook_retry_delay=0,
    )


@pytest.fixture
def store() -> MemoryCacheStore:
    return MemoryCacheStore()


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_profile():
    def _make(**fields: Any) -> NormalizedProfile:
        return NormalizedProfile(**fields)

    return _make


@pytest.fixture
def make_trial():
    def _make(trial_id: str = "NCT00000001", **fields: Any) -> ScorableTrial:
        fields.setdefault("title", "Neuropathic Pain Study")
        fields.setdefault("status", "Recruiting")
        return ScorableTrial(trial_id=trial_id, **fields)

    return _make
