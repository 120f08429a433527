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
import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from py_trial_match.cli import amatch, app, build_settings
from py_trial_match.engine import MatchReport
from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.scoring import GeoResult, RankedMatch, ScoreBreakdown, ScoreResult

pytestmark = pytest.mark.unit

runner = CliRunner()


@pytest.fixture
def profile_file(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text(
        json.dumps(
            {
                "health_profile": {"age": 50, "primary_condition": "chronic neuropathy pain"},
                "eligibility": {"loc": "14301", "radius": "50mi"},
            }
        )
    )
    return path


def test_build_settings_reads_config_file(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("rescoring_top_k: 5\ncache_backend: memory\n")
    settings = build_settings(str(config_file))
    assert settings.rescoring_top_k == 5


@pytest.mark.asyncio
async def test_amatch_catalog(profile_file, monkeypatch):
    monkeypatch.setenv("TRIALMATCH_CACHE_BACKEND", "memory")
    result = await amatch(profile_file, limit=2, catalog=True)
    assert result["source"] == "catalog"
    assert len(result["matches"]) == 2
    assert result["matches"][0]["trial_id"] == "NCT06084521"


@pytest.mark.asyncio
@patch("py_trial_match.cli.MatchingEngine")
async def test_amatch_registry_waits_for_rescoring(MockEngine, profile_file, make_trial):
    heuristic = ScoreResult(score=70, breakdown=ScoreBreakdown(base=70))
    match = RankedMatch(
        trial=make_trial("NCT01"), score=70, heuristic=heuristic, rationale="Recruiting", distance_mi=12.3
    )

    async def finished():
        return {}

    report = MatchReport(
        matches=[match],
        fingerprint="abc",
        profile=NormalizedProfile(),
        location=GeoResult(latitude=43.1, longitude=-79.0),
        strategy="geo_status",
        rescoring=asyncio.create_task(finished()),
    )
    engine = MockEngine.from_settings.return_value.__aenter__.return_value
    engine.match = AsyncMock(return_value=report)
    engine.refresh = AsyncMock()

    result = await amatch(profile_file, limit=10, wait=True)

    engine.match.assert_awaited_once()
    assert engine.match.call_args.kwargs["limit"] == 10
    engine.refresh.assert_awaited_once_with(report)
    assert result["source"] == "registry"
    assert result["strategy"] == "geo_status"
    assert result["matches"][0] == {
        "trial_id": "NCT01",
        "title": "Neuropathic Pain Study",
        "status": "Recruiting",
        "phase": "",
        "location": "",
        "score": 70,
        "heuristic_score": 70,
        "rationale": "Recruiting",
        "ai_rationale": None,
        "rescored": False,
        "distance_mi": 12.3,
        "within_radius": None,
    }


def test_match_command_prints_json(profile_file):
    payload = {"source": "catalog", "matches": []}
    with patch("py_trial_match.cli.amatch", new=AsyncMock(return_value=payload)) as mock_amatch:
        result = runner.invoke(app, ["match", str(profile_file), "--catalog", "--limit", "3"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == payload
    mock_amatch.assert_awaited_once_with(
        profile_file, limit=3, catalog=True, wait=False, config_file=None
    )


def test_match_command_missing_file(tmp_path):
    result = runner.invoke(app, ["match", str(tmp_path / "absent.json")])
    assert result.exit_code != 0


def test_geocode_command_found():
    geo = GeoResult(latitude=43.0962, longitude=-79.0377, label="Niagara Falls, NY")
    with patch("py_trial_match.cli.ageocode", new=AsyncMock(return_value=geo)):
        result = runner.invoke(app, ["geocode", "14301"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["label"] == "Niagara Falls, NY"


def test_geocode_command_not_found():
    with patch("py_trial_match.cli.ageocode", new=AsyncMock(return_value=None)):
        result = runner.invoke(app, ["geocode", "Atlantis"])
    assert result.exit_code == 1
    assert "not found" in result.stdout
