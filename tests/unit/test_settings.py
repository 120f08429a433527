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

from py_trial_match.config import Settings, load_config

pytestmark = pytest.mark.unit


def test_defaults():
    settings = Settings()
    assert settings.registry_base_url == "https://clinicaltrials.gov/api/v2"
    assert settings.recruiting_statuses == ["RECRUITING", "ENROLLING_BY_INVITATION"]
    assert settings.rescoring_top_k == 15
    assert settings.rescoring_workers == 3
    assert settings.ai_score_ttl_seconds == 604800
    assert settings.webhook_unhealthy_seconds == 600
    assert settings.trusted_context is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("TRIALMATCH_DEFAULT_RADIUS_MI", "25")
    monkeypatch.setenv("TRIALMATCH_AI_SCORER_URL", "https://scorer.example.org/score")
    monkeypatch.setenv("TRIALMATCH_DB_HOST", "db.internal")
    settings = Settings()
    assert settings.default_radius_mi == 25.0
    assert settings.ai_scorer_url == "https://scorer.example.org/score"
    assert "host='db.internal'" in settings.db_connection_string


def test_radius_escalation_default():
    settings = Settings()
    assert settings.default_radius_mi == 50.0
    assert settings.radius_escalation_mi == [200.0, 300.0, 500.0, 1000.0]


def test_load_config_reads_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("registry_page_size: 20\nrescoring_workers: 5\n")
    overrides = load_config(config_file)
    assert overrides == {"registry_page_size": 20, "rescoring_workers": 5}
    settings = Settings(**overrides)
    assert settings.registry_page_size == 20
    assert settings.rescoring_workers == 5


def test_load_config_missing_file_warns(tmp_path, caplog):
    assert load_config(tmp_path / "absent.yaml") == {}
    assert "Config file not found" in caplog.text


def test_load_config_empty_file(tmp_path):
    config_file = tmp_path / "empty.yaml"
    config_file.write_text("")
    assert load_config(config_file) == {}
    assert load_config(None) == {}
