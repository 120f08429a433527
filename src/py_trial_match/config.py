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
"""Manages the application's configuration using Pydantic."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Manages configuration for the matching engine.

    Reads settings from environment variables with the prefix 'TRIALMATCH_'.
    """

    model_config = SettingsConfigDict(env_prefix="TRIALMATCH_", extra="ignore")

    # ClinicalTrials.gov API v2
    registry_base_url: str = "https://clinicaltrials.gov/api/v2"
    registry_page_size: int = 50
    recruiting_statuses: list[str] = ["RECRUITING", "ENROLLING_BY_INVITATION"]

    # Geocoding providers
    zip_lookup_url: str = "https://api.zippopotam.us/us"
    geocoder_url: str = "https://nominatim.openstreetmap.org/search"
    geocoder_user_agent: str = "py-trial-match/0.1.0 (geocoder)"
    geocoder_candidate_limit: int = 10

    # Network timeouts, in seconds
    request_timeout: float = 15.0
    oracle_timeout: float = 20.0

    # Query fallback
    default_radius_mi: float = 50.0
    radius_escalation_mi: list[float] = [200.0, 300.0, 500.0, 1000.0]

    # Scoring oracle
    ai_scorer_url: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    # None keeps the SDK default endpoint.
    openai_base_url: str | None = None
    # Direct model calls carry the API key, so they only run server-side.
    trusted_context: bool = False

    # Rescoring overlay
    rescoring_top_k: int = 15
    rescoring_workers: int = 3
    ai_score_ttl_seconds: float = 7 * 24 * 60 * 60
    webhook_unhealthy_seconds: float = 10 * 60
    webhook_retry_delay: float = 0.5

    # Detail-based eligibility gate over the top of the ranked list
    eligibility_detail_top_n: int = 40
    eligibility_detail_concurrency: int = 10

    # Cache store: "memory", "file" or "postgres"
    cache_backend: str = "memory"
    cache_dir: Path = Path.home() / ".py_trial_match_cache"
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    # S105: Hardcoded password is used for local development.
    # In production, this should be set via environment variables.
    db_password: str = "postgres"
    db_name: str = "trialmatch"
    db_connect_timeout: int = 5
    cache_schema: str = "trialmatch"
    cache_table: str = "cache_entries"

    @computed_field
    @property
    def db_connection_string(self) -> str:
        """Construct the libpq connection string from individual settings."""
        return (
            f"host='{self.db_host}' port='{self.db_port}' "
            f"user='{self.db_user}' password='{self.db_password}' "
            f"dbname='{self.db_name}'"
        )


def load_config(config_file: str | Path | None) -> dict[str, Any]:
    """Loads configuration overrides from a YAML file."""
    if config_file:
        try:
            with open(config_file, "r") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_file)
    return {}


# Instantiate the settings so it can be imported directly
settings = Settings()
