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
import logging
from pathlib import Path
from typing import Any

import typer

from py_trial_match.cache.entries import GeocodeCache, create_cache_store
from py_trial_match.config import Settings, load_config
from py_trial_match.engine import MatchingEngine
from py_trial_match.geo.geocoder import GeocodeResolver
from py_trial_match.models.scoring import GeoResult, RankedMatch
from py_trial_match.profile import FileProfileStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

app = typer.Typer(help="Match a health profile against clinical trials.")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def build_settings(config_file: str | None) -> Settings:
    """Environment settings, with YAML config keys taking precedence."""
    return Settings(**load_config(config_file))


def _match_to_dict(match: RankedMatch) -> dict[str, Any]:
    return {
        "trial_id": match.trial_id,
        "title": match.trial.title,
        "status": match.trial.status,
        "phase": match.trial.phase,
        "location": match.trial.location,
        "score": match.score,
        "heuristic_score": match.heuristic.score,
        "rationale": match.rationale,
        "ai_rationale": match.ai_rationale,
        "rescored": match.rescored,
        "distance_mi": match.distance_mi,
        "within_radius": match.within_radius,
    }


async def amatch(
    profile_file: Path,
    limit: int = 50,
    catalog: bool = False,
    wait: bool = False,
    config_file: str | None = None,
) -> dict[str, Any]:
    """Runs one matching request and returns a JSON-ready summary."""
    settings = build_settings(config_file)
    raw_profile = FileProfileStore(profile_file).get_current_profile()

    async with MatchingEngine.from_settings(settings) as engine:
        if catalog:
            matches = engine.match_catalog(raw_profile)[:limit]
            return {"source": "catalog", "matches": [_match_to_dict(m) for m in matches]}

        report = await engine.match(raw_profile, limit=limit)
        if wait and report.rescoring is not None:
            logger.info("Waiting for background rescoring to finish...")
            await report.rescoring
            await engine.refresh(report)
        return {
            "source": "registry",
            "fingerprint": report.fingerprint,
            "strategy": report.strategy,
            "exhausted": report.exhausted,
            "no_results_within_radius": report.no_results_within_radius,
            "message": report.message,
            "matches": [_match_to_dict(m) for m in report.matches],
            "fallback_similar": [_match_to_dict(m) for m in report.fallback_similar],
        }


async def ageocode(text: str, config_file: str | None = None) -> GeoResult | None:
    settings = build_settings(config_file)
    cache = GeocodeCache(create_cache_store(settings))
    async with GeocodeResolver(settings, cache) as resolver:
        return await resolver.resolve(text)


@app.command()
def match(
    profile_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON or YAML profile document."
    ),
    limit: int = typer.Option(50, help="Maximum number of matches to print."),
    catalog: bool = typer.Option(False, "--catalog", help="Rank the static catalog instead."),
    wait: bool = typer.Option(
        False, "--wait/--no-wait", help="Wait for oracle rescoring before printing."
    ),
    config_file: str = typer.Option(None, help="Path to YAML config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Ranks trials for the profile in PROFILE_FILE and prints them as JSON."""
    configure_logging(verbose)
    result = asyncio.run(
        amatch(profile_file, limit=limit, catalog=catalog, wait=wait, config_file=config_file)
    )
    typer.echo(json.dumps(result, indent=2))


@app.command()
def geocode(
    text: str = typer.Argument(..., help="ZIP code, 'City, ST' or place name."),
    config_file: str = typer.Option(None, help="Path to YAML config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Resolves a location to coordinates."""
    configure_logging(verbose)
    result = asyncio.run(ageocode(text, config_file=config_file))
    if result is None:
        typer.echo("not found")
        raise typer.Exit(code=1)
    typer.echo(result.model_dump_json())


def main():
    app()


if __name__ == "__main__":
    main()
