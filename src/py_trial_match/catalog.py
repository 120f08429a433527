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
"""The static curated trial catalog packaged with the library."""

import logging
import re
from functools import lru_cache
from pathlib import Path

import yaml

from py_trial_match.models.trial import CatalogTrial, ScorableTrial

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
CATALOG_FILE = DATA_DIR / "catalog_trials.yaml"


def make_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower()).strip()
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"-+", "-", slug)


def load_catalog(path: str | Path | None = None) -> list[CatalogTrial]:
    """Loads catalog trials from YAML, filling in missing slugs."""
    catalog_path = Path(path) if path else CATALOG_FILE
    with open(catalog_path, encoding="utf-8") as f:
        entries = yaml.safe_load(f) or []
    trials = []
    for entry in entries:
        trial = CatalogTrial.model_validate(entry)
        if not trial.slug:
            trial = trial.model_copy(update={"slug": make_slug(trial.title)})
        trials.append(trial)
    logger.debug("Loaded %d catalog trials from %s", len(trials), catalog_path)
    return trials


@lru_cache(maxsize=1)
def default_catalog() -> tuple[CatalogTrial, ...]:
    return tuple(load_catalog())


def get_trial_by_slug(slug: str, trials: list[CatalogTrial] | None = None) -> CatalogTrial | None:
    for trial in trials if trials is not None else default_catalog():
        if trial.slug == slug:
            return trial
    return None


def catalog_corpus(trial: CatalogTrial) -> str:
    """Free text the catalog policy tokenizes."""
    parts = [
        trial.title,
        ". ".join(trial.description),
        ". ".join(trial.purpose),
        ". ".join(trial.benefits),
        ". ".join(trial.criteria.inclusion),
        ". ".join(trial.criteria.exclusion),
        ". ".join(trial.interventions),
        trial.center,
        trial.location,
    ]
    return ". ".join(part for part in parts if part)


def catalog_to_scorable(trial: CatalogTrial) -> ScorableTrial:
    return ScorableTrial(
        trial_id=trial.nct_id,
        title=trial.title,
        status=trial.status,
        phase=trial.phase,
        source="catalog",
        corpus=catalog_corpus(trial),
        sponsor=trial.sponsor,
        location=trial.location,
        locations=[
            ", ".join(p for p in (center.city, center.state) if p) for center in trial.centers
        ],
        min_age=trial.min_age,
        max_age=trial.max_age,
        sex=trial.gender.lower(),
    )
