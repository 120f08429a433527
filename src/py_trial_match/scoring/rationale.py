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
"""Short human-readable explanation attached to each ranked match."""

from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.trial import ScorableTrial
from py_trial_match.scoring.tokenizer import tokenize, tokenize_all

MAX_RATIONALE_LENGTH = 160
MAX_HIGHLIGHTS = 4
SEPARATOR = " · "


def truncate(text: str, limit: int = MAX_RATIONALE_LENGTH) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def build_rationale(trial: ScorableTrial, profile: NormalizedProfile) -> str:
    """e.g. 'Recruiting · Matched on: breast, cancer · Site: Buffalo, NY · Near: 14301 · Within 50mi'."""
    pool = set(tokenize(trial.title) + tokenize_all(trial.conditions))
    matched: list[str] = []
    for token in tokenize(profile.primary_condition) + tokenize(profile.additional_notes):
        if token in pool and len(matched) < MAX_HIGHLIGHTS:
            matched.append(token)

    pieces = []
    if trial.status:
        status = trial.status.lower()
        recruiting = "recruit" in status and "not" not in status
        pieces.append("Recruiting" if recruiting else trial.status)
    if matched:
        pieces.append(f"Matched on: {', '.join(matched)}")
    if trial.location:
        pieces.append(f"Site: {trial.location}")
    if profile.location_preference:
        pieces.append(f"Near: {profile.location_preference}")
    if profile.travel_radius:
        pieces.append(f"Within {profile.travel_radius}")
    return truncate(SEPARATOR.join(pieces))
