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
"""Ordering of ranked matches."""

import math

from py_trial_match.models.scoring import RankedMatch


def rank_key(match: RankedMatch) -> tuple[int, float]:
    """Score descending, then distance ascending with unknown distance last."""
    distance = match.distance_mi if match.distance_mi is not None else math.inf
    return (-match.score, distance)


def rank_matches(matches: list[RankedMatch]) -> list[RankedMatch]:
    return sorted(matches, key=rank_key)
