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

from py_trial_match.models.scoring import RankedMatch, ScoreBreakdown, ScoreResult
from py_trial_match.scoring.ranking import rank_matches
from py_trial_match.scoring.rationale import build_rationale, truncate

pytestmark = pytest.mark.unit


def test_rationale_pieces(make_trial, make_profile):
    trial = make_trial(
        title="Pregabalin for Chronic Neuropathic Pain",
        conditions=["Neuropathic Pain"],
        status="Recruiting",
        location="Buffalo, NY",
    )
    profile = make_profile(
        primary_condition="neuropathic pain", location_preference="14301", travel_radius="50mi"
    )
    assert build_rationale(trial, profile) == (
        "Recruiting · Matched on: neuropathic, pain · Site: Buffalo, NY · Near: 14301 · Within 50mi"
    )


@pytest.mark.parametrize(
    "status", ["Not yet recruiting", "Active, not recruiting", "Enrolling by invitation"]
)
def test_rationale_keeps_other_status(make_trial, make_profile, status):
    trial = make_trial(status=status, location="")
    assert build_rationale(trial, make_profile()) == status


def test_rationale_highlights_capped(make_trial, make_profile):
    trial = make_trial(title="alpha beta gamma delta epsilon", status="", location="")
    profile = make_profile(primary_condition="alpha beta gamma delta epsilon")
    assert build_rationale(trial, profile) == "Matched on: alpha, beta, gamma, delta"


def test_rationale_truncated(make_trial, make_profile):
    trial = make_trial(location="Site " * 60)
    rationale = build_rationale(trial, make_profile())
    assert len(rationale) == 160
    assert rationale.endswith("...")


def test_truncate_short_text_unchanged():
    assert truncate("short") == "short"


def _match(trial_id, score, distance, make_trial):
    heuristic = ScoreResult(score=score, breakdown=ScoreBreakdown(base=score))
    return RankedMatch(
        trial=make_trial(trial_id), score=score, heuristic=heuristic, distance_mi=distance
    )


def test_rank_by_score_then_distance(make_trial):
    matches = [
        _match("NCT1", 70, None, make_trial),
        _match("NCT2", 70, 120.0, make_trial),
        _match("NCT3", 85, 400.0, make_trial),
        _match("NCT4", 70, 15.5, make_trial),
    ]
    ranked = [m.trial_id for m in rank_matches(matches)]
    assert ranked == ["NCT3", "NCT4", "NCT2", "NCT1"]
