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

from py_trial_match.registry.mapping import (
    parse_age_years,
    parse_sex,
    phase_label,
    site_labels,
    status_label,
    study_to_scorable,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "values, label",
    [
        (["PHASE2"], "Phase 2"),
        (["PHASE1", "PHASE2"], "Phase I/II"),
        (["PHASE2", "PHASE3"], "Phase II/III"),
        (["EARLY_PHASE1"], "Phase 1"),
        (["NA"], "NA"),
        ([], ""),
    ],
)
def test_phase_label(values, label):
    assert phase_label(values) == label


def test_status_label():
    assert status_label("RECRUITING") == "Recruiting"
    assert status_label("ENROLLING_BY_INVITATION") == "Enrolling by invitation"
    assert status_label("ACTIVE_NOT_RECRUITING") == "ACTIVE_NOT_RECRUITING"


def test_site_labels_dedupe_and_abbreviate(make_study):
    study = make_study(
        "NCT1",
        sites=(("Buffalo", "New York"), ("Buffalo", "NY"), ("Toronto", "Ontario"), ("", "")),
    )
    assert site_labels(study) == ["Buffalo, NY", "Toronto, Ontario"]


@pytest.mark.parametrize(
    "text, years",
    [
        ("18 Years", 18),
        ("6 Months", 0.5),
        ("26 Weeks", 0.5),
        ("365 Days", 1),
        ("N/A", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_age_years(text, years):
    assert parse_age_years(text) == years


def test_parse_sex():
    assert parse_sex("ALL") == "all"
    assert parse_sex("FEMALE") == "female"
    assert parse_sex("MALE") == "male"
    assert parse_sex(None) is None


def test_study_to_scorable(make_study):
    study = make_study(
        "NCT05000001",
        title="Pregabalin for Neuropathic Pain",
        status="RECRUITING",
        conditions=("Neuropathic Pain", "Diabetic Neuropathy"),
        sites=(("Buffalo", "New York"), ("Rochester", "New York")),
        phases=("PHASE2", "PHASE3"),
        min_age="18 Years",
        max_age="75 Years",
        sex="ALL",
        sponsor="University at Buffalo",
    )
    trial = study_to_scorable(study)
    assert trial.trial_id == "NCT05000001"
    assert trial.status == "Recruiting"
    assert trial.phase == "Phase II/III"
    assert trial.source == "registry"
    assert trial.location == "Buffalo, NY"
    assert trial.locations == ["Buffalo, NY", "Rochester, NY"]
    assert trial.corpus == "Pregabalin for Neuropathic Pain Neuropathic Pain Diabetic Neuropathy"
    assert (trial.min_age, trial.max_age, trial.sex) == (18, 75, "all")
    assert trial.sponsor == "University at Buffalo"


def test_study_without_identifier(make_study):
    assert study_to_scorable(make_study("")) is None
    assert study_to_scorable({}) is None
