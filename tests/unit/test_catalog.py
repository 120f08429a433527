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

from py_trial_match.catalog import (
    catalog_corpus,
    catalog_to_scorable,
    default_catalog,
    get_trial_by_slug,
    load_catalog,
    make_slug,
)

pytestmark = pytest.mark.unit


def test_default_catalog_has_five_trials():
    trials = default_catalog()
    assert len(trials) == 5
    assert all(trial.slug for trial in trials)
    assert len({trial.nct_id for trial in trials}) == 5


def test_slug_lookup():
    trial = get_trial_by_slug("agorain-new-treatment-for-chronic-neuropathy-pain")
    assert trial.nct_id == "NCT06084521"
    assert trial.min_age == 18
    assert trial.max_age == 80
    assert get_trial_by_slug("mindfulness-based-therapy-for-chronic-pain-relief").max_age == 40
    assert get_trial_by_slug("no-such-trial") is None


def test_make_slug():
    assert make_slug("Agorain, New Treatment for Chronic Neuropathy Pain") == (
        "agorain-new-treatment-for-chronic-neuropathy-pain"
    )
    assert make_slug("Mindfulness-Based  Therapy") == "mindfulness-based-therapy"


def test_scorable_view():
    trial = get_trial_by_slug("agorain-new-treatment-for-chronic-neuropathy-pain")
    scorable = catalog_to_scorable(trial)
    assert scorable.source == "catalog"
    assert scorable.trial_id == "NCT06084521"
    assert scorable.sex == "all"
    assert "Buffalo, NY" in scorable.locations
    assert "placebo" in scorable.corpus
    assert scorable.corpus.startswith(trial.title)
    assert catalog_corpus(trial) == scorable.corpus


def test_load_catalog_keeps_explicit_slug(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(
        "- title: Sleep Study\n"
        "  slug: custom-sleep\n"
        "  nct_id: NCT00000009\n"
        "  min_age: 18\n"
        "  max_age: 65\n"
        "  status: Completed\n"
        "  gender: Female\n"
    )
    trials = load_catalog(path)
    assert trials[0].slug == "custom-sleep"
    assert catalog_to_scorable(trials[0]).sex == "female"
    assert get_trial_by_slug("custom-sleep", trials) is trials[0]
