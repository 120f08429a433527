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

from py_trial_match.query import build_loose_query, build_smart_query, load_synonyms

pytestmark = pytest.mark.unit

BREAST = '("breast cancer" OR "triple negative breast cancer" OR "breast neoplasms" OR "mammary carcinoma")'


def test_abbreviation_expands_to_group():
    assert build_smart_query("nsclc") == '("non small cell lung cancer" OR NSCLC)'


def test_phrase_expands_to_group():
    assert build_smart_query("Breast Cancer") == BREAST


def test_multiple_groups_are_anded():
    assert build_smart_query("metastatic breast cancer") == (
        f'{BREAST} AND ("stage iv" OR "stage 4" OR metastatic)'
    )


def test_loose_query_ors_groups():
    assert build_loose_query("metastatic breast cancer") == (
        f'{BREAST} OR ("stage iv" OR "stage 4" OR metastatic)'
    )


def test_plain_words_are_joined():
    assert build_smart_query("chronic neuropathy pain") == "chronic AND neuropathy AND pain"
    assert build_loose_query("chronic neuropathy pain") == "chronic OR neuropathy OR pain"


def test_groups_and_residual_words():
    assert build_smart_query("heart attack in my 50s") == (
        '("myocardial infarction" OR "heart attack" OR MI) AND 50s'
    )


def test_stopwords_removed():
    assert build_smart_query("pain in my back") == "pain AND back"


def test_only_stopwords_returns_source():
    assert build_smart_query("the of") == "the of"


def test_empty_input():
    assert build_smart_query("") == ""
    assert build_smart_query(None) == ""
    assert build_loose_query("   ") == ""


def test_custom_table(tmp_path):
    path = tmp_path / "synonyms.yaml"
    path.write_text(
        "phrases:\n"
        "  - pattern: '\\bsickle cell\\b'\n"
        "    group: ['\"sickle cell disease\"', 'SCD', 'SCD']\n"
        "tokens:\n"
        "  scd: ['SCD']\n"
        "stopwords: [with]\n"
    )
    table = load_synonyms(path)
    assert build_smart_query("sickle cell with crisis", table) == '("sickle cell disease" OR SCD) AND crisis'
