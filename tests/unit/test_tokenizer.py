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

from py_trial_match.scoring.tokenizer import (
    clamp,
    intersect_count,
    is_recruiting_like,
    round_half_up,
    tokenize,
    tokenize_all,
)

pytestmark = pytest.mark.unit


def test_tokenize_drops_punctuation_and_stopwords():
    assert tokenize("A Study of Non-Small Cell Lung Cancer, in Adults!") == [
        "non",
        "small",
        "cell",
        "lung",
        "cancer",
        "adults",
    ]


def test_tokenize_keeps_duplicates():
    assert tokenize("pain, PAIN and pain") == ["pain", "pain", "pain"]


def test_tokenize_empty():
    assert tokenize(None) == []
    assert tokenize("") == []
    assert tokenize("the of and") == []


def test_tokenize_all():
    assert tokenize_all(["Breast Cancer", "Neoplasms"]) == ["breast", "cancer", "neoplasms"]


def test_intersect_count_counts_left_side():
    assert intersect_count(["pain", "pain", "nerve"], ["pain"]) == 2
    assert intersect_count(["pain"], ["pain", "pain"]) == 1
    assert intersect_count([], ["pain"]) == 0
    assert intersect_count(["pain"], []) == 0


@pytest.mark.parametrize(
    "value, expected",
    [(-5, 0), (0, 0), (42.5, 42.5), (100, 100), (130, 100)],
)
def test_clamp(value, expected):
    assert clamp(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [(0.5, 1), (1.5, 2), (2.5, 3), (17.5, 18), (2.4999, 2), (-0.5, 0), (-1.5, -1)],
)
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


@pytest.mark.parametrize(
    "status, expected",
    [
        ("RECRUITING", True),
        ("Recruiting", True),
        ("Enrolling by invitation", True),
        ("enrolling-by-invitation", True),
        ("NOT_YET_RECRUITING", False),
        ("Completed", False),
        (None, False),
    ],
)
def test_is_recruiting_like(status, expected):
    assert is_recruiting_like(status) is expected
