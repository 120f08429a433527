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
"""Tokenizer and numeric helpers shared by both scoring policies."""

import math
import re
from collections.abc import Iterable

STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "of", "for", "to", "in", "on", "with",
        "without", "by", "at", "from", "about", "into", "over", "after",
        "before", "is", "are", "be", "being", "been", "this", "that", "these",
        "those", "study", "trial", "clinical", "investigating", "investigation",
        "impact", "patients", "patient", "therapy", "treatment",
    }
)

RECRUITING_LIKE = frozenset({"RECRUITING", "ENROLLING_BY_INVITATION"})

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str | None) -> list[str]:
    """Lower-cases, replaces punctuation with spaces and drops stopwords.

    Duplicates are kept; overlap counts are taken over the left-hand list.
    """
    if not text:
        return []
    cleaned = _NON_ALNUM_RE.sub(" ", text.lower())
    return [word for word in cleaned.split() if word not in STOPWORDS]


def tokenize_all(texts: Iterable[str]) -> list[str]:
    return [token for text in texts for token in tokenize(text)]


def intersect_count(left: list[str], right: list[str]) -> int:
    """Number of items in `left` that also appear somewhere in `right`."""
    if not left or not right:
        return 0
    pool = set(right)
    return sum(1 for token in left if token in pool)


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Rounds .5 away from negative infinity, unlike the built-in round()."""
    return math.floor(value + 0.5)


def is_recruiting_like(status: str | None) -> bool:
    """True for 'RECRUITING', 'Recruiting', 'Enrolling by invitation' and the like."""
    key = re.sub(r"[\s-]+", "_", (status or "").strip()).upper()
    return key in RECRUITING_LIKE
