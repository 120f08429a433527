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
"""Builds registry condition queries from plain-language conditions.

Known phrases and abbreviations expand into OR-groups of synonyms, for
example "nsclc" becomes ("non small cell lung cancer" OR NSCLC). The strict
form ANDs the groups and remaining words; the loose form ORs them.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml

DATA_DIR = Path(__file__).resolve().parent / "data"
SYNONYMS_FILE = DATA_DIR / "query_synonyms.yaml"

_QUERY_TOKEN_RE = re.compile(r"[^a-z0-9\s\-]")


@dataclass(frozen=True)
class PhraseSynonym:
    pattern: re.Pattern
    group: tuple[str, ...]


@dataclass(frozen=True)
class SynonymTable:
    phrases: tuple[PhraseSynonym, ...] = ()
    tokens: dict[str, tuple[str, ...]] = field(default_factory=dict)
    stopwords: frozenset[str] = frozenset()


def load_synonyms(path: str | Path | None = None) -> SynonymTable:
    with open(Path(path) if path else SYNONYMS_FILE, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    phrases = tuple(
        PhraseSynonym(
            pattern=re.compile(entry["pattern"], re.IGNORECASE),
            group=tuple(dict.fromkeys(str(term) for term in entry["group"])),
        )
        for entry in data.get("phrases", [])
    )
    tokens = {
        str(key).lower(): tuple(dict.fromkeys(str(term) for term in terms))
        for key, terms in (data.get("tokens") or {}).items()
    }
    stopwords = frozenset(str(word).lower() for word in data.get("stopwords", []))
    return SynonymTable(phrases=phrases, tokens=tokens, stopwords=stopwords)


@lru_cache(maxsize=1)
def default_synonyms() -> SynonymTable:
    return load_synonyms()


def _or_group(terms: tuple[str, ...]) -> str:
    return f"({' OR '.join(terms)})"


def _expand(source: str, table: SynonymTable) -> tuple[list[str], list[str]]:
    """Returns (synonym groups, residual words) for `source`."""
    groups = []
    working = source
    for phrase in table.phrases:
        if phrase.pattern.search(working):
            groups.append(_or_group(phrase.group))
            working = phrase.pattern.sub(" ", working)

    words = [
        word
        for word in _QUERY_TOKEN_RE.sub(" ", working.lower()).split()
        if word not in table.stopwords
    ]
    residual = []
    for word in words:
        if word in table.tokens:
            groups.append(_or_group(table.tokens[word]))
        else:
            residual.append(word)
    return groups, residual


def _build(raw: str | None, joiner: str, table: SynonymTable | None) -> str:
    source = (raw or "").strip()
    if not source:
        return ""
    groups, residual = _expand(source, table or default_synonyms())
    parts = list(groups)
    if residual:
        parts.append(joiner.join(residual))
    if not parts:
        return source
    return joiner.join(parts)


def build_smart_query(raw: str | None, table: SynonymTable | None = None) -> str:
    """Strict query: every concept group must match."""
    return _build(raw, " AND ", table)


def build_loose_query(raw: str | None, table: SynonymTable | None = None) -> str:
    """Loose query: any concept group may match."""
    return _build(raw, " OR ", table)
