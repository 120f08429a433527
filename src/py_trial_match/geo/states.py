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
"""U.S. state names and abbreviations, plus location text helpers."""

import re

STATE_ABBR_TO_NAME: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}

STATE_NAME_TO_ABBR: dict[str, str] = {
    name.lower(): abbr for abbr, name in STATE_ABBR_TO_NAME.items()
}
STATE_NAME_TO_ABBR.update(
    {
        "washington dc": "DC",
        "washington d.c.": "DC",
        "washington d c": "DC",
        "d.c.": "DC",
    }
)

UNITED_STATES = "United States"

# Latitude/longitude box for the contiguous United States.
US_LAT_RANGE = (24.0, 50.0)
US_LNG_RANGE = (-130.0, -65.0)

_COUNTRY_ALIAS_RE = re.compile(
    r"^\s*(u\.?s\.?a?\.?|united\s+states?(\s+of\s+america)?|america)\s*$",
    re.IGNORECASE,
)
_LEADING_PREPOSITION_RE = re.compile(r"^\s*(near|around|in|within)\s+", re.IGNORECASE)
_ZIP_TOKEN_RE = re.compile(r"\b\d{5}(?:-\d{4})?\b")
_US_WORD_RE = re.compile(r"\b(usa|united states)\b", re.IGNORECASE)


def normalize_location(raw: str | None) -> str:
    """Collapses U.S. country aliases and strips leading 'near'/'in' words."""
    text = (raw or "").strip()
    if not text:
        return ""
    if _COUNTRY_ALIAS_RE.match(text):
        return UNITED_STATES
    text = _LEADING_PREPOSITION_RE.sub("", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def normalize_state(raw: str | None) -> str | None:
    """Returns the two-letter abbreviation for a state name or abbreviation."""
    token = (raw or "").strip().lower().rstrip(".")
    if not token:
        return None
    if token in STATE_NAME_TO_ABBR:
        return STATE_NAME_TO_ABBR[token]
    token = token.replace(".", "").upper()
    return token if token in STATE_ABBR_TO_NAME else None


def within_us_bounds(lat: float, lng: float) -> bool:
    return (
        US_LAT_RANGE[0] < lat < US_LAT_RANGE[1]
        and US_LNG_RANGE[0] < lng < US_LNG_RANGE[1]
    )


def has_us_hint(text: str) -> bool:
    """True when the text names a U.S. state, a ZIP-like token, or the country.

    Abbreviations only count when written in capitals or as the last
    comma-separated part, so words like "in" or "me" are not mistaken for
    Indiana or Maine.
    """
    if not text:
        return False
    if _ZIP_TOKEN_RE.search(text) or _US_WORD_RE.search(text):
        return True
    lowered = text.lower()
    for name in STATE_NAME_TO_ABBR:
        if re.search(rf"\b{re.escape(name)}(?!\w)", lowered):
            return True
    for token in re.split(r"[\s,]+", text):
        if token.isupper() and token in STATE_ABBR_TO_NAME:
            return True
    parts = [p.strip() for p in text.split(",") if p.strip()]
    return len(parts) >= 2 and normalize_state(parts[-1]) is not None
