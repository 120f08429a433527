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
"""Turns a stored raw profile into the scoring input and its fingerprint.

The raw profile is a loose mapping with the sections written by the profile
forms (`health_profile`, `eligibility`, `account`, `consent`, `documents`,
`notifications`). Keys may be snake_case or camelCase. Anything that cannot
be parsed is treated as unknown rather than rejected.
"""

import hashlib
import json
import logging
import math
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Protocol

import yaml

from py_trial_match.geo.distance import parse_radius
from py_trial_match.models.profile import NormalizedProfile, ProfileCompletion

logger = logging.getLogger(__name__)

RawProfile = dict[str, Any]

_COMORBIDITY_FLAGS = (
    ("comorbidity_cardiac", "cardiac"),
    ("comorbidity_renal", "renal"),
    ("comorbidity_hepatic", "hepatic"),
    ("comorbidity_autoimmune", "autoimmune"),
)
_INFECTION_FLAGS = (
    ("infection_hiv", "HIV"),
    ("infection_hbv", "HBV"),
    ("infection_hcv", "HCV"),
)
_HEALTH_PROFILE_CHECKS = (
    "weight",
    "gender",
    "phone",
    "age",
    "race",
    "language",
    "blood_group",
    "genotype",
    "primary_condition",
    "diagnosed",
)


class ProfileStore(Protocol):
    """Read-only source of the current user's raw profile."""

    def get_current_profile(self) -> RawProfile: ...


class FileProfileStore:
    """Reads a raw profile from a JSON or YAML document."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def get_current_profile(self) -> RawProfile:
        text = self.path.read_text(encoding="utf-8")
        if self.path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
        if not isinstance(data, dict):
            logger.warning("Profile file %s does not hold a mapping; using an empty profile", self.path)
            return {}
        return data


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _get(mapping: Any, name: str, *aliases: str) -> Any:
    """Looks a key up by its snake_case name, its camelCase form, then aliases."""
    if not isinstance(mapping, dict):
        return None
    for key in (name, _camel(name), *aliases):
        if key in mapping:
            return mapping[key]
    return None


def _section(raw: RawProfile, name: str) -> dict[str, Any]:
    value = _get(raw, name)
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _names(value: Any) -> list[str]:
    """Lower-cased names from a list of strings or `{name: ...}` objects."""
    if not isinstance(value, list):
        return []
    names = []
    for item in value:
        name = _get(item, "name") if isinstance(item, dict) else item
        text = _text(name)
        if text:
            names.append(text.lower())
    return names


def _parse_date(value: Any) -> date | None:
    text = _text(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def age_from_dob(dob: date, today: date) -> int:
    """Whole years between `dob` and `today`, by year/month/day comparison."""
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age


def _resolve_age(health: dict[str, Any], eligibility: dict[str, Any], today: date) -> int | None:
    explicit = _number(_get(health, "age"))
    if explicit is not None:
        return int(explicit)

    dob = _parse_date(_get(eligibility, "dob", "dateOfBirth", "date_of_birth"))
    if dob is not None:
        age = age_from_dob(dob, today)
        if age >= 0:
            return age
        logger.warning("Ignoring date of birth %s in the future", dob)

    form_age = _number(_get(eligibility, "age"))
    return int(form_age) if form_age is not None else None


def _compose_notes(health: dict[str, Any]) -> str | None:
    """Free-text notes followed by one line per structured clinical detail."""
    base = _text(_get(health, "additional_notes", "additionalInfo", "additional_info"))
    extras = []
    if ecog := _text(_get(health, "ecog")):
        extras.append(f"ECOG: {ecog}")
    if stage := _text(_get(health, "disease_stage")):
        extras.append(f"Stage/Subtype: {stage}")
    if biomarkers := _text(_get(health, "biomarkers")):
        extras.append(f"Biomarkers: {biomarkers}")

    therapies = _get(health, "prior_therapies")
    if isinstance(therapies, list):
        entries = []
        for therapy in therapies:
            if isinstance(therapy, dict):
                parts = [_text(_get(therapy, "name")), _text(_get(therapy, "date"))]
                entry = " ".join(p for p in parts if p)
            else:
                entry = _text(therapy) or ""
            if entry:
                entries.append(entry)
        if entries:
            extras.append(f"Prior tx: {'; '.join(entries)}")

    comorbidities = [
        label for key, label in _COMORBIDITY_FLAGS if _get(health, key) is True
    ]
    if comorbidities:
        extras.append(f"Comorbidities: {', '.join(comorbidities)}")

    infections = [
        label
        for key, label in _INFECTION_FLAGS
        if _get(health, key, f"infection{label}") is True
    ]
    if infections:
        extras.append(f"Infections: {', '.join(infections)}")

    combined = "\n".join(p for p in (base, "\n".join(extras)) if p)
    return combined or None


def compute_profile_completion(raw: RawProfile) -> ProfileCompletion:
    """Scores how far the user got through account setup.

    Basics: email 7, first name 7, last name 6. Consent: 4 per completed
    section. Documents: 5 per upload, up to four. Notifications: email
    alerts 3, trial updates 2 (both on unless switched off). Health profile:
    the share of twelve fields filled in, scaled to 35.
    """
    account = _section(raw, "account")
    basics = 0
    if _text(_get(account, "email")):
        basics += 7
    if _text(_get(account, "first_name")):
        basics += 7
    if _text(_get(account, "last_name")):
        basics += 6

    consent_section = _section(raw, "consent")
    consent_parts = ("section1", "section2", "section3", "section4", "final")
    consent = min(sum(4 for part in consent_parts if _get(consent_section, part) is True), 20)

    documents_value = _get(raw, "documents")
    documents_count = len(documents_value) if isinstance(documents_value, list) else 0
    documents = min(documents_count, 4) * 5

    prefs = _section(raw, "notifications")
    email_alerts = _get(prefs, "email_alerts")
    trial_updates = _get(prefs, "trial_updates")
    notifications = (3 if email_alerts is not False else 0) + (
        2 if trial_updates is not False else 0
    )

    health = _section(raw, "health_profile")
    health_profile = 0
    if health:
        checks = [bool(_text(_get(health, field))) for field in _HEALTH_PROFILE_CHECKS]
        checks.append(bool(_names(_get(health, "allergies"))))
        checks.append(bool(_names(_get(health, "medications"))))
        health_profile = min(int(sum(checks) / len(checks) * 35 + 0.5), 35)

    percent = min(basics + consent + documents + notifications + health_profile, 100)
    return ProfileCompletion(
        basics=basics,
        consent=consent,
        documents=documents,
        notifications=notifications,
        health_profile=health_profile,
        percent=percent,
    )


def profile_fingerprint(profile: NormalizedProfile) -> str:
    """SHA-256 of the canonical JSON form of a normalized profile.

    Strings are lower-cased and trimmed, lists are sorted, and missing
    values become empty strings, so list order and casing in the source do
    not change the digest.
    """

    def canon(value: str | None) -> str:
        return (value or "").strip().lower()

    canonical = {
        "age": profile.age,
        "gender": canon(profile.gender),
        "primary_condition": canon(profile.primary_condition),
        "additional_notes": canon(profile.additional_notes),
        "medications": sorted(canon(m) for m in profile.medications),
        "allergies": sorted(canon(a) for a in profile.allergies),
        "location": canon(profile.location_preference),
        "radius": canon(profile.travel_radius),
    }
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def normalize(raw: RawProfile | None, today: date | None = None) -> tuple[NormalizedProfile, str]:
    """Builds the scoring input for one matching request.

    Args:
        raw: The stored profile mapping.
        today: Reference date for age-from-birth-date; defaults to today.

    Returns:
        The normalized profile and its fingerprint.
    """
    raw = raw if isinstance(raw, dict) else {}
    today = today or date.today()
    health = _section(raw, "health_profile")
    eligibility = _section(raw, "eligibility")

    radius_text = _text(_get(eligibility, "radius", "travelRadius", "travel_radius"))
    location = _text(_get(eligibility, "loc", "location", "locationPreference"))
    if location:
        location = re.sub(r"\s+", " ", location)

    profile = NormalizedProfile(
        age=_resolve_age(health, eligibility, today),
        gender=_text(_get(health, "gender")),
        primary_condition=_text(_get(health, "primary_condition")),
        medications=frozenset(_names(_get(health, "medications"))),
        allergies=frozenset(_names(_get(health, "allergies"))),
        additional_notes=_compose_notes(health),
        location_preference=location,
        travel_radius=radius_text,
        travel_radius_mi=parse_radius(radius_text),
        completion=compute_profile_completion(raw),
    )
    return profile, profile_fingerprint(profile)
