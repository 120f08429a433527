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
"""Hard eligibility gates applied to registry candidates.

Structured eligibility fields win. Without them, the title (and criteria
text, when available) is searched for phrases such as "18 to 65 years",
"65 years and older" or "women only". An unknown patient age or gender
never excludes a trial.

Once the full criteria text is known, a few clinical rules also apply:
planned-surgery requirements and common medication or procedure
exclusions.
"""

import re
from dataclasses import dataclass
from typing import Literal

from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.models.trial import ScorableTrial

Sex = Literal["male", "female"]

_RANGE_RE = re.compile(
    r"(\d{1,3})\s*(?:to|–|-|—)\s*(?:less\s+than\s*)?(\d{1,3})\s*(?:years?|yrs?|yo)\b"
)
_RANGE_EXCLUSIVE_RE = re.compile(r"less\s+than\s*\d{1,3}\s*(?:years?|yrs?|yo)\b")
_MIN_ONLY_RE = re.compile(r"(\d{1,3})\s*(?:years?|yrs?|yo)\s*(?:and\s*older|and\s*over|or\s*older)\b")
_MAX_ONLY_RE = re.compile(r"(?:under|less\s*than)\s*(\d{1,3})\s*(?:years?|yrs?|yo)\b")
_PEDIATRIC_RE = re.compile(r"\b(pediatric|child|children|infant|adolescent)s?\b")
_OLDER_ADULT_RE = re.compile(r"\bolder\s+adult|elderly|senior\b")
_ADULT_RE = re.compile(r"\badult(s)?\b")
_CHILD_WORDS_RE = re.compile(r"\b(child|children|pediatric)\b")

_FEMALE_ONLY_RE = re.compile(r"(female|women|woman)\s*-?\s*only\b|\bfemales?\s+only\b")
_MALE_ONLY_RE = re.compile(r"(male|men|man)\s*-?\s*only\b|\bmales?\s+only\b")
_FEMALE_IMPLIED_RE = re.compile(r"women\sof\schild-bearing\s*potential|pregnan", re.IGNORECASE)


@dataclass(frozen=True)
class AgeRange:
    min: float | None = None
    max: float | None = None
    max_exclusive: bool = False

    def admits(self, age: float) -> bool:
        if self.min is not None and age < self.min:
            return False
        if self.max is not None:
            if self.max_exclusive and age >= self.max:
                return False
            if not self.max_exclusive and age > self.max:
                return False
        return True


def age_range_from_text(text: str) -> AgeRange | None:
    lowered = (text or "").lower()
    match = _RANGE_RE.search(lowered)
    if match:
        exclusive = bool(_RANGE_EXCLUSIVE_RE.search(match.group(0)))
        return AgeRange(float(match.group(1)), float(match.group(2)), exclusive)
    match = _MIN_ONLY_RE.search(lowered)
    if match:
        return AgeRange(min=float(match.group(1)))
    match = _MAX_ONLY_RE.search(lowered)
    if match:
        return AgeRange(max=float(match.group(1)), max_exclusive=True)
    if _PEDIATRIC_RE.search(lowered):
        return AgeRange(max=17)
    if _OLDER_ADULT_RE.search(lowered):
        return AgeRange(min=65)
    if _ADULT_RE.search(lowered) and not _CHILD_WORDS_RE.search(lowered):
        return AgeRange(min=18)
    return None


def sex_restriction_from_text(text: str) -> Sex | None:
    lowered = (text or "").lower()
    if _FEMALE_ONLY_RE.search(lowered):
        return "female"
    if _MALE_ONLY_RE.search(lowered):
        return "male"
    if _FEMALE_IMPLIED_RE.search(lowered):
        return "female"
    return None


def _gender_matches(gender: str, restriction: str) -> bool:
    if restriction == "female":
        return gender.startswith("fem")
    if restriction == "male":
        return gender.startswith("male")
    return True


def is_age_compatible(age: float | None, trial: ScorableTrial, criteria_text: str = "") -> bool:
    if age is None:
        return True
    if trial.min_age is not None or trial.max_age is not None:
        return AgeRange(trial.min_age, trial.max_age).admits(age)
    hint = age_range_from_text(f"{trial.title}\n{criteria_text}")
    return hint is None or hint.admits(age)


def is_gender_compatible(gender: str | None, trial: ScorableTrial, criteria_text: str = "") -> bool:
    patient = (gender or "").strip().lower()
    if not patient:
        return True
    if trial.sex is not None:
        return _gender_matches(patient, trial.sex)
    restriction = sex_restriction_from_text(f"{trial.title}\n{criteria_text}")
    return restriction is None or _gender_matches(patient, restriction)


def passes_eligibility(
    profile: NormalizedProfile, trial: ScorableTrial, criteria_text: str = ""
) -> bool:
    return is_age_compatible(profile.age, trial, criteria_text) and is_gender_compatible(
        profile.gender, trial, criteria_text
    )


_ELECTIVE_SURGERY_RE = re.compile(
    r"(planned|schedule[rd])\s+(elective\s+)?"
    r"(hepato|hepatobiliary|hepato[-\s]?pancreato[-\s]?biliary|pancreatic|colorectal)"
)
_ELECTIVE_SURGERY_SIGNALS = (
    "planned surgery",
    "elective surgery",
    "hepato",
    "hepatobiliary",
    "pancreat",
    "colorectal",
    "colectomy",
    "whipple",
    "hepatectomy",
)


@dataclass(frozen=True)
class ClinicalRule:
    """Excludes the patient when the trial text mentions `trial_terms` and
    the patient's medications or notes mention the matching terms."""

    reason: str
    trial_terms: tuple[str, ...]
    medication_terms: tuple[str, ...] = ()
    note_terms: tuple[str, ...] = ()


CLINICAL_RULES = (
    ClinicalRule(
        reason="Daily PDE5 inhibitor",
        trial_terms=("pde5", "phosphodiesterase"),
        medication_terms=("sildenafil", "tadalafil", "vardenafil", "avanafil", "pde5"),
    ),
    ClinicalRule(
        reason="On tamsulosin at baseline",
        trial_terms=(
            "tamsulosin therapy as a home medication",
            "on tamsulosin at baseline",
            "tamsulosin at baseline",
        ),
        medication_terms=("tamsulosin", "flomax"),
    ),
    ClinicalRule(
        reason="GU procedure planned",
        trial_terms=(
            "genitourinary",
            "gu procedure",
            "urology procedure",
            "prostate",
            "bladder",
            "ureter",
            "kidney",
        ),
        note_terms=(
            "prostate surgery",
            "cystectomy",
            "bladder surgery",
            "ureter",
            "nephrectomy",
            "urology procedure",
        ),
    ),
    ClinicalRule(
        reason="Same-day Foley removal planned",
        trial_terms=("same day foley removal", "remove foley on day of surgery", "pod0"),
        note_terms=("same day foley", "pod0 foley removal", "immediate catheter removal"),
    ),
    ClinicalRule(
        reason="NG tube retention planned",
        trial_terms=("ng tube retention", "nasogastric tube retention", "pod1"),
        note_terms=("ng tube planned", "nasogastric tube retention"),
    ),
)


def _has_any(text: str, terms: tuple[str, ...]) -> bool:
    return any(term in text for term in terms)


def clinical_exclusion(
    profile: NormalizedProfile, trial: ScorableTrial, criteria_text: str = ""
) -> str | None:
    """Returns why a clinical rule excludes the patient, or None."""
    notes = (profile.additional_notes or "").lower()
    medications = [m.lower() for m in profile.medications]
    combined = f"{trial.title}\n{criteria_text}".lower()

    if _ELECTIVE_SURGERY_RE.search(combined) and not _has_any(notes, _ELECTIVE_SURGERY_SIGNALS):
        return "No qualifying elective HPB/colorectal surgery planned"
    for rule in CLINICAL_RULES:
        if not _has_any(combined, rule.trial_terms):
            continue
        if rule.medication_terms and any(_has_any(m, rule.medication_terms) for m in medications):
            return rule.reason
        if rule.note_terms and _has_any(notes, rule.note_terms):
            return rule.reason
    return None


def detailed_exclusion(
    profile: NormalizedProfile, trial: ScorableTrial, criteria_text: str
) -> str | None:
    """Age, sex and clinical rules against the full criteria text."""
    if not is_age_compatible(profile.age, trial, criteria_text):
        return "Age outside the eligible range"
    if not is_gender_compatible(profile.gender, trial, criteria_text):
        return "Sex restriction"
    return clinical_exclusion(profile, trial, criteria_text)
