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
"""Maps registry study documents onto the scoring view."""

import re
from typing import Any, Literal

from py_trial_match.geo.states import normalize_state
from py_trial_match.models.trial import ScorableTrial

Study = dict[str, Any]

_STATUS_LABELS = {
    "RECRUITING": "Recruiting",
    "ENROLLING_BY_INVITATION": "Enrolling by invitation",
}
_AGE_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")


def _module(study: Study, name: str) -> dict[str, Any]:
    protocol = study.get("protocolSection") if isinstance(study, dict) else None
    module = protocol.get(name) if isinstance(protocol, dict) else None
    return module if isinstance(module, dict) else {}


def nct_id(study: Study) -> str:
    return str(_module(study, "identificationModule").get("nctId") or "")


def brief_title(study: Study) -> str:
    return str(_module(study, "identificationModule").get("briefTitle") or "")


def overall_status(study: Study) -> str:
    return str(_module(study, "statusModule").get("overallStatus") or "")


def conditions(study: Study) -> list[str]:
    values = _module(study, "conditionsModule").get("conditions") or []
    return [str(v) for v in values if v]


def phases(study: Study) -> list[str]:
    values = _module(study, "designModule").get("phases") or []
    return [str(v) for v in values if v]


def lead_sponsor(study: Study) -> str:
    sponsor = _module(study, "sponsorCollaboratorsModule").get("leadSponsor") or {}
    return str(sponsor.get("name") or "") if isinstance(sponsor, dict) else ""


def brief_summary(study: Study) -> str:
    return str(_module(study, "descriptionModule").get("briefSummary") or "")


def eligibility_criteria(study: Study) -> str:
    return str(_module(study, "eligibilityModule").get("eligibilityCriteria") or "")


def phase_label(values: list[str]) -> str:
    """'PHASE2' -> 'Phase 2', 'PHASE1/PHASE2' -> 'Phase I/II'."""
    if not values:
        return ""
    raw = "/".join(values)
    if re.search(r"PHASE\s*1\s*/\s*(PHASE\s*)?2|1/2", raw, re.IGNORECASE):
        return "Phase I/II"
    if re.search(r"PHASE\s*2\s*/\s*(PHASE\s*)?3|2/3", raw, re.IGNORECASE):
        return "Phase II/III"
    match = re.search(r"\d+", raw)
    return f"Phase {match.group(0)}" if match else raw


def status_label(raw: str) -> str:
    return _STATUS_LABELS.get(raw.strip().upper(), raw)


def site_labels(study: Study) -> list[str]:
    """Unique 'City, ST' labels in registry order."""
    locations = _module(study, "contactsLocationsModule").get("locations") or []
    labels: list[str] = []
    for location in locations:
        if not isinstance(location, dict):
            continue
        city = str(location.get("city") or "").strip()
        state_raw = str(location.get("state") or "").strip()
        state = normalize_state(state_raw) or state_raw
        label = ", ".join(p for p in (city, state) if p)
        if label and label not in labels:
            labels.append(label)
    return labels


def parse_age_years(text: str | None) -> float | None:
    """'18 Years' -> 18, '6 Months' -> 0.5. 'N/A' and blanks are unknown."""
    value = (text or "").strip().lower()
    if not value or value in ("n/a", "na", "none"):
        return None
    match = _AGE_NUMBER_RE.search(value)
    if not match:
        return None
    years = float(match.group(1))
    if "month" in value:
        years /= 12
    elif "week" in value:
        years /= 52
    elif "day" in value:
        years /= 365
    return years


def parse_sex(raw: str | None) -> Literal["all", "male", "female"] | None:
    value = (raw or "").strip().lower()
    if value == "all":
        return "all"
    if value.startswith("female"):
        return "female"
    if value.startswith("male"):
        return "male"
    return None


def study_to_scorable(study: Study) -> ScorableTrial | None:
    """None when the study has no identifier."""
    identifier = nct_id(study)
    if not identifier:
        return None
    title = brief_title(study)
    study_conditions = conditions(study)
    sites = site_labels(study)
    eligibility = _module(study, "eligibilityModule")
    return ScorableTrial(
        trial_id=identifier,
        title=title,
        status=status_label(overall_status(study)),
        phase=phase_label(phases(study)),
        source="registry",
        corpus=" ".join([title, *study_conditions]),
        conditions=study_conditions,
        sponsor=lead_sponsor(study),
        location=sites[0] if sites else "",
        locations=sites,
        min_age=parse_age_years(eligibility.get("minimumAge")),
        max_age=parse_age_years(eligibility.get("maximumAge")),
        sex=parse_sex(eligibility.get("sex")),
    )
