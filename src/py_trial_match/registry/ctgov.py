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
"""Async client for the ClinicalTrials.gov v2 studies API."""

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from py_trial_match.config import Settings
from py_trial_match.result import ErrorKind, Result, error_kind_for

logger = logging.getLogger(__name__)

Study = dict[str, Any]

SEARCH_FIELDS = (
    "protocolSection.identificationModule.nctId",
    "protocolSection.identificationModule.briefTitle",
    "protocolSection.statusModule.overallStatus",
    "protocolSection.conditionsModule.conditions",
    "protocolSection.designModule.phases",
    "protocolSection.contactsLocationsModule.locations",
    "protocolSection.sponsorCollaboratorsModule.leadSponsor",
    "protocolSection.statusModule.startDateStruct",
    "protocolSection.statusModule.primaryCompletionDateStruct",
    "protocolSection.eligibilityModule.minimumAge",
    "protocolSection.eligibilityModule.maximumAge",
    "protocolSection.eligibilityModule.sex",
)

DETAIL_FIELDS = (
    "protocolSection.identificationModule.nctId",
    "protocolSection.identificationModule.briefTitle",
    "protocolSection.statusModule.overallStatus",
    "protocolSection.conditionsModule.conditions",
    "protocolSection.designModule.phases",
    "protocolSection.contactsLocationsModule.locations",
    "protocolSection.sponsorCollaboratorsModule.leadSponsor",
    "protocolSection.descriptionModule.briefSummary",
    "protocolSection.eligibilityModule.eligibilityCriteria",
    "protocolSection.eligibilityModule.minimumAge",
    "protocolSection.eligibilityModule.maximumAge",
    "protocolSection.eligibilityModule.sex",
)


class RegistryQuery(BaseModel):
    """One search against the registry.

    `cond` accepts the registry's boolean syntax (AND/OR groups, quoted
    phrases). A geo filter is sent only when both coordinates are set.
    """

    cond: str = ""
    status: str = ""
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    radius_mi: float | None = None
    page_size: int | None = None

    @property
    def has_geo(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class CtgovClient:
    """Search and detail lookups. Failures come back as `Result` errors."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.base_url = settings.registry_base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": "py-trial-match/0.1.0"},
            follow_redirects=True,
            timeout=settings.request_timeout,
        )

    async def __aenter__(self) -> "CtgovClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def build_search_params(self, query: RegistryQuery) -> dict[str, str]:
        params = {
            "format": "json",
            "pageSize": str(query.page_size or self.settings.registry_page_size),
            "fields": ",".join(SEARCH_FIELDS),
        }
        if query.status:
            params["filter.overallStatus"] = query.status
        if query.cond:
            params["query.cond"] = query.cond
        if query.location:
            params["query.locn"] = query.location
        if query.has_geo:
            radius = query.radius_mi or self.settings.default_radius_mi
            params["filter.geo"] = (
                f"distance({query.latitude},{query.longitude},{radius:g}mi)"
            )
        return params

    async def search(self, query: RegistryQuery) -> Result[list[Study]]:
        """Runs one search and returns the studies on the first page."""
        params = self.build_search_params(query)
        try:
            response = await self.client.get(f"{self.base_url}/studies", params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Registry search failed (%s): %s", params.get("query.cond", ""), e)
            return Result.failure(error_kind_for(e), str(e))

        studies = payload.get("studies") if isinstance(payload, dict) else None
        if studies is None:
            return Result.success([])
        if not isinstance(studies, list):
            return Result.failure(ErrorKind.PROTOCOL, "'studies' is not a list")
        return Result.success([s for s in studies if isinstance(s, dict)])

    async def get_by_identifier(self, nct_id: str) -> Result[Study]:
        """Fetches one study with its summary and eligibility criteria."""
        params = {"format": "json", "fields": ",".join(DETAIL_FIELDS)}
        try:
            response = await self.client.get(f"{self.base_url}/studies/{nct_id}", params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Registry detail lookup for %s failed: %s", nct_id, e)
            return Result.failure(error_kind_for(e), str(e))

        if isinstance(payload, dict) and "protocolSection" in payload:
            return Result.success(payload)
        studies = payload.get("studies") if isinstance(payload, dict) else None
        if isinstance(studies, list) and studies and isinstance(studies[0], dict):
            return Result.success(studies[0])
        return Result.failure(ErrorKind.NOT_FOUND, f"no study returned for {nct_id}")
