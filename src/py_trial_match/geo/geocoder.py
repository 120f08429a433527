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
"""Resolves free-text locations to coordinates with a cache and provider fallback."""

import logging
import re
from typing import Any

import httpx

from py_trial_match.cache.entries import GeocodeCache
from py_trial_match.config import Settings
from py_trial_match.geo.states import (
    UNITED_STATES,
    has_us_hint,
    normalize_location,
    normalize_state,
    within_us_bounds,
)
from py_trial_match.models.scoring import GeoResult
from py_trial_match.result import ErrorKind, Result, error_kind_for

logger = logging.getLogger(__name__)

_ZIP_RE = re.compile(r"^\s*(\d{5})(?:-\d{4})?\s*$")
_US_COUNTRY_TOKENS = ("US", "USA")


class GeocodeResolver:
    """Turns text such as '14301', 'Buffalo, NY' or 'Canada' into coordinates.

    ZIP codes go to the postal lookup first and are accepted only inside the
    contiguous U.S. with a state abbreviation. Everything else, and every
    postal miss, goes to the general geocoder. Failures never raise; the
    caller just gets None.
    """

    def __init__(
        self,
        settings: Settings,
        cache: GeocodeCache,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.geocoder_user_agent},
            follow_redirects=True,
            timeout=settings.request_timeout,
        )

    async def __aenter__(self) -> "GeocodeResolver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def resolve(self, text: str | None) -> GeoResult | None:
        """Returns coordinates and a label for `text`, or None when not found."""
        key = (text or "").strip()
        if not key:
            return None

        cached = await self.cache.aget(key)
        if cached is not None:
            logger.debug("Geocode cache hit for %r", key)
            return cached

        query = normalize_location(key)
        zip_match = _ZIP_RE.match(query)
        result: Result[GeoResult] = Result.failure(ErrorKind.NOT_FOUND)

        if zip_match:
            result = await self.lookup_zip(zip_match.group(1))
            if not result.ok:
                logger.info(
                    "Postal lookup missed for %s (%s); trying general geocoder",
                    query,
                    result.error.value,
                )

        if not result.ok:
            result = await self.search_text(query, require_us_bounds=bool(zip_match))

        if not result.ok or result.value is None:
            logger.info("Could not geocode %r: %s %s", key, result.error, result.detail)
            return None

        await self.cache.aset(key, result.value)
        return result.value

    async def lookup_zip(self, zip_code: str) -> Result[GeoResult]:
        """Queries the postal provider and applies strict U.S. validation."""
        url = f"{self.settings.zip_lookup_url.rstrip('/')}/{zip_code}"
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return Result.failure(error_kind_for(e), str(e))

        places = payload.get("places") if isinstance(payload, dict) else None
        if not places:
            return Result.failure(ErrorKind.NOT_FOUND, "no places in postal response")
        place = places[0]
        try:
            lat = float(place.get("latitude"))
            lng = float(place.get("longitude"))
        except (TypeError, ValueError):
            return Result.failure(ErrorKind.PROTOCOL, "postal response lacks coordinates")

        city = str(place.get("place name") or place.get("place") or "").strip()
        state = str(place.get("state abbreviation") or "").strip()
        if not state or not within_us_bounds(lat, lng):
            return Result.failure(
                ErrorKind.NOT_FOUND, f"{zip_code} resolved outside the contiguous U.S."
            )
        label = ", ".join(part for part in (city, state) if part)
        return Result.success(GeoResult(latitude=lat, longitude=lng, label=label))

    async def _fetch_candidates(self, params: dict[str, str]) -> Result[list[dict[str, Any]]]:
        try:
            response = await self.client.get(self.settings.geocoder_url, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return Result.failure(error_kind_for(e), str(e))
        if not isinstance(payload, list):
            return Result.failure(ErrorKind.PROTOCOL, "geocoder did not return a list")
        return Result.success(payload)

    def _search_params(self, query: str, looks_like_us: bool) -> dict[str, str]:
        params = {"format": "jsonv2", "limit": str(self.settings.geocoder_candidate_limit)}
        if not looks_like_us:
            params["q"] = query
            return params

        params["countrycodes"] = "us"
        parts = [p.strip() for p in query.split(",") if p.strip()]
        if len(parts) >= 2 and normalize_state(parts[-1]):
            params["city"] = ", ".join(parts[:-1])
            params["state"] = parts[-1]
            params["country"] = UNITED_STATES
        elif query == UNITED_STATES:
            params["q"] = query
        else:
            params["q"] = f"{query}, {UNITED_STATES}"
        return params

    async def search_text(self, query: str, require_us_bounds: bool = False) -> Result[GeoResult]:
        """Queries the general geocoder for up to N candidates and picks one."""
        looks_like_us = has_us_hint(query)
        result = await self._fetch_candidates(self._search_params(query, looks_like_us))
        if looks_like_us and (not result.ok or not result.value):
            # The structured/country-restricted form can be too strict.
            fmt = {"format": "jsonv2", "limit": str(self.settings.geocoder_candidate_limit)}
            result = await self._fetch_candidates({**fmt, "q": query})
        if not result.ok:
            return Result.failure(result.error, result.detail)

        candidates = [c for c in result.value or [] if _coordinates(c) is not None]
        if require_us_bounds:
            candidates = [c for c in candidates if within_us_bounds(*_coordinates(c))]
        if not candidates:
            return Result.failure(ErrorKind.NOT_FOUND, f"no candidates for {query!r}")

        chosen = _pick_candidate(candidates, prefer_us=looks_like_us)
        lat, lng = _coordinates(chosen)
        label = str(chosen.get("display_name") or "")
        return Result.success(GeoResult(latitude=lat, longitude=lng, label=label))


def _coordinates(candidate: dict[str, Any]) -> tuple[float, float] | None:
    try:
        return float(candidate.get("lat")), float(candidate.get("lon"))
    except (TypeError, ValueError):
        return None


def _is_us_label(label: str) -> bool:
    """'..., United States' or a trailing ', US' / ', USA' token; not 'Cyprus'."""
    upper = label.upper()
    if "UNITED STATES" in upper:
        return True
    return upper.rsplit(",", 1)[-1].strip() in _US_COUNTRY_TOKENS


def _pick_candidate(candidates: list[dict[str, Any]], prefer_us: bool) -> dict[str, Any]:
    if not prefer_us:
        return candidates[0]
    for candidate in candidates:
        if _is_us_label(str(candidate.get("display_name") or "")):
            return candidate
    for candidate in candidates:
        if within_us_bounds(*_coordinates(candidate)):
            return candidate
    return candidates[0]
