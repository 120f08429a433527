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
"""Great-circle distance and travel radius parsing."""

import math
import re

EARTH_RADIUS_MI = 3958.8
KM_TO_MI = 0.621371

_RADIUS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(mi|km)?", re.IGNORECASE)


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in miles between two points on the Earth's surface."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MI * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def parse_radius(text: str | None) -> float | None:
    """Parses '50mi', '80 km' or '25' into miles. Unit defaults to miles."""
    if not text:
        return None
    match = _RADIUS_RE.search(str(text))
    if not match:
        return None
    value = float(match.group(1))
    unit = (match.group(2) or "mi").lower()
    return value * KM_TO_MI if unit == "km" else value
