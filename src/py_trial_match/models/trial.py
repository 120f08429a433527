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
"""Pydantic models for trials, from both the static catalog and the registry."""

from typing import Literal

from pydantic import BaseModel, Field


class CatalogCenter(BaseModel):
    name: str
    city: str = ""
    state: str = ""


class CatalogCriteria(BaseModel):
    inclusion: list[str] = Field(default_factory=list)
    exclusion: list[str] = Field(default_factory=list)


class CatalogInvestigator(BaseModel):
    name: str = ""
    role: str = ""


class CatalogContact(BaseModel):
    name: str = ""
    phone: str = ""
    email: str = ""


class CatalogTrial(BaseModel):
    """A curated trial with full structured fields."""

    title: str
    slug: str = ""
    nct_id: str
    updated_on: str = ""
    center: str = ""
    other_centers_count: int = 0
    location: str = ""
    phase: str = ""
    min_age: int
    max_age: int
    status: Literal["Now Recruiting", "Completed", "Active", "Not Recruiting"]
    type: Literal["Interventional", "Observational"] = "Interventional"
    description: list[str] = Field(default_factory=list)
    gender: Literal["All", "Male", "Female"] = "All"
    purpose: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    sponsor: str = ""
    principal_investigator: CatalogInvestigator = Field(default_factory=CatalogInvestigator)
    interventions: list[str] = Field(default_factory=list)
    contacts: CatalogContact = Field(default_factory=CatalogContact)
    centers: list[CatalogCenter] = Field(default_factory=list)
    criteria: CatalogCriteria = Field(default_factory=CatalogCriteria)


class ScorableTrial(BaseModel):
    """The common view both scoring policies work on."""

    trial_id: str
    title: str
    status: str = ""
    phase: str = ""
    source: Literal["catalog", "registry"] = "registry"
    corpus: str = Field(
        default="", description="Free text assembled for tokenization."
    )
    conditions: list[str] = Field(default_factory=list)
    sponsor: str = ""
    location: str = ""
    locations: list[str] = Field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None
    min_age: float | None = None
    max_age: float | None = None
    sex: Literal["all", "male", "female"] | None = None
