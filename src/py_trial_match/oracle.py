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
"""External scoring oracle: prompt rendering, webhook and direct model calls."""

import asyncio
import json
import logging
import math
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import httpx
import openai
from jinja2 import Environment, FileSystemLoader
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from py_trial_match.cache.entries import WebhookHealthCache
from py_trial_match.config import Settings
from py_trial_match.models.profile import NormalizedProfile
from py_trial_match.registry import mapping
from py_trial_match.result import ErrorKind, Result, error_kind_for
from py_trial_match.scoring.rationale import truncate
from py_trial_match.scoring.tokenizer import clamp, round_half_up

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
PROMPT_TEMPLATE = "scoring_prompt.j2"
CRITERIA_LIMIT = 1200
SYSTEM_MESSAGE = (
    "You score clinical trial eligibility and fit. Output ONLY valid compact JSON "
    "with fields score (0-100 integer) and rationale (<=160 chars). "
    "Do not include any other text."
)

_CODE_FENCE_RE = re.compile(r"^```\w*\n|```$")

_jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=False,  # plain-text prompt
    trim_blocks=True,
    lstrip_blocks=True,
)


class OracleScore(BaseModel):
    """A validated oracle answer.

    The score may arrive as a number or a numeric string; it is rounded and
    clamped into [0, 100]. Some scorers send `reason` instead of `rationale`.
    """

    model_config = ConfigDict(frozen=True)

    score: int
    rationale: str | None = Field(
        default=None, validation_alias=AliasChoices("rationale", "reason")
    )

    @field_validator("score", mode="before")
    @classmethod
    def round_and_clamp(cls, value: Any) -> int:
        if value is None or isinstance(value, bool):
            raise ValueError("score must be a number")
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"score {value!r} is not numeric") from e
        if not math.isfinite(number):
            raise ValueError("score is not finite")
        return int(clamp(round_half_up(number)))

    @field_validator("rationale", mode="before")
    @classmethod
    def trim_rationale(cls, value: Any) -> str | None:
        if value is None:
            return None
        return truncate(str(value).strip()) or None


def parse_oracle_payload(data: Any) -> Result[OracleScore]:
    """Validates an oracle response body.

    A missing or non-numeric score is a protocol error so callers treat the
    response as a miss.
    """
    if not isinstance(data, dict):
        return Result.failure(ErrorKind.PROTOCOL, "response is not a JSON object")
    try:
        return Result.success(OracleScore.model_validate(data))
    except ValidationError as e:
        return Result.failure(ErrorKind.PROTOCOL, f"invalid oracle response: {e.error_count()} error(s)")


def strip_code_fence(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text.strip()).strip()


def study_facts(study: dict[str, Any]) -> dict[str, Any]:
    """The trial fields shown to the oracle."""
    locations = (
        study.get("protocolSection", {}).get("contactsLocationsModule", {}).get("locations")
        or [{}]
    )
    first = locations[0] if isinstance(locations[0], dict) else {}
    return {
        "nct_id": mapping.nct_id(study),
        "title": mapping.brief_title(study),
        "status": mapping.overall_status(study),
        "conditions": mapping.conditions(study),
        "phases": mapping.phases(study),
        "location": ", ".join(
            str(first[k]) for k in ("city", "state", "country") if first.get(k)
        ),
        "summary": mapping.brief_summary(study),
        "criteria": mapping.eligibility_criteria(study)[:CRITERIA_LIMIT],
    }


def build_scoring_prompt(profile: NormalizedProfile, study: dict[str, Any]) -> str:
    template = _jinja_env.get_template(PROMPT_TEMPLATE)
    return template.render(
        profile=profile,
        medications=sorted(profile.medications),
        allergies=sorted(profile.allergies),
        trial=study_facts(study),
    )


def profile_payload(profile: NormalizedProfile) -> dict[str, Any]:
    return {
        "age": profile.age,
        "gender": profile.gender,
        "primaryCondition": profile.primary_condition,
        "medications": sorted(profile.medications),
        "allergies": sorted(profile.allergies),
        "additionalInfo": profile.additional_notes,
    }


class WebhookOracle:
    """POSTs the scoring request to a configured webhook.

    A recent unhealthy mark for the endpoint skips the call entirely. A
    failed attempt is retried once after `webhook_retry_delay` seconds.
    """

    def __init__(
        self,
        settings: Settings,
        health: WebhookHealthCache,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.url = settings.ai_scorer_url
        self.health = health
        self.client = client or httpx.AsyncClient(timeout=settings.oracle_timeout)
        self.sleep = sleep

    async def score(
        self,
        profile: NormalizedProfile,
        trial_id: str,
        study: dict[str, Any],
        prompt: str,
    ) -> Result[OracleScore]:
        if not self.url:
            return Result.failure(ErrorKind.NOT_CONFIGURED, "no webhook URL configured")
        if await self.health.ais_suppressed(self.url):
            logger.debug("Skipping webhook %s; marked unhealthy", self.url)
            return Result.failure(ErrorKind.SUPPRESSED, "endpoint recently unhealthy")

        payload = {
            "profile": profile_payload(profile),
            "nct_id": trial_id,
            "study": study,
            "prompt": prompt,
        }
        result = await self._attempt(payload)
        if result.ok:
            return result
        logger.info("Webhook attempt for %s failed (%s); retrying once", trial_id, result.error.value)
        await self.sleep(self.settings.webhook_retry_delay)
        return await self._attempt(payload)

    async def _attempt(self, payload: dict[str, Any]) -> Result[OracleScore]:
        try:
            response = await self.client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            await self.health.amark(self.url, healthy=False)
            return Result.failure(error_kind_for(e), str(e))
        await self.health.amark(self.url, healthy=True)
        return parse_oracle_payload(data)


class OpenAIOracle:
    """Direct chat-completion call. Only allowed in a trusted context.

    The `AsyncOpenAI` client is built on first use, so an unconfigured
    oracle never needs an API key.
    """

    def __init__(
        self,
        settings: Settings,
        client: openai.AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.http_client = http_client
        self._client = client
        self._owns_client = False

    @property
    def configured(self) -> bool:
        return bool(self.settings.trusted_context and self.settings.openai_api_key)

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                timeout=self.settings.oracle_timeout,
                max_retries=0,
                http_client=self.http_client,
            )
            # A shared HTTP client belongs to whoever passed it in.
            self._owns_client = self.http_client is None
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()

    async def score(self, prompt: str) -> Result[OracleScore]:
        if not self.configured:
            return Result.failure(
                ErrorKind.NOT_CONFIGURED, "direct model calls need a trusted context and API key"
            )
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            logger.warning("Direct model call failed: %s", e)
            return Result.failure(error_kind_for(e), str(e))

        if not response.choices or not response.choices[0].message.content:
            return Result.failure(ErrorKind.PROTOCOL, "model returned no content")
        try:
            data = json.loads(strip_code_fence(response.choices[0].message.content))
        except ValueError as e:
            return Result.failure(ErrorKind.PROTOCOL, f"model output is not JSON: {e}")
        return parse_oracle_payload(data)


class ScoringOracle:
    """Webhook first, then the direct model call."""

    def __init__(
        self,
        webhook: WebhookOracle | None = None,
        direct: OpenAIOracle | None = None,
        owned_client: httpx.AsyncClient | None = None,
    ):
        self.webhook = webhook
        self.direct = direct
        self._owned_client = owned_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        health: WebhookHealthCache,
        client: httpx.AsyncClient | None = None,
    ) -> "ScoringOracle":
        owned = None
        if client is None:
            client = owned = httpx.AsyncClient(timeout=settings.oracle_timeout)
        return cls(
            webhook=WebhookOracle(settings, health, client=client),
            direct=OpenAIOracle(settings, http_client=client),
            owned_client=owned,
        )

    async def aclose(self) -> None:
        if self.direct is not None:
            await self.direct.aclose()
        if self._owned_client is not None:
            await self._owned_client.aclose()

    @property
    def configured(self) -> bool:
        return bool(
            (self.webhook is not None and self.webhook.url)
            or (self.direct is not None and self.direct.configured)
        )

    async def score(
        self,
        profile: NormalizedProfile,
        trial_id: str,
        study: dict[str, Any],
        prompt: str,
    ) -> Result[OracleScore]:
        result: Result[OracleScore] = Result.failure(ErrorKind.NOT_CONFIGURED)
        if self.webhook is not None:
            result = await self.webhook.score(profile, trial_id, study, prompt)
            if result.ok:
                return result
            logger.debug("Webhook oracle miss for %s: %s", trial_id, result.error.value)
        if self.direct is not None:
            result = await self.direct.score(prompt)
            if not result.ok:
                logger.debug("Direct oracle miss for %s: %s", trial_id, result.error.value)
        return result
