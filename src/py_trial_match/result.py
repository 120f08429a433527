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
"""Typed outcomes for calls to external services.

Registry, geocoding and oracle wrappers return a `Result` instead of raising,
so the orchestration layer decides what a failure means (usually "treat as a
miss") while the cause stays available for logging.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

import httpx
import openai

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Why an external call produced no usable value."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    PROTOCOL = "protocol"
    NOT_FOUND = "not_found"
    NOT_CONFIGURED = "not_configured"
    SUPPRESSED = "suppressed"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an `ErrorKind` with a short detail message."""

    value: T | None = None
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str = "") -> "Result[T]":
        return cls(error=error, detail=detail)

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value


def error_kind_for(exc: Exception) -> ErrorKind:
    """Maps an httpx, OpenAI SDK or decoding exception to an `ErrorKind`."""
    if isinstance(exc, openai.APITimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return ErrorKind.TRANSPORT
    if isinstance(exc, openai.APIStatusError):
        return ErrorKind.NOT_FOUND if exc.status_code == 404 else ErrorKind.HTTP_STATUS
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 404:
            return ErrorKind.NOT_FOUND
        return ErrorKind.HTTP_STATUS
    if isinstance(exc, httpx.HTTPError):
        return ErrorKind.TRANSPORT
    return ErrorKind.PROTOCOL
