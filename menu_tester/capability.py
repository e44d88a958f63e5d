"""Capability boundary: the narrow browser/perception interface the core depends on.

The core never talks to Playwright or the AI model directly. It calls a
``Capability`` and, for perception queries, goes through ``PerceptionBoundary``
which turns every loosely-typed answer into a tagged result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Awaitable, Literal, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_TRUE_WORDS = {"true", "yes", "y", "1"}
_FALSE_WORDS = {"false", "no", "n", "0"}


@runtime_checkable
class Capability(Protocol):
    """Browser + AI perception operations. Any call may be slow or raise."""

    async def navigate(self, url: str) -> None: ...

    async def current_url(self) -> str: ...

    async def go_back(self, timeout_ms: int) -> None: ...

    async def reload(self) -> None: ...

    async def scroll(self, distance: int) -> None: ...

    async def tap(self, description: str) -> None: ...

    async def query_boolean(self, prompt: str, timeout_ms: Optional[int] = None) -> Any: ...

    async def query_structured(self, prompt: str, timeout_ms: Optional[int] = None) -> Any: ...

    async def wait_for_condition(self, prompt: str, timeout_ms: int) -> None: ...

    async def screenshot(self) -> bytes: ...


class CredentialInjector(Protocol):
    async def inject(self) -> bool: ...


class BooleanResult(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool


class StructuredResult(BaseModel):
    kind: Literal["structured"] = "structured"
    value: Any = None


class CapabilityFailure(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    timed_out: bool = False


PerceptionResult = Annotated[
    Union[BooleanResult, StructuredResult, CapabilityFailure],
    Field(discriminator="kind"),
]


def coerce_boolean(value: Any) -> bool:
    """Coerce a perception answer to bool, or raise ValueError."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().strip(".").lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    if isinstance(value, dict):
        for key in ("value", "answer", "result"):
            if key in value:
                return coerce_boolean(value[key])
    raise ValueError(f"Not a boolean answer: {value!r}")


class PerceptionBoundary:
    """Timeout-bounded, typed access to a capability's perception calls."""

    def __init__(
        self,
        capability: Capability,
        default_timeout_ms: int = 5000,
        logger: Optional[logging.Logger] = None,
    ):
        self.capability = capability
        self.default_timeout_ms = default_timeout_ms
        self.log = logger or logging.getLogger(__name__)

    async def _bounded(self, label: str, call: Awaitable[Any], timeout_ms: int) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"{label} timeout after {timeout_ms}ms") from e

    async def ask_boolean(
        self, prompt: str, timeout_ms: Optional[int] = None,
    ) -> Union[BooleanResult, CapabilityFailure]:
        timeout_ms = timeout_ms or self.default_timeout_ms
        try:
            raw = await self._bounded(
                "query_boolean",
                self.capability.query_boolean(prompt, timeout_ms),
                timeout_ms,
            )
        except TimeoutError as e:
            self.log.debug("Boolean query timed out: %s", prompt)
            return CapabilityFailure(message=str(e), timed_out=True)
        except Exception as e:
            self.log.debug("Boolean query failed: %s (%s)", prompt, e)
            return CapabilityFailure(message=str(e))
        try:
            return BooleanResult(value=coerce_boolean(raw))
        except ValueError as e:
            return CapabilityFailure(message=str(e))

    async def ask_structured(
        self, prompt: str, timeout_ms: Optional[int] = None,
    ) -> Union[StructuredResult, CapabilityFailure]:
        timeout_ms = timeout_ms or self.default_timeout_ms
        try:
            raw = await self._bounded(
                "query_structured",
                self.capability.query_structured(prompt, timeout_ms),
                timeout_ms,
            )
        except TimeoutError as e:
            return CapabilityFailure(message=str(e), timed_out=True)
        except Exception as e:
            self.log.debug("Structured query failed: %s (%s)", prompt, e)
            return CapabilityFailure(message=str(e))
        return StructuredResult(value=raw)

    async def wait_for(self, prompt: str, timeout_ms: int) -> bool:
        """Wait for a described condition. False on timeout or failure."""
        try:
            await self._bounded(
                "wait_for_condition",
                self.capability.wait_for_condition(prompt, timeout_ms),
                # Leave the capability room to report its own timeout first
                timeout_ms + 1000,
            )
            return True
        except Exception as e:
            self.log.debug("Condition not met: %s (%s)", prompt, e)
            return False

    async def is_true(self, prompt: str, timeout_ms: Optional[int] = None) -> bool:
        """Shorthand: a failed query counts as False."""
        result = await self.ask_boolean(prompt, timeout_ms)
        return isinstance(result, BooleanResult) and result.value
