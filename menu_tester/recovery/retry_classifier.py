"""Bounded retries with failure-kind-specific recovery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from menu_tester.capability import Capability, CredentialInjector, PerceptionBoundary
from menu_tester.models.config import RetryConfig

logger = logging.getLogger(__name__)

SCROLL_DISTANCE = 300


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    ELEMENT = "element"
    NAVIGATION = "navigation"
    AUTH = "auth"
    GENERIC = "generic"


# First match wins.
_CLASSIFICATION: list[tuple[FailureKind, tuple[str, ...]]] = [
    (FailureKind.TIMEOUT, ("timeout",)),
    (FailureKind.ELEMENT, ("element", "selector")),
    (FailureKind.NAVIGATION, ("navigation", "page")),
    (FailureKind.AUTH, ("auth", "login")),
]


def classify_error(message: Optional[str]) -> FailureKind:
    """Map an error message to a failure kind by case-insensitive substring."""
    text = (message or "").lower()
    for kind, needles in _CLASSIFICATION:
        if any(needle in text for needle in needles):
            return kind
    return FailureKind.GENERIC


@dataclass
class RetryContext:
    label: str = "operation"
    initial_url: Optional[str] = None
    target: Optional[str] = None  # menu text to scroll-search for
    credential_injector: Optional[CredentialInjector] = None
    force_precheck: bool = False


@dataclass
class RetryOutcome:
    success: bool
    data: Any = None
    attempts_used: int = 0
    last_error_message: Optional[str] = None
    error_kind: Optional[FailureKind] = None


class RetryClassifier:
    """Wraps a fallible async operation with bounded, fixed-delay retries.

    Attempts run 1..max_attempts+1. After every failure, the last one included,
    the error is classified and a recovery action runs; whether recovery
    worked only changes what is logged. ``execute_with_retry`` never raises.
    """

    def __init__(
        self,
        capability: Capability,
        config: Optional[RetryConfig] = None,
        precheck: Optional[Callable[[], Awaitable[None]]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.capability = capability
        self.config = config or RetryConfig()
        self.boundary = PerceptionBoundary(capability, logger=logger)
        self.precheck = precheck or self.dismiss_overlays
        self.log = logger or logging.getLogger(__name__)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        context: Optional[RetryContext] = None,
        max_attempts: Optional[int] = None,
    ) -> RetryOutcome:
        context = context or RetryContext()
        max_attempts = self.config.max_retries if max_attempts is None else max_attempts
        last_error: Optional[str] = None
        last_kind: Optional[FailureKind] = None
        total = max_attempts + 1

        for attempt in range(1, total + 1):
            if attempt == 1 or context.force_precheck:
                await self._run_precheck()

            try:
                data = await operation()
                if attempt > 1:
                    self.log.info("%s succeeded on attempt %d/%d", context.label, attempt, total)
                return RetryOutcome(success=True, data=data, attempts_used=attempt)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                last_kind = classify_error(last_error)
                self.log.warning(
                    "%s failed (attempt %d/%d, %s): %s",
                    context.label, attempt, total, last_kind.value, last_error,
                )

            # Every failure gets its recovery action; only the delay needs attempts left.
            recovered = await self.recover(last_kind, context)
            if recovered:
                self.log.debug("Recovery for %s succeeded", last_kind.value)
            else:
                self.log.debug("Recovery for %s did not help", last_kind.value)
            if attempt < total:
                await self._sleep(self.config.retry_delay_ms)

        self.log.error("%s failed after %d attempts: %s", context.label, total, last_error)
        return RetryOutcome(
            success=False,
            data=None,
            attempts_used=total,
            last_error_message=last_error,
            error_kind=last_kind,
        )

    async def _run_precheck(self) -> None:
        try:
            await self.precheck()
        except Exception as e:
            self.log.debug("Pre-check failed: %s", e)

    # ------------------------------------------------------------------
    # Recovery actions
    # ------------------------------------------------------------------

    async def recover(self, kind: FailureKind, context: RetryContext) -> bool:
        """Run the recovery action for ``kind``. Never raises."""
        action = {
            FailureKind.TIMEOUT: self._recover_timeout,
            FailureKind.ELEMENT: self._recover_element,
            FailureKind.NAVIGATION: self._recover_navigation,
            FailureKind.AUTH: self._recover_auth,
        }.get(kind, self._recover_generic)
        try:
            return await action(context)
        except Exception as e:
            self.log.debug("Recovery action %s raised: %s", kind.value, e)
            return False

    async def _recover_timeout(self, context: RetryContext) -> bool:
        if await self.is_responsive():
            await self._sleep(self.config.extended_wait_ms)
            return True
        self.log.info("Page unresponsive, reloading")
        await self.capability.reload()
        await self._sleep(self.config.reload_settle_ms)
        return await self.is_responsive()

    async def _recover_element(self, context: RetryContext) -> bool:
        await self.boundary.wait_for(
            "The page has finished loading and its layout is stable",
            self.config.stability_timeout_ms,
        )
        if not context.target:
            return True
        await self.capability.scroll(SCROLL_DISTANCE)
        return await self.boundary.is_true(
            f'Is the menu item "{context.target}" visible on the page?',
            self.config.probe_timeout_ms,
        )

    async def _recover_navigation(self, context: RetryContext) -> bool:
        if context.initial_url:
            self.log.info("Navigating back to %s", context.initial_url)
            await self.capability.navigate(context.initial_url)
            await self._sleep(self.config.extended_wait_ms)
        else:
            await self.capability.reload()
            await self._sleep(self.config.reload_settle_ms)
        return True

    async def _recover_auth(self, context: RetryContext) -> bool:
        if context.credential_injector is None:
            return False
        self.log.info("Re-injecting credentials")
        return bool(await context.credential_injector.inject())

    async def _recover_generic(self, context: RetryContext) -> bool:
        await self._sleep(self.config.retry_delay_ms)
        return await self.is_responsive()

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def is_responsive(self) -> bool:
        return await self.boundary.is_true(
            "Is the page responsive and showing rendered content?",
            self.config.probe_timeout_ms,
        )

    async def dismiss_overlays(self) -> None:
        """Default pre-check: close a blocking popup if one is showing."""
        blocked = await self.boundary.is_true(
            "Is a popup, modal dialog or overlay covering the page?",
            self.config.probe_timeout_ms,
        )
        if blocked:
            self.log.debug("Dismissing overlay before operation")
            await self.capability.tap("the close button of the popup or dialog")
            await self._sleep(self.config.popup_settle_ms)

    @staticmethod
    async def _sleep(ms: int) -> None:
        await asyncio.sleep(ms / 1000 if ms > 0 else 0)
