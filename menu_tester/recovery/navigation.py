"""Navigation recovery — detect excursions outside the tested system and come back."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from menu_tester.capability import Capability
from menu_tester.models.config import NavigationConfig
from menu_tester.url_utils import system_name, within_boundary

logger = logging.getLogger(__name__)


@dataclass
class ReturnAttempt:
    returned: bool
    method: Optional[str] = None  # "go_back" or "navigate"
    attempts: int = 0
    final_url: str = ""
    error: Optional[str] = None


@dataclass
class NavigationOutcome:
    """Result of checking where an action left the browser.

    ``success`` stays True for a cross-boundary departure; ``return_success``
    says whether we got back and is for the caller to escalate.
    """
    success: bool = True
    is_cross_domain: bool = False
    return_success: Optional[bool] = None
    initial_url: str = ""
    page_url: str = ""
    target_system: Optional[str] = None
    method: Optional[str] = None
    error: Optional[str] = None


class NavigationRecoveryManager:
    def __init__(
        self,
        capability: Capability,
        config: Optional[NavigationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.capability = capability
        self.config = config or NavigationConfig()
        self.log = logger or logging.getLogger(__name__)
        self._expanded: set[str] = set()

    def is_cross_boundary(self, initial_url: str, current_url: str) -> bool:
        patterns = self.config.domain_patterns
        return within_boundary(initial_url, patterns) and not within_boundary(current_url, patterns)

    async def validate_navigation(
        self, initial_url: str, current_url: Optional[str] = None,
    ) -> NavigationOutcome:
        """Check for a cross-boundary departure and try to return. Never raises."""
        if current_url is None:
            try:
                current_url = await self.capability.current_url()
            except Exception as e:
                self.log.debug("Could not read current URL: %s", e)
                return NavigationOutcome(initial_url=initial_url, error=str(e))

        if not self.is_cross_boundary(initial_url, current_url):
            return NavigationOutcome(initial_url=initial_url, page_url=current_url)

        target_system = system_name(current_url)
        self.log.info("Left the tested system for '%s' (%s)", target_system, current_url)
        attempt = await self.return_to_boundary(initial_url)
        if attempt.returned:
            self.log.info("Returned to %s via %s", attempt.final_url, attempt.method)
        else:
            self.log.warning(
                "Could not return from '%s' after %d attempts", target_system, attempt.attempts,
            )
        return NavigationOutcome(
            is_cross_domain=True,
            return_success=attempt.returned,
            initial_url=initial_url,
            page_url=current_url,
            target_system=target_system,
            method=attempt.method,
            error=attempt.error,
        )

    async def return_to_boundary(self, initial_url: str) -> ReturnAttempt:
        """Go back first, then navigate to the anchor URL, up to max_return_attempts."""
        anchor = self.config.anchor_url or initial_url
        timeout_ms = self.config.cross_domain_timeout_ms
        last_error: Optional[str] = None
        final_url = ""

        for attempt in range(1, self.config.max_return_attempts + 1):
            method = "go_back" if attempt == 1 else "navigate"
            try:
                if method == "go_back":
                    call = self.capability.go_back(timeout_ms)
                else:
                    call = self.capability.navigate(anchor)
                await asyncio.wait_for(call, timeout=timeout_ms / 1000)
                if self.config.settle_ms > 0:
                    await asyncio.sleep(self.config.settle_ms / 1000)
                final_url = await self.capability.current_url()
            except asyncio.TimeoutError:
                last_error = f"{method} timeout after {timeout_ms}ms"
                self.log.debug("Return attempt %d: %s", attempt, last_error)
                continue
            except Exception as e:
                last_error = str(e)
                self.log.debug("Return attempt %d (%s) failed: %s", attempt, method, e)
                continue

            if within_boundary(final_url, self.config.domain_patterns):
                return ReturnAttempt(True, method, attempt, final_url)
            self.log.debug("Return attempt %d (%s) landed on %s", attempt, method, final_url)

        return ReturnAttempt(
            False, None, self.config.max_return_attempts, final_url, last_error,
        )

    # ------------------------------------------------------------------
    # Overflow menus
    # ------------------------------------------------------------------

    async def ensure_expanded(self, description: str) -> bool:
        """Expand an overflow ("more") affordance once per session.

        Returns True if a tap was made, False if it was already expanded or
        the tap failed.
        """
        if description in self._expanded:
            return False
        try:
            await self.capability.tap(description)
        except Exception as e:
            self.log.debug("Could not expand '%s': %s", description, e)
            return False
        self._expanded.add(description)
        return True

    def is_expanded(self, description: str) -> bool:
        return description in self._expanded

    def reset_expansions(self) -> None:
        self._expanded.clear()
