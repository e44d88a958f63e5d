"""Yes/no perception checks run after each navigation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from menu_tester.capability import BooleanResult, PerceptionBoundary
from menu_tester.models.config import PageCheck, default_page_checks

logger = logging.getLogger(__name__)

SETTLE_TIMEOUT_MS = 3000


@dataclass
class PageValidationResult:
    success: bool
    checks: dict[str, bool] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.failures) if self.failures else None


def rule_checks(rules: Optional[dict[str, Any]]) -> list[PageCheck]:
    """Turn cached route validation rules into extra checks."""
    if not rules:
        return []
    checks: list[PageCheck] = []
    title = rules.get("pageTitle")
    if title:
        checks.append(PageCheck(
            name="pageTitle",
            prompt=f'Is the page title or main heading "{title}"?',
            expectation=True,
            failure_message=f'Expected page title "{title}"',
        ))
    for element in rules.get("expectedElements") or []:
        checks.append(PageCheck(
            name=f"expectedElement:{element}",
            prompt=f'Does the page contain the element "{element}"?',
            expectation=True,
            failure_message=f'Expected element "{element}" not found',
        ))
    return checks


class PageValidator:
    def __init__(
        self,
        boundary: PerceptionBoundary,
        checks: Optional[list[PageCheck]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.boundary = boundary
        self.checks = checks if checks is not None else default_page_checks()
        self.log = logger or logging.getLogger(__name__)

    async def wait_for_settle(self) -> None:
        """Best effort: give a page that reports itself as loading time to finish."""
        loading = await self.boundary.ask_boolean(
            "Is the page still loading (spinner, skeleton or progress bar visible)?",
        )
        if isinstance(loading, BooleanResult) and loading.value:
            await self.boundary.wait_for("The page has finished loading", SETTLE_TIMEOUT_MS)

    async def validate(self, rules: Optional[dict[str, Any]] = None) -> PageValidationResult:
        await self.wait_for_settle()
        return await self.run_checks(self.checks + rule_checks(rules))

    async def run_checks(self, checks: list[PageCheck]) -> PageValidationResult:
        result = PageValidationResult(success=True)
        for check in checks:
            answer = await self.boundary.ask_boolean(check.prompt, check.timeout_ms)
            if isinstance(answer, BooleanResult):
                passed = answer.value == check.expectation
                reason = check.failure_message or f"{check.name} check failed"
            else:
                passed = False
                reason = f"{check.name} check error: {answer.message}"

            result.checks[check.name] = passed
            if passed:
                continue
            result.success = False
            result.failures.append(reason)
            self.log.debug("Page check %s failed: %s", check.name, reason)
            if check.fail_fast:
                break
        return result
