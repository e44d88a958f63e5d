"""Builds targets, drives the browser and records each outcome."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from playwright.async_api import async_playwright

from menu_tester.ai.client import AIClient, set_debug_dir
from menu_tester.auth.token_injector import TokenInjector
from menu_tester.browser.agent import PlaywrightAgent
from menu_tester.browser.launcher import create_context, launch_browser
from menu_tester.cache.route_cache import RouteCacheStore
from menu_tester.capability import Capability, CredentialInjector, PerceptionBoundary
from menu_tester.discovery.menu_discovery import OVERFLOW_MENU, MenuDiscovery
from menu_tester.errors import ConfigError
from menu_tester.models.config import MenuTesterConfig
from menu_tester.models.session import TargetDescriptor, TargetResult
from menu_tester.recovery.navigation import NavigationOutcome, NavigationRecoveryManager
from menu_tester.recovery.retry_classifier import RetryClassifier, RetryContext
from menu_tester.regression.screenshot_engine import ScreenshotRegressionEngine
from menu_tester.session.state_machine import SessionStateMachine
from menu_tester.validation.page_validator import PageValidationResult, PageValidator

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted"


@dataclass
class RunStats:
    cross_domain_departures: int = 0
    failed_returns: int = 0
    visual_mismatches: int = 0
    routes_recorded: int = 0


class Orchestrator:
    """Coordinates one test run from target selection to the final summary."""

    def __init__(self, config: MenuTesterConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.log = logger or logging.getLogger(__name__)
        self.output_dir = config.output_path
        self.route_cache = RouteCacheStore(
            self.output_dir / "menu-cache", config.url, config.cache, logger=self.log,
        )
        self.screenshots = ScreenshotRegressionEngine(config.screenshots, logger=self.log)
        self.stats = RunStats()
        self.mode_used: str = config.mode
        self.needs_discovery = False
        self._stop_requested = False

    def request_stop(self) -> None:
        """Stop before the next target; the session is then marked failed."""
        self._stop_requested = True

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, resume_session_id: Optional[str] = None) -> dict[str, Any]:
        return asyncio.run(self._run(resume_session_id))

    async def _run(self, resume_session_id: Optional[str]) -> dict[str, Any]:
        start = time.time()
        machine = SessionStateMachine(self.output_dir, self.config, logger=self.log)

        if resume_session_id:
            snapshot = machine.load_for_resume(resume_session_id)
            targets = machine.resumable_targets(snapshot)
            self.mode_used = snapshot.step_details.get("mode", self.config.mode)
            machine.resume_from(snapshot)
            self.route_cache.load()
            self.log.info("Resuming %d unfinished targets", len(targets))
        else:
            targets = self.build_targets()
            if not self.needs_discovery:
                self._start_session(machine, targets)

        try:
            summary = await self._run_in_browser(machine, targets)
        except Exception as e:
            if machine.session is not None:
                machine.fail(str(e))
            raise
        self.log.info("=== Run finished in %.1fs ===", time.time() - start)
        return summary

    async def _run_in_browser(
        self, machine: SessionStateMachine, targets: list[TargetDescriptor],
    ) -> dict[str, Any]:
        set_debug_dir(self.output_dir / "debug")
        ai_client = AIClient(model=self.config.ai_model, max_tokens=self.config.ai_max_tokens)

        async with async_playwright() as pw:
            browser = await launch_browser(pw, headless=self.config.headless)
            try:
                context = await create_context(browser, self.config.viewport.model_dump())
                page = await context.new_page()
                injector = TokenInjector(
                    page, context, self.config.url, self.config.token,
                    method=self.config.token_method, token_name=self.config.token_name,
                )
                await injector.inject()
                agent = PlaywrightAgent(page, ai_client, timeout_ms=self.config.timeout_ms)
                await agent.navigate(self.config.url)
                if self.needs_discovery:
                    targets = await self.discover_targets(agent)
                    self._start_session(machine, targets)
                return await self.run_targets(machine, agent, targets, injector)
            finally:
                await browser.close()

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def build_targets(self) -> list[TargetDescriptor]:
        """Pick routes or menus according to the configured mode."""
        mode = self.config.mode
        self.route_cache.load()
        routes = self.route_cache.all_routes()

        if mode == "route":
            if not routes:
                raise ConfigError(
                    "Route mode needs cached routes. Import some with 'menu-tester routes import'."
                )
            if not self.route_cache.is_valid():
                self.log.warning("Route cache is stale or forced fresh; using it anyway in route mode")
            use_routes = True
        elif mode == "menu":
            use_routes = False
        else:
            use_routes = bool(routes) and self.route_cache.is_valid()

        if use_routes:
            self.mode_used = "route"
            return [
                TargetDescriptor(
                    id=f"route-{i}",
                    text=entry.menu_text,
                    level=entry.level,
                    url=entry.original_url or entry.normalized_url,
                )
                for i, entry in enumerate(routes, 1)
            ]

        self.mode_used = "menu"
        if not self.config.menus:
            if not self.config.discovery.enabled:
                raise ConfigError("No menus configured, discovery is off and no usable route cache")
            # Menus are found on the live page once the browser is up
            self.log.info("No menus configured; they will be discovered on the page")
            self.needs_discovery = True
            return []
        return [
            TargetDescriptor(
                id=menu.id or f"menu-{i}",
                text=menu.text,
                level=menu.level,
                scenario=menu.scenario,
            )
            for i, menu in enumerate(self.config.menus, 1)
        ]

    async def discover_targets(self, capability: Capability) -> list[TargetDescriptor]:
        """Build menu targets from what the start page shows."""
        discovery = MenuDiscovery(
            capability,
            PerceptionBoundary(capability, self.config.timeout_ms, logger=self.log),
            NavigationRecoveryManager(capability, self.config.navigation, logger=self.log),
            self.config.discovery,
            self.config.skip_patterns,
            logger=self.log,
        )
        targets = await discovery.discover(self.config.url)
        if not targets:
            raise ConfigError(f"Menu discovery found nothing to test on {self.config.url}")
        self.needs_discovery = False
        return targets

    def _start_session(self, machine: SessionStateMachine, targets: list[TargetDescriptor]) -> None:
        machine.initialize(targets)
        machine.update_step("targets_built", {"mode": self.mode_used, "count": len(targets)})

    def matches_skip_pattern(self, text: str) -> bool:
        lowered = text.lower()
        return any(pattern.lower() in lowered for pattern in self.config.skip_patterns)

    async def run_targets(
        self,
        machine: SessionStateMachine,
        capability: Capability,
        targets: list[TargetDescriptor],
        credential_injector: Optional[CredentialInjector] = None,
    ) -> dict[str, Any]:
        """Test targets one after another and finish the session."""
        boundary = PerceptionBoundary(capability, self.config.timeout_ms, logger=self.log)
        retry = RetryClassifier(capability, self.config.retry, logger=self.log)
        navigation = NavigationRecoveryManager(capability, self.config.navigation, logger=self.log)
        validator = PageValidator(boundary, self.config.page_checks, logger=self.log)

        try:
            for target in targets:
                if self._stop_requested:
                    break
                if self.matches_skip_pattern(target.text):
                    machine.skip_target(target.id, "matched skip pattern")
                    continue
                await self._test_target(
                    machine, capability, boundary, retry, navigation, validator,
                    target, credential_injector,
                )
        except (KeyboardInterrupt, asyncio.CancelledError):
            machine.fail(INTERRUPTED)
            raise
        finally:
            if self.stats.routes_recorded:
                self.route_cache.save()

        summary = self.summary(machine)
        if self._stop_requested:
            self.log.warning("Run stopped on request")
            machine.session.summary = summary
            machine.fail(INTERRUPTED)
            return summary

        machine.complete(summary)
        return summary

    async def _test_target(
        self,
        machine: SessionStateMachine,
        capability: Capability,
        boundary: PerceptionBoundary,
        retry: RetryClassifier,
        navigation: NavigationRecoveryManager,
        validator: PageValidator,
        target: TargetDescriptor,
        credential_injector: Optional[CredentialInjector],
    ) -> None:
        machine.start_target(target.id)
        try:
            initial_url = await capability.current_url()
        except Exception as e:
            self.log.debug("Could not read URL before %s: %s", target.text, e)
            initial_url = self.config.url
        rules = self.route_cache.get_validation_rules(target.url) if target.url else None

        async def visit() -> tuple[NavigationOutcome, Optional[PageValidationResult]]:
            if target.url:
                await capability.navigate(target.url)
            else:
                if not await boundary.is_true(f'Is the menu item "{target.text}" visible?'):
                    await navigation.ensure_expanded(OVERFLOW_MENU)
                await capability.tap(f'the menu item "{target.text}"')
            nav = await navigation.validate_navigation(initial_url)
            if nav.is_cross_domain:
                return nav, None
            return nav, await validator.validate(rules)

        outcome = await retry.execute_with_retry(
            visit,
            RetryContext(
                label=f"visit '{target.text}'",
                initial_url=initial_url,
                target=target.text,
                credential_injector=credential_injector,
            ),
        )
        if not outcome.success:
            machine.complete_target(target.id, TargetResult(
                success=False,
                error=f"Retries exhausted: {outcome.last_error_message}",
            ))
            return

        nav, validation = outcome.data
        if nav.is_cross_domain:
            self.stats.cross_domain_departures += 1
            if not nav.return_success:
                self.stats.failed_returns += 1
            machine.complete_target(target.id, TargetResult(success=True))
            return

        errors = list(validation.failures)
        screenshot_ref = None
        if self.config.screenshots.enabled:
            screenshot_ref, diff_error = await self._check_screenshot(capability, target, nav.page_url)
            if diff_error:
                errors.append(diff_error)

        success = not errors
        if success and not target.url and nav.page_url:
            self.route_cache.record_route(target.text, nav.page_url, target.level)
            self.stats.routes_recorded += 1

        machine.complete_target(target.id, TargetResult(
            success=success,
            error="; ".join(errors) or None,
            screenshot_ref=screenshot_ref,
        ))

    async def _check_screenshot(
        self, capability: Capability, target: TargetDescriptor, page_url: str,
    ) -> tuple[Optional[str], Optional[str]]:
        """Compare a capture with its baseline. Returns (file ref, failure reason)."""
        try:
            capture = await capability.screenshot()
        except Exception as e:
            self.log.warning("Screenshot of %s failed: %s", target.text, e)
            return None, None

        key = self.screenshots.screenshot_key(
            url=page_url, target_id=target.id, text=target.text, scenario=target.scenario,
        )
        result = self.screenshots.compare_or_save_baseline(key, capture)
        ref = result.diff_path or result.path
        if not result.is_mismatch:
            return ref, None
        self.stats.visual_mismatches += 1
        if self.config.screenshots.fail_on_diff:
            return ref, f"Visual regression: {result.message}"
        return ref, None

    def summary(self, machine: SessionStateMachine) -> dict[str, Any]:
        session = machine.session
        tested = session.completed_menus + session.failed_menus
        return {
            "session_id": session.session_id,
            "mode": self.mode_used,
            "total": session.total_menus,
            "completed": session.completed_menus,
            "failed": session.failed_menus,
            "skipped": session.skipped_menus,
            "success_rate": round(session.completed_menus / tested * 100, 1) if tested else 0.0,
            "cross_domain_departures": self.stats.cross_domain_departures,
            "failed_returns": self.stats.failed_returns,
            "visual_mismatches": self.stats.visual_mismatches,
            "duration_seconds": round((time.time() * 1000 - session.start_time) / 1000, 1),
        }
