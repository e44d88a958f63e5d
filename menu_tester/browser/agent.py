"""Playwright + Claude implementation of the capability interface."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Optional

from playwright.async_api import Page

from menu_tester.ai.client import AIClient
from menu_tester.ai.prompts.perception import (
    LOCATE_SYSTEM_PROMPT,
    PERCEPTION_SYSTEM_PROMPT,
    build_boolean_prompt,
    build_locate_prompt,
    build_structured_prompt,
)
from menu_tester.capability import coerce_boolean
from menu_tester.errors import CapabilityError

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 1000


class PlaywrightAgent:
    """Drives one page. Perception questions are answered by the model from a screenshot."""

    def __init__(self, page: Page, ai_client: AIClient, timeout_ms: int = 6000):
        self.page = page
        self.ai = ai_client
        self.timeout_ms = timeout_ms

    async def navigate(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)

    async def current_url(self) -> str:
        return self.page.url

    async def go_back(self, timeout_ms: int) -> None:
        await self.page.go_back(wait_until="domcontentloaded", timeout=timeout_ms)

    async def reload(self) -> None:
        await self.page.reload(wait_until="domcontentloaded", timeout=self.timeout_ms)

    async def scroll(self, distance: int) -> None:
        await self.page.mouse.wheel(0, distance)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(type="png", timeout=self.timeout_ms)

    async def tap(self, description: str) -> None:
        data = await self._ask(LOCATE_SYSTEM_PROMPT, build_locate_prompt(description, self.page.url))
        x, y = data.get("x"), data.get("y")
        if not data.get("found") or x is None or y is None:
            raise CapabilityError(f"element not found: {description}")
        logger.debug("Tapping '%s' at (%s, %s)", description, x, y)
        await self.page.mouse.click(float(x), float(y))

    async def query_boolean(self, prompt: str, timeout_ms: Optional[int] = None) -> Any:
        data = await self._ask(PERCEPTION_SYSTEM_PROMPT, build_boolean_prompt(prompt, self.page.url))
        return data.get("answer")

    async def query_structured(self, prompt: str, timeout_ms: Optional[int] = None) -> Any:
        data = await self._ask(PERCEPTION_SYSTEM_PROMPT, build_structured_prompt(prompt, self.page.url))
        return data.get("value", data)

    async def wait_for_condition(self, prompt: str, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            try:
                if coerce_boolean(await self.query_boolean(prompt)):
                    return
            except ValueError:
                pass
            if time.monotonic() >= deadline:
                raise TimeoutError(f"wait_for_condition timeout after {timeout_ms}ms: {prompt}")
            await asyncio.sleep(POLL_INTERVAL_MS / 1000)

    async def _ask(self, system_prompt: str, user_message: str) -> dict[str, Any]:
        shot = await self.screenshot()
        image_b64 = base64.b64encode(shot).decode()
        # The client is synchronous; keep the event loop free so timeouts fire
        return await asyncio.to_thread(
            self.ai.complete_json_with_image, system_prompt, user_message, image_b64,
        )
