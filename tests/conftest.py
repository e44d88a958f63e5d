"""Pytest configuration and shared fixtures."""

import io
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from PIL import Image

from menu_tester.models.config import (
    MenuTarget,
    MenuTesterConfig,
    NavigationConfig,
    RetryConfig,
    ScreenshotConfig,
)
from menu_tester.models.session import TargetDescriptor

APP_URL = "https://app.example.com/chain/home"


# ============================================================================
# Capability Fakes
# ============================================================================


class FakeCapability:
    """Scripted stand-in for the browser/perception capability.

    ``answers`` maps a prompt substring to the value query_boolean returns;
    ``tap_routes`` maps a description substring to the URL a tap lands on;
    ``structured_answers`` does the same for query_structured, where a
    callable answer is called with the fake to read its current state.
    """

    def __init__(self, url: str = APP_URL):
        self.url = url
        self.history: list[str] = []
        self.calls: list[tuple[str, Any]] = []
        self.answers: dict[str, Any] = {}
        self.default_answer: Any = False
        self.tap_routes: dict[str, str] = {}
        self.structured_answers: dict[str, Any] = {}
        self.navigate_redirects: dict[str, str] = {}
        self.navigate_error: Optional[Exception] = None
        self.tap_error: Optional[Exception] = None
        self.screenshot_bytes: bytes = b""
        self.on_navigate: Optional[Callable[[str], None]] = None

    def called(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]

    async def navigate(self, url: str) -> None:
        self.calls.append(("navigate", url))
        if self.on_navigate:
            self.on_navigate(url)
        if self.navigate_error:
            raise self.navigate_error
        self.history.append(self.url)
        self.url = self.navigate_redirects.get(url, url)

    async def current_url(self) -> str:
        return self.url

    async def go_back(self, timeout_ms: int) -> None:
        self.calls.append(("go_back", timeout_ms))
        if self.history:
            self.url = self.history.pop()

    async def reload(self) -> None:
        self.calls.append(("reload", None))

    async def scroll(self, distance: int) -> None:
        self.calls.append(("scroll", distance))

    async def tap(self, description: str) -> None:
        self.calls.append(("tap", description))
        if self.tap_error:
            raise self.tap_error
        for needle, url in self.tap_routes.items():
            if needle in description:
                self.history.append(self.url)
                self.url = url
                return

    async def query_boolean(self, prompt: str, timeout_ms: Optional[int] = None) -> Any:
        self.calls.append(("query_boolean", prompt))
        for needle, answer in self.answers.items():
            if needle in prompt:
                return answer
        return self.default_answer

    async def query_structured(self, prompt: str, timeout_ms: Optional[int] = None) -> Any:
        self.calls.append(("query_structured", prompt))
        for needle, answer in self.structured_answers.items():
            if needle in prompt:
                return answer(self) if callable(answer) else answer
        return {"prompt": prompt}

    async def wait_for_condition(self, prompt: str, timeout_ms: int) -> None:
        self.calls.append(("wait_for_condition", prompt))

    async def screenshot(self) -> bytes:
        self.calls.append(("screenshot", None))
        return self.screenshot_bytes


@pytest.fixture
def capability() -> FakeCapability:
    return FakeCapability()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry settings with every delay zeroed."""
    return RetryConfig(
        max_retries=2,
        retry_delay_ms=0,
        extended_wait_ms=0,
        reload_settle_ms=0,
        probe_timeout_ms=500,
        stability_timeout_ms=0,
        popup_settle_ms=0,
    )


@pytest.fixture
def navigation_config() -> NavigationConfig:
    return NavigationConfig(
        domain_patterns=["/chain/"],
        max_return_attempts=2,
        cross_domain_timeout_ms=1000,
        settle_ms=0,
        anchor_url=APP_URL,
    )


@pytest.fixture
def screenshot_config(tmp_path: Path) -> ScreenshotConfig:
    return ScreenshotConfig(
        enabled=True,
        threshold=0.1,
        baseline_dir=str(tmp_path / "screenshots" / "baseline"),
        diff_dir=str(tmp_path / "screenshots" / "diff"),
    )


@pytest.fixture
def menu_config(
    tmp_path: Path,
    fast_retry: RetryConfig,
    navigation_config: NavigationConfig,
    screenshot_config: ScreenshotConfig,
) -> MenuTesterConfig:
    """Config for an in-process run against the fake capability."""
    screenshot_config.enabled = False
    return MenuTesterConfig(
        url=APP_URL,
        token="secret-token-1234567890",
        output_dir=str(tmp_path / "results"),
        mode="menu",
        menus=[
            MenuTarget(text="Reports"),
            MenuTarget(text="Inventory", level=2),
            MenuTarget(text="Logout"),
        ],
        retry=fast_retry,
        navigation=navigation_config,
        screenshots=screenshot_config,
        page_checks=[],
    )


@pytest.fixture
def five_targets() -> list[TargetDescriptor]:
    return [
        TargetDescriptor(id=f"menu-{i}", text=f"Menu {i}", url=f"https://app.example.com/chain/m{i}")
        for i in range(1, 6)
    ]


# ============================================================================
# Image Fixtures
# ============================================================================


@pytest.fixture
def png_factory() -> Callable[..., bytes]:
    """Build PNG bytes of a solid color, optionally with a differing block."""

    def _make(
        size: tuple[int, int] = (10, 10),
        color: tuple[int, int, int] = (255, 255, 255),
        block: Optional[tuple[int, int, int, int]] = None,
        block_color: tuple[int, int, int] = (0, 0, 0),
    ) -> bytes:
        img = Image.new("RGB", size, color)
        if block:
            x0, y0, x1, y1 = block
            for x in range(x0, x1):
                for y in range(y0, y1):
                    img.putpixel((x, y), block_color)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    return _make
