"""Browser launch helpers for test sessions."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

# Hide automation markers from the app under test
_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => false });
if (!window.chrome) { window.chrome = { runtime: {} }; }
"""


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    return await playwright.chromium.launch(
        headless=headless,
        args=["--disable-blink-features=AutomationControlled"],
    )


async def create_context(
    browser: Browser,
    viewport: dict,
    user_agent: Optional[str] = None,
    locale: str = "en-US",
) -> BrowserContext:
    """New context with the viewport of the run and the init script applied."""
    context = await browser.new_context(
        viewport=viewport,
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale=locale,
        ignore_https_errors=True,
    )
    await context.add_init_script(_INIT_SCRIPT)
    return context
