"""Puts an access token into a Playwright context before and during a run."""

from __future__ import annotations

import json
import logging
from typing import Literal, Optional
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Page

logger = logging.getLogger(__name__)

TokenMethod = Literal["cookie", "localStorage", "header"]

_SET_ITEM_SCRIPT = "([name, value]) => { try { localStorage.setItem(name, value); } catch (e) {} }"


class TokenInjector:
    """Injects ``token`` as a cookie, a localStorage item or an Authorization header."""

    def __init__(
        self,
        page: Page,
        context: BrowserContext,
        url: str,
        token: Optional[str],
        method: TokenMethod = "cookie",
        token_name: str = "accessToken",
    ):
        self.page = page
        self.context = context
        self.url = url
        self.token = token
        self.method = method
        self.token_name = token_name

    async def inject(self) -> bool:
        """Apply the token. Returns False when there is no token or injection failed."""
        if not self.token:
            logger.debug("No token configured, skipping injection")
            return False
        try:
            if self.method == "cookie":
                await self._inject_cookie()
            elif self.method == "localStorage":
                await self._inject_local_storage()
            elif self.method == "header":
                await self.page.set_extra_http_headers({"Authorization": f"Bearer {self.token}"})
            else:
                logger.warning("Unknown token method: %s", self.method)
                return False
        except Exception as e:
            logger.warning("Token injection (%s) failed: %s", self.method, e)
            return False
        logger.debug("Token injected via %s", self.method)
        return True

    async def _inject_cookie(self) -> None:
        parsed = urlparse(self.url)
        await self.context.add_cookies([{
            "name": self.token_name,
            "value": self.token,
            "domain": parsed.hostname or "",
            "path": "/",
            "httpOnly": False,
            "secure": parsed.scheme == "https",
            "sameSite": "Lax",
        }])

    async def _inject_local_storage(self) -> None:
        # Init script covers future navigations; evaluate covers the current page
        await self.context.add_init_script(
            f"localStorage.setItem({json.dumps(self.token_name)}, {json.dumps(self.token)});"
        )
        if self.page.url and self.page.url != "about:blank":
            await self.page.evaluate(_SET_ITEM_SCRIPT, [self.token_name, self.token])

    async def verify(self) -> bool:
        """Check the token is visible to the page. Headers can't be read back."""
        try:
            if self.method == "cookie":
                cookies = await self.context.cookies(self.url)
                return any(c["name"] == self.token_name and c["value"] == self.token for c in cookies)
            if self.method == "localStorage":
                stored = await self.page.evaluate("(name) => localStorage.getItem(name)", self.token_name)
                return stored == self.token
            return self.method == "header"
        except Exception as e:
            logger.debug("Token verification failed: %s", e)
            return False
