"""Finds menus on the live page when the config lists none."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from menu_tester.capability import Capability, CapabilityFailure, PerceptionBoundary
from menu_tester.models.config import DiscoveryConfig
from menu_tester.models.session import TargetDescriptor
from menu_tester.recovery.navigation import NavigationRecoveryManager

logger = logging.getLogger(__name__)

OVERFLOW_MENU = 'the "More" or overflow menu toggle'

HAS_OVERFLOW_PROMPT = 'Is there a "More" or overflow menu toggle in the navigation bar?'
HAS_SIDEBAR_PROMPT = "Does the page have a left sidebar or side navigation menu?"

TOP_LEVEL_PROMPT = (
    "List every top-level navigation menu item on the page. Include the items of an open "
    '"More" dropdown. Leave out login, sign-up, download, help, to-do and message links, '
    "footer links, ads and links to other sites. Return a JSON array of objects like "
    '[{"text": "Reports", "isDropdownItem": false}], where isDropdownItem is true for '
    'items inside the "More" dropdown.'
)
TOP_LEVEL_FALLBACK_PROMPT = (
    "List the text of every clickable menu item in the top navigation area "
    "as a JSON array of strings."
)
SIDEBAR_PROMPT = (
    "List the items of the left sidebar menu. Only the first level; do not expand "
    'sub-menus. Return a JSON array of objects like '
    '[{"text": "Orders", "isVisible": true, "isClickable": true}].'
)


@dataclass
class DiscoveredMenu:
    text: str
    level: int = 1
    in_overflow: bool = False
    parent: Optional["DiscoveredMenu"] = field(default=None, repr=False)
    children: list["DiscoveredMenu"] = field(default_factory=list)

    def path(self) -> list["DiscoveredMenu"]:
        """Menus to click, from the top level down to this one."""
        chain = []
        node: Optional[DiscoveredMenu] = self
        while node is not None:
            chain.append(node)
            node = node.parent
        return chain[::-1]


def parse_menu_items(value: Any) -> Optional[list[tuple[str, bool]]]:
    """Pull ``(text, in_overflow)`` pairs out of a loosely shaped answer.

    Accepts a list of strings or of objects, or an object wrapping such a
    list. Items reported as hidden or not clickable are dropped. Returns
    None when the answer holds no list at all.
    """
    if isinstance(value, dict):
        for key in ("menus", "items", "value"):
            if isinstance(value.get(key), list):
                value = value[key]
                break
    if not isinstance(value, list):
        return None

    items = []
    for item in value:
        if isinstance(item, str):
            text, in_overflow = item, False
        elif isinstance(item, dict):
            if item.get("isVisible") is False or item.get("isClickable") is False:
                continue
            text, in_overflow = item.get("text") or "", bool(item.get("isDropdownItem"))
        else:
            continue
        text = str(text).strip()
        if text:
            items.append((text, in_overflow))
    return items


class MenuDiscovery:
    """Lists top-level menus, then opens each one to find its sub-menus.

    Every question goes through the perception boundary, so a failed or
    malformed answer means "nothing found" rather than an exception.
    """

    def __init__(
        self,
        capability: Capability,
        boundary: PerceptionBoundary,
        navigation: NavigationRecoveryManager,
        config: Optional[DiscoveryConfig] = None,
        skip_patterns: Optional[list[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.capability = capability
        self.boundary = boundary
        self.navigation = navigation
        self.config = config or DiscoveryConfig()
        self.skip_patterns = [p.strip().lower() for p in skip_patterns or [] if p.strip()]
        self.include_patterns = [p.strip().lower() for p in self.config.include_patterns if p.strip()]
        self.log = logger or logging.getLogger(__name__)

    async def discover(self, start_url: str) -> list[TargetDescriptor]:
        """Discover the menu tree and flatten it into targets, parents first."""
        top = await self.discover_top_level()
        self.log.info("Found %d top-level menus", len(top))
        await self._discover_children(top, start_url)

        targets: list[TargetDescriptor] = []
        for menu in self.flatten(top):
            targets.append(TargetDescriptor(id=f"menu-{len(targets) + 1}", text=menu.text, level=menu.level))

        if top and self.config.max_depth > 1:
            await self._back_to_start(start_url)
        self.log.info("Discovered %d menus to test", len(targets))
        return targets

    async def discover_top_level(self) -> list[DiscoveredMenu]:
        if await self.boundary.is_true(HAS_OVERFLOW_PROMPT, self.config.query_timeout_ms):
            await self.navigation.ensure_expanded(OVERFLOW_MENU)

        items = await self._ask_items(TOP_LEVEL_PROMPT)
        if items is None:
            self.log.debug("Top-level menu answer was not a list, asking for plain labels")
            items = await self._ask_items(TOP_LEVEL_FALLBACK_PROMPT) or []
        menus = [DiscoveredMenu(text, in_overflow=overflow) for text, overflow in items]

        if not menus:
            self.log.info("No top navigation found, using the sidebar as the first level")
            menus = [DiscoveredMenu(text) for text, _ in await self._sidebar_items()]
        return self.filter_menus(menus)

    async def discover_sub_menus(self, menu: DiscoveredMenu, start_url: str) -> list[DiscoveredMenu]:
        """Open ``menu`` from the start page and list the sidebar items it shows."""
        await self._open(menu, start_url)
        taken = {m.text for m in menu.path()}
        children = [
            DiscoveredMenu(text, level=menu.level + 1, parent=menu)
            for text, _ in await self._sidebar_items()
            if text not in taken
        ]
        return self.filter_menus(children)

    def filter_menus(self, menus: list[DiscoveredMenu]) -> list[DiscoveredMenu]:
        """Drop blank, skipped, not included and repeated menus."""
        kept: list[DiscoveredMenu] = []
        seen: set[str] = set()
        for menu in menus:
            text = menu.text.strip()
            lowered = text.lower()
            if not text or text in seen:
                continue
            if any(p in lowered for p in self.skip_patterns):
                self.log.debug("Skipping discovered menu '%s'", text)
                continue
            if self.include_patterns and not any(p in lowered for p in self.include_patterns):
                continue
            seen.add(text)
            kept.append(menu)
        return kept

    @staticmethod
    def flatten(menus: list[DiscoveredMenu]) -> list[DiscoveredMenu]:
        flat = []
        for menu in menus:
            flat.append(menu)
            flat.extend(MenuDiscovery.flatten(menu.children))
        return flat

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _discover_children(self, menus: list[DiscoveredMenu], start_url: str) -> None:
        for menu in menus:
            if menu.level >= self.config.max_depth:
                continue
            try:
                menu.children = await self.discover_sub_menus(menu, start_url)
            except Exception as e:
                self.log.warning("Could not open '%s' to look for sub-menus: %s", menu.text, e)
                continue
            if menu.children:
                self.log.debug("'%s' has %d sub-menus", menu.text, len(menu.children))
                await self._discover_children(menu.children, start_url)

    async def _open(self, menu: DiscoveredMenu, start_url: str) -> None:
        await self._back_to_start(start_url)
        for step in menu.path():
            if step.in_overflow:
                await self.navigation.ensure_expanded(OVERFLOW_MENU)
            await self.capability.tap(f'the menu item "{step.text}"')

    async def _back_to_start(self, start_url: str) -> None:
        await self.capability.navigate(start_url)
        # A fresh page load closes any dropdown
        self.navigation.reset_expansions()

    async def _sidebar_items(self) -> list[tuple[str, bool]]:
        if not await self.boundary.is_true(HAS_SIDEBAR_PROMPT, self.config.query_timeout_ms):
            return []
        return await self._ask_items(SIDEBAR_PROMPT) or []

    async def _ask_items(self, prompt: str) -> Optional[list[tuple[str, bool]]]:
        result = await self.boundary.ask_structured(prompt, self.config.query_timeout_ms)
        if isinstance(result, CapabilityFailure):
            self.log.debug("Menu query failed: %s", result.message)
            return None
        return parse_menu_items(result.value)
