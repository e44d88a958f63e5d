"""Configuration models for the menu tester."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CACHE_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000


class ViewportConfig(BaseModel):
    width: int = 1280
    height: int = 720


class MenuTarget(BaseModel):
    """A menu item to click when running in menu mode."""
    text: str
    level: int = Field(default=1, ge=1)
    id: Optional[str] = None
    scenario: Optional[str] = None


class PageCheck(BaseModel):
    """A yes/no question asked about the page after navigation."""
    name: str
    prompt: str
    expectation: bool = False
    fail_fast: bool = False
    timeout_ms: int = 5000
    failure_message: str = ""


def default_page_checks() -> list[PageCheck]:
    return [
        PageCheck(
            name="notBlankScreen",
            prompt="Is the page blank, empty, or showing only a loading state?",
            expectation=False,
            failure_message="Blank or empty page detected",
        ),
        PageCheck(
            name="noPermissionError",
            prompt=(
                "Does the page show a permission error, such as 'no permission', "
                "'access denied' or 'contact your administrator'?"
            ),
            expectation=False,
            fail_fast=True,
            failure_message="Permission error detected",
        ),
        PageCheck(
            name="noApiError",
            prompt=(
                "Does the page show an API or network error, such as 'request failed', "
                "'failed to load', 'network error' or 'service unavailable'?"
            ),
            expectation=False,
            failure_message="API or network error detected",
        ),
        PageCheck(
            name="hasValidBusinessContent",
            prompt=(
                "Does the page contain real business content (data, tables, forms, media), "
                "rather than an error page, an empty state or a loading screen?"
            ),
            expectation=True,
            failure_message="Page has no valid business content",
        ),
    ]


class ScreenshotConfig(BaseModel):
    enabled: bool = False
    threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    baseline_dir: str = "./screenshots/baseline"
    diff_dir: str = "./screenshots/diff"
    update_baseline: bool = False
    fail_on_diff: bool = False


class RetryConfig(BaseModel):
    max_retries: int = Field(default=2, ge=0)
    retry_delay_ms: int = 1000
    extended_wait_ms: int = 2000
    reload_settle_ms: int = 3000
    probe_timeout_ms: int = 2000
    stability_timeout_ms: int = 3000
    popup_settle_ms: int = 500


class NavigationConfig(BaseModel):
    domain_patterns: list[str] = Field(default_factory=lambda: ["/chain/"])
    max_return_attempts: int = Field(default=2, ge=1)
    cross_domain_timeout_ms: int = 8000
    settle_ms: int = 1000
    anchor_url: Optional[str] = None


class CacheConfig(BaseModel):
    enabled: bool = True
    max_age_ms: int = DEFAULT_CACHE_MAX_AGE_MS
    force_fresh: bool = False


class DiscoveryConfig(BaseModel):
    """Menu discovery, used when no menus are configured."""
    enabled: bool = True
    max_depth: int = Field(default=2, ge=1, le=3)
    include_patterns: list[str] = Field(default_factory=list)
    query_timeout_ms: int = 20000


class MenuTesterConfig(BaseModel):
    # Target
    url: str

    # Authentication
    token: Optional[str] = None
    token_method: Literal["cookie", "localStorage", "header"] = "cookie"
    token_name: str = "accessToken"

    # Run settings
    mode: Literal["route", "menu", "hybrid"] = "hybrid"
    menus: list[MenuTarget] = Field(default_factory=list)
    skip_patterns: list[str] = Field(default_factory=lambda: ["logout", "exit", "sign out"])
    output_dir: str = "./menu-test-results"
    timeout_ms: int = 6000
    headless: bool = True
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    keep_session_days: int = 7

    # Components
    retry: RetryConfig = Field(default_factory=RetryConfig)
    navigation: NavigationConfig = Field(default_factory=NavigationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    screenshots: ScreenshotConfig = Field(default_factory=ScreenshotConfig)
    page_checks: list[PageCheck] = Field(default_factory=default_page_checks)

    # AI settings
    ai_model: str = "claude-sonnet-4-20250514"
    ai_max_tokens: int = 1024

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {v!r}")
        return v

    @field_validator("token", mode="before")
    @classmethod
    def resolve_env_token(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v

    def model_post_init(self, __context) -> None:
        if not self.token:
            self.token = os.environ.get("ACCESS_TOKEN") or None
        if not self.navigation.anchor_url:
            self.navigation.anchor_url = self.url

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    def sanitized(self) -> dict:
        """Config as a plain dict with the token truncated, for snapshots."""
        data = self.model_dump()
        if data.get("token"):
            data["token"] = data["token"][:10] + "..."
        return data

    @classmethod
    def load(cls, path: str | Path) -> "MenuTesterConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
