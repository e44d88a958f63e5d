"""Route cache models: menu text to URL bindings discovered in earlier runs."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CACHE_VERSION = "1.0.0"


class _CacheModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RouteCacheEntry(_CacheModel):
    menu_text: str
    normalized_url: str
    original_url: str = ""
    level: int = Field(default=1, ge=1)
    recorded_at: str = ""
    validation_rules: Optional[dict[str, Any]] = None


class RouteValidationRecord(_CacheModel):
    """Entry of the url-keyed rule map, serialized as a list."""
    normalized_url: str
    rules: dict[str, Any] = Field(default_factory=dict)


class CachedRoutes(_CacheModel):
    menu_routes: dict[str, RouteCacheEntry] = Field(default_factory=dict)
    route_validation: dict[str, dict[str, Any]] = Field(default_factory=dict)
    hierarchy: list[Any] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)


class RouteCacheFile(_CacheModel):
    url: str
    timestamp: int = 0  # epoch ms
    version: str = CACHE_VERSION
    routes: CachedRoutes = Field(default_factory=CachedRoutes)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        """Serialize for disk with both maps written as ordered record lists."""
        data = self.model_dump(by_alias=True, mode="json", exclude={"routes"})
        data["routes"] = {
            "menuRoutes": [
                entry.model_dump(by_alias=True, mode="json", exclude_none=True)
                for entry in self.routes.menu_routes.values()
            ],
            "routeValidation": [
                RouteValidationRecord(normalized_url=url, rules=rules).model_dump(
                    by_alias=True, mode="json",
                )
                for url, rules in self.routes.route_validation.items()
            ],
            "hierarchy": list(self.routes.hierarchy),
            "parameters": dict(self.routes.parameters),
        }
        return data

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "RouteCacheFile":
        """Rebuild from disk.

        Both ``menuRoutes`` and ``routeValidation`` may be record lists (as
        written by ``to_document``) or plain objects keyed by menu text / URL.
        In the object form a menu route carries ``url`` for the normalized URL.
        """
        payload = dict(data)
        raw_routes = payload.pop("routes", None) or {}

        menu_routes: dict[str, RouteCacheEntry] = {}
        raw_menu = raw_routes.get("menuRoutes") or []
        if isinstance(raw_menu, dict):
            raw_menu = [
                {"menuText": text, "normalizedUrl": value.get("url", ""), **value}
                for text, value in raw_menu.items()
            ]
        for raw in raw_menu:
            entry = RouteCacheEntry.model_validate(raw)
            menu_routes[entry.menu_text] = entry

        route_validation: dict[str, dict[str, Any]] = {}
        raw_rules = raw_routes.get("routeValidation") or []
        if isinstance(raw_rules, dict):
            route_validation = {url: dict(rules or {}) for url, rules in raw_rules.items()}
        else:
            for raw in raw_rules:
                record = RouteValidationRecord.model_validate(raw)
                route_validation[record.normalized_url] = record.rules

        cache = cls.model_validate(payload)
        cache.routes = CachedRoutes(
            menu_routes=menu_routes,
            route_validation=route_validation,
            hierarchy=raw_routes.get("hierarchy") or [],
            parameters=raw_routes.get("parameters") or {},
        )
        return cache


class RouteImportRecord(BaseModel):
    """One row of an imported route list (JSON or CSV)."""
    menu_text: str
    url: str
    level: int = Field(default=1, ge=1)
    validation_rules: Optional[dict[str, Any]] = None


class RouteValidationReport(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: list[dict[str, str]] = Field(default_factory=list)
