"""Route cache: persists menu to route bindings so later runs skip menu discovery."""

from __future__ import annotations

import csv
import io
import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from menu_tester.errors import ConfigError
from menu_tester.models.config import CacheConfig
from menu_tester.models.route_cache import (
    RouteCacheEntry,
    RouteCacheFile,
    RouteImportRecord,
    RouteValidationReport,
)
from menu_tester.url_utils import normalize_url

logger = logging.getLogger(__name__)

CSV_FIELDS = ["menuText", "url", "level", "recordedAt"]


def url_hash(url: str) -> str:
    """Filesystem-safe identifier for a site URL."""
    stripped = re.sub(r"^https?://", "", url)
    stripped = re.sub(r":\d+", "", stripped)
    return re.sub(r"[^a-zA-Z0-9]", "-", stripped)[:50]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _row_to_record(row: dict[str, Any]) -> RouteImportRecord:
    """Accept camelCase or snake_case keys for an imported route row."""
    level = row.get("level") or 1
    try:
        level = int(level)
    except (TypeError, ValueError):
        level = 1
    return RouteImportRecord(
        menu_text=str(row.get("menuText") or row.get("menu_text") or "").strip(),
        url=str(row.get("url") or "").strip(),
        level=max(level, 1),
        validation_rules=row.get("validation") or row.get("validationRules") or None,
    )


class RouteCacheStore:
    """Manages the route cache JSON file for one site URL."""

    def __init__(
        self,
        cache_dir: Path | str,
        site_url: str,
        config: Optional[CacheConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.site_url = site_url
        self.config = config or CacheConfig()
        self.log = logger or logging.getLogger(__name__)
        self.path = self.cache_dir / f"menu-cache-{url_hash(site_url)}.json"
        self.cache = RouteCacheFile(url=site_url)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> bool:
        """Load the cache from disk. Returns True if a usable cache was read."""
        self.cache = RouteCacheFile(url=self.site_url)
        if not self.path.exists():
            return False
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            cache = RouteCacheFile.from_document(data)
        except Exception as e:
            self.log.warning("Failed to load route cache %s: %s. Starting empty.", self.path, e)
            return False
        if cache.url != self.site_url:
            self.log.info("Route cache %s belongs to %s, ignoring", self.path.name, cache.url)
            return False
        self.cache = cache
        self.log.debug("Loaded %d cached routes from %s", len(cache.routes.menu_routes), self.path)
        return True

    def save(self) -> bool:
        self.cache.timestamp = _now_ms()
        self.cache.metadata["routeCount"] = len(self.cache.routes.menu_routes)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self.cache.to_document(), f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            self.log.warning("Failed to save route cache %s: %s", self.path, e)
            return False
        self.log.debug("Saved route cache to %s", self.path)
        return True

    def is_valid(self) -> bool:
        """True if the file on disk is for this site, fresh enough and not overridden."""
        if self.config.force_fresh or not self.path.exists():
            return False
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return False
        if data.get("url") != self.site_url:
            return False
        age = _now_ms() - int(data.get("timestamp") or 0)
        if age > self.config.max_age_ms:
            return False
        return bool((data.get("routes") or {}).get("menuRoutes"))

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def record_route(
        self,
        menu_text: str,
        url: str,
        level: int = 1,
        validation_rules: Optional[dict[str, Any]] = None,
    ) -> RouteCacheEntry:
        """Bind ``menu_text`` to ``url``, overwriting any earlier binding.

        Without ``validation_rules`` the previous entry's rules are kept. The
        rule lookup by URL always mirrors the entries.
        """
        normalized = normalize_url(url)
        routes = self.cache.routes
        previous = routes.menu_routes.get(menu_text)
        if previous is not None:
            if validation_rules is None:
                validation_rules = previous.validation_rules
            if previous.normalized_url != normalized and not any(
                e.normalized_url == previous.normalized_url
                for text, e in routes.menu_routes.items() if text != menu_text
            ):
                routes.route_validation.pop(previous.normalized_url, None)
        entry = RouteCacheEntry(
            menu_text=menu_text,
            normalized_url=normalized,
            original_url=url,
            level=level,
            recorded_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            validation_rules=validation_rules,
        )
        routes.menu_routes[menu_text] = entry
        if validation_rules:
            routes.route_validation[normalized] = validation_rules
        self.log.debug("Recorded route %s -> %s", menu_text, normalized)
        return entry

    def get_route(self, menu_text: str) -> Optional[RouteCacheEntry]:
        return self.cache.routes.menu_routes.get(menu_text)

    def get_validation_rules(self, url: str) -> Optional[dict[str, Any]]:
        return self.cache.routes.route_validation.get(normalize_url(url))

    def all_routes(self) -> list[RouteCacheEntry]:
        return list(self.cache.routes.menu_routes.values())

    def clear(self) -> bool:
        self.cache.routes.menu_routes.clear()
        self.cache.routes.route_validation.clear()
        self.log.info("Cleared route cache for %s", self.site_url)
        return self.save()

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_routes(self, rows: list[dict[str, Any]], mode: str = "merge") -> int:
        """Add routes from plain rows. ``replace`` drops existing routes first."""
        if mode not in ("merge", "replace"):
            raise ConfigError(f"Unknown import mode: {mode}")
        if mode == "replace":
            self.cache.routes.menu_routes.clear()
            self.cache.routes.route_validation.clear()

        imported = 0
        for row in rows:
            if not isinstance(row, dict):
                self.log.warning("Skipping route row that is not an object: %r", row)
                continue
            try:
                record = _row_to_record(row)
            except ValidationError as e:
                self.log.warning("Skipping invalid route row %r: %s", row, e)
                continue
            if not record.menu_text or not record.url:
                self.log.warning("Skipping route row without menuText/url: %r", row)
                continue
            self.record_route(record.menu_text, record.url, record.level, record.validation_rules)
            imported += 1

        self.save()
        self.log.info("Imported %d routes (%s)", imported, mode)
        return imported

    def import_file(self, path: Path | str, mode: str = "merge") -> int:
        """Import routes from a JSON (list or ``{"routes": [...]}``) or CSV file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Route file not found: {path}")
        text = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()

        if suffix == ".json":
            try:
                data = json.loads(text)
            except ValueError as e:
                raise ConfigError(f"Invalid JSON in {path}: {e}") from e
            rows = data.get("routes", data) if isinstance(data, dict) else data
        elif suffix == ".csv":
            rows = self.parse_csv(text)
        else:
            raise ConfigError(f"Unsupported route file format: {suffix}")

        if not isinstance(rows, list):
            raise ConfigError(f"Expected a list of routes in {path}")
        return self.import_routes(rows, mode)

    @staticmethod
    def parse_csv(text: str) -> list[dict[str, Any]]:
        reader = csv.DictReader(io.StringIO(text.strip()))
        if not reader.fieldnames or len(reader.fieldnames) < 2:
            raise ConfigError("CSV route file needs a header with at least menuText,url")
        return [
            {k.strip(): (v or "").strip() for k, v in row.items() if k}
            for row in reader
        ]

    def export_routes(self, fmt: str = "json") -> str:
        routes = self.all_routes()
        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(CSV_FIELDS)
            for entry in routes:
                writer.writerow([entry.menu_text, entry.original_url or entry.normalized_url,
                                 entry.level, entry.recorded_at])
            return buf.getvalue()
        if fmt != "json":
            raise ConfigError(f"Unknown export format: {fmt}")
        payload = {
            "exportedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "sourceUrl": self.site_url,
            "totalRoutes": len(routes),
            "routes": [
                {
                    "menuText": entry.menu_text,
                    "url": entry.original_url or entry.normalized_url,
                    "level": entry.level,
                    "recordedAt": entry.recorded_at,
                    **({"validation": entry.validation_rules} if entry.validation_rules else {}),
                }
                for entry in routes
            ],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def validate_routes(self) -> RouteValidationReport:
        """Check every cached URL is an absolute http(s) URL."""
        report = RouteValidationReport()
        for entry in self.all_routes():
            report.total += 1
            url = entry.original_url or entry.normalized_url
            if re.match(r"^https?://[^/\s]+", url):
                report.valid += 1
            else:
                report.invalid.append({"menu_text": entry.menu_text, "url": url})
        return report

    def info(self) -> dict[str, Any]:
        age_ms = _now_ms() - self.cache.timestamp if self.cache.timestamp else None
        return {
            "path": str(self.path),
            "url": self.site_url,
            "routes": len(self.cache.routes.menu_routes),
            "rules": len(self.cache.routes.route_validation),
            "age_hours": round(age_ms / 3_600_000, 1) if age_ms is not None else None,
            "valid": self.is_valid(),
        }

    @staticmethod
    def template(site_url: str = "https://example.com") -> dict[str, Any]:
        """Example import file showing the accepted fields."""
        now = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        base = site_url.rstrip("/")
        return {
            "exportedAt": now,
            "description": "Menu route template",
            "sourceUrl": site_url,
            "totalRoutes": 2,
            "routes": [
                {
                    "menuText": "Reports",
                    "url": f"{base}/reports",
                    "level": 1,
                    "recordedAt": now,
                    "validation": {"pageTitle": "Reports", "expectedElements": ["#main-content"]},
                },
                {
                    "menuText": "Monthly",
                    "url": f"{base}/reports/monthly",
                    "level": 2,
                    "recordedAt": now,
                    "validation": {"pageTitle": "Monthly report", "expectedElements": [".content"]},
                },
            ],
        }
