"""Screenshot regression engine — deterministic keys, baselines and pixel diffs."""

from __future__ import annotations

import io
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from PIL import Image
from pixelmatch.contrib.PIL import pixelmatch

from menu_tester.models.config import ScreenshotConfig
from menu_tester.models.regression import ComparisonOutcome, DiffResult
from menu_tester.url_utils import hash_route, is_absolute_url, normalize_path

logger = logging.getLogger(__name__)

_KEY_SEPARATORS = re.compile(r"[/#?&=.]")
_LABEL_UNSAFE = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5]")
_DASHES = re.compile(r"-+")
SCENARIO_MAX_LENGTH = 50
DEFAULT_SCENARIOS = ("", "default")
DIFF_ALPHA = 0.1
DIFF_COLOR = (255, 0, 0)


def _collapse(text: str) -> str:
    return _DASHES.sub("-", text).strip("-").lower()


def sanitize_label(text: str, max_length: Optional[int] = None) -> str:
    """Reduce free text (menu labels, scenario names) to a key fragment.

    Each unsafe character becomes one dash. Runs of dashes are kept, which
    existing baseline file names depend on.
    """
    key = _LABEL_UNSAFE.sub("-", text or "").lower()
    if max_length is not None:
        key = key[:max_length]
    return key


def normalize_key(url: str) -> str:
    """Derive a screenshot key from a URL's path and hash route.

    >>> normalize_key("https://a.com/chain//reports/")
    'chain-reports'
    """
    if not is_absolute_url(url):
        return sanitize_label(url) or "home"
    parsed = urlparse(url)
    full_path = normalize_path(parsed.path) + hash_route(parsed.fragment)
    key = _KEY_SEPARATORS.sub("-", full_path.lstrip("/"))
    return _collapse(key) or "home"


def _diff_timestamp() -> str:
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return stamp.replace(":", "-").replace(".", "-")


class ScreenshotRegressionEngine:
    """Owns the baseline and diff image files.

    Baselines live at ``baseline_dir/{key}.png`` and are only overwritten in
    update mode. Diffs are written to ``diff_dir/{key}-diff-{timestamp}.png``
    and never overwritten.
    """

    def __init__(
        self,
        config: Optional[ScreenshotConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ScreenshotConfig()
        self.baseline_dir = Path(self.config.baseline_dir)
        self.diff_dir = Path(self.config.diff_dir)
        self.log = logger or logging.getLogger(__name__)

    normalize_key = staticmethod(normalize_key)

    def screenshot_key(
        self,
        url: Optional[str] = None,
        target_id: Optional[str] = None,
        text: Optional[str] = None,
        scenario: Optional[str] = None,
    ) -> str:
        """Key for a subject: URL first, then target id, then its label."""
        if url:
            key = normalize_key(url)
        elif target_id and not target_id.startswith("route-"):
            key = sanitize_label(target_id) or "home"
        else:
            key = sanitize_label(text or "") or "home"

        if scenario and scenario.strip().lower() not in DEFAULT_SCENARIOS:
            scenario_key = sanitize_label(scenario, SCENARIO_MAX_LENGTH)
            if scenario_key:
                key = f"{key}-{scenario_key}"
        return key

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def baseline_path(self, key: str) -> Path:
        return self.baseline_dir / f"{key}.png"

    def diff_path(self, key: str) -> Path:
        path = self.diff_dir / f"{key}-diff-{_diff_timestamp()}.png"
        n = 1
        while path.exists():
            path = self.diff_dir / f"{key}-diff-{_diff_timestamp()}-{n}.png"
            n += 1
        return path

    def baseline_exists(self, key: str) -> bool:
        return self.baseline_path(key).is_file()

    def save_baseline(self, key: str, image: bytes) -> Path:
        path = self.baseline_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(image)
        os.replace(tmp, path)
        self.log.debug("Saved baseline %s", path)
        return path

    def load_baseline(self, key: str) -> bytes:
        return self.baseline_path(key).read_bytes()

    def save_diff_image(self, key: str, image: bytes) -> Path:
        self.diff_dir.mkdir(parents=True, exist_ok=True)
        path = self.diff_path(key)
        path.write_bytes(image)
        return path

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def compare_images(self, baseline: bytes, current: bytes) -> DiffResult:
        """Pixel-compare two PNGs. Different sizes short-circuit to a mismatch."""
        with Image.open(io.BytesIO(baseline)) as b, Image.open(io.BytesIO(current)) as c:
            base_img = b.convert("RGBA")
            curr_img = c.convert("RGBA")

        if base_img.size != curr_img.size:
            return DiffResult(
                match=False,
                dimension_mismatch=True,
                baseline_size=base_img.size,
                current_size=curr_img.size,
            )

        width, height = base_img.size
        output = Image.new("RGBA", (width, height))
        diff_pixels = pixelmatch(
            base_img,
            curr_img,
            output,
            threshold=self.config.threshold,
            includeAA=False,
            alpha=DIFF_ALPHA,
            diff_color=DIFF_COLOR,
        )
        total = width * height
        raw_percentage = diff_pixels / total * 100 if total else 0.0
        # Rounding is for display only
        match = diff_pixels == 0 or raw_percentage < self.config.threshold * 100
        percentage = round(raw_percentage, 2)

        diff_image = None
        if not match:
            buf = io.BytesIO()
            output.save(buf, format="PNG")
            diff_image = buf.getvalue()

        return DiffResult(
            match=match,
            diff_pixels=diff_pixels,
            total_pixels=total,
            diff_percentage=percentage,
            diff_image=diff_image,
            baseline_size=base_img.size,
            current_size=curr_img.size,
        )

    def compare_or_save_baseline(self, key: str, capture: bytes) -> ComparisonOutcome:
        """Save ``capture`` as the baseline or compare against it. Never raises."""
        if not self.config.enabled:
            return ComparisonOutcome(type="disabled", key=key, message="Screenshot comparison disabled")

        try:
            exists = self.baseline_exists(key)
            if self.config.update_baseline or not exists:
                path = self.save_baseline(key, capture)
                verb = "Updated" if exists else "Created"
                self.log.info("%s baseline %s", verb, key)
                return ComparisonOutcome(
                    type="baseline", key=key, is_new=not exists, path=str(path),
                    message=f"{verb} baseline",
                )

            diff = self.compare_images(self.load_baseline(key), capture)
            diff_path = None
            if diff.dimension_mismatch:
                message = f"Size changed: {diff.baseline_size} -> {diff.current_size}"
            elif diff.match:
                message = f"Matches baseline ({diff.diff_percentage:.2f}% different)"
            else:
                message = f"Differs from baseline by {diff.diff_percentage:.2f}%"
                if diff.diff_image:
                    diff_path = str(self.save_diff_image(key, diff.diff_image))

            if not diff.match:
                self.log.warning("Screenshot %s: %s", key, message)
            return ComparisonOutcome(
                type="comparison",
                key=key,
                path=str(self.baseline_path(key)),
                match=diff.match,
                diff_pixels=diff.diff_pixels,
                diff_percentage=diff.diff_percentage,
                dimension_mismatch=diff.dimension_mismatch,
                diff_path=diff_path,
                message=message,
            )
        except Exception as e:
            self.log.warning("Screenshot comparison for %s failed: %s", key, e)
            return ComparisonOutcome(type="error", key=key, error=str(e), message="Comparison failed")
