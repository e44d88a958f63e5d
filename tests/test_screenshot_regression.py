"""Tests for screenshot keys, baselines and comparison."""

from pathlib import Path

import pytest

from menu_tester.regression.screenshot_engine import (
    ScreenshotRegressionEngine,
    normalize_key,
    sanitize_label,
)


class TestKeys:
    """Tests for screenshot key derivation."""

    @pytest.mark.parametrize("url,key", [
        ("https://a.com/chain//reports/", "chain-reports"),
        ("https://a.com/", "home"),
        ("https://a.com", "home"),
        ("https://a.com/app/index.html", "app-index-html"),
        ("https://a.com/app/#/orders/list?page=2", "app-orders-list"),
        ("https://a.com/Chain/Reports", "chain-reports"),
    ])
    def test_normalize_key(self, url, key):
        assert normalize_key(url) == key

    def test_relative_input_treated_as_label(self):
        assert normalize_key("Sales Report") == "sales-report"
        assert normalize_key("") == "home"

    def test_sanitize_label(self):
        assert sanitize_label("Stock Inventory") == "stock-inventory"
        assert sanitize_label(" Stock / Inventory!") == "-stock---inventory-"
        assert sanitize_label("报表 中心") == "报表-中心"
        assert sanitize_label("a" * 80, max_length=50) == "a" * 50

    def test_key_prefers_url(self, screenshot_config):
        engine = ScreenshotRegressionEngine(screenshot_config)
        key = engine.screenshot_key(url="https://a.com/chain/reports", target_id="menu-1", text="Reports")
        assert key == "chain-reports"

    def test_key_falls_back_to_id_then_text(self, screenshot_config):
        engine = ScreenshotRegressionEngine(screenshot_config)
        assert engine.screenshot_key(target_id="orders", text="Orders list") == "orders"
        # Generated route ids are not stable names
        assert engine.screenshot_key(target_id="route-3", text="Orders list") == "orders-list"
        assert engine.screenshot_key() == "home"

    def test_label_key_keeps_dash_runs(self, screenshot_config):
        engine = ScreenshotRegressionEngine(screenshot_config)
        assert engine.screenshot_key(text="Stock / Inventory") == "stock---inventory"
        assert engine.screenshot_key(text="Stock", scenario="A & B") == "stock-a---b"

    def test_scenario_suffix(self, screenshot_config):
        engine = ScreenshotRegressionEngine(screenshot_config)
        url = "https://a.com/chain/reports"
        assert engine.screenshot_key(url=url, scenario="Empty State") == "chain-reports-empty-state"
        assert engine.screenshot_key(url=url, scenario="default") == "chain-reports"
        assert engine.screenshot_key(url=url, scenario="") == "chain-reports"

    def test_keys_are_deterministic(self, screenshot_config):
        engine = ScreenshotRegressionEngine(screenshot_config)
        first = engine.screenshot_key(url="https://a.com/chain/x?b=1", scenario="Dark")
        second = engine.screenshot_key(url="https://a.com/chain/x?b=1", scenario="Dark")
        assert first == second


class TestCompareImages:
    """Tests for pixel comparison."""

    def test_identical_images_match(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)
        image = png_factory()

        diff = engine.compare_images(image, image)

        assert diff.match is True
        assert diff.diff_pixels == 0
        assert diff.diff_percentage == 0.0
        assert diff.total_pixels == 100
        assert diff.diff_image is None

    def test_dimension_mismatch(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)

        diff = engine.compare_images(png_factory((10, 10)), png_factory((20, 20)))

        assert diff.match is False
        assert diff.dimension_mismatch is True
        assert diff.diff_image is None
        assert diff.baseline_size == (10, 10)
        assert diff.current_size == (20, 20)

    def test_large_change_mismatches(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)

        diff = engine.compare_images(png_factory(), png_factory(block=(0, 0, 5, 5)))

        assert diff.match is False
        assert diff.diff_pixels > 0
        assert diff.diff_percentage >= 10.0
        assert diff.diff_image is not None
        assert diff.diff_image.startswith(b"\x89PNG")

    def test_small_change_under_threshold(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)

        diff = engine.compare_images(
            png_factory((100, 100)), png_factory((100, 100), block=(0, 0, 2, 2)),
        )

        assert diff.match is True
        assert diff.diff_pixels > 0
        assert diff.diff_percentage < 10.0
        assert diff.diff_image is None

    def test_tiny_diff_is_not_rounded_away(self, screenshot_config, png_factory):
        screenshot_config.threshold = 0.000005
        engine = ScreenshotRegressionEngine(screenshot_config)
        black = dict(size=(1000, 100), color=(0, 0, 0))

        diff = engine.compare_images(
            png_factory(**black), png_factory(**black, block=(0, 0, 1, 1), block_color=(255, 255, 255)),
        )

        # One pixel in 100000 is 0.001%, above a 0.0005% threshold
        assert diff.diff_pixels == 1
        assert diff.total_pixels == 100_000
        assert diff.match is False
        assert diff.diff_percentage == 0.0
        assert diff.diff_image is not None

    def test_percentage_equal_to_threshold_mismatches(self, screenshot_config, png_factory):
        screenshot_config.threshold = 0.00001
        engine = ScreenshotRegressionEngine(screenshot_config)
        black = dict(size=(1000, 100), color=(0, 0, 0))

        diff = engine.compare_images(
            png_factory(**black), png_factory(**black, block=(0, 0, 1, 1), block_color=(255, 255, 255)),
        )

        assert diff.diff_pixels == 1
        assert diff.match is False


class TestCompareOrSaveBaseline:
    """Tests for the baseline workflow."""

    def test_disabled(self, screenshot_config, png_factory):
        screenshot_config.enabled = False
        engine = ScreenshotRegressionEngine(screenshot_config)

        outcome = engine.compare_or_save_baseline("home", png_factory())

        assert outcome.type == "disabled"
        assert not engine.baseline_exists("home")

    def test_first_capture_becomes_baseline(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)

        outcome = engine.compare_or_save_baseline("chain-reports", png_factory())

        assert outcome.type == "baseline"
        assert outcome.is_new is True
        assert Path(outcome.path).is_file()
        assert engine.baseline_exists("chain-reports")

    def test_second_capture_compares(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)
        engine.compare_or_save_baseline("chain-reports", png_factory())

        outcome = engine.compare_or_save_baseline("chain-reports", png_factory())

        assert outcome.type == "comparison"
        assert outcome.match is True
        assert outcome.is_mismatch is False
        assert outcome.diff_path is None

    def test_mismatch_writes_diff(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)
        baseline = png_factory()
        engine.compare_or_save_baseline("chain-reports", baseline)

        outcome = engine.compare_or_save_baseline("chain-reports", png_factory(block=(0, 0, 6, 6)))

        assert outcome.is_mismatch is True
        assert outcome.diff_path is not None
        diff_file = Path(outcome.diff_path)
        assert diff_file.is_file()
        assert diff_file.parent == Path(screenshot_config.diff_dir)
        assert diff_file.name.startswith("chain-reports-diff-")
        # Baseline untouched outside update mode
        assert engine.load_baseline("chain-reports") == baseline

    def test_dimension_change_has_no_diff_file(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)
        engine.compare_or_save_baseline("k", png_factory((10, 10)))

        outcome = engine.compare_or_save_baseline("k", png_factory((20, 20)))

        assert outcome.is_mismatch is True
        assert outcome.dimension_mismatch is True
        assert outcome.diff_path is None

    def test_update_mode_overwrites(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)
        engine.compare_or_save_baseline("k", png_factory())

        screenshot_config.update_baseline = True
        replacement = png_factory(color=(0, 0, 255))
        outcome = engine.compare_or_save_baseline("k", replacement)

        assert outcome.type == "baseline"
        assert outcome.is_new is False
        assert engine.load_baseline("k") == replacement

    def test_corrupt_capture_is_error(self, screenshot_config, png_factory):
        engine = ScreenshotRegressionEngine(screenshot_config)
        engine.compare_or_save_baseline("k", png_factory())

        outcome = engine.compare_or_save_baseline("k", b"not a png")

        assert outcome.type == "error"
        assert outcome.error

    def test_diff_paths_do_not_collide(self, screenshot_config):
        engine = ScreenshotRegressionEngine(screenshot_config)
        first = engine.save_diff_image("k", b"one")
        second = engine.save_diff_image("k", b"two")
        assert first != second
        assert first.read_bytes() == b"one"
