"""Tests for post-navigation page checks."""

import pytest

from menu_tester.capability import PerceptionBoundary
from menu_tester.models.config import PageCheck
from menu_tester.validation.page_validator import PageValidator, rule_checks


def _healthy(capability):
    capability.answers["business content"] = True


class TestRuleChecks:
    """Tests for turning cached rules into checks."""

    def test_empty(self):
        assert rule_checks(None) == []
        assert rule_checks({}) == []

    def test_title_and_elements(self):
        checks = rule_checks({"pageTitle": "Reports", "expectedElements": ["#main", ".grid"]})
        assert [c.name for c in checks] == ["pageTitle", "expectedElement:#main", "expectedElement:.grid"]
        assert all(c.expectation for c in checks)
        assert '"Reports"' in checks[0].prompt


@pytest.mark.asyncio
class TestPageValidator:
    """Tests for PageValidator against the default checks."""

    async def test_healthy_page(self, capability):
        _healthy(capability)
        validator = PageValidator(PerceptionBoundary(capability))

        result = await validator.validate()

        assert result.success is True
        assert result.error is None
        assert result.checks == {
            "notBlankScreen": True,
            "noPermissionError": True,
            "noApiError": True,
            "hasValidBusinessContent": True,
        }

    async def test_blank_page(self, capability):
        _healthy(capability)
        capability.answers["blank"] = True
        validator = PageValidator(PerceptionBoundary(capability))

        result = await validator.validate()

        assert result.success is False
        assert result.checks["notBlankScreen"] is False
        assert result.error == "Blank or empty page detected"

    async def test_permission_error_stops_early(self, capability):
        _healthy(capability)
        capability.answers["permission"] = True
        validator = PageValidator(PerceptionBoundary(capability))

        result = await validator.validate()

        assert result.success is False
        assert "noApiError" not in result.checks
        assert result.failures == ["Permission error detected"]

    async def test_collects_multiple_failures(self, capability):
        capability.answers["API or network"] = True
        validator = PageValidator(PerceptionBoundary(capability))

        result = await validator.validate()

        assert result.failures == [
            "API or network error detected",
            "Page has no valid business content",
        ]
        assert result.error == "API or network error detected; Page has no valid business content"

    async def test_unanswerable_check_fails(self, capability):
        capability.answers["heading"] = "dunno"
        check = PageCheck(name="heading", prompt="Is there a heading?", expectation=True)
        validator = PageValidator(PerceptionBoundary(capability), checks=[check])

        result = await validator.validate()

        assert result.success is False
        assert result.failures[0].startswith("heading check error:")

    async def test_rules_extend_checks(self, capability):
        capability.answers['title or main heading "Reports"'] = True
        validator = PageValidator(PerceptionBoundary(capability), checks=[])

        result = await validator.validate({"pageTitle": "Reports", "expectedElements": ["#grid"]})

        assert result.checks == {"pageTitle": True, "expectedElement:#grid": False}
        assert result.failures == ['Expected element "#grid" not found']

    async def test_waits_while_loading(self, capability):
        capability.answers["still loading"] = True
        validator = PageValidator(PerceptionBoundary(capability), checks=[])

        await validator.validate()

        assert capability.called("wait_for_condition") == ["The page has finished loading"]

    async def test_no_wait_when_loaded(self, capability):
        validator = PageValidator(PerceptionBoundary(capability), checks=[])
        await validator.validate()
        assert capability.called("wait_for_condition") == []
