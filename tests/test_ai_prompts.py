"""Tests for AI prompts."""

from menu_tester.ai.prompts.perception import (
    LOCATE_SYSTEM_PROMPT,
    PERCEPTION_SYSTEM_PROMPT,
    build_boolean_prompt,
    build_locate_prompt,
    build_structured_prompt,
)


class TestPerceptionPrompts:
    """Tests for perception prompts."""

    def test_system_prompts_require_json(self):
        """Both system prompts demand a bare JSON answer."""
        assert "JSON" in PERCEPTION_SYSTEM_PROMPT
        assert "JSON" in LOCATE_SYSTEM_PROMPT

    def test_locate_prompt_describes_fields(self):
        for field in ("found", "x", "y"):
            assert f'"{field}"' in LOCATE_SYSTEM_PROMPT

    def test_boolean_prompt(self):
        prompt = build_boolean_prompt("Is the page blank?", "https://a.com/chain/x")
        assert "Is the page blank?" in prompt
        assert "https://a.com/chain/x" in prompt
        assert '"answer"' in prompt

    def test_structured_prompt(self):
        prompt = build_structured_prompt("List the menu items", "https://a.com")
        assert "List the menu items" in prompt
        assert '"value"' in prompt

    def test_locate_prompt(self):
        prompt = build_locate_prompt('the menu item "Reports"', "https://a.com")
        assert 'the menu item "Reports"' in prompt
        assert '"found": false' in prompt
