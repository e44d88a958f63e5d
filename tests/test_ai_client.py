"""Tests for AI client."""

import os
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

import menu_tester.ai.client as client_module
from menu_tester.ai.client import AIClient, set_debug_dir


def _response(text: str, stop_reason: str = "end_turn") -> Mock:
    content = Mock()
    content.text = text
    response = Mock()
    response.content = [content]
    response.stop_reason = stop_reason
    return response


@pytest.fixture(autouse=True)
def no_debug_dir():
    set_debug_dir(None)
    yield
    set_debug_dir(None)


class TestAIClient:
    """Tests for AIClient class."""

    def test_init_requires_api_key(self):
        """Test AIClient raises error when API key is missing."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
                AIClient()

    @patch("anthropic.Anthropic")
    def test_init_with_api_key(self, mock_anthropic):
        """Test AIClient initializes with valid API key."""
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            client = AIClient()
            assert client.model == "claude-sonnet-4-20250514"
            assert client.max_tokens == 1024
            assert client.call_count == 0
            mock_anthropic.assert_called_once()

    @patch("anthropic.Anthropic")
    def test_complete_with_image_sends_image_block(self, mock_anthropic_class):
        """Test the screenshot is sent ahead of the question."""
        mock_client = Mock()
        mock_client.messages.create.return_value = _response("yes")
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            client = AIClient()
            answer = client.complete_with_image("system", "Is the page blank?", "aGVsbG8=")

        assert answer == "yes"
        assert client.call_count == 1
        kwargs = mock_client.messages.create.call_args.kwargs
        blocks = kwargs["messages"][0]["content"]
        assert blocks[0]["type"] == "image"
        assert blocks[0]["source"]["data"] == "aGVsbG8="
        assert blocks[1] == {"type": "text", "text": "Is the page blank?"}
        assert kwargs["temperature"] == 0.0

    @patch("anthropic.Anthropic")
    def test_custom_max_tokens(self, mock_anthropic_class):
        """Test per-call max_tokens overrides the default."""
        mock_client = Mock()
        mock_client.messages.create.return_value = _response("{}")
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            client = AIClient(max_tokens=256)
            client.complete_with_image("system", "user", "aGVsbG8=", max_tokens=2048)

        assert mock_client.messages.create.call_args.kwargs["max_tokens"] == 2048

    @patch("anthropic.Anthropic")
    @patch("menu_tester.ai.client.logger")
    def test_warns_on_truncation(self, mock_logger, mock_anthropic_class):
        """Test a truncated answer is logged as a warning."""
        mock_client = Mock()
        mock_client.messages.create.return_value = _response("{\"x\":", "max_tokens")
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            AIClient().complete_with_image("system", "user", "aGVsbG8=")

        mock_logger.warning.assert_called()
        assert "truncated" in mock_logger.warning.call_args[0][0].lower()

    @patch("anthropic.Anthropic")
    def test_complete_json_with_image(self, mock_anthropic_class):
        mock_client = Mock()
        mock_client.messages.create.return_value = _response('```json\n{"found": true}\n```')
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            result = AIClient().complete_json_with_image("system", "user", "aGVsbG8=")

        assert result == {"found": True}

    @patch("anthropic.Anthropic")
    def test_api_error_propagates(self, mock_anthropic_class):
        """Test API errors are propagated to caller."""
        mock_client = Mock()
        mock_client.messages.create.side_effect = Exception("API Error")
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            client = AIClient()
            with pytest.raises(Exception, match="API Error"):
                client.complete_with_image("system", "user", "aGVsbG8=")

    @patch("anthropic.Anthropic")
    def test_timeout_error_propagates(self, mock_anthropic_class):
        """Test timeout errors are propagated."""
        import anthropic

        mock_client = Mock()
        mock_client.messages.create.side_effect = anthropic.APITimeoutError(request=Mock())
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            client = AIClient()
            with pytest.raises(anthropic.APITimeoutError):
                client.complete_with_image("system", "user", "aGVsbG8=")


class TestParseJsonResponse:
    """Tests for parsing model answers."""

    def test_plain_object(self):
        assert AIClient.parse_json_response('{"a": 1}') == {"a": 1}

    def test_strips_fences(self):
        assert AIClient.parse_json_response('```\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose_and_trailing_comma(self):
        text = 'Here you go: {"items": [1, 2,], "ok": true,} hope that helps'
        assert AIClient.parse_json_response(text) == {"items": [1, 2], "ok": True}

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError, match="invalid JSON"):
            AIClient.parse_json_response("This is not JSON")

    def test_non_object_raises(self):
        with pytest.raises(ValueError, match="expected an object"):
            AIClient.parse_json_response("[1, 2]")


class TestDebugDirectory:
    """Tests for AI exchange logs."""

    def test_set_debug_dir_creates_directory(self, tmp_path: Path):
        """Test set_debug_dir creates the directory."""
        debug_dir = tmp_path / "debug"
        set_debug_dir(debug_dir)
        assert debug_dir.is_dir()
        assert client_module._debug_dir == debug_dir

    @patch("anthropic.Anthropic")
    def test_exchange_logged(self, mock_anthropic_class, tmp_path: Path):
        mock_client = Mock()
        mock_client.messages.create.return_value = _response("no")
        mock_anthropic_class.return_value = mock_client
        set_debug_dir(tmp_path)

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            AIClient().complete_with_image("system", "Is it broken?", "aGVsbG8=")

        logs = list(tmp_path.glob("ai_call_*.log"))
        assert len(logs) == 1
        content = logs[0].read_text()
        assert "Is it broken?" in content
        assert "=== RESPONSE ===\nno" in content

    @patch("anthropic.Anthropic")
    def test_no_log_without_debug_dir(self, mock_anthropic_class, tmp_path: Path):
        mock_client = Mock()
        mock_client.messages.create.return_value = _response("no")
        mock_anthropic_class.return_value = mock_client

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"}):
            AIClient().complete_with_image("system", "user", "aGVsbG8=")

        assert list(tmp_path.iterdir()) == []
