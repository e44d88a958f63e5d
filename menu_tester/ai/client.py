"""Claude API client used for screenshot perception."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Optional

import anthropic

logger = logging.getLogger(__name__)

# Set by the orchestrator at startup; None disables exchange logs
_debug_dir: Path | None = None

_FENCE = re.compile(r"^```(?:json)?\s*\n(.*?)\n```\s*$", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def set_debug_dir(path: Path | None) -> None:
    """Directory for AI exchange logs, or None to stop writing them."""
    global _debug_dir
    _debug_dir = path
    if path is not None:
        path.mkdir(parents=True, exist_ok=True)


class AIClient:
    """Synchronous wrapper around the Anthropic messages API."""

    def __init__(self, model: str = "claude-sonnet-4-20250514", max_tokens: int = 1024):
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise EnvironmentError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "Perception queries need it."
            )
        self.client = anthropic.Anthropic(api_key=api_key, timeout=120.0)
        self.model = model
        self.max_tokens = max_tokens
        self._call_count = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    def complete_with_image(
        self,
        system_prompt: str,
        user_message: str,
        image_base64: str,
        media_type: str = "image/png",
        max_tokens: Optional[int] = None,
    ) -> str:
        """Ask about a screenshot and return the text answer."""
        self._call_count += 1
        tokens = max_tokens or self.max_tokens
        logger.debug("AI perception call #%d (model=%s)", self._call_count, self.model)

        started = time.time()
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=tokens,
                temperature=0.0,
                system=system_prompt,
                messages=[{
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": media_type, "data": image_base64},
                        },
                        {"type": "text", "text": user_message},
                    ],
                }],
            )
        except anthropic.APIError as e:
            logger.error("Claude API error: %s", e)
            self._log_exchange(user_message, "", str(e))
            raise

        text = response.content[0].text
        logger.debug("AI answered in %.1fs (%d chars)", time.time() - started, len(text))
        if response.stop_reason == "max_tokens":
            logger.warning("AI response truncated at max_tokens=%d", tokens)
        self._log_exchange(user_message, text, None)
        return text

    def complete_json_with_image(
        self,
        system_prompt: str,
        user_message: str,
        image_base64: str,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        text = self.complete_with_image(system_prompt, user_message, image_base64, max_tokens=max_tokens)
        return self.parse_json_response(text)

    @staticmethod
    def parse_json_response(text: str) -> dict[str, Any]:
        """Parse a JSON object out of a model answer, tolerating fences and trailing commas."""
        cleaned = text.strip()
        fenced = _FENCE.search(cleaned)
        if fenced:
            cleaned = fenced.group(1).strip()

        try:
            data = json.loads(cleaned, strict=False)
        except json.JSONDecodeError:
            start, end = cleaned.find("{"), cleaned.rfind("}")
            if start != -1 and end > start:
                cleaned = cleaned[start:end + 1]
            cleaned = _TRAILING_COMMA.sub(r"\1", cleaned)
            try:
                data = json.loads(cleaned, strict=False)
            except json.JSONDecodeError as e:
                logger.error("AI returned invalid JSON: %s", text[:200])
                raise ValueError(f"AI returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"AI returned JSON {type(data).__name__}, expected an object")
        return data

    def _log_exchange(self, user_message: str, response_text: str, error: str | None) -> None:
        if _debug_dir is None:
            return
        try:
            log_file = _debug_dir / f"ai_call_{time.strftime('%Y%m%d_%H%M%S')}_{self._call_count:03d}.log"
            with open(log_file, "w", encoding="utf-8") as f:
                f.write(f"=== PROMPT ===\n{user_message}\n\n")
                f.write(f"=== RESPONSE ===\n{response_text or '(empty)'}\n")
                if error:
                    f.write(f"\n=== ERROR ===\n{error}\n")
        except OSError as e:
            logger.debug("Failed to save AI exchange log: %s", e)
