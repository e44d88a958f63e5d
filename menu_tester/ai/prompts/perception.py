"""Prompts for screenshot-based page perception."""

PERCEPTION_SYSTEM_PROMPT = """You look at a screenshot of a web application and answer questions about what is visible.

CRITICAL: Return ONLY valid JSON. No markdown fences, no text before or after the JSON object.

Answer only from what is visible in the screenshot. If something cannot be seen, treat it as absent."""


LOCATE_SYSTEM_PROMPT = """You locate interface elements in a screenshot of a web application so they can be clicked.

CRITICAL: Return ONLY valid JSON. No markdown fences, no text before or after the JSON object.

Return exactly this JSON structure:

{"found": true, "x": 120, "y": 48, "reasoning": "brief explanation"}

Fields:
- found: whether the element is visible
- x, y: pixel coordinates of the element's center in the screenshot, or null when not found
- reasoning: one sentence"""


def build_boolean_prompt(question: str, page_url: str) -> str:
    return (
        f"Page URL: {page_url}\n\n"
        f"Question: {question}\n\n"
        'Return {"answer": true} or {"answer": false}, plus a one-sentence "reasoning".'
    )


def build_structured_prompt(question: str, page_url: str) -> str:
    return (
        f"Page URL: {page_url}\n\n"
        f"Request: {question}\n\n"
        'Return {"value": <your answer as JSON>, "reasoning": "..."}.'
    )


def build_locate_prompt(description: str, page_url: str) -> str:
    return (
        f"Page URL: {page_url}\n\n"
        f"Find this element: {description}\n\n"
        'If it is hidden inside a collapsed menu, return {"found": false}.'
    )
