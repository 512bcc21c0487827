"""Extraction and validation of analysis JSON from model output.

Gemini is asked for pure JSON but may still wrap it in prose or markdown
fences. :func:`extract_json` isolates the candidate object and
:func:`parse_analysis` validates it strictly against
:class:`~singleshot.models.AnalysisResult`.
"""

from __future__ import annotations

import json
import re

from pydantic import ValidationError

from singleshot.ai.errors import MalformedResponseError
from singleshot.models import AnalysisResult

_CODE_FENCE_RE = re.compile(r"```(?:json)?\n?|\n?```")


def extract_json(text: str) -> str | None:
    """Return the span from the first ``{`` to the last ``}``, inclusive.

    Returns:
        The candidate JSON text, or None when no ordered brace pair exists.

    Example:
        >>> extract_json('Here is the data: {"title": "X"} Thanks!')
        '{"title": "X"}'
    """
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last < first:
        return None
    return text[first : last + 1]


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences around a response and trim it."""
    return _CODE_FENCE_RE.sub("", text).strip()


def parse_analysis(text: str) -> AnalysisResult:
    """Parse model output into an :class:`AnalysisResult`.

    Args:
        text: Raw text returned by the model.

    Returns:
        The validated result.

    Raises:
        MalformedResponseError: If no JSON object can be decoded or it does
            not contain every required field.
    """
    candidate = extract_json(text)
    if candidate is None:
        candidate = strip_code_fences(text)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            "Failed to process AI response. The model output was not valid JSON.",
            raw_text=text,
        ) from e

    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(data).__name__}.",
            raw_text=text,
        )

    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        missing = sorted(
            ".".join(str(part) for part in err["loc"])
            for err in e.errors()
            if err["type"] == "missing"
        )
        if missing:
            detail = f"missing required field(s): {', '.join(missing)}"
        else:
            detail = f"{e.error_count()} invalid field(s)"
        raise MalformedResponseError(
            f"AI response did not match the expected shape: {detail}.",
            raw_text=text,
        ) from e
