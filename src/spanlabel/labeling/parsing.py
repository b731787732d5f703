"""LLM response parsing utilities."""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import ParseError

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fence(response: str) -> str:
    """Remove a leading ``` / ```json fence and a trailing ``` if present."""
    trimmed = response.strip()
    if not trimmed.startswith("```"):
        return trimmed
    trimmed = _FENCE_OPEN.sub("", trimmed, count=1)
    return _FENCE_CLOSE.sub("", trimmed).strip()


def parse_response(response: Any) -> Any:
    """Parse model output into a JSON value.

    Tries the fence-stripped text first, then the first greedy ``{...}``
    substring of the raw response.

    Raises:
        ParseError: carrying the underlying decoder message when both fail.
    """
    if not isinstance(response, str) or not response.strip():
        raise ParseError("empty response")

    cleaned = strip_code_fence(response)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, RecursionError) as e:
        first_error = e

    obj_match = _OBJECT.search(response)
    if obj_match:
        try:
            return json.loads(obj_match.group())
        except (json.JSONDecodeError, RecursionError) as e:
            raise ParseError(str(e)) from e

    raise ParseError(str(first_error)) from first_error
