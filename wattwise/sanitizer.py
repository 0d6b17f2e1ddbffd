"""
Cleanup and repair of raw model output.

Models wrap their JSON in reasoning blocks and markdown fences, and cut the
"items" array short when they run out of output tokens. A well-formed
response is parsed directly; a truncated one is repaired by closing the
array after the last complete element. Partially written elements are
always dropped, never completed.
"""

import json
import logging
import re
from typing import Any, List

from .errors import MalformedResponse


logger = logging.getLogger(__name__)

_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_THINK_OPEN_RE = re.compile(r"<think>", re.IGNORECASE)
_THINK_CLOSE_RE = re.compile(r"</think>", re.IGNORECASE)
_FENCE_OPEN_RE = re.compile(r"^```(?:json|JSON)?[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```$")
_ITEMS_KEY_RE = re.compile(r'"items"\s*:\s*\[')


def strip_reasoning(content: str) -> str:
    """Remove <think>...</think> segments, including unbalanced ones."""
    content = _THINK_BLOCK_RE.sub("", content)

    # Some providers drop the opening tag and stream only the close.
    close = None
    for close in _THINK_CLOSE_RE.finditer(content):
        pass
    if close is not None:
        content = content[close.end():]

    # Output cut off while still reasoning.
    opening = _THINK_OPEN_RE.search(content)
    if opening is not None:
        content = content[:opening.start()]

    return content


def strip_fences(content: str) -> str:
    """Remove a markdown code fence wrapping the response; fences inside values stay."""
    content = content.strip()
    content = _FENCE_OPEN_RE.sub("", content, count=1)
    return _FENCE_CLOSE_RE.sub("", content, count=1)


def clean_response(raw_content: str) -> str:
    return strip_fences(strip_reasoning(raw_content)).strip()


def element_boundaries(content: str, array_start: int) -> List[int]:
    """
    Offsets of the closing brace of every complete object in the array
    opened at ``array_start``.

    Tracks string literals and escapes so braces inside text are ignored.
    Scanning stops at the array's closing bracket or the end of input.
    """
    boundaries = []
    depth = 0
    in_string = False
    escaped = False

    for offset in range(array_start + 1, len(content)):
        char = content[offset]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            if depth == 0:
                # Closing bracket of the array itself.
                break
            depth -= 1
            if depth == 0 and char == "}":
                boundaries.append(offset)

    return boundaries


def _followed_by_separator(content: str, offset: int) -> bool:
    rest = content[offset + 1:].lstrip()
    return rest.startswith(",")


def repair_truncated(content: str) -> Any:
    """
    Recover the complete leading elements of a truncated "items" array.

    Raises MalformedResponse when no candidate parses.
    """
    first_brace = content.find("{")
    if first_brace == -1:
        raise MalformedResponse("Model response contains no JSON object", cleaned=content)

    items_match = _ITEMS_KEY_RE.search(content, first_brace)
    if items_match is None:
        raise MalformedResponse("Model response has no \"items\" array to repair", cleaned=content)
    array_start = items_match.end() - 1

    boundaries = element_boundaries(content, array_start)
    if not boundaries:
        raise MalformedResponse("Model response has no complete item to recover", cleaned=content)

    # The last boundary covers a cut right after an element, with or without
    # a trailing comma; earlier ones are tried only if it fails to parse.
    for offset in reversed(boundaries):
        candidate = content[first_brace:offset + 1] + "]}"
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        kind = "after separator" if _followed_by_separator(content, offset) else "at element end"
        logger.warning(
            "Repaired truncated JSON response (%s), kept %d item(s)",
            kind,
            len(parsed.get("items", [])) if isinstance(parsed, dict) else 0,
        )
        return parsed

    raise MalformedResponse("Truncated model response could not be repaired", cleaned=content)


def clean_and_parse_json(raw_content: str) -> Any:
    """
    Parse model output that should contain one ``{"items": [...]}`` object.

    Args:
        raw_content: Text exactly as returned by the model

    Returns:
        The parsed JSON value

    Raises:
        MalformedResponse: no object found, or every repair attempt failed
    """
    content = clean_response(raw_content)

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    try:
        return repair_truncated(content)
    except MalformedResponse as e:
        logger.debug("JSON parse failed. Raw content: %s", raw_content)
        logger.debug("Cleaned content: %s", content)
        raise MalformedResponse(str(e), raw=raw_content, cleaned=content) from None
