"""Response parsing utilities for extracting JSON and text from LLM responses.

Shared by the judge scorer and the rewrite transformer.
Pure string manipulation, no external dependencies.
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCED_BLOCK = r"```[a-zA-Z0-9_-]*\s*\n(.*?)```"


def parse_block_from_response(raw_response: str) -> str:
    """Extract the revised artifact from an LLM response.

    Handles:
    - Fenced blocks with or without a language tag (takes the last one)
    - Plain responses (the whole stripped text)

    Raises ValueError if the response is empty.
    """
    matches = re.findall(_FENCED_BLOCK, raw_response, re.DOTALL)
    if matches:
        block = matches[-1].strip()
        if block:
            return block

    stripped = raw_response.strip()
    if not stripped:
        raise ValueError("Empty LLM response")
    return stripped


def parse_json_from_response(raw_response: str) -> Any:
    """Extract and parse JSON from an LLM response.

    Handles:
    - Markdown fenced blocks (```json ... ```)
    - Plain JSON responses
    - JSON embedded in prose (extracts first valid JSON object/array)

    Raises ValueError if no valid JSON is found.
    """
    pattern = r"```(?:json)?\s*\n(.*?)```"
    for match in re.findall(pattern, raw_response, re.DOTALL):
        try:
            return json.loads(match.strip())
        except json.JSONDecodeError:
            continue

    stripped = raw_response.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    # Objects nested up to two levels deep, e.g. {"findings": [{"..": ..}]}
    for pattern in [
        r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}",
        r"\[.*?\]",
    ]:
        for match in re.findall(pattern, stripped, re.DOTALL):
            try:
                return json.loads(match)
            except json.JSONDecodeError:
                continue

    raise ValueError("No valid JSON found in LLM response")
