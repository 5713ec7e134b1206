"""Best-effort JSON parsing for model output."""

from __future__ import annotations

from typing import Any

import orjson
import pyjson5
import rapidjson


class JSONParseError(ValueError):
    """No parser in the chain accepted the input."""


def loads_best_effort(raw: str) -> Any:
    """Parse JSON as produced by generative models, strict first.

    Order:
      1) strict+fast (orjson)
      2) tolerant (rapidjson: comments + trailing commas)
      3) JSON5 (pyjson5: single quotes, unquoted keys, etc.)

    Raises JSONParseError when all three reject the input.
    """
    s = raw.strip()

    # 1) Strict + fast
    try:
        return orjson.loads(s.encode("utf-8"))
    except orjson.JSONDecodeError:
        pass

    # 2) Tolerant: comments + trailing commas
    try:
        return rapidjson.loads(
            s,
            parse_mode=rapidjson.PM_COMMENTS | rapidjson.PM_TRAILING_COMMAS,
        )
    except ValueError:
        pass

    # 3) JSON5
    try:
        return pyjson5.loads(s)
    except (ValueError, pyjson5.Json5Exception) as exc:
        raise JSONParseError(f"unparseable JSON: {exc}") from exc


def loads_object(raw: str) -> dict[str, Any]:
    """Like `loads_best_effort` but the top-level value must be an object."""
    parsed = loads_best_effort(raw)
    if not isinstance(parsed, dict):
        raise JSONParseError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
