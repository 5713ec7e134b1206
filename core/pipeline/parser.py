"""
Three-tier parsing of model answers into `GeneratedInsight`.

  1) json:      fenced block / outermost braces → best-effort JSON object
  2) regex:     independent field matches, used only when a title matched
  3) plaintext: first lines as title/summary, whole answer as content

`parse_ai_response` never raises; the worst case is a low-confidence
record built from the raw text. The regex content pattern stops at the
first unescaped quote, so content with raw inner quotes is truncated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from core.db.models import InsightType
from core.pipeline.json_parse import JSONParseError, loads_object

logger = structlog.get_logger(__name__)

DEFAULT_SUMMARY = "AI-generated insights"
JSON_DEFAULT_CONFIDENCE = 0.75
FALLBACK_CONFIDENCE = 0.70

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_TITLE_RE = re.compile(r'"title":\s*"([^"]*)"')
_SUMMARY_RE = re.compile(r'"summary":\s*"([^"]*(?:\\.[^"]*)*)"')
_CONFIDENCE_RE = re.compile(r'"confidenceScore":\s*([\d.]+)')
_CONTENT_RE = re.compile(r'"content":\s*"((?:[^"\\]|\\.)*)"')

_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})


class ParseMethod(StrEnum):
    JSON = "json"
    REGEX = "regex"
    PLAINTEXT = "plaintext"


@dataclass
class GeneratedInsight:
    """Parsed model answer with every field defaulted."""

    title: str
    content: str
    summary: str
    key_metrics: dict[str, Any] = field(default_factory=dict)
    confidence_score: float = FALLBACK_CONFIDENCE
    parse_method: ParseMethod = ParseMethod.PLAINTEXT


def default_title(insight_type: InsightType | str) -> str:
    value = insight_type.value if isinstance(insight_type, InsightType) else str(insight_type)
    return f"{value.replace('_', ' ')} Analysis"


def clamp_confidence(value: Any, default: float) -> float:
    """Coerce to float in [0, 1]; non-numeric values (and bools) give `default`."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return min(max(score, 0.0), 1.0)


def extract_json_candidate(raw: str) -> str:
    """Fenced block body if present, then slice first `{` .. last `}`."""
    candidate = raw.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end > start:
        candidate = candidate[start : end + 1]

    return candidate.translate(_SMART_QUOTES)


def _text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return str(value)


def _parse_json(raw: str, insight_type: InsightType | str) -> GeneratedInsight:
    candidate = extract_json_candidate(raw)
    logger.debug("insight_parse_json_attempt", preview=candidate[:200])
    parsed = loads_object(candidate)

    summary = parsed.get("summary")
    if isinstance(summary, list):
        summary = " • ".join(str(part) for part in summary)

    key_metrics = parsed.get("keyMetrics")
    if not isinstance(key_metrics, dict):
        key_metrics = {}

    return GeneratedInsight(
        title=_text_or_none(parsed.get("title")) or default_title(insight_type),
        content=_text_or_none(parsed.get("content")) or raw,
        summary=_text_or_none(summary) or DEFAULT_SUMMARY,
        key_metrics=key_metrics,
        confidence_score=clamp_confidence(parsed.get("confidenceScore"), JSON_DEFAULT_CONFIDENCE),
        parse_method=ParseMethod.JSON,
    )


def _parse_regex(raw: str, insight_type: InsightType | str) -> GeneratedInsight | None:
    title = _TITLE_RE.search(raw)
    if not title:
        return None

    summary = _SUMMARY_RE.search(raw)
    confidence = _CONFIDENCE_RE.search(raw)
    content = _CONTENT_RE.search(raw)

    content_text = content.group(1).replace("\\n", "\n") if content else ""
    summary_text = summary.group(1).replace("\\n", "\n") if summary else ""

    logger.info("insight_parse_regex_fallback", title=title.group(1)[:100])
    return GeneratedInsight(
        title=title.group(1) or default_title(insight_type),
        content=content_text or raw[:1000],
        summary=summary_text or DEFAULT_SUMMARY,
        key_metrics={},
        confidence_score=clamp_confidence(
            confidence.group(1) if confidence else None, FALLBACK_CONFIDENCE
        ),
        parse_method=ParseMethod.REGEX,
    )


def _parse_plaintext(raw: str, insight_type: InsightType | str) -> GeneratedInsight:
    lines = [line.strip() for line in raw.split("\n") if line.strip()]
    fallback_title = default_title(insight_type)

    title = lines[0] if lines else fallback_title
    if len(title) > 100:
        title = fallback_title

    summary = " ".join(lines[:2]) or DEFAULT_SUMMARY
    if len(summary) > 200:
        summary = summary[:200] + "..."

    logger.info("insight_parse_plaintext_fallback", preview=raw[:200])
    return GeneratedInsight(
        title=title,
        content=raw,
        summary=summary,
        key_metrics={},
        confidence_score=FALLBACK_CONFIDENCE,
        parse_method=ParseMethod.PLAINTEXT,
    )


def parse_ai_response(raw: str, insight_type: InsightType | str) -> GeneratedInsight:
    """Best-effort parse of a model answer. Never raises."""
    try:
        return _parse_json(raw, insight_type)
    except JSONParseError as exc:
        logger.warning("insight_parse_json_failed", error=str(exc), preview=raw[:500])
    except Exception:
        logger.warning("insight_parse_json_failed", preview=raw[:500], exc_info=True)

    try:
        regex_result = _parse_regex(raw, insight_type)
    except Exception:
        logger.warning("insight_parse_regex_failed", exc_info=True)
        regex_result = None
    if regex_result is not None:
        return regex_result

    return _parse_plaintext(raw, insight_type)
