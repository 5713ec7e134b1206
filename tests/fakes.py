"""Fakes for the external collaborators plus small assertion helpers."""

from __future__ import annotations

import json
from typing import Any

from core.db.models import AnnualReport
from core.exceptions import ModelInvocationError
from core.pipeline.extraction import ExtractionResult
from core.pipeline.llm import ModelResponse

CRON_SECRET = "test-cron-secret"

SAMPLE_REPORT_TEXT = (
    "Revenue grew 15% year over year. Net margin improved to 12.3%. "
    "The balance sheet remains strong. Management expects further growth."
)


def model_answer(title: str = "Solid Year", confidence: float = 0.9) -> str:
    """A well-formed fenced JSON answer as the model would return it."""
    body = {
        "title": title,
        "content": f"{title} content",
        "summary": f"{title} summary",
        "keyMetrics": {"revenueGrowth": "15%"},
        "confidenceScore": confidence,
    }
    return "```json\n" + json.dumps(body) + "\n```"


def model_error(message: str = "upstream unavailable") -> ModelInvocationError:
    return ModelInvocationError("Model request failed", RuntimeError(message))


class FakeInvoker:
    """Scripted stand-in for ModelInvoker.

    Each call consumes the next scripted outcome: a string is returned as
    the model text, an exception is raised. Once the script runs out,
    every call answers with `model_answer()`.
    """

    model = "fake-model"

    def __init__(self, script: list[str | Exception] | None = None) -> None:
        self.script = list(script or [])
        self.prompts: list[str] = []

    async def invoke(self, prompt: str) -> ModelResponse:
        self.prompts.append(prompt)
        outcome: str | Exception = self.script.pop(0) if self.script else model_answer()
        if isinstance(outcome, Exception):
            raise outcome
        return ModelResponse(text=outcome, input_tokens=100, output_tokens=50, model=self.model)


class FakeExtractor:
    """Returns fixed text, or an unsuccessful result when `fail` is set."""

    def __init__(self, text: str = SAMPLE_REPORT_TEXT, fail: bool = False) -> None:
        self.text = text
        self.fail = fail
        self.calls = 0

    async def extract(self, report: AnnualReport) -> ExtractionResult:
        self.calls += 1
        if self.fail:
            return ExtractionResult.failed("document unreadable")
        return ExtractionResult(text=self.text, page_count=3, method="pdf-parse")


class RecordingSleep:
    """Async sleep replacement that only records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def naive(value: Any) -> Any:
    """Drop tzinfo so values read back from SQLite compare with aware ones."""
    return value.replace(tzinfo=None) if value is not None else None
