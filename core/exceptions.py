"""Exception hierarchy for the insight pipeline and its API."""

from __future__ import annotations


class InsightsError(Exception):
    """Base exception for all application-specific errors."""

    status_code: int = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class InvalidRequestError(InsightsError):
    """Missing or malformed caller input. Never retried."""

    status_code = 400


class NotFoundError(InsightsError):
    """A referenced report, company or insight does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(
            message=f"{entity} not found",
            details=f"No {entity.lower()} with id {entity_id}",
        )
        self.entity = entity
        self.entity_id = entity_id


class ExtractionError(InsightsError):
    """The text extraction collaborator could not produce document text."""

    def __init__(self, report_id: object, reason: str | None = None) -> None:
        message = "Failed to extract PDF content"
        if reason:
            message += f": {reason}"
        super().__init__(message=message)
        self.report_id = report_id


class ModelInvocationError(InsightsError):
    """The generative model call failed, timed out or returned no text."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        if original_error is not None:
            message = f"{message}: {original_error}"
        super().__init__(
            message=message,
            details="The language model service is temporarily unavailable",
        )
        self.original_error = original_error
