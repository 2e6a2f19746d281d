"""Exception hierarchy for the evaluation pipeline and its HTTP clients."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from auto_eval.models import GenerationJob


class EvaluationError(RuntimeError):
    """Base error with structured metadata for caller-visible failures."""

    default_code = "EVALUATION_FAILED"
    default_status = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status or self.default_status
        self.details = details or {}


class InvalidRequestError(EvaluationError):
    """The submission itself is unusable (bad role, unparseable fields)."""

    default_code = "INVALID_REQUEST"
    default_status = 400


class GenerationFailedError(EvaluationError):
    """The generation job ended in a non-completed terminal state."""

    default_code = "GENERATION_FAILED"
    default_status = 502

    def __init__(
        self,
        message: str,
        *,
        job: GenerationJob | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.job = job


class GenerationTimeoutError(GenerationFailedError):
    default_code = "GENERATION_TIMEOUT"


class MalformedOutputError(EvaluationError):
    """Structured generation output failed strict deserialization."""

    default_code = "MALFORMED_OUTPUT"
    default_status = 502

    def __init__(self, message: str, *, raw_text: str, errors: Any = None) -> None:
        super().__init__(message, details={"errors": errors} if errors else None)
        self.raw_text = raw_text


class ServiceClientError(RuntimeError):
    """Raised by outbound HTTP clients for request/config errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.details = details or {}
