"""Error taxonomy for generation calls.

Every failure surfaced by the runtime is an LLMError carrying an
ErrorKind.  The engine and the token stream retry locally and then
raise a single GenerationError that names the kind and attempt count
and chains the last underlying error as ``__cause__``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    AUTHENTICATION = "AuthenticationError"
    REQUEST = "RequestError"
    API = "APIError"
    RESPONSE = "ResponseError"
    UNSUPPORTED = "UnsupportedError"
    CANCELLED = "CancelledError"


_NOT_RETRYABLE = frozenset({
    ErrorKind.AUTHENTICATION,
    ErrorKind.UNSUPPORTED,
    ErrorKind.CANCELLED,
})


class LLMError(Exception):
    """Base error for all generation failures."""

    kind: ErrorKind = ErrorKind.REQUEST

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        return self.kind not in _NOT_RETRYABLE

    def loggable_fields(self) -> dict[str, Any]:
        """Fields for structured logging (``logger.info(..., extra=...)``)."""
        return {
            "error_type": self.kind.value,
            "error_message": self.message,
            "error_cause": repr(self.__cause__) if self.__cause__ else None,
        }

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.kind.value} ({self.message}): {self.__cause__}"
        return f"{self.kind.value}: {self.message}"


class AuthenticationError(LLMError):
    kind = ErrorKind.AUTHENTICATION


class RequestError(LLMError):
    kind = ErrorKind.REQUEST


class APIError(LLMError):
    """Non-success status from the remote endpoint."""

    kind = ErrorKind.API

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.body = body


class ResponseError(LLMError):
    kind = ErrorKind.RESPONSE


class UnsupportedError(LLMError):
    kind = ErrorKind.UNSUPPORTED


class GenerationCancelled(LLMError):
    """The caller's cancellation signal fired during a call or retry wait."""

    kind = ErrorKind.CANCELLED


class GenerationError(LLMError):
    """Final failure after the retry budget ran out (or a non-retryable error)."""

    def __init__(self, last_error: LLMError, attempts: int) -> None:
        self.kind = last_error.kind
        self.attempts = attempts
        self.last_error = last_error
        noun = "attempt" if attempts == 1 else "attempts"
        super().__init__(
            f"{last_error.kind.value} after {attempts} {noun}: {last_error.message}",
            cause=last_error,
        )

    def __str__(self) -> str:
        return self.message


def error_for_status(status_code: int, body: str = "") -> LLMError:
    """Map a non-success HTTP status to the taxonomy."""
    snippet = body[:500]
    if status_code in (401, 403):
        return AuthenticationError(f"authentication failed: status code {status_code}")
    return APIError(
        f"API error: status code {status_code}",
        status_code=status_code,
        body=snippet,
    )
