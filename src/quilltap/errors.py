"""Exception hierarchy for Quilltap."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class QuilltapError(Exception):
    """Base exception for all Quilltap errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(QuilltapError):
    """Configuration validation or resolution failed."""


class CapabilityError(QuilltapError):
    """The selected vendor lacks a requested capability (e.g. image generation)."""


class ToolCallError(QuilltapError):
    """A tool call could not be dispatched to a handler."""


class APIError(QuilltapError):
    """Vendor API call failed.

    Adapters attach retry metadata so an outer layer can decide on a retry
    policy without brittle substring matching. The core itself never retries.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class AuthenticationError(APIError):
    """Invalid or missing API key (HTTP 401/403)."""


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class ModelNotFoundError(APIError):
    """Requested model does not exist or is unavailable (HTTP 404)."""


class InvalidRequestError(APIError):
    """Vendor rejected the request payload (HTTP 400/422)."""


class NetworkError(APIError):
    """Connection failed, timed out, or dropped mid-stream."""


def user_facing_message(exc: BaseException) -> str:
    """Return a short message suitable for showing to an end user."""
    if isinstance(exc, AuthenticationError):
        return "Invalid API key. Please check your API key in settings."
    if isinstance(exc, RateLimitError):
        if exc.retry_after_s is not None:
            return (
                "Rate limit exceeded. Please try again in "
                f"{exc.retry_after_s:g} seconds."
            )
        return "Rate limit exceeded. Please try again later."
    if isinstance(exc, NetworkError):
        return "Network error. Please check your connection and try again."
    if isinstance(exc, ModelNotFoundError):
        return "The selected model is not available. Please choose a different model."
    if isinstance(exc, (InvalidRequestError, ConfigurationError)):
        return f"Invalid request: {exc}"
    if isinstance(exc, QuilltapError):
        return str(exc)
    return "An unexpected error occurred. Please try again."


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
