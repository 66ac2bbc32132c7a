"""Shared provider-side error helpers.

Adapters map vendor SDK and httpx failures into APIError subclasses so the
orchestrator and any outer layer can react on structured metadata instead of
matching on message text.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from quilltap._http import RETRYABLE_STATUS_CODES
from quilltap.config import api_key_env_vars
from quilltap.errors import (
    APIError,
    AuthenticationError,
    InvalidRequestError,
    ModelNotFoundError,
    NetworkError,
    RateLimitError,
    _walk_exception_chain,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        raw: Any = None
        try:
            raw = headers.get("Retry-After")
        except (AttributeError, TypeError):
            raw = None
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def _is_network_failure(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
            return True
        # SDKs wrap httpx failures in their own connection error types.
        if type(e).__name__ in {"APIConnectionError", "APITimeoutError"}:
            return True
    return False


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    if status_code not in {401, 403}:
        return None
    env_vars = api_key_env_vars(provider)
    env_var = env_vars[0] if env_vars else "the API key"
    return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool = True,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map vendor exceptions into an APIError subclass with stable metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    network_failure = allow_network_errors and _is_network_failure(exc)

    retryable = retry_after_s is not None or network_failure
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True

    err_cls: type[APIError] = APIError
    if status_code in {401, 403}:
        err_cls = AuthenticationError
    elif status_code == 429:
        err_cls = RateLimitError
    elif status_code == 404:
        err_cls = ModelNotFoundError
    elif status_code in {400, 422}:
        err_cls = InvalidRequestError
    elif status_code is None and network_failure:
        err_cls = NetworkError

    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint if hint is not None else _auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
