"""Research error hierarchy and provider error categorization.

Provider SDKs and raw HTTP calls raise wildly different exceptions. Clients
wrap them into ``ProviderError`` (the provider answered with an error) or
``ResearchTransportError`` (the connection broke), and ``categorize`` turns
either into an ``Err`` carrying a fixed ``ErrorCategory`` and a message a
person can act on.
"""

from __future__ import annotations

import re

from quorum.config import provider_env_var
from quorum.types import Err, ErrorCategory, QuorumError


class ResearchError(QuorumError):
    """Base for errors raised inside a research client."""


class ProviderError(ResearchError):
    """The provider rejected a request.

    Args:
        message: Provider-supplied error text.
        status_code: HTTP status, when known.
        code: Provider error code such as ``insufficient_quota``.
        provider: Provider family that raised it.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.provider = provider


class ResearchTransportError(ResearchError):
    """Connection-level failure: dropped stream, DNS, reset, read timeout."""


_STATUS_MARKERS: dict[ErrorCategory, tuple[int, tuple[str, ...]]] = {
    ErrorCategory.RATE_LIMITED: (429, ("rate_limit", "RESOURCE_EXHAUSTED")),
    ErrorCategory.AUTHENTICATION: (401, ("invalid_api_key", "UNAUTHENTICATED")),
    ErrorCategory.PERMISSION_DENIED: (403, ("PERMISSION_DENIED",)),
    ErrorCategory.INVALID_REQUEST: (400, ("INVALID_ARGUMENT", "invalid_request_error")),
}

_JOB_CATEGORIES: dict[str, ErrorCategory] = {
    "failed": ErrorCategory.JOB_FAILED,
    "cancelled": ErrorCategory.JOB_CANCELLED,
    "expired": ErrorCategory.JOB_EXPIRED,
    "timeout": ErrorCategory.TIMEOUT,
}


def classify(text: str, status_code: int | None = None) -> ErrorCategory:
    """Pick an ``ErrorCategory`` from an HTTP status and error text.

    Quota exhaustion is checked before rate limiting because providers report
    both with HTTP 429.
    """
    if "verified" in text:
        return ErrorCategory.UNVERIFIED_ORGANIZATION
    if "insufficient_quota" in text or "billing" in text:
        return ErrorCategory.QUOTA_EXHAUSTED
    for category, (status, markers) in _STATUS_MARKERS.items():
        if status_code == status or re.search(rf"\b{status}\b", text):
            return category
        if any(marker in text for marker in markers):
            return category
    return ErrorCategory.UNKNOWN


def describe(category: ErrorCategory, detail: str, provider: str | None = None) -> str:
    """Human-readable message for *category*."""
    env = provider_env_var(provider) if provider else "the provider API key"
    match category:
        case ErrorCategory.UNVERIFIED_ORGANIZATION:
            return (
                "Organization not verified. Visit "
                "https://platform.openai.com/settings/organization/general to verify."
            )
        case ErrorCategory.RATE_LIMITED:
            return "Rate limited. Wait a moment and try again."
        case ErrorCategory.QUOTA_EXHAUSTED:
            return "Insufficient credits or quota. Check the provider's billing page."
        case ErrorCategory.AUTHENTICATION:
            return f"Invalid API key. Check {env}."
        case ErrorCategory.PERMISSION_DENIED:
            return f"Permission denied. Check {env} and ensure the API is enabled."
        case ErrorCategory.INVALID_REQUEST:
            return f"Invalid request: {detail}"
        case ErrorCategory.DISCONNECTED:
            return f"Connection lost: {detail}"
        case ErrorCategory.TIMEOUT:
            return detail or "Timed out"
        case ErrorCategory.JOB_FAILED:
            return detail or "Research failed"
        case ErrorCategory.JOB_CANCELLED:
            return detail or "Research was cancelled"
        case ErrorCategory.JOB_EXPIRED:
            return detail or "Research job expired"
        case _:
            return detail or category.value


def categorize(exc: BaseException, *, provider: str | None = None, partial_content: str = "") -> Err:
    """Translate *exc* into a categorized ``Err``.

    Besides the research errors this understands any exception exposing
    ``status_code``, ``code`` or a truthy ``transport`` attribute, which
    covers the chat path's ``ChatError``.
    """
    if isinstance(exc, ResearchTransportError) or getattr(exc, "transport", False):
        category = ErrorCategory.DISCONNECTED
    elif isinstance(exc, TimeoutError):
        category = ErrorCategory.TIMEOUT
    else:
        if isinstance(exc, ProviderError):
            provider = provider or exc.provider
        code = getattr(exc, "code", None)
        category = classify(f"{code or ''} {exc}", getattr(exc, "status_code", None))
    detail = str(exc) or type(exc).__name__
    return Err(
        category=category,
        message=describe(category, detail, provider),
        partial_content=partial_content,
    )


def job_error(status: str, message: str | None, *, partial_content: str = "") -> Err:
    """``Err`` for a job that ended in a non-completed terminal state or timed out."""
    category = _JOB_CATEGORIES.get(status, ErrorCategory.UNKNOWN)
    return Err(
        category=category,
        message=describe(category, message or ""),
        partial_content=partial_content,
    )
