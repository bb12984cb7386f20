import re
from dataclasses import dataclass

from social_connect.integrations.platform_clients.base_client import (
    ConfigurationError,
    ContentValidationError,
    DuplicateContentError,
    NotConnectedError,
    PlatformAuthError,
    PlatformPermissionError,
    RateLimitError,
    TransientNetworkError,
)
from social_connect.integrations.platform_clients.twitter_client import PERMISSION_REMEDIATION

RETRY_LATER = "retry_later"
RECONNECT = "reconnect"
CONTACT_SUPPORT = "contact_support"
FIX_CONTENT = "fix_content"

# Status codes match as whole words only.
_RATE_LIMIT_PATTERN = re.compile(r"\b429\b|rate limit|too many requests")
_FORBIDDEN_PATTERN = re.compile(r"\b403\b|permission|forbidden")
_UNAUTHORIZED_PATTERN = re.compile(r"\b401\b|unauthorized")


@dataclass(frozen=True)
class NormalizedProviderError:
    provider: str
    error_code: str
    category: str
    retryable: bool
    user_action: str
    message: str
    remediation: str | None = None
    retry_after: int | None = None


def _rate_limited(provider: str, name: str, exc: Exception) -> NormalizedProviderError:
    return NormalizedProviderError(
        provider=provider,
        error_code="rate_limited",
        category="rate_limit",
        retryable=True,
        user_action=RETRY_LATER,
        message=f"{name} rate limit reached. Please try again later.",
        retry_after=getattr(exc, "retry_after", None),
    )


def _scope_error(provider: str, name: str) -> NormalizedProviderError:
    return NormalizedProviderError(
        provider=provider,
        error_code="scope_error",
        category="scope",
        retryable=False,
        user_action=CONTACT_SUPPORT,
        message=f"The {name} app is missing a required OAuth scope. Please contact support.",
    )


def _permission_denied(provider: str, name: str) -> NormalizedProviderError:
    if provider == "twitter":
        remediation = PERMISSION_REMEDIATION
    else:
        remediation = f"Reconnect your {name} account and grant the publishing permission."
    return NormalizedProviderError(
        provider=provider,
        error_code="permission_denied",
        category="permission",
        retryable=False,
        user_action=RECONNECT,
        message=f"{name} rejected the request: the connected token lacks write permission.",
        remediation=remediation,
    )


def _auth_failed(provider: str, name: str, error_code: str) -> NormalizedProviderError:
    return NormalizedProviderError(
        provider=provider,
        error_code=error_code,
        category="auth",
        retryable=False,
        user_action=RECONNECT,
        message=f"Your {name} account is not connected or its token is no longer valid. Please reconnect.",
    )


def map_provider_error(*, provider: str, exc: Exception) -> NormalizedProviderError:
    """Turn a publish failure into the structured error shown to the user.

    Typed platform errors decide first; message substrings classify errors
    that only carry the platform's text.
    """
    normalized_provider = provider.strip().lower()
    name = normalized_provider.title()
    message = str(exc) or exc.__class__.__name__
    text = message.lower()

    if isinstance(exc, RateLimitError):
        return _rate_limited(normalized_provider, name, exc)
    if isinstance(exc, PlatformPermissionError):
        if "scope" in text:
            return _scope_error(normalized_provider, name)
        return _permission_denied(normalized_provider, name)
    if isinstance(exc, NotConnectedError):
        return _auth_failed(normalized_provider, name, exc.error_code)
    if isinstance(exc, PlatformAuthError):
        return _auth_failed(normalized_provider, name, "auth_failed")
    if isinstance(exc, TransientNetworkError):
        return NormalizedProviderError(
            provider=normalized_provider,
            error_code="transient_network_error",
            category="network",
            retryable=True,
            user_action=RETRY_LATER,
            message=f"Could not reach {name}. Please try again later.",
        )
    if isinstance(exc, (ContentValidationError, DuplicateContentError)):
        return NormalizedProviderError(
            provider=normalized_provider,
            error_code=exc.error_code,
            category="content",
            retryable=False,
            user_action=FIX_CONTENT,
            message=message,
        )
    if isinstance(exc, ConfigurationError):
        return NormalizedProviderError(
            provider=normalized_provider,
            error_code="configuration_error",
            category="configuration",
            retryable=False,
            user_action=CONTACT_SUPPORT,
            message=message,
        )

    status_code = getattr(exc, "status_code", None)
    if status_code == 429 or _RATE_LIMIT_PATTERN.search(text):
        return _rate_limited(normalized_provider, name, exc)
    if "scope" in text:
        return _scope_error(normalized_provider, name)
    if status_code == 403 or _FORBIDDEN_PATTERN.search(text):
        return _permission_denied(normalized_provider, name)
    if status_code == 401 or _UNAUTHORIZED_PATTERN.search(text):
        return _auth_failed(normalized_provider, name, "auth_failed")

    return NormalizedProviderError(
        provider=normalized_provider,
        error_code=getattr(exc, "error_code", None) or "unknown_error",
        category="unknown",
        retryable=False,
        user_action=CONTACT_SUPPORT,
        message=f"{name} publish failed: {message}",
    )
