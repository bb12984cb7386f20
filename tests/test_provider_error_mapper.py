import pytest

from social_connect.application.services.provider_error_mapper import map_provider_error
from social_connect.integrations.platform_clients import (
    ConfigurationError,
    ContentValidationError,
    DuplicateContentError,
    NotConnectedError,
    PlatformAuthError,
    PlatformPermissionError,
    PlatformRequestError,
    RateLimitError,
    TransientNetworkError,
)
from social_connect.integrations.platform_clients.twitter_client import PERMISSION_REMEDIATION


def test_rate_limit_keeps_retry_after():
    normalized = map_provider_error(provider="twitter", exc=RateLimitError("slow down", retry_after=120))

    assert normalized.error_code == "rate_limited"
    assert normalized.retryable is True
    assert normalized.user_action == "retry_later"
    assert normalized.retry_after == 120


def test_twitter_permission_error_has_token_regeneration_remediation():
    normalized = map_provider_error(provider="Twitter", exc=PlatformPermissionError("403 Forbidden"))

    assert normalized.provider == "twitter"
    assert normalized.error_code == "permission_denied"
    assert normalized.user_action == "reconnect"
    assert normalized.remediation == PERMISSION_REMEDIATION


def test_instagram_permission_error_has_generic_remediation():
    normalized = map_provider_error(provider="instagram", exc=PlatformPermissionError("(#10) not allowed"))

    assert normalized.error_code == "permission_denied"
    assert "Instagram" in normalized.remediation


def test_missing_scope_is_a_scope_error():
    normalized = map_provider_error(
        provider="instagram",
        exc=PlatformPermissionError("Missing scope instagram_business_content_publish"),
    )

    assert normalized.error_code == "scope_error"
    assert normalized.user_action == "contact_support"


@pytest.mark.parametrize(
    ("exc", "error_code"),
    [
        (NotConnectedError("not connected"), "not_connected"),
        (PlatformAuthError("token expired"), "auth_failed"),
    ],
)
def test_auth_failures_ask_for_reconnect(exc, error_code):
    normalized = map_provider_error(provider="twitter", exc=exc)

    assert normalized.error_code == error_code
    assert normalized.category == "auth"
    assert normalized.user_action == "reconnect"
    assert normalized.retryable is False


def test_transient_errors_are_retryable():
    normalized = map_provider_error(provider="twitter", exc=TransientNetworkError("503 Service Unavailable"))

    assert normalized.error_code == "transient_network_error"
    assert normalized.retryable is True


@pytest.mark.parametrize("exc", [ContentValidationError("too long"), DuplicateContentError("duplicate")])
def test_content_errors_ask_to_fix_content(exc):
    normalized = map_provider_error(provider="twitter", exc=exc)

    assert normalized.error_code == exc.error_code
    assert normalized.user_action == "fix_content"
    assert normalized.message == str(exc)


def test_configuration_error_is_not_retryable():
    normalized = map_provider_error(provider="twitter", exc=ConfigurationError("Missing environment variables"))

    assert normalized.error_code == "configuration_error"
    assert normalized.retryable is False


@pytest.mark.parametrize(
    ("message", "error_code"),
    [
        ("HTTP 429: rate limit exceeded", "rate_limited"),
        ("Application does not have the required scope", "scope_error"),
        ("403 Forbidden", "permission_denied"),
        ("401 Unauthorized", "auth_failed"),
    ],
)
def test_untyped_errors_are_classified_by_message(message, error_code):
    assert map_provider_error(provider="twitter", exc=RuntimeError(message)).error_code == error_code


@pytest.mark.parametrize(
    "message",
    [
        "Tweet 14293 not found",
        'Twitter publish failed: 400 {"detail": "media 84017 rejected", "id": "1403992"}',
    ],
)
def test_digits_inside_ids_do_not_classify(message):
    assert map_provider_error(provider="twitter", exc=RuntimeError(message)).error_code == "unknown_error"


def test_status_code_classifies_request_errors():
    normalized = map_provider_error(
        provider="instagram",
        exc=PlatformRequestError("Instagram publish failed", platform="instagram", status_code=401),
    )

    assert normalized.error_code == "auth_failed"
    assert normalized.user_action == "reconnect"


def test_unknown_error_keeps_platform_error_code():
    normalized = map_provider_error(provider="instagram", exc=PlatformRequestError("container failed"))

    assert normalized.error_code == "platform_request_failed"
    assert normalized.category == "unknown"
    assert normalized.user_action == "contact_support"
    assert "container failed" in normalized.message


def test_plain_unknown_error():
    assert map_provider_error(provider="twitter", exc=ValueError("boom")).error_code == "unknown_error"
