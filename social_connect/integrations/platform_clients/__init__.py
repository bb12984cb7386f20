from social_connect.integrations.platform_clients.base_client import (
    AuthorizationCancelledError,
    AuthorizationFlowError,
    AuthorizationRequest,
    AuthorizationTimeoutError,
    ConfigurationError,
    ContentValidationError,
    DuplicateContentError,
    IdentityResolutionError,
    NotConnectedError,
    PlatformAuthError,
    PlatformClient,
    PlatformCredentials,
    PlatformError,
    PlatformPermissionError,
    PlatformPost,
    PlatformProfile,
    PlatformRequestError,
    PlatformResolutionError,
    PublishReceipt,
    RateLimitError,
    TokenGrant,
    TransientNetworkError,
    VerificationResult,
)
from social_connect.integrations.platform_clients.factory import (
    PlatformClientSet,
    get_platform_client,
    list_registered_platforms,
)

__all__ = [
    "PlatformError",
    "ConfigurationError",
    "PlatformResolutionError",
    "NotConnectedError",
    "IdentityResolutionError",
    "PlatformAuthError",
    "PlatformPermissionError",
    "RateLimitError",
    "TransientNetworkError",
    "ContentValidationError",
    "DuplicateContentError",
    "PlatformRequestError",
    "AuthorizationFlowError",
    "AuthorizationTimeoutError",
    "AuthorizationCancelledError",
    "PlatformCredentials",
    "AuthorizationRequest",
    "TokenGrant",
    "VerificationResult",
    "PlatformProfile",
    "PlatformPost",
    "PublishReceipt",
    "PlatformClient",
    "PlatformClientSet",
    "get_platform_client",
    "list_registered_platforms",
]
