"""OAuth 1.0a request signing (HMAC-SHA1, RFC 5849 section 3.4).

The platform recomputes the signature from the same inputs, so every step
here has to be bit-exact: RFC 3986 percent-encoding, byte-order sorting of the
encoded parameters and the ``consumer_secret&token_secret`` key.
"""

import base64
import hashlib
import hmac
import secrets
import time
from collections.abc import Iterable, Mapping
from urllib.parse import quote, unquote_plus, urlsplit, urlunsplit

from social_connect.integrations.platform_clients.base_client import ConfigurationError

SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"


def percent_encode(value: object) -> str:
    # RFC 3986 unreserved set: ALPHA / DIGIT / "-" / "." / "_" / "~"
    return quote(str(value), safe="~")


def generate_nonce() -> str:
    return secrets.token_hex(16)


def generate_timestamp() -> str:
    return str(int(time.time()))


def normalize_url(url: str) -> str:
    """Base string URI: lowercase scheme and host, no query or fragment, no default port."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"
    return urlunsplit((scheme, host, parts.path or "/", "", ""))


def normalize_parameters(params: Mapping[str, object] | Iterable[tuple[str, object]]) -> str:
    items = params.items() if isinstance(params, Mapping) else params
    encoded = sorted((percent_encode(key), percent_encode(value)) for key, value in items)
    return "&".join(f"{key}={value}" for key, value in encoded)


def build_signature_base_string(
    method: str,
    url: str,
    params: Mapping[str, object] | Iterable[tuple[str, object]],
) -> str:
    return "&".join(
        (
            method.upper(),
            percent_encode(normalize_url(url)),
            percent_encode(normalize_parameters(params)),
        )
    )


def build_signing_key(consumer_secret: str, token_secret: str | None = None) -> str:
    return f"{percent_encode(consumer_secret)}&{percent_encode(token_secret or '')}"


def sign(
    method: str,
    url: str,
    params: Mapping[str, object] | Iterable[tuple[str, object]],
    consumer_secret: str,
    token_secret: str | None = None,
) -> str:
    if not consumer_secret:
        raise ConfigurationError("Missing OAuth consumer secret", missing=["TWITTER_API_SECRET"])
    base_string = build_signature_base_string(method, url, params)
    signing_key = build_signing_key(consumer_secret, token_secret)
    digest = hmac.new(signing_key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def build_oauth_parameters(
    *,
    consumer_key: str,
    token: str | None = None,
    nonce: str | None = None,
    timestamp: str | None = None,
    extra_oauth_params: Mapping[str, str] | None = None,
) -> dict[str, str]:
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or generate_nonce(),
        "oauth_signature_method": SIGNATURE_METHOD,
        "oauth_timestamp": timestamp or generate_timestamp(),
        "oauth_version": OAUTH_VERSION,
    }
    if token:
        oauth_params["oauth_token"] = token
    if extra_oauth_params:
        oauth_params.update(extra_oauth_params)
    return oauth_params


def format_authorization_header(oauth_params: Mapping[str, str]) -> str:
    rendered = ", ".join(
        f'{percent_encode(key)}="{percent_encode(value)}"' for key, value in sorted(oauth_params.items())
    )
    return f"OAuth {rendered}"


def build_authorization_header(
    method: str,
    url: str,
    *,
    consumer_key: str | None,
    consumer_secret: str | None,
    token: str | None = None,
    token_secret: str | None = None,
    request_params: Mapping[str, object] | None = None,
    extra_oauth_params: Mapping[str, str] | None = None,
    require_user_token: bool = False,
    nonce: str | None = None,
    timestamp: str | None = None,
) -> str:
    """Sign a request and render its ``Authorization: OAuth ...`` header value.

    ``request_params`` are query-string or form parameters that take part in
    the signature; JSON bodies do not. With ``require_user_token`` the token
    pair must be present as well.
    """
    missing = []
    if not consumer_key:
        missing.append("TWITTER_API_KEY")
    if not consumer_secret:
        missing.append("TWITTER_API_SECRET")
    if require_user_token and not token:
        missing.append("TWITTER_ACCESS_TOKEN")
    if require_user_token and not token_secret:
        missing.append("TWITTER_ACCESS_TOKEN_SECRET")
    if missing:
        raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}", missing=missing)

    oauth_params = build_oauth_parameters(
        consumer_key=consumer_key,
        token=token,
        nonce=nonce,
        timestamp=timestamp,
        extra_oauth_params=extra_oauth_params,
    )
    signed_params = list(oauth_params.items())
    if request_params:
        signed_params.extend((key, value) for key, value in request_params.items())
    # The URL's own query string is part of the signature too.
    query = urlsplit(url).query
    if query:
        for pair in query.split("&"):
            key, _, value = pair.partition("=")
            signed_params.append((unquote_plus(key), unquote_plus(value)))

    oauth_params = dict(oauth_params)
    oauth_params["oauth_signature"] = sign(method, url, signed_params, consumer_secret, token_secret)
    return format_authorization_header(oauth_params)