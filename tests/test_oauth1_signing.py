import base64
import hashlib
import hmac

import pytest

from social_connect.integrations.oauth1_signing import (
    build_authorization_header,
    build_signature_base_string,
    build_signing_key,
    normalize_url,
    percent_encode,
    sign,
)
from social_connect.integrations.platform_clients import ConfigurationError

# Published Twitter "creating a signature" example.
CONSUMER_KEY = "xvz1evFS4wEEPTGEFPHBog"
CONSUMER_SECRET = "kAcSOqF21Fu85e7zjz7ZN2U4ZRhfV3WpwPAoE3Z7kBw"
TOKEN = "370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb"
TOKEN_SECRET = "LswwdoUaIvS8ltyTt5jkRh4J50vUPVVHtR2YPi5kE"
NONCE = "kYjzVBB8Y0ZFabxSWbWovY3uYSQ2pTgmZeNu2VS4cg"
TIMESTAMP = "1318622958"
STATUS = "Hello Ladies + Gentlemen, a signed OAuth request!"
URL = "https://api.twitter.com/1.1/statuses/update.json"
EXPECTED_BASE_STRING = (
    "POST&https%3A%2F%2Fapi.twitter.com%2F1.1%2Fstatuses%2Fupdate.json&include_entities%3Dtrue"
    "%26oauth_consumer_key%3Dxvz1evFS4wEEPTGEFPHBog%26oauth_nonce%3DkYjzVBB8Y0ZFabxSWbWovY3uYSQ2pTgmZeNu2VS4cg"
    "%26oauth_signature_method%3DHMAC-SHA1%26oauth_timestamp%3D1318622958"
    "%26oauth_token%3D370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb%26oauth_version%3D1.0"
    "%26status%3DHello%2520Ladies%2520%252B%2520Gentlemen%252C%2520a%2520signed%2520OAuth%2520request%2521"
)
EXPECTED_SIGNATURE = "hCtSmYh+iHYCEqBWrE7C7hYmtUk="
REQUEST_TOKEN_URL = "https://api.twitter.com/oauth/request_token"
REQUEST_TOKEN_BASE_STRING = (
    "POST&https%3A%2F%2Fapi.twitter.com%2Foauth%2Frequest_token"
    "&oauth_callback%3Dhttps%253A%252F%252Fexample.com%252Fcb"
)
REQUEST_TOKEN_SIGNATURE = "jLAosZh+1lDAIcdPhxoJKODgvvs="


def _example_params() -> dict[str, str]:
    return {
        "status": STATUS,
        "include_entities": "true",
        "oauth_consumer_key": CONSUMER_KEY,
        "oauth_nonce": NONCE,
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": TIMESTAMP,
        "oauth_token": TOKEN,
        "oauth_version": "1.0",
    }


def test_percent_encode_uses_rfc3986_unreserved_set():
    assert percent_encode("Ladies + Gentlemen") == "Ladies%20%2B%20Gentlemen"
    assert percent_encode("a-b.c_d~e") == "a-b.c_d~e"
    assert percent_encode("/path?x=1&y") == "%2Fpath%3Fx%3D1%26y"
    assert percent_encode("☃") == "%E2%98%83"
    assert percent_encode("!*'()") == "%21%2A%27%28%29"


def test_normalize_url_drops_query_default_port_and_lowercases_host():
    assert normalize_url("HTTPS://API.Twitter.com:443/1.1/x.json?a=1#frag") == "https://api.twitter.com/1.1/x.json"
    assert normalize_url("http://Example.com:80/") == "http://example.com/"
    assert normalize_url("http://example.com:8080/Path") == "http://example.com:8080/Path"


def test_signature_base_string_matches_published_example():
    assert build_signature_base_string("post", URL, _example_params()) == EXPECTED_BASE_STRING


def test_signature_matches_published_example_and_independent_hmac():
    signature = sign("POST", URL, _example_params(), CONSUMER_SECRET, TOKEN_SECRET)

    key = f"{CONSUMER_SECRET}&{TOKEN_SECRET}".encode()
    independent = base64.b64encode(hmac.new(key, EXPECTED_BASE_STRING.encode(), hashlib.sha1).digest()).decode()
    assert signature == independent
    assert signature == EXPECTED_SIGNATURE


def test_request_token_callback_signature_matches_reference():
    params = {"oauth_callback": "https://example.com/cb"}

    assert build_signature_base_string("POST", REQUEST_TOKEN_URL, params) == REQUEST_TOKEN_BASE_STRING
    assert sign("POST", REQUEST_TOKEN_URL, params, "SECRET", "") == REQUEST_TOKEN_SIGNATURE
    assert sign("POST", REQUEST_TOKEN_URL, params, "SECRET", None) == REQUEST_TOKEN_SIGNATURE


def test_signing_key_without_token_secret_keeps_trailing_ampersand():
    assert build_signing_key("consumer secret") == "consumer%20secret&"


def test_parameter_order_does_not_change_signature():
    params = list(_example_params().items())
    forward = sign("POST", URL, params, CONSUMER_SECRET, TOKEN_SECRET)
    backward = sign("POST", URL, list(reversed(params)), CONSUMER_SECRET, TOKEN_SECRET)
    assert forward == backward


def test_authorization_header_signs_url_query_and_request_params():
    header = build_authorization_header(
        "POST",
        f"{URL}?include_entities=true",
        consumer_key=CONSUMER_KEY,
        consumer_secret=CONSUMER_SECRET,
        token=TOKEN,
        token_secret=TOKEN_SECRET,
        request_params={"status": STATUS},
        nonce=NONCE,
        timestamp=TIMESTAMP,
    )

    assert header.startswith("OAuth ")
    assert 'oauth_signature="hCtSmYh%2BiHYCEqBWrE7C7hYmtUk%3D"' in header
    assert f'oauth_consumer_key="{CONSUMER_KEY}"' in header
    # Request parameters are signed but not sent in the header.
    assert "status=" not in header
    assert "include_entities" not in header


def test_authorization_header_includes_extra_oauth_params():
    header = build_authorization_header(
        "POST",
        "https://api.twitter.com/oauth/request_token",
        consumer_key="key",
        consumer_secret="secret",
        extra_oauth_params={"oauth_callback": "http://localhost:8000/callback"},
        nonce="nonce",
        timestamp="1700000000",
    )

    assert 'oauth_callback="http%3A%2F%2Flocalhost%3A8000%2Fcallback"' in header
    assert "oauth_token=" not in header


def test_authorization_header_reports_every_missing_credential():
    with pytest.raises(ConfigurationError) as exc_info:
        build_authorization_header(
            "GET",
            "https://api.twitter.com/2/users/me",
            consumer_key=None,
            consumer_secret="",
            require_user_token=True,
        )

    assert exc_info.value.missing == [
        "TWITTER_API_KEY",
        "TWITTER_API_SECRET",
        "TWITTER_ACCESS_TOKEN",
        "TWITTER_ACCESS_TOKEN_SECRET",
    ]
