from conftest import INSTAGRAM_GRAPH_HOST


def test_twitter_profile_tweets_and_verify(client, auth_headers, twitter_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")

    profile = client.post("/integrations/twitter", headers=auth_headers, json={"endpoint": "profile"})
    assert profile.status_code == 200
    data = profile.json()["data"]
    assert data["id"] == "42"
    assert data["username"] == "alice"
    assert data["followers_count"] == 100
    assert profile.json()["error"] is None

    tweets = client.post("/integrations/twitter", headers=auth_headers, json={"endpoint": "tweets", "limit": 5})
    assert tweets.json()["data"] == {"posts": []}

    verified = client.post("/integrations/twitter", headers=auth_headers, json={"endpoint": "verify"})
    assert verified.json()["data"]["verified"] is True


def test_twitter_auth_starts_a_flow(client, auth_headers, twitter_api, user_id):
    response = client.post("/integrations/twitter", headers=auth_headers, json={"endpoint": "auth"})

    data = response.json()["data"]
    assert data["flow_id"]
    assert "request-token-1" in data["authorize_url"]


def test_unknown_twitter_endpoint_is_a_validation_error(client, auth_headers, user_id):
    response = client.post("/integrations/twitter", headers=auth_headers, json={"endpoint": "retweet"})

    assert response.status_code == 422
    assert response.json()["error_code"] == "validation_error"


def test_instagram_profile_requires_connection(client, auth_headers, user_id):
    response = client.post("/integrations/instagram", headers=auth_headers, json={"action": "profile"})

    assert response.status_code == 400
    assert response.json() == {
        "data": None,
        "error": "Platform account is not connected",
        "error_code": "not_connected",
    }


def test_instagram_publish_requires_media(client, auth_headers, platform_api, user_id, connect_platform):
    connect_platform(user_id, "instagram")

    response = client.post(
        "/integrations/instagram",
        headers=auth_headers,
        json={"action": "publish", "caption": "Sunset", "media_url": ""},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "validation_error"
    assert platform_api.requests == []


def test_instagram_authorize_returns_oauth_url(client, auth_headers, user_id):
    response = client.post("/integrations/instagram", headers=auth_headers, json={"action": "authorize"})

    data = response.json()["data"]
    assert data["authorize_url"].startswith("https://")
    assert "client_id=ig-app-id" in data["authorize_url"]


def test_instagram_profile(client, auth_headers, platform_api, user_id, connect_platform):
    connect_platform(user_id, "instagram")
    platform_api.add(
        "GET",
        INSTAGRAM_GRAPH_HOST,
        "/v21.0/me",
        json={
            "id": "42",
            "username": "alice.gram",
            "name": "Alice",
            "followers_count": 250,
            "follows_count": 10,
            "media_count": 7,
        },
    )

    response = client.post("/integrations/instagram", headers=auth_headers, json={"action": "profile"})

    data = response.json()["data"]
    assert data["username"] == "alice.gram"
    assert data["followers_count"] == 250
    assert data["post_count"] == 7
