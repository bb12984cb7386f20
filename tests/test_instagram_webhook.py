def test_subscription_challenge_is_echoed(client):
    response = client.get(
        "/webhooks/instagram",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
    )

    assert response.status_code == 200
    assert response.text == "1158201444"


def test_wrong_verify_token_is_forbidden(client):
    response = client.get(
        "/webhooks/instagram",
        params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1"},
    )

    assert response.status_code == 403


def test_missing_challenge_is_a_bad_request(client):
    response = client.get("/webhooks/instagram", params={"hub.mode": "subscribe", "hub.verify_token": "verify-me"})

    assert response.status_code == 400


def test_events_are_acknowledged(client):
    response = client.post(
        "/webhooks/instagram",
        json={"object": "instagram", "entry": [{"id": "1789", "changes": [{"field": "comments"}]}]},
    )

    assert response.status_code == 200
    assert response.text == "EVENT_RECEIVED"


def test_malformed_event_body_is_rejected(client):
    response = client.post("/webhooks/instagram", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
