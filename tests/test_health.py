import pytest

from social_connect.interfaces.api import health


@pytest.fixture
def health_redis(monkeypatch, fake_redis):
    monkeypatch.setattr(health, "get_redis_client", lambda: fake_redis)
    return fake_redis


def test_health_is_degraded_without_worker_heartbeat(client, health_redis):
    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["services"]["database"] == "up"
    assert body["services"]["redis"] == "up"
    assert body["services"]["worker_alive"] is False
    assert body["platforms"] == {"twitter": {"configured": True}, "instagram": {"configured": True}}


def test_health_is_ok_with_worker_heartbeat(client, health_redis):
    health_redis.set("worker:heartbeat", "2026-10-19T00:00:00+00:00")

    assert client.get("/health").json()["status"] == "ok"


def test_ready_ignores_worker_but_requires_redis(client, health_redis):
    assert client.get("/ready").json()["status"] == "ready"

    health_redis.fail = True
    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["services"]["redis"] == "down"


def test_metrics_are_exposed(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "publish_attempts_total" in response.text
