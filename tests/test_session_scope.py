import asyncio

import pytest

from social_connect.application.services.session_scope import (
    BackgroundTaskSet,
    SessionScope,
    SessionScopeRegistry,
)


def test_periodic_refresh_runs_immediately_and_repeats():
    calls = []

    async def scenario():
        scope = SessionScope("auth-user-1")

        async def refresh():
            calls.append("tick")

        scope.start_periodic_refresh("twitter", refresh, interval_seconds=0.01)
        await asyncio.sleep(0)
        assert calls == ["tick"]
        await asyncio.sleep(0.05)
        assert scope.refresh_platforms() == ["twitter"]
        await scope.close()

    asyncio.run(scenario())

    assert len(calls) >= 2


def test_refresh_failures_do_not_stop_the_timer():
    calls = []

    async def scenario():
        scope = SessionScope("auth-user-1")

        async def refresh():
            calls.append("tick")
            raise RuntimeError("platform down")

        scope.start_periodic_refresh("instagram", refresh, interval_seconds=0.01)
        await asyncio.sleep(0.05)
        await scope.close()

    asyncio.run(scenario())

    assert len(calls) >= 2


def test_restarting_a_refresher_replaces_the_previous_one():
    async def scenario():
        scope = SessionScope("auth-user-1")

        async def refresh():
            return None

        first = scope.start_periodic_refresh("twitter", refresh, interval_seconds=10)
        second = scope.start_periodic_refresh("twitter", refresh, interval_seconds=10)
        await asyncio.sleep(0)
        assert first.cancelled()
        assert not second.done()
        await scope.close()
        assert second.cancelled()

    asyncio.run(scenario())


def test_close_cancels_everything_and_rejects_new_work():
    async def scenario():
        scope = SessionScope("auth-user-1")
        waiter = scope.tasks.spawn(asyncio.sleep(60), name="waiter")

        await scope.close()

        assert waiter.cancelled()
        assert len(scope.tasks) == 0
        assert scope.refresh_platforms() == []
        assert scope.identity.resolved is None
        with pytest.raises(RuntimeError):
            scope.start_periodic_refresh("twitter", lambda: asyncio.sleep(0), interval_seconds=1)

    asyncio.run(scenario())


def test_background_task_set_drain_waits_for_failures():
    async def scenario():
        tasks = BackgroundTaskSet()

        async def boom():
            raise ValueError("boom")

        tasks.spawn(boom(), name="boom")
        tasks.spawn(asyncio.sleep(0.01), name="sleep")
        await tasks.drain()
        return len(tasks)

    assert asyncio.run(scenario()) == 0


def test_registry_reopens_closed_scopes():
    async def scenario():
        registry = SessionScopeRegistry()
        first = registry.get_or_create("auth-user-1")
        assert registry.get_or_create("auth-user-1") is first

        assert await registry.close("auth-user-1") is True
        assert await registry.close("auth-user-1") is False
        assert first.closed

        second = registry.get_or_create("auth-user-1")
        other = registry.get_or_create("auth-user-2")
        await registry.close_all()
        return first, second, other, registry

    first, second, other, registry = asyncio.run(scenario())

    assert second is not first
    assert second.closed and other.closed
    assert registry.get("auth-user-1") is None
