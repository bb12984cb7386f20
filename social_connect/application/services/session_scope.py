import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from social_connect.application.services.platform_connection_service import IdentityResolver

logger = logging.getLogger(__name__)


class BackgroundTaskSet:
    """Owns fire-and-forget tasks so they can be awaited or cancelled together."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed name=%s error=%s",
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


RefreshCallable = Callable[[], Awaitable[Any]]


class SessionScope:
    """Everything whose lifetime is bound to one signed-in session.

    Closing the scope cancels the periodic refresh timers, pending
    reconciliations and authorization waiters it owns.
    """

    def __init__(self, auth_id: str) -> None:
        self.auth_id = auth_id
        self.identity = IdentityResolver(auth_id)
        self.tasks = BackgroundTaskSet()
        self._refreshers: dict[str, asyncio.Task] = {}
        self.closed = False

    def refresh_platforms(self) -> list[str]:
        return sorted(name for name, task in self._refreshers.items() if not task.done())

    def start_periodic_refresh(self, platform: str, refresh_fn: RefreshCallable, *, interval_seconds: float) -> asyncio.Task:
        """Run ``refresh_fn`` now and then every ``interval_seconds`` until stopped.

        Starting a refresher for a platform that already has one replaces it.
        """
        if self.closed:
            raise RuntimeError(f"Session scope for {self.auth_id} is closed")
        self.stop_refresh(platform)
        task = self.tasks.spawn(
            self._refresh_loop(platform, refresh_fn, interval_seconds),
            name=f"refresh:{self.auth_id}:{platform}",
        )
        self._refreshers[platform] = task
        return task

    async def _refresh_loop(self, platform: str, refresh_fn: RefreshCallable, interval_seconds: float) -> None:
        while True:
            try:
                await refresh_fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("statistics_refresh_tick_failed auth_id=%s platform=%s", self.auth_id, platform)
            await asyncio.sleep(interval_seconds)

    def stop_refresh(self, platform: str) -> None:
        task = self._refreshers.pop(platform, None)
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._refreshers.clear()
        await self.tasks.cancel_all()
        self.identity.reset()
        logger.info("session_scope_closed auth_id=%s", self.auth_id)


class SessionScopeRegistry:
    def __init__(self) -> None:
        self._scopes: dict[str, SessionScope] = {}

    def get(self, auth_id: str) -> SessionScope | None:
        return self._scopes.get(auth_id)

    def get_or_create(self, auth_id: str) -> SessionScope:
        scope = self._scopes.get(auth_id)
        if scope is None or scope.closed:
            scope = SessionScope(auth_id)
            self._scopes[auth_id] = scope
            logger.info("session_scope_opened auth_id=%s", auth_id)
        return scope

    async def close(self, auth_id: str) -> bool:
        scope = self._scopes.pop(auth_id, None)
        if scope is None:
            return False
        await scope.close()
        return True

    async def close_all(self) -> None:
        scopes = list(self._scopes.values())
        self._scopes.clear()
        for scope in scopes:
            await scope.close()
