import importlib
import logging
import pkgutil
from types import ModuleType
from typing import Iterable

import httpx

from social_connect.core.config import Settings
from social_connect.integrations.platform_clients.base_client import PlatformClient, PlatformResolutionError

logger = logging.getLogger(__name__)

_DISCOVERED = False
_CLIENT_REGISTRY: dict[str, type[PlatformClient]] = {}
_SKIP_MODULES = {"base_client", "factory"}


def _iter_subclasses(root: type[PlatformClient]) -> Iterable[type[PlatformClient]]:
    for subclass in root.__subclasses__():
        yield subclass
        yield from _iter_subclasses(subclass)


def _discover_client_modules() -> None:
    package = importlib.import_module("social_connect.integrations.platform_clients")
    if not isinstance(package, ModuleType) or not hasattr(package, "__path__"):
        return

    for module_info in pkgutil.iter_modules(package.__path__, prefix="social_connect.integrations.platform_clients."):
        module_name = module_info.name.rsplit(".", 1)[-1]
        if module_name in _SKIP_MODULES:
            continue
        importlib.import_module(module_info.name)


def _load_registry() -> dict[str, type[PlatformClient]]:
    global _DISCOVERED
    if _DISCOVERED and _CLIENT_REGISTRY:
        return _CLIENT_REGISTRY

    _discover_client_modules()
    discovered: dict[str, type[PlatformClient]] = {}
    for client_cls in _iter_subclasses(PlatformClient):
        platform = (getattr(client_cls, "platform", "") or "").strip().lower()
        if not platform or getattr(client_cls, "__abstractmethods__", None):
            continue
        if not client_cls.__module__.startswith(__package__ or "social_connect.integrations.platform_clients"):
            continue
        discovered.setdefault(platform, client_cls)

    _CLIENT_REGISTRY.clear()
    _CLIENT_REGISTRY.update(discovered)
    _DISCOVERED = True
    logger.info(
        "platform_client_registry_loaded total=%s platforms=%s",
        len(_CLIENT_REGISTRY),
        ",".join(sorted(_CLIENT_REGISTRY.keys())),
    )
    return _CLIENT_REGISTRY


def list_registered_platforms() -> list[str]:
    return sorted(_load_registry().keys())


def get_platform_client(
    platform: str,
    config: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PlatformClient:
    normalized = platform.strip().lower()
    client_cls = _load_registry().get(normalized)
    if client_cls is None:
        logger.error(
            "platform_client_resolution_failed platform=%s available=%s",
            normalized,
            ",".join(sorted(_CLIENT_REGISTRY.keys())),
        )
        raise PlatformResolutionError(f"Unsupported platform: {normalized}", platform=normalized)
    return client_cls(config, transport=transport)


class PlatformClientSet:
    """Platform name to client lookup shared by the connection services."""

    def __init__(self, clients: Iterable[PlatformClient]) -> None:
        self._clients = {client.platform: client for client in clients}

    @classmethod
    def for_platforms(cls, platforms: Iterable[str], config: Settings | None = None) -> "PlatformClientSet":
        return cls(get_platform_client(platform, config) for platform in platforms)

    def get(self, platform: str) -> PlatformClient:
        normalized = (platform or "").strip().lower()
        client = self._clients.get(normalized)
        if client is None:
            raise PlatformResolutionError(f"Platform is not enabled: {normalized}", platform=normalized)
        return client

    def platforms(self) -> list[str]:
        return sorted(self._clients)

    def __contains__(self, platform: object) -> bool:
        return isinstance(platform, str) and platform.strip().lower() in self._clients
