from __future__ import annotations

from .base import TrackProvider
from .soundcloud import SoundCloudProvider


class ProviderRegistry:
    def __init__(self, providers: list[TrackProvider] | None = None) -> None:
        self._by_host: dict[str, TrackProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: TrackProvider) -> None:
        for host in provider.hosts:
            self._by_host[host.lower()] = provider

    def for_host(self, host: str) -> TrackProvider | None:
        return self._by_host.get((host or "").lower())

    def hosts(self) -> list[str]:
        return sorted(self._by_host)


def default_registry() -> ProviderRegistry:
    return ProviderRegistry([SoundCloudProvider()])
