from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from db.models import Provider


class ProviderError(Exception):
    """Raised by a provider when the remote service rejects or fails a call.

    The message is the provider's own error text and is shown to the
    submitting user as-is.
    """


@dataclass(frozen=True)
class ResolvedTrack:
    canonical_path: str
    secret_token: str = ""


@dataclass(frozen=True)
class TrackMetadata:
    provider_id: int
    title: str
    description: str = ""
    genre: str = ""
    duration_ms: int = 0
    artwork_url: str = ""
    isrc: str = ""
    bpm: float = 0.0
    key_signature: str = ""
    permalink_url: str = ""
    created_at: str = ""
    downloadable: bool = False
    download_url: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


class TrackProvider(ABC):
    provider: Provider
    display_name: str
    hosts: tuple[str, ...] = ()
    created_at_formats: tuple[str, ...] = ()

    @abstractmethod
    def resolve(self, url: str) -> ResolvedTrack:
        raise NotImplementedError

    @abstractmethod
    def parse_track_id(self, canonical_path: str) -> int:
        """Extract the numeric track id from a resolved path, raising ValueError."""
        raise NotImplementedError

    @abstractmethod
    def fetch(self, track_id: int, secret_token: str = "") -> TrackMetadata:
        raise NotImplementedError
