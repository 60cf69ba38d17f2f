from .base import ProviderError, ResolvedTrack, TrackMetadata, TrackProvider
from .registry import ProviderRegistry, default_registry
from .soundcloud import SoundCloudConfig, SoundCloudProvider, load_soundcloud_config

__all__ = [
    "ProviderError",
    "ProviderRegistry",
    "ResolvedTrack",
    "SoundCloudConfig",
    "SoundCloudProvider",
    "TrackMetadata",
    "TrackProvider",
    "default_registry",
    "load_soundcloud_config",
]
