from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import re
from typing import Any
from urllib.parse import parse_qs, urlsplit

import requests

from db.models import Provider

from .base import ProviderError, ResolvedTrack, TrackMetadata, TrackProvider

logger = logging.getLogger(__name__)

_TRACK_PATH = re.compile(r"/tracks/([^/]+?)(?:\.json)?/?$")


@dataclass(frozen=True)
class SoundCloudConfig:
    client_id: str
    api_url: str
    timeout_s: float


def load_soundcloud_config() -> SoundCloudConfig:
    return SoundCloudConfig(
        client_id=os.getenv("SOUNDCLOUD_CLIENT_ID", "").strip(),
        api_url=os.getenv("SOUNDCLOUD_API_URL", "https://api.soundcloud.com").rstrip("/"),
        timeout_s=float(os.getenv("SOUNDCLOUD_TIMEOUT_S", "10")),
    )


def _error_text(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            messages = [str(item.get("error_message", item)) if isinstance(item, dict) else str(item) for item in errors]
            return f"{response.status_code} {'; '.join(messages)}"
        if data.get("error"):
            return f"{response.status_code} {data['error']}"
    return f"{response.status_code} {response.reason or 'error'}".strip()


class SoundCloudProvider(TrackProvider):
    provider = Provider.SOUNDCLOUD
    display_name = "SoundCloud"
    hosts = ("soundcloud.com", "www.soundcloud.com", "m.soundcloud.com")
    created_at_formats = ("%Y/%m/%d %H:%M:%S %z", "%Y-%m-%dT%H:%M:%S%z")

    def __init__(self, config: SoundCloudConfig | None = None, http: requests.Session | None = None) -> None:
        self._config = config or load_soundcloud_config()
        self._http = http or requests.Session()

    def _params(self, **extra: str) -> dict[str, str]:
        params = {key: value for key, value in extra.items() if value}
        if self._config.client_id:
            params["client_id"] = self._config.client_id
        return params

    def resolve(self, url: str) -> ResolvedTrack:
        try:
            response = self._http.get(
                f"{self._config.api_url}/resolve",
                params=self._params(url=url),
                allow_redirects=False,
                timeout=self._config.timeout_s,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"SoundCloud unreachable: {exc}") from exc

        location = ""
        if response.is_redirect or response.status_code in {301, 302, 303, 307, 308}:
            location = response.headers.get("Location", "")
        elif response.ok:
            try:
                body = response.json()
            except ValueError as exc:
                raise ProviderError("SoundCloud resolve returned invalid JSON") from exc
            if isinstance(body, dict):
                location = str(body.get("uri") or "")
        else:
            raise ProviderError(_error_text(response))
        if not location:
            raise ProviderError("SoundCloud resolve returned no location")

        parts = urlsplit(location)
        secret_token = parse_qs(parts.query).get("secret_token", [""])[0]
        logger.debug("soundcloud resolved %s -> %s", url, parts.path)
        return ResolvedTrack(canonical_path=parts.path, secret_token=secret_token)

    def parse_track_id(self, canonical_path: str) -> int:
        match = _TRACK_PATH.search(canonical_path)
        if match is None:
            raise ValueError(f"no track id in path {canonical_path!r}")
        raw_id = match.group(1)
        track_id = int(raw_id)
        if track_id <= 0:
            raise ValueError(f"invalid track id {raw_id!r}")
        return track_id

    def fetch(self, track_id: int, secret_token: str = "") -> TrackMetadata:
        try:
            response = self._http.get(
                f"{self._config.api_url}/tracks/{track_id}",
                params=self._params(secret_token=secret_token),
                timeout=self._config.timeout_s,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"SoundCloud unreachable: {exc}") from exc
        if not response.ok:
            raise ProviderError(_error_text(response))
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("SoundCloud returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError("SoundCloud returned an unexpected payload")
        try:
            return self.normalize(data)
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"SoundCloud returned a malformed track: {exc}") from exc

    @staticmethod
    def normalize(data: dict[str, Any]) -> TrackMetadata:
        def text(key: str) -> str:
            value = data.get(key)
            return str(value) if value is not None else ""

        try:
            provider_id = int(data.get("id") or 0)
        except (TypeError, ValueError):
            provider_id = 0
        try:
            bpm = float(data.get("bpm") or 0)
        except (TypeError, ValueError):
            bpm = 0.0
        try:
            duration_ms = int(data.get("duration") or 0)
        except (TypeError, ValueError):
            duration_ms = 0
        return TrackMetadata(
            provider_id=provider_id,
            title=text("title"),
            description=text("description"),
            genre=text("genre"),
            duration_ms=duration_ms,
            artwork_url=text("artwork_url"),
            isrc=text("isrc"),
            bpm=bpm,
            key_signature=text("key_signature"),
            permalink_url=text("permalink_url"),
            created_at=text("created_at"),
            downloadable=bool(data.get("downloadable")),
            download_url=text("download_url"),
            raw=data,
        )
