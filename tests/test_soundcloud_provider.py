from __future__ import annotations

import json

import pytest
import requests

from providers import ProviderError, ProviderRegistry, SoundCloudConfig, SoundCloudProvider
from tracks import TrackImportError, import_track

CONFIG = SoundCloudConfig(client_id="cid", api_url="https://api.test", timeout_s=5)


def _response(status: int, *, body: object | None = None, headers: dict | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.headers.update(headers or {})
    response._content = json.dumps(body).encode("utf-8") if body is not None else b""
    return response


class _FakeHttp:
    def __init__(self, *responses: requests.Response | Exception) -> None:
        self._responses = list(responses)
        self.calls: list[dict] = []

    def get(self, url: str, **kwargs):
        self.calls.append({"url": url, **kwargs})
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_resolve_reads_redirect_location_and_secret_token() -> None:
    http = _FakeHttp(
        _response(302, headers={"Location": "https://api.test/tracks/123.json?client_id=cid&secret_token=s-xyz"})
    )
    provider = SoundCloudProvider(CONFIG, http=http)

    resolved = provider.resolve("https://soundcloud.com/artist/private/s-xyz")

    assert resolved.canonical_path == "/tracks/123.json"
    assert resolved.secret_token == "s-xyz"
    assert http.calls[0]["url"] == "https://api.test/resolve"
    assert http.calls[0]["params"] == {"url": "https://soundcloud.com/artist/private/s-xyz", "client_id": "cid"}
    assert http.calls[0]["allow_redirects"] is False
    assert http.calls[0]["timeout"] == 5


def test_resolve_accepts_json_body_uri() -> None:
    http = _FakeHttp(_response(200, body={"uri": "https://api.test/tracks/77"}))

    resolved = SoundCloudProvider(CONFIG, http=http).resolve("https://soundcloud.com/a/b")

    assert resolved.canonical_path == "/tracks/77"
    assert resolved.secret_token == ""


def test_resolve_not_found_raises_provider_error() -> None:
    http = _FakeHttp(_response(404, body={"errors": [{"error_message": "404 - Not Found"}]}))

    with pytest.raises(ProviderError) as excinfo:
        SoundCloudProvider(CONFIG, http=http).resolve("https://soundcloud.com/nobody/nothing")
    assert "404 - Not Found" in str(excinfo.value)


def test_network_failure_raises_provider_error() -> None:
    http = _FakeHttp(requests.ConnectionError("connection refused"))

    with pytest.raises(ProviderError) as excinfo:
        SoundCloudProvider(CONFIG, http=http).resolve("https://soundcloud.com/a/b")
    assert "connection refused" in str(excinfo.value)


@pytest.mark.parametrize(
    ("path", "expected"),
    [("/tracks/123.json", 123), ("/tracks/123", 123), ("/tracks/99/", 99)],
)
def test_parse_track_id(path: str, expected: int) -> None:
    assert SoundCloudProvider(CONFIG, http=_FakeHttp()).parse_track_id(path) == expected


@pytest.mark.parametrize("path", ["/users/123", "/tracks/abc.json", "/tracks/", "/tracks/0"])
def test_parse_track_id_rejects_malformed_paths(path: str) -> None:
    with pytest.raises(ValueError):
        SoundCloudProvider(CONFIG, http=_FakeHttp()).parse_track_id(path)


def test_fetch_normalizes_track_payload() -> None:
    payload = {
        "id": 123,
        "title": "Night Drive",
        "description": "late",
        "genre": "Synthwave",
        "duration": 180000,
        "artwork_url": "https://i1.sndcdn.com/a.jpg",
        "isrc": "FRXXX2100001",
        "bpm": 110,
        "key_signature": "Am",
        "permalink_url": "https://soundcloud.com/artist/night-drive",
        "created_at": "2021/03/04 05:06:07 +0000",
        "downloadable": True,
        "download_url": "https://api.soundcloud.com/tracks/123/download",
    }
    http = _FakeHttp(_response(200, body=payload))

    metadata = SoundCloudProvider(CONFIG, http=http).fetch(123, "s-xyz")

    assert http.calls[0]["url"] == "https://api.test/tracks/123"
    assert http.calls[0]["params"] == {"secret_token": "s-xyz", "client_id": "cid"}
    assert metadata.provider_id == 123
    assert metadata.title == "Night Drive"
    assert metadata.duration_ms == 180000
    assert metadata.bpm == 110.0
    assert metadata.downloadable is True
    assert metadata.raw == payload


def test_fetch_error_keeps_provider_text() -> None:
    http = _FakeHttp(_response(401, body={"error": "invalid_client"}))

    with pytest.raises(ProviderError) as excinfo:
        SoundCloudProvider(CONFIG, http=http).fetch(1)
    assert str(excinfo.value) == "401 invalid_client"


def test_non_numeric_duration_falls_back_to_zero() -> None:
    metadata = SoundCloudProvider.normalize({"id": 42, "title": "x", "duration": "n/a", "bpm": "fast"})

    assert metadata.provider_id == 42
    assert metadata.duration_ms == 0
    assert metadata.bpm == 0.0


def test_unreadable_track_payload_raises_provider_error(monkeypatch) -> None:
    def reject(data):
        raise ValueError("bad field")

    monkeypatch.setattr(SoundCloudProvider, "normalize", staticmethod(reject))
    http = _FakeHttp(_response(200, body={"id": 42}))

    with pytest.raises(ProviderError) as excinfo:
        SoundCloudProvider(CONFIG, http=http).fetch(42)
    assert str(excinfo.value) == "SoundCloud returned a malformed track: bad field"


def test_unreadable_track_payload_is_a_fetch_failure_on_import(session, monkeypatch) -> None:
    def reject(data):
        raise ValueError("bad field")

    monkeypatch.setattr(SoundCloudProvider, "normalize", staticmethod(reject))
    http = _FakeHttp(
        _response(302, headers={"Location": "https://api.test/tracks/42"}),
        _response(200, body={"id": 42, "duration": "n/a"}),
    )
    registry = ProviderRegistry([SoundCloudProvider(CONFIG, http=http)])

    with pytest.raises(TrackImportError) as excinfo:
        import_track(session, "https://soundcloud.com/artist/foo", 1, registry=registry)

    assert excinfo.value.code == TrackImportError.PROVIDER_FETCH_FAILED
    assert excinfo.value.message == (
        "Fetch track info from SoundCloud: SoundCloud returned a malformed track: bad field."
    )
