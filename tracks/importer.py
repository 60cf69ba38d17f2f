from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
import html
import logging
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from db.models import Post, PostKind, Visibility
from providers import ProviderError, ProviderRegistry, TrackMetadata, TrackProvider, default_registry

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class TrackImportError(Exception):
    code: str
    message: str

    MISSING_URL = "missing_url"
    INVALID_URL = "invalid_url"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    PROVIDER_RESOLUTION_FAILED = "provider_resolution_failed"
    PROVIDER_FETCH_FAILED = "provider_fetch_failed"
    MALFORMED_PROVIDER_ID = "malformed_provider_id"

    def __str__(self) -> str:
        return self.message


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_url(raw_url: str) -> tuple[str, str]:
    url = (raw_url or "").strip()
    if not url:
        raise TrackImportError(TrackImportError.MISSING_URL, "Please specify a track link.")
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError as exc:
        raise TrackImportError(TrackImportError.INVALID_URL, f"Parse URL: {exc}") from exc
    if parts.scheme not in {"http", "https"} or not host:
        raise TrackImportError(TrackImportError.INVALID_URL, f"Parse URL: {url!r} is not an absolute http(s) URL.")
    return url, host


def _provider_created_at(provider: TrackProvider, raw: str) -> datetime | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    for fmt in provider.created_at_formats:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        return parsed.astimezone(UTC)
    return None


def build_track(
    provider: TrackProvider,
    metadata: TrackMetadata,
    *,
    author_id: int,
    secret_token: str,
    save_as_draft: bool,
    now: datetime,
) -> Post:
    post = Post(
        kind=PostKind.TRACK,
        visibility=Visibility.DRAFT if save_as_draft else Visibility.PUBLIC,
        author_id=author_id,
        slug="",
        provider=provider.provider,
        provider_id=metadata.provider_id,
        provider_secret_token=secret_token or None,
        provider_metadata=metadata.raw,
        provider_description=metadata.description,
        title=metadata.title,
        body=metadata.description,
        genre=metadata.genre,
        duration=metadata.duration_ms,
        artwork_url=metadata.artwork_url,
        isrc=metadata.isrc,
        bpm=metadata.bpm,
        key_signature=metadata.key_signature,
        url=metadata.permalink_url,
        download_url=metadata.download_url if metadata.downloadable else "",
    )
    created_at = _provider_created_at(provider, metadata.created_at)
    sort_source = created_at or now
    post.provider_created_at = sort_source
    post.sort_date = sort_source
    return post


def import_track(
    session: Session,
    url: str,
    author_id: int,
    save_as_draft: bool = False,
    registry: ProviderRegistry | None = None,
    now: datetime | None = None,
) -> Post:
    registry = registry or default_registry()
    url, host = _parse_url(url)

    provider = registry.for_host(host)
    if provider is None:
        raise TrackImportError(
            TrackImportError.UNSUPPORTED_PROVIDER,
            f"Unsupported provider: {html.escape(host)}.",
        )

    try:
        resolved = provider.resolve(url)
    except ProviderError as exc:
        logger.debug("resolve failed for %s: %s", url, exc)
        raise TrackImportError(
            TrackImportError.PROVIDER_RESOLUTION_FAILED,
            f"This URL does not exist on {provider.display_name}.",
        ) from exc

    try:
        track_id = provider.parse_track_id(resolved.canonical_path)
    except ValueError as exc:
        raise TrackImportError(TrackImportError.MALFORMED_PROVIDER_ID, f"Parse track ID: {exc}.") from exc

    try:
        metadata = provider.fetch(track_id, resolved.secret_token)
    except ProviderError as exc:
        raise TrackImportError(
            TrackImportError.PROVIDER_FETCH_FAILED,
            f"Fetch track info from {provider.display_name}: {exc}.",
        ) from exc
    if not metadata.provider_id:
        metadata = replace(metadata, provider_id=track_id)

    post = build_track(
        provider,
        metadata,
        author_id=author_id,
        secret_token=resolved.secret_token,
        save_as_draft=save_as_draft,
        now=now or _utc_now(),
    )
    if not post.title:
        post.title = f"{provider.display_name} track {track_id}"
    post.validate_track()

    session.add(post)
    session.commit()
    session.refresh(post)
    logger.info(
        "new track post",
        extra={"post_id": post.id, "provider": provider.provider.value, "provider_id": post.provider_id},
    )
    return post
