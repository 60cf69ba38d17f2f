"""Page read-models assembled from independent, best-effort queries.

Every builder returns a page model whose ``errors`` collect the failures of
individual sub-queries; the remaining data is still returned so the page can
render. Only a missing primary subject (unknown profile slug, unknown post)
raises ``NotFound``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
import logging
import re
from typing import Any, Callable, TypeVar

from sqlalchemy import desc, extract, func, or_, select
from sqlalchemy.orm import Session, selectinload

from activity import EventRecordError, record_event
from auth import Identity, can_manage
from db.models import VIEW_KINDS, Post, PostKind, User, Visibility

logger = logging.getLogger(__name__)

T = TypeVar("T")

LAST_TRACKS_LIMIT = 50
LAST_USERS_LIMIT = 10
LAST_ACTIVITIES_LIMIT = 50

# hidden from the activity feed for every author
_FEED_HIDDEN_KINDS = tuple(VIEW_KINDS | {PostKind.LINK_DISCORD_ACCOUNT})
_NUMERIC_ID = re.compile(r"[0-9]+")
# ids are signed 64-bit
MAX_POST_ID = 2**63 - 1


class NotFound(Exception):
    pass


@dataclass
class PageModel:
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None

    def fail(self, message: str) -> None:
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("errors")
        payload["error"] = self.error
        return payload


@dataclass
class HomePage(PageModel):
    last_tracks: list[dict] = field(default_factory=list)
    last_users: list[dict] = field(default_factory=list)


@dataclass
class RssPage(PageModel):
    last_tracks: list[dict] = field(default_factory=list)


@dataclass
class OpenPage(PageModel):
    users: int = 0
    tracks: int = 0
    track_drafts: int = 0
    total_duration_ms: int = 0
    uploads_by_weekday: list[int] = field(default_factory=lambda: [0] * 7)
    last_activities: list[dict] = field(default_factory=list)


@dataclass
class ProfilePage(PageModel):
    profile: dict | None = None
    track_count: int = 0
    last_tracks: list[dict] = field(default_factory=list)
    calendar_heatmap: dict[int, int] = field(default_factory=dict)


@dataclass
class PostPage(PageModel):
    post: dict | None = None


@dataclass
class PostEditPage(PageModel):
    post: dict | None = None


@dataclass
class NewPage(PageModel):
    url_value: str = ""
    url_invalid_msg: str = ""


@dataclass
class SettingsPage(PageModel):
    firstname: str = ""
    lastname: str = ""


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def user_row(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "slug": user.slug,
        "firstname": user.firstname,
        "lastname": user.lastname,
        "display_name": user.display_name(),
        "url": user.canonical_url(),
        "created_at": _as_utc(user.created_at),
    }


def track_row(post: Post, *, with_author: bool = True) -> dict:
    payload = {
        "id": post.id,
        "slug": post.slug,
        "canonical_url": post.canonical_url(),
        "title": post.title,
        "body": post.body,
        "genre": post.genre,
        "duration_ms": post.duration,
        "artwork_url": post.artwork_url,
        "download_url": post.download_url,
        "isrc": post.isrc,
        "bpm": post.bpm,
        "key_signature": post.key_signature,
        "url": post.url,
        "provider": post.provider.value if post.provider else None,
        "provider_id": post.provider_id,
        "visibility": post.visibility.value if post.visibility else None,
        "sort_date": _as_utc(post.sort_date),
        "provider_created_at": _as_utc(post.provider_created_at),
        "created_at": _as_utc(post.created_at),
    }
    if with_author:
        payload["author"] = user_row(post.author)
    return payload


def activity_row(post: Post) -> dict:
    return {
        "id": post.id,
        "kind": post.kind.value,
        "created_at": _as_utc(post.created_at),
        "author": user_row(post.author),
        "target_user": user_row(post.target_user),
        "target_post": track_row(post.target_post, with_author=False) if post.target_post else None,
        "track": track_row(post, with_author=False) if post.is_track else None,
    }


def _attempt(session: Session, page: PageModel, label: str, query: Callable[[], T], default: T) -> T:
    try:
        return query()
    except Exception as exc:
        session.rollback()
        logger.warning("cannot fetch %s", label, exc_info=exc)
        page.fail(f"Cannot fetch {label}: {exc}")
        return default


def _track_view(
    session: Session,
    page: PageModel,
    kind: PostKind,
    identity: Identity,
    *,
    target_user_id: int | None = None,
    target_post_id: int | None = None,
) -> None:
    try:
        record_event(
            session,
            kind,
            actor_user_id=identity.user_id,
            target_user_id=target_user_id,
            target_post_id=target_post_id,
        )
    except EventRecordError as exc:
        page.fail(f"Cannot write activity: {exc}")


def _public_tracks_query(author_id: int | None = None):
    stmt = select(Post).where(Post.kind == PostKind.TRACK, Post.visibility == Visibility.PUBLIC)
    if author_id is not None:
        stmt = stmt.where(Post.author_id == author_id)
    return stmt


def _count(session: Session, stmt) -> int:
    return int(session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one())


def _last_public_tracks(session: Session, author_id: int | None = None) -> list[dict]:
    stmt = (
        _public_tracks_query(author_id)
        .options(selectinload(Post.author))
        .order_by(desc(Post.sort_date), desc(Post.id))
        .limit(LAST_TRACKS_LIMIT)
    )
    return [track_row(post) for post in session.execute(stmt).scalars().all()]


def _last_users(session: Session) -> list[dict]:
    stmt = select(User).order_by(desc(User.created_at), desc(User.id)).limit(LAST_USERS_LIMIT)
    return [user_row(user) for user in session.execute(stmt).scalars().all()]


def _total_duration(session: Session) -> int:
    stmt = select(func.coalesce(func.sum(Post.duration), 0)).where(
        Post.kind == PostKind.TRACK, Post.visibility == Visibility.PUBLIC
    )
    return int(session.execute(stmt).scalar_one() or 0)


def weekday_expression(dialect_name: str):
    sort_date = Post.sort_date
    if dialect_name == "postgresql":
        # same UTC days as the heatmap, whatever the session TimeZone
        sort_date = func.timezone("UTC", sort_date)
    return extract("dow", sort_date)


def _uploads_by_weekday(session: Session) -> list[int]:
    weekday = weekday_expression(session.get_bind().dialect.name)
    stmt = (
        select(weekday.label("weekday"), func.count().label("quantity"))
        .where(Post.kind == PostKind.TRACK, Post.sort_date.is_not(None))
        .group_by(weekday)
    )
    buckets = [0] * 7
    for day, quantity in session.execute(stmt).all():
        if day is None:
            continue
        buckets[int(day) % 7] = int(quantity)
    return buckets


def _last_activities(session: Session, system_account_id: int | None) -> list[dict]:
    stmt = (
        select(Post)
        .options(
            selectinload(Post.author),
            selectinload(Post.target_user),
            selectinload(Post.target_post),
        )
        .where(
            Post.author_id.is_not(None),
            Post.kind.not_in(_FEED_HIDDEN_KINDS),
            or_(Post.kind != PostKind.TRACK, Post.visibility == Visibility.PUBLIC),
        )
        .order_by(desc(Post.created_at), desc(Post.id))
        .limit(LAST_ACTIVITIES_LIMIT)
    )
    if system_account_id is not None:
        stmt = stmt.where(or_(Post.author_id != system_account_id, Post.kind == PostKind.TRACK))
    return [activity_row(post) for post in session.execute(stmt).scalars().all()]


def _calendar_heatmap(session: Session, author_id: int) -> dict[int, int]:
    stmt = _public_tracks_query(author_id).with_only_columns(Post.sort_date)
    days: Counter[int] = Counter()
    for sort_date in session.execute(stmt).scalars().all():
        moment = _as_utc(sort_date)
        if moment is None:
            continue
        day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        days[int(day.timestamp())] += 1
    return dict(days)


def find_track(session: Session, slug_or_id: str) -> Post | None:
    slug_or_id = (slug_or_id or "").strip()
    if not slug_or_id:
        return None
    base = select(Post).options(selectinload(Post.author)).where(Post.kind == PostKind.TRACK)
    post = session.execute(base.where(Post.slug == slug_or_id).limit(1)).scalar_one_or_none()
    if post is None and _NUMERIC_ID.fullmatch(slug_or_id):
        post_id = int(slug_or_id)
        if post_id > MAX_POST_ID:
            return None
        post = session.execute(base.where(Post.id == post_id).limit(1)).scalar_one_or_none()
    return post


def build_home(session: Session, identity: Identity) -> HomePage:
    page = HomePage()
    _track_view(session, page, PostKind.VIEW_HOME, identity)
    page.last_tracks = _attempt(session, page, "last tracks", lambda: _last_public_tracks(session), [])
    page.last_users = _attempt(session, page, "last users", lambda: _last_users(session), [])
    return page


def build_rss(session: Session, identity: Identity) -> RssPage:
    page = RssPage()
    page.last_tracks = _attempt(session, page, "last tracks", lambda: _last_public_tracks(session), [])
    return page


def build_open(session: Session, identity: Identity, system_account_id: int | None = None) -> OpenPage:
    page = OpenPage()
    _track_view(session, page, PostKind.VIEW_OPEN, identity)
    page.tracks = _attempt(session, page, "public tracks", lambda: _count(session, _public_tracks_query()), 0)
    page.total_duration_ms = _attempt(session, page, "track durations", lambda: _total_duration(session), 0)
    page.uploads_by_weekday = _attempt(
        session, page, "uploads by weekday", lambda: _uploads_by_weekday(session), [0] * 7
    )
    page.last_activities = _attempt(
        session, page, "last activities", lambda: _last_activities(session, system_account_id), []
    )
    drafts = select(Post).where(Post.kind == PostKind.TRACK, Post.visibility == Visibility.DRAFT)
    page.track_drafts = _attempt(session, page, "track drafts", lambda: _count(session, drafts), 0)
    page.users = _attempt(session, page, "users", lambda: _count(session, select(User)), 0)
    return page


def build_profile(session: Session, identity: Identity, slug: str) -> ProfilePage:
    user = session.execute(select(User).where(User.slug == slug)).scalar_one_or_none()
    if user is None:
        raise NotFound(f"user {slug!r} not found")
    page = ProfilePage(profile=user_row(user))
    _track_view(session, page, PostKind.VIEW_PROFILE, identity, target_user_id=user.id)

    page.track_count = _attempt(
        session, page, "user tracks", lambda: _count(session, _public_tracks_query(user.id)), 0
    )
    if page.track_count > 0:
        page.last_tracks = _attempt(
            session, page, "user tracks", lambda: _last_public_tracks(session, user.id), []
        )
        page.calendar_heatmap = _attempt(
            session, page, "post timestamps", lambda: _calendar_heatmap(session, user.id), {}
        )
    return page


def build_post(session: Session, identity: Identity, slug_or_id: str) -> PostPage:
    post = find_track(session, slug_or_id)
    if post is None:
        raise NotFound(f"post {slug_or_id!r} not found")
    page = PostPage(post=track_row(post))
    _track_view(session, page, PostKind.VIEW_POST, identity, target_post_id=post.id)
    return page


def build_post_edit(session: Session, identity: Identity, slug_or_id: str) -> PostEditPage:
    post = find_track(session, slug_or_id)
    if post is None or not can_manage(identity, post):
        raise NotFound(f"post {slug_or_id!r} not found")
    return PostEditPage(post=track_row(post))


def build_new(identity: Identity, url_value: str = "") -> NewPage:
    return NewPage(url_value=url_value)


def build_settings(identity: Identity) -> SettingsPage:
    user = identity.user
    if user is None:
        return SettingsPage()
    return SettingsPage(firstname=user.firstname or "", lastname=user.lastname or "")
