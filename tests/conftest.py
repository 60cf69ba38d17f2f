from __future__ import annotations

from datetime import UTC, datetime
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import api.main as api_main
from auth import SessionAuthenticator
from db.base import Base
from db.models import Post, PostKind, Provider, User, Visibility
from providers import ProviderError, ProviderRegistry, ResolvedTrack, TrackMetadata
from providers.soundcloud import SoundCloudProvider

SESSION_SECRET = "test-session-secret"
COOKIE_NAME = "oauth-token"


class StubSoundCloud(SoundCloudProvider):
    def __init__(
        self,
        metadata: TrackMetadata | None = None,
        *,
        canonical_path: str = "/tracks/42",
        secret_token: str = "",
        resolve_error: str | None = None,
        fetch_error: str | None = None,
    ) -> None:
        self.metadata = metadata or TrackMetadata(provider_id=42, title="Foo", duration_ms=180000)
        self.canonical_path = canonical_path
        self.secret_token = secret_token
        self.resolve_error = resolve_error
        self.fetch_error = fetch_error
        self.resolved: list[str] = []
        self.fetched: list[tuple[int, str]] = []

    def resolve(self, url: str) -> ResolvedTrack:
        self.resolved.append(url)
        if self.resolve_error is not None:
            raise ProviderError(self.resolve_error)
        return ResolvedTrack(canonical_path=self.canonical_path, secret_token=self.secret_token)

    def fetch(self, track_id: int, secret_token: str = "") -> TrackMetadata:
        self.fetched.append((track_id, secret_token))
        if self.fetch_error is not None:
            raise ProviderError(self.fetch_error)
        return self.metadata


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def authenticator() -> SessionAuthenticator:
    return SessionAuthenticator(SESSION_SECRET, ttl_s=3600)


@pytest.fixture
def stub_provider() -> StubSoundCloud:
    return StubSoundCloud(
        TrackMetadata(
            provider_id=42,
            title="Foo",
            duration_ms=180000,
            downloadable=True,
            download_url="https://api.soundcloud.com/tracks/42/download",
            permalink_url="https://soundcloud.com/artist/foo",
            created_at="2021/03/04 05:06:07 +0000",
            raw={"id": 42, "title": "Foo"},
        )
    )


@pytest.fixture
def registry(stub_provider) -> ProviderRegistry:
    return ProviderRegistry([stub_provider])


@pytest.fixture
def client(monkeypatch, session_factory, registry):
    monkeypatch.setenv("SESSION_SECRET", SESSION_SECRET)
    monkeypatch.setenv("SESSION_COOKIE", COOKIE_NAME)
    monkeypatch.delenv("ADMIN_USER_IDS", raising=False)
    monkeypatch.delenv("SYSTEM_ACCOUNT_ID", raising=False)
    monkeypatch.delenv("DEV_MODE", raising=False)
    monkeypatch.setattr(api_main, "SessionLocal", session_factory)
    monkeypatch.setattr(api_main, "get_registry", lambda: registry)
    with TestClient(api_main.app, follow_redirects=False) as client:
        yield client


def cookie_header(authenticator: SessionAuthenticator, user_id: int) -> dict[str, str]:
    return {"Cookie": f"{COOKIE_NAME}={authenticator.issue(user_id)}"}


def make_user(session, slug: str, **fields) -> User:
    user = User(slug=slug, firstname=fields.pop("firstname", slug.title()), lastname=fields.pop("lastname", ""), **fields)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_track(
    session,
    author: User,
    title: str,
    *,
    sort_date: datetime,
    visibility: Visibility = Visibility.PUBLIC,
    duration: int = 1000,
    slug: str = "",
) -> Post:
    post = Post(
        kind=PostKind.TRACK,
        visibility=visibility,
        author_id=author.id,
        slug=slug,
        title=title,
        duration=duration,
        provider=Provider.SOUNDCLOUD,
        provider_id=abs(hash(title)) % 1_000_000 + 1,
        provider_created_at=sort_date,
        sort_date=sort_date,
    )
    session.add(post)
    session.commit()
    session.refresh(post)
    return post


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)
