from __future__ import annotations

from datetime import UTC, datetime
import enum

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

# SQLite only autoincrements INTEGER primary keys.
_ID = BigInteger().with_variant(Integer(), "sqlite")
_JSON = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


class PostKind(str, enum.Enum):
    TRACK = "track"
    VIEW_HOME = "view_home"
    VIEW_OPEN = "view_open"
    VIEW_PROFILE = "view_profile"
    VIEW_POST = "view_post"
    LINK_DISCORD_ACCOUNT = "link_discord_account"
    LOGIN = "login"


class Visibility(str, enum.Enum):
    DRAFT = "draft"
    PUBLIC = "public"


class Provider(str, enum.Enum):
    SOUNDCLOUD = "soundcloud"


VIEW_KINDS = frozenset(
    {PostKind.VIEW_HOME, PostKind.VIEW_OPEN, PostKind.VIEW_PROFILE, PostKind.VIEW_POST}
)
EVENT_KINDS = frozenset(kind for kind in PostKind if kind is not PostKind.TRACK)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(Text, unique=True)
    firstname: Mapped[str] = mapped_column(Text, default="")
    lastname: Mapped[str] = mapped_column(Text, default="")
    discord_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    posts: Mapped[list[Post]] = relationship(
        back_populates="author",
        foreign_keys="Post.author_id",
    )

    def display_name(self) -> str:
        name = f"{self.firstname or ''} {self.lastname or ''}".strip()
        return name or self.slug

    def canonical_url(self) -> str:
        return f"/u/{self.slug}"


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(Text, default="")
    kind: Mapped[PostKind] = mapped_column(_enum(PostKind, "post_kind"))
    visibility: Mapped[Visibility | None] = mapped_column(
        _enum(Visibility, "post_visibility"), nullable=True
    )
    author_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # track provenance
    provider: Mapped[Provider | None] = mapped_column(_enum(Provider, "post_provider"), nullable=True)
    provider_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    provider_secret_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_metadata: Mapped[dict | None] = mapped_column(_JSON, nullable=True)
    provider_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sort_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # track content
    title: Mapped[str] = mapped_column(Text, default="")
    body: Mapped[str] = mapped_column(Text, default="")
    genre: Mapped[str] = mapped_column(Text, default="")
    duration: Mapped[int] = mapped_column(BigInteger, default=0)
    artwork_url: Mapped[str] = mapped_column(Text, default="")
    download_url: Mapped[str] = mapped_column(Text, default="")
    isrc: Mapped[str] = mapped_column(Text, default="")
    bpm: Mapped[float] = mapped_column(default=0.0)
    key_signature: Mapped[str] = mapped_column(Text, default="")
    url: Mapped[str] = mapped_column(Text, default="")

    # event targets
    target_user_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    target_post_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("posts.id", ondelete="SET NULL"), nullable=True
    )

    author: Mapped[User | None] = relationship(back_populates="posts", foreign_keys=[author_id])
    target_user: Mapped[User | None] = relationship(foreign_keys=[target_user_id])
    target_post: Mapped[Post | None] = relationship(remote_side=[id], foreign_keys=[target_post_id])

    __table_args__ = (
        Index("ix_posts_kind_visibility_sort_date", "kind", "visibility", "sort_date"),
        Index("ix_posts_slug", "slug"),
        Index("ix_posts_author_id", "author_id"),
    )

    @property
    def is_track(self) -> bool:
        return self.kind is PostKind.TRACK

    def canonical_url(self) -> str:
        if self.slug:
            return f"/p/{self.slug}"
        return f"/p/{self.id}"

    def validate_track(self) -> None:
        missing = [
            name
            for name, value in (
                ("provider", self.provider),
                ("provider_id", self.provider_id),
                ("title", self.title),
                ("sort_date", self.sort_date),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"track is missing required fields: {', '.join(missing)}")
