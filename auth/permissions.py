from __future__ import annotations

import os
from typing import TYPE_CHECKING, Iterable, Protocol

if TYPE_CHECKING:
    from db.models import Post

    from .session import Identity


class AdminPolicy(Protocol):
    def is_admin(self, user_id: int | None) -> bool: ...


class StaticAdminPolicy:
    def __init__(self, admin_ids: Iterable[int] = ()) -> None:
        self._admin_ids = frozenset(int(user_id) for user_id in admin_ids)

    def is_admin(self, user_id: int | None) -> bool:
        return user_id is not None and user_id in self._admin_ids


def _parse_ids(raw: str) -> list[int]:
    ids: list[int] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            ids.append(int(chunk))
        except ValueError as exc:
            raise RuntimeError(f"Invalid user id in ADMIN_USER_IDS: {chunk!r}") from exc
    return ids


def load_admin_policy() -> StaticAdminPolicy:
    return StaticAdminPolicy(_parse_ids(os.getenv("ADMIN_USER_IDS", "")))


def can_manage(identity: Identity, post: Post) -> bool:
    if identity.user_id is None:
        return False
    return identity.is_admin or post.author_id == identity.user_id
