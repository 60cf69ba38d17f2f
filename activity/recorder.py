from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import EVENT_KINDS, Post, PostKind

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class EventRecordError(Exception):
    kind: str
    message: str

    def __str__(self) -> str:
        return self.message


def record_event(
    session: Session,
    kind: PostKind,
    actor_user_id: int | None = None,
    target_user_id: int | None = None,
    target_post_id: int | None = None,
) -> Post:
    if kind not in EVENT_KINDS:
        raise EventRecordError("invalid_kind", f"{kind.value} is not an event kind")
    event = Post(
        kind=kind,
        author_id=actor_user_id or None,
        target_user_id=target_user_id,
        target_post_id=target_post_id,
    )
    try:
        session.add(event)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise EventRecordError("write_failed", str(exc)) from exc
    logger.debug("new %s", kind.value, extra={"event_id": event.id, "actor_user_id": event.author_id})
    return event
