#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import re

from sqlalchemy import select

from auth import SessionAuthenticator, load_session_config
from db.models import User
from db.session import SessionLocal


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def main() -> None:
    parser = ArgumentParser(description="Create (if needed) a user and print a session cookie value")
    parser.add_argument("slug")
    parser.add_argument("--firstname", default="")
    parser.add_argument("--lastname", default="")
    args = parser.parse_args()

    config = load_session_config()
    authenticator = SessionAuthenticator.from_config(config)
    slug = _slugify(args.slug)
    if not slug:
        parser.error("slug must contain at least one letter or digit")

    session = SessionLocal()
    try:
        user = session.execute(select(User).where(User.slug == slug)).scalar_one_or_none()
        if user is None:
            user = User(slug=slug, firstname=args.firstname, lastname=args.lastname)
            session.add(user)
            session.commit()
            session.refresh(user)
            print(f"[issue-session] created user id={user.id} slug={user.slug}")
        print(f"{config.cookie_name}={authenticator.issue(user.id)}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
