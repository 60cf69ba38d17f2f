#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from db.session import engine, init_db


def main() -> None:
    parser = ArgumentParser(description="Create the users/posts schema")
    parser.parse_args()
    init_db()
    print(f"[init-db] schema ready on {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
