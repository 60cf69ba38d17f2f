from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from os import getenv
import time

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.exc import SQLAlchemyError

from auth import (
    AuthError,
    Identity,
    SessionAuthenticator,
    can_manage,
    load_admin_policy,
    load_session_config,
    resolve_identity,
)
from db.models import Visibility
from db.session import SessionLocal
from providers import ProviderRegistry, default_registry
from tracks import TrackImportError, import_track
from views import (
    NotFound,
    PageModel,
    build_home,
    build_new,
    build_open,
    build_post,
    build_post_edit,
    build_profile,
    build_rss,
    build_settings,
    find_track,
    render_rss,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="SGTM", version="0.1.0")

_STARTED_AT = time.monotonic()


@dataclass(frozen=True)
class SiteConfig:
    dev_mode: bool
    base_url: str
    system_account_id: int | None


def load_site_config() -> SiteConfig:
    system_account = getenv("SYSTEM_ACCOUNT_ID", "").strip()
    return SiteConfig(
        dev_mode=getenv("DEV_MODE", "0").lower() in {"1", "true", "yes"},
        base_url=getenv("SITE_BASE_URL", "http://localhost:8000").rstrip("/"),
        system_account_id=int(system_account) if system_account else None,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_registry() -> ProviderRegistry:
    return default_registry()


def _authenticator() -> SessionAuthenticator | None:
    config = load_session_config()
    if not config.secret:
        return None
    return SessionAuthenticator.from_config(config)


def _identity(request: Request, session) -> Identity:
    raw_token = request.cookies.get(load_session_config().cookie_name)
    try:
        return resolve_identity(session, raw_token, _authenticator(), load_admin_policy())
    except AuthError as exc:
        raise HTTPException(status_code=422, detail=f"parse session token: {exc}") from exc


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="not_found")


def _redirect(url: str, status_code: int = 302) -> RedirectResponse:
    return RedirectResponse(url, status_code=status_code)


def _render(identity: Identity, page: PageModel, started: float) -> dict:
    config = load_site_config()
    title = "SGTM (dev)" if config.dev_mode else "SGTM"
    user = identity.user
    payload = {
        "title": title,
        "date": _utc_now(),
        "user": (
            {"id": user.id, "slug": user.slug, "display_name": user.display_name()}
            if user is not None
            else None
        ),
        "user_id": identity.user_id,
        "is_admin": identity.is_admin,
        **page.to_dict(),
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 3),
    }
    return jsonable_encoder(payload)


@app.get("/health")
def health() -> dict:
    return {}


@app.get("/status")
def status() -> dict:
    return {"uptime": int(time.monotonic() - _STARTED_AT)}


@app.get("/")
def home_page(request: Request) -> dict:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        return _render(identity, build_home(session, identity), started)
    finally:
        session.close()


@app.get("/rss")
def rss_page(request: Request) -> Response:
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        page = build_rss(session, identity)
        if page.error:
            raise HTTPException(status_code=422, detail=page.error)
        body = render_rss(page, base_url=load_site_config().base_url)
        return Response(content=body, media_type="application/xml")
    finally:
        session.close()


@app.get("/open")
def open_page(request: Request) -> dict:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        page = build_open(session, identity, load_site_config().system_account_id)
        return _render(identity, page, started)
    finally:
        session.close()


@app.get("/new", response_model=None)
def new_page(request: Request) -> dict | RedirectResponse:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        return _render(identity, build_new(identity), started)
    finally:
        session.close()


@app.post("/new", response_model=None)
def new_submit(
    request: Request,
    url: str = Form(default=""),
    submit: str = Form(default=""),
) -> dict | RedirectResponse:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        page = build_new(identity, url_value=url)
        try:
            post = import_track(
                session,
                url,
                identity.user_id,
                save_as_draft=submit == "draft",
                registry=get_registry(),
            )
        except TrackImportError as exc:
            logger.debug("track import rejected", extra={"code": exc.code, "url": url})
            page.url_invalid_msg = exc.message
            return _render(identity, page, started)
        except (SQLAlchemyError, ValueError) as exc:
            session.rollback()
            raise HTTPException(status_code=422, detail=f"create post: {exc}") from exc
        return _redirect(post.canonical_url())
    finally:
        session.close()


@app.get("/settings", response_model=None)
def settings_page(request: Request) -> dict | RedirectResponse:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        return _render(identity, build_settings(identity), started)
    finally:
        session.close()


@app.post("/settings", response_model=None)
def settings_submit(
    request: Request,
    firstname: str = Form(default=""),
    lastname: str = Form(default=""),
) -> RedirectResponse:
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        user = identity.user
        if user is None:
            raise HTTPException(status_code=422, detail="settings update: user not loaded")
        user.firstname = firstname.strip()
        user.lastname = lastname.strip()
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise HTTPException(status_code=422, detail=f"settings update: {exc}") from exc
        logger.debug("settings update", extra={"user_id": user.id})
        return _redirect("/settings")
    finally:
        session.close()


@app.get("/u/{user_slug}")
def profile_page(user_slug: str, request: Request) -> dict:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        try:
            page = build_profile(session, identity, user_slug)
        except NotFound as exc:
            raise _not_found() from exc
        return _render(identity, page, started)
    finally:
        session.close()


@app.get("/p/{post_slug}")
def post_page(post_slug: str, request: Request) -> dict:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        try:
            page = build_post(session, identity, post_slug)
        except NotFound as exc:
            raise _not_found() from exc
        return _render(identity, page, started)
    finally:
        session.close()


@app.get("/p/{post_slug}/sync", response_model=None)
def post_sync_page(post_slug: str, request: Request) -> RedirectResponse:
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        post = find_track(session, post_slug)
        if post is None or not can_manage(identity, post):
            raise _not_found()
        # TODO: refresh provider metadata once re-import semantics are settled
        return _redirect(post.canonical_url())
    finally:
        session.close()


@app.get("/p/{post_slug}/edit", response_model=None)
def post_edit_page(post_slug: str, request: Request) -> dict | RedirectResponse:
    started = time.perf_counter()
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        try:
            page = build_post_edit(session, identity, post_slug)
        except NotFound as exc:
            raise _not_found() from exc
        return _render(identity, page, started)
    finally:
        session.close()


@app.post("/p/{post_slug}/edit", response_model=None)
def post_edit_submit(
    post_slug: str,
    request: Request,
    title: str = Form(default=""),
    body: str | None = Form(default=None),
    publish: str = Form(default=""),
) -> RedirectResponse:
    session = SessionLocal()
    try:
        identity = _identity(request, session)
        if not identity.is_authenticated:
            return _redirect("/", 307)
        post = find_track(session, post_slug)
        if post is None or not can_manage(identity, post):
            raise _not_found()
        if title.strip():
            post.title = title.strip()
        if body is not None:
            post.body = body
        if publish in {"1", "true", "yes"} and post.visibility is Visibility.DRAFT:
            post.visibility = Visibility.PUBLIC
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise HTTPException(status_code=422, detail=f"update post: {exc}") from exc
        logger.debug("post update", extra={"post_id": post.id, "user_id": identity.user_id})
        return _redirect(post.canonical_url())
    finally:
        session.close()


@app.get("/logout")
def logout() -> RedirectResponse:
    response = _redirect("/")
    response.delete_cookie(load_session_config().cookie_name)
    return response
