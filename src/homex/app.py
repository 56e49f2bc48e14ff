# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from homex.auth.passwords import HashingUnavailable
from homex.auth.session import COOKIE_NAME, DEFAULT_MAX_AGE_SECONDS, SessionData, SessionStore, session_from_user
from homex.auth.users import DEFAULT_SEED_PATH, authenticate, seed_users_from_yaml
from homex.edge import PATHNAME_HEADER, install_edge_filter
from homex.errors import AppError, NotFoundError, UnauthorizedError, ValidationError, install_error_handlers
from homex.infra.db import DEFAULT_DATABASE_URL, Database, get_db
from homex.infra.user_repo import UserRepository
from homex.navigation import ROLE_LABELS, find_item, initials, nav_for_path
from homex.permissions import (
    ADMIN_ONLY,
    OPERATOR_ONLY,
    SIGNIN_PATH,
    SessionResolver,
    cookie_settings,
    current_session_optional,
    get_session_resolver,
    home_for,
    landing_for,
    redirect_to,
    require_api,
    require_page,
)
from homex.services.password_service import (
    FORM_FIELD,
    ChangeStatus,
    PasswordChangeWorkflow,
    change_password_and_redirect,
)

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


class ChangePasswordIn(BaseModel):
    """JSON body; camelCase like every other API field."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field("", alias="currentPassword")
    new_password: str = Field("", alias="newPassword")
    confirm_password: str = Field("", alias="confirmPassword")


_API_FIELDS = {
    "current_password": "currentPassword",
    "new_password": "newPassword",
    "confirm_password": "confirmPassword",
}


def _api_field_errors(errors: dict) -> dict:
    return {_API_FIELDS.get(k, k): v for k, v in errors.items()}


def _render(request: Request, template_name: str, ctx: dict, status_code: int = 200):
    """TemplateResponse wrapper injecting the current user."""
    resolver = getattr(request.state, "session_resolver", None)
    base_ctx = {"current_user": resolver.resolve() if resolver is not None else None}
    return templates.TemplateResponse(request, template_name, {**base_ctx, **(ctx or {})}, status_code=status_code)


def _safe_callback(url: str) -> str:
    # only same-site absolute paths, never "//host" or full URLs
    u = (url or "").strip()
    if u.startswith("/") and not u.startswith("//") and "\\" not in u:
        return u
    return ""


def create_app(database: Optional[Database] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.database is None
        if owned:
            app.state.database = Database(DEFAULT_DATABASE_URL)
        app.state.database.create_all()
        if DEFAULT_SEED_PATH:
            db = app.state.database.session()
            try:
                seed_users_from_yaml(db, Path(DEFAULT_SEED_PATH))
            finally:
                db.close()
        yield
        if owned:
            app.state.database.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.database = database

    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")
    install_error_handlers(app)
    install_edge_filter(app)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    # ------------------ Sign in / out ------------------

    @app.get("/signin", response_class=HTMLResponse)
    def signin_get(
        request: Request,
        callbackUrl: str = "",
        session: Optional[SessionData] = Depends(current_session_optional),
    ):
        if session:
            return RedirectResponse(url=landing_for(session), status_code=303)
        return _render(request, "signin.html", {"callback_url": callbackUrl, "error": ""})

    @app.post("/signin")
    def signin_post(
        request: Request,
        email: str = Form(...),
        password: str = Form(...),
        callbackUrl: str = Form(""),
        db: Session = Depends(get_db),
    ):
        try:
            u = authenticate(db, email=email, password=password)
        except HashingUnavailable:
            logger.exception("Password verification failed during sign-in")
            return _render(
                request,
                "signin.html",
                {"callback_url": callbackUrl, "error": "Unable to sign in. Please try again later."},
                status_code=503,
            )
        if not u:
            return _render(
                request,
                "signin.html",
                {"callback_url": callbackUrl, "error": "Invalid email or password"},
                status_code=401,
            )

        token = SessionStore(db).create_session(
            u.id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        session = session_from_user(u)
        target = landing_for(session)
        if not session.must_change_password:
            target = _safe_callback(callbackUrl) or target
        logger.info("User %s signed in", u.id)

        resp = RedirectResponse(url=target, status_code=303)
        resp.set_cookie(COOKIE_NAME, token, max_age=DEFAULT_MAX_AGE_SECONDS, **cookie_settings())
        return resp

    @app.post("/signout")
    def signout_post(request: Request, db: Session = Depends(get_db)):
        SessionStore(db).revoke_session(request.cookies.get(COOKIE_NAME, ""))
        resp = RedirectResponse(url=SIGNIN_PATH, status_code=303)
        resp.delete_cookie(COOKIE_NAME)
        return resp

    # ------------------ Change password ------------------

    @app.get("/change-password", response_class=HTMLResponse)
    def change_password_get(request: Request, session: Optional[SessionData] = Depends(current_session_optional)):
        if not session:
            raise redirect_to(SIGNIN_PATH)
        if not session.must_change_password:
            raise redirect_to(home_for(session.role))
        return _render(request, "change_password.html", {"session": session, "errors": {}})

    @app.post("/change-password", response_class=HTMLResponse)
    def change_password_post(
        request: Request,
        current_password: str = Form(""),
        new_password: str = Form(""),
        confirm_password: str = Form(""),
        resolver: SessionResolver = Depends(get_session_resolver),
        db: Session = Depends(get_db),
    ):
        session = resolver.resolve()
        workflow = PasswordChangeWorkflow(UserRepository(db), resolver=resolver)
        target = home_for(session.role) if session else SIGNIN_PATH
        result = change_password_and_redirect(
            workflow, session, current_password, new_password, confirm_password, target
        )
        status_code = 401 if result.status is ChangeStatus.UNAUTHENTICATED else 400
        return _render(
            request,
            "change_password.html",
            {"session": session, "errors": result.errors},
            status_code=status_code,
        )

    # ------------------ Dashboards ------------------

    def _dashboard(request: Request, session: SessionData):
        pathname = request.headers.get(PATHNAME_HEADER) or request.url.path
        item = find_item(pathname)
        if item is None:
            raise NotFoundError()
        is_admin = pathname.startswith("/admin")
        return _render(
            request,
            "dashboard.html",
            {
                "session": session,
                "title": "Admin Dashboard" if is_admin else "Operator Dashboard",
                "home_url": "/admin" if is_admin else "/operator",
                "items": nav_for_path(pathname),
                "active": item,
                "role_label": ROLE_LABELS.get(session.role, ""),
                "initials": initials(session.name),
            },
        )

    @app.get("/admin", response_class=HTMLResponse)
    @app.get("/admin/{section}", response_class=HTMLResponse)
    def admin_page(
        request: Request,
        section: str = "",
        session: SessionData = Depends(require_page(ADMIN_ONLY, forbidden_redirect="/operator")),
    ):
        return _dashboard(request, session)

    @app.get("/operator", response_class=HTMLResponse)
    @app.get("/operator/{section}", response_class=HTMLResponse)
    def operator_page(
        request: Request,
        section: str = "",
        session: SessionData = Depends(require_page(OPERATOR_ONLY)),
    ):
        return _dashboard(request, session)

    @app.get("/", response_class=HTMLResponse)
    def home(request: Request, session: Optional[SessionData] = Depends(current_session_optional)):
        if session and session.must_change_password:
            raise redirect_to(landing_for(session))
        return _render(request, "home.html", {"session": session})

    # ------------------ JSON API ------------------

    @app.get("/api/session")
    def api_session(session: SessionData = Depends(require_api())):
        return {
            "user": {
                "id": session.user_id,
                "email": session.email,
                "name": session.name,
                "image": session.image,
                "role": session.role.value,
                "mustChangePassword": session.must_change_password,
            },
            "home": landing_for(session),
        }

    @app.post("/api/auth/change-password")
    def api_change_password(
        payload: ChangePasswordIn,
        resolver: SessionResolver = Depends(get_session_resolver),
        db: Session = Depends(get_db),
    ):
        session = resolver.resolve()
        workflow = PasswordChangeWorkflow(UserRepository(db), resolver=resolver)
        result = workflow.execute(
            session,
            payload.current_password,
            payload.new_password,
            payload.confirm_password,
            redirect_to=home_for(session.role) if session else None,
        )
        if result.success:
            return JSONResponse({**result.as_dict(), "redirectTo": result.redirect_to})
        if result.status is ChangeStatus.UNAUTHENTICATED:
            raise UnauthorizedError(result.errors[FORM_FIELD][0])
        if result.status in (ChangeStatus.VALIDATION_FAILED, ChangeStatus.CURRENT_PASSWORD_INCORRECT):
            raise ValidationError("Validation failed", _api_field_errors(result.errors))
        raise AppError(result.errors[FORM_FIELD][0])


app = create_app()
