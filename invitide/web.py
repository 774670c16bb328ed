"""Shared page helpers and the sign-in/sign-up routes."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from .auth import (
    Identity,
    SignedIn,
    resolve_identity,
    sign_in_with_oauth,
    sign_in_with_password,
    sign_out,
    sign_up,
)
from .config import settings
from .database import get_db
from .errors import InvitideError
from .utils import format_when, humanize_time, render_description

logger = logging.getLogger("uvicorn.error")

SESSION_TOKEN_KEY = "auth_token"

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.filters["relative_time"] = humanize_time
templates.env.filters["when"] = format_when
templates.env.filters["markdown"] = render_description

oauth = OAuth()
if settings.github_oauth_enabled:
    oauth.register(
        name="github",
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )


def get_bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def request_token(request: Request) -> str | None:
    """Return the API bearer token, falling back to the session cookie."""
    return get_bearer_token(request) or request.session.get(SESSION_TOKEN_KEY)


def current_identity(
    request: Request, db: Session = Depends(get_db)
) -> Identity | None:
    """Resolve the visitor on every request; ``None`` when signed out."""
    identity = resolve_identity(db, request_token(request))
    request.state.identity = identity
    return identity


def render(
    request: Request,
    template_name: str,
    context: dict | None = None,
    *,
    status_code: int = 200,
):
    payload = {
        "request": request,
        "identity": getattr(request.state, "identity", None),
        "github_enabled": settings.github_oauth_enabled,
        "message": request.query_params.get("message"),
        "message_class": request.query_params.get("message_class", "alert-info"),
    }
    payload.update(context or {})
    return templates.TemplateResponse(
        request, template_name, payload, status_code=status_code
    )


def redirect_with_message(
    url: str, message: str | None = None, message_class: str = "alert-info"
) -> RedirectResponse:
    if message:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{urlencode({'message': message, 'message_class': message_class})}"
    return RedirectResponse(url=url, status_code=303)


def safe_next(raw: str | None) -> str:
    """Only follow same-site relative redirects."""
    if raw and raw.startswith("/") and not raw.startswith("//"):
        return raw
    return "/"


def _start_session(request: Request, signed_in: SignedIn) -> None:
    request.session[SESSION_TOKEN_KEY] = signed_in.token


def login_page(
    request: Request,
    next: str | None = None,
    verified: str | None = None,
    identity: Identity | None = Depends(current_identity),
):
    """Render the credential sign-in form."""
    if identity is not None:
        return RedirectResponse(url=safe_next(next), status_code=303)
    context = {"next": safe_next(next)}
    if verified == "true":
        context.update(message="Email verified! You can now log in.")
    return render(request, "login.html", context)


def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    next: str = Form("/"),
    db: Session = Depends(get_db),
):
    try:
        signed_in = sign_in_with_password(db, email=email, password=password)
    except InvitideError as exc:
        return render(
            request,
            "login.html",
            {
                "next": safe_next(next),
                "email": email,
                "message": exc.message,
                "message_class": "alert-danger",
            },
            status_code=exc.status_code,
        )
    _start_session(request, signed_in)
    return RedirectResponse(url=safe_next(next), status_code=303)


def signup_page(request: Request, identity: Identity | None = Depends(current_identity)):
    """Render the registration form."""
    if identity is not None:
        return RedirectResponse(url="/", status_code=303)
    return render(request, "signup.html")


def signup_submit(
    request: Request,
    display_name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    db: Session = Depends(get_db),
):
    def _error(message: str, status_code: int):
        return render(
            request,
            "signup.html",
            {
                "display_name": display_name,
                "email": email,
                "message": message,
                "message_class": "alert-danger",
            },
            status_code=status_code,
        )

    if not all([display_name.strip(), email.strip(), password, confirm_password]):
        return _error("All fields are required", 400)
    if password != confirm_password:
        return _error("Passwords do not match", 400)
    try:
        sign_up(db, email=email, password=password, display_name=display_name)
    except InvitideError as exc:
        return _error(exc.message, exc.status_code)
    return redirect_with_message(
        "/login", "Account created! You can now log in.", "alert-success"
    )


def logout(request: Request, db: Session = Depends(get_db)):
    sign_out(db, request.session.get(SESSION_TOKEN_KEY))
    request.session.clear()
    return RedirectResponse(url="/", status_code=303)


async def github_login(request: Request):
    if not settings.github_oauth_enabled:
        return redirect_with_message(
            "/login", "GitHub sign-in is not configured.", "alert-danger"
        )
    redirect_uri = request.url_for("github_callback")
    return await oauth.github.authorize_redirect(request, str(redirect_uri))


async def _github_primary_email(token) -> str | None:
    resp = await oauth.github.get("user/emails", token=token)
    emails = resp.json()
    if not isinstance(emails, list):
        return None
    verified = [e for e in emails if isinstance(e, dict) and e.get("verified")]
    primary = next((e for e in verified if e.get("primary")), None)
    chosen = primary or (verified[0] if verified else None)
    return chosen.get("email") if chosen else None


async def github_callback(request: Request, db: Session = Depends(get_db)):
    if not settings.github_oauth_enabled:
        return redirect_with_message(
            "/login", "GitHub sign-in is not configured.", "alert-danger"
        )
    try:
        token = await oauth.github.authorize_access_token(request)
        resp = await oauth.github.get("user", token=token)
        user_info = resp.json()
        if not isinstance(user_info, dict) or "id" not in user_info:
            raise OAuthError(description="Invalid user info received from GitHub")
        email = user_info.get("email") or await _github_primary_email(token)
    except OAuthError as exc:
        logger.warning("GitHub sign-in failed: %s", exc)
        return redirect_with_message(
            "/login", "GitHub sign-in failed. Please try again.", "alert-danger"
        )
    try:
        signed_in = sign_in_with_oauth(
            db,
            provider="github",
            subject=str(user_info["id"]),
            email=email,
            display_name=user_info.get("name") or user_info.get("login"),
        )
    except InvitideError as exc:
        return redirect_with_message("/login", exc.message, "alert-danger")
    _start_session(request, signed_in)
    return RedirectResponse(url="/", status_code=303)


def register_web_routes(app):
    """Register the sign-in/sign-up routes on the FastAPI app."""
    app.get("/login", response_class=HTMLResponse)(login_page)
    app.post("/login")(login_submit)
    app.get("/signup", response_class=HTMLResponse)(signup_page)
    app.post("/signup")(signup_submit)
    app.get("/logout")(logout)
    app.post("/logout")(logout)
    app.get("/login/github")(github_login)
    app.get("/auth/callback/github", name="github_callback")(github_callback)
