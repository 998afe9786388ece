from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request

from app.config import get_settings
from app.models import SessionUser
from services.auth import AuthError, IdentityClient
from services.sessions import new_session_id

SESSION_USER = "user"
SESSION_TOKEN = "id_token"
SESSION_ID = "sid"


class LoginRequired(Exception):
    """Raised by page guards; the app turns it into a redirect to /login."""

    def __init__(self, next_path: str = "/"):
        super().__init__(next_path)
        self.next_path = next_path


@lru_cache(maxsize=1)
def get_identity_client() -> IdentityClient:
    settings = get_settings()
    return IdentityClient(api_key=settings.firebase_api_key, project_id=settings.firebase_project_id)


def safe_next(next_path: Optional[str]) -> str:
    """Only same-site relative paths are allowed as post-login redirects."""
    if not next_path or not next_path.startswith("/") or next_path.startswith("//"):
        return "/"
    return next_path


def start_session(request: Request, signed_in: Dict[str, Any]) -> SessionUser:
    user: SessionUser = signed_in["user"]
    request.session[SESSION_USER] = user.model_dump()
    request.session[SESSION_TOKEN] = signed_in.get("id_token")
    request.session[SESSION_ID] = new_session_id()
    return user


def end_session(request: Request) -> None:
    request.session.clear()


def session_id(request: Request) -> str:
    """Id of the server-side session document, created on first use."""
    sid = request.session.get(SESSION_ID)
    if not sid:
        sid = new_session_id()
        request.session[SESSION_ID] = sid
    return sid


def session_user(request: Request) -> Optional[SessionUser]:
    data = request.session.get(SESSION_USER)
    if not data:
        return None
    return SessionUser(**data)


def require_page_user(request: Request) -> SessionUser:
    """Guard for HTML pages: anonymous visitors are sent to /login."""
    user = session_user(request)
    if user is None:
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        raise LoginRequired(path)
    return user


def require_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    identity: IdentityClient = Depends(get_identity_client),
) -> SessionUser:
    """
    Guard for API endpoints.
    Accepts the browser session, or an ID token in `Authorization: Bearer ...`
    for scripted callers.
    """
    user = session_user(request)
    if user is not None:
        return user

    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        try:
            return identity.verify_id_token(token)
        except AuthError as e:
            raise HTTPException(
                status_code=401,
                detail={"error": "unauthorized", "message": e.message},
            )

    raise HTTPException(
        status_code=401,
        detail={"error": "unauthorized", "message": "Please sign in to continue."},
    )
