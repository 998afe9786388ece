"""
Email/password identity via Firebase Authentication.

Sign-in and registration go through the Identity Toolkit REST API; ID tokens
presented by API callers are verified against Google's public keys.
"""
import logging
from typing import Any, Dict, Optional

import requests
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from app.models import SessionUser

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

AUTH_ERROR_MESSAGES = {
    "EMAIL_NOT_FOUND": "No account found with this email.",
    "INVALID_PASSWORD": "Incorrect password.",
    "INVALID_LOGIN_CREDENTIALS": "Incorrect email or password.",
    "EMAIL_EXISTS": "Email is already in use by another account.",
    "WEAK_PASSWORD": "Password should be at least 6 characters.",
    "INVALID_EMAIL": "Please enter a valid email address.",
    "MISSING_PASSWORD": "Please provide both email and password",
    "USER_DISABLED": "This account has been disabled.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many unsuccessful login attempts. Please try again later.",
    "NETWORK_ERROR": "Network error. Please check your connection.",
    "INVALID_ID_TOKEN": "Your session has expired. Please sign in again.",
}


class AuthError(Exception):
    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        self.message = message or friendly_auth_error(code)
        super().__init__(self.message)


def friendly_auth_error(code: str, fallback: Optional[str] = None) -> str:
    return AUTH_ERROR_MESSAGES.get(code, fallback or "An unknown error occurred.")


def _error_code(body: Any) -> str:
    if not isinstance(body, dict):
        return "UNKNOWN"
    # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
    message = str((body.get("error") or {}).get("message") or "")
    return message.split(":", 1)[0].strip() or "UNKNOWN"


class IdentityClient:
    def __init__(self, api_key: str, project_id: str, http: Optional[requests.Session] = None, timeout: float = 10.0):
        self.api_key = api_key
        self.project_id = project_id
        self.http = http or requests.Session()
        self.timeout = timeout

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise RuntimeError("FIREBASE_API_KEY is not set.")

        try:
            resp = self.http.post(
                f"{IDENTITY_TOOLKIT_URL}/{endpoint}",
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("identity provider unreachable: %r", e)
            raise AuthError("NETWORK_ERROR") from e

        body = resp.json() if resp.content else {}
        if resp.status_code != 200:
            code = _error_code(body)
            raw = str((body.get("error") or {}).get("message") or "")
            logger.info("identity provider rejected %s: %s", endpoint, code)
            raise AuthError(code, friendly_auth_error(code, fallback=raw or None))
        return body

    @staticmethod
    def _session(body: Dict[str, Any]) -> Dict[str, Any]:
        user = SessionUser(
            id=body["localId"],
            name=body.get("displayName") or None,
            email=body.get("email"),
            photo_url=body.get("profilePicture"),
        )
        return {
            "user": user,
            "id_token": body.get("idToken"),
            "refresh_token": body.get("refreshToken"),
            "expires_in": int(body.get("expiresIn") or 3600),
        }

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        if not email or not password:
            raise AuthError("MISSING_PASSWORD")
        body = self._post("accounts:signInWithPassword", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        return self._session(body)

    def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        if not email or not password:
            raise AuthError("MISSING_PASSWORD")
        body = self._post("accounts:signUp", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        return self._session(body)

    def verify_id_token(self, token: str) -> SessionUser:
        try:
            claims = google_id_token.verify_firebase_token(
                token, google_requests.Request(), audience=self.project_id or None
            )
        except ValueError as e:
            raise AuthError("INVALID_ID_TOKEN") from e

        if not claims:
            raise AuthError("INVALID_ID_TOKEN")

        return SessionUser(
            id=claims.get("user_id") or claims["sub"],
            name=claims.get("name"),
            email=claims.get("email"),
            photo_url=claims.get("picture"),
        )
