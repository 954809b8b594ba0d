"""
Session bootstrap for protected pages.

The bearer token lives in two places: the signed session (the portal's
persistent storage) and a plain ``accessToken`` cookie. ``SessionManager`` is
the only code that reads or writes either copy.
"""

from typing import List, Optional
from urllib.parse import urlencode

from fastapi import Depends, Request
from fastapi.responses import Response

from ..shared.logging_utils import PortalLogger
from ..shared.portal_models import UserProfile
from .api_client import ApiClient, ApiError, get_api_client, parse_model
from .config import PORTAL_CONFIG

logger = PortalLogger("PORTAL")

SESSION_TOKEN_KEY = "access_token"
FLASH_KEY = "_flashes"


class LoginRequired(Exception):
    """
    Raised by page dependencies when the visitor has to sign in first.

    Args:
        return_to: Path and query to come back to after login
        error: Error flag for the login page; when set, all token copies
            are cleared before redirecting
    """

    def __init__(self, return_to: Optional[str] = None, error: Optional[str] = None):
        self.return_to = return_to
        self.error = error
        super().__init__(error or "login required")

    def login_url(self) -> str:
        params = {}
        if self.return_to:
            params["return_to"] = self.return_to
        if self.error:
            params["error"] = self.error
        return "/login" + (f"?{urlencode(params)}" if params else "")


class PermissionDenied(Exception):
    """Raised when a signed-in user opens a screen their role cannot use."""


class SessionManager:
    """
    Read, write and clear the bearer token.

    Reads prefer the session copy. A token found only in the cookie is
    copied back into the session.
    """

    def __init__(self, request: Request, config: dict = PORTAL_CONFIG):
        self.request = request
        self.config = config

    @property
    def cookie_name(self) -> str:
        return self.config["token_cookie_name"]

    def get_token(self) -> Optional[str]:
        """Resolve the bearer token, or None if there is none."""
        token = self.request.session.get(SESSION_TOKEN_KEY)
        if token:
            return token

        token = self.request.cookies.get(self.cookie_name)
        if token:
            self.request.session[SESSION_TOKEN_KEY] = token
            logger.log_session_event("token_restored_from_cookie", {"path": self.request.url.path})
            return token

        return None

    def set_token(self, response: Response, token: str) -> None:
        """Store the token in the session and in the cookie."""
        self.request.session[SESSION_TOKEN_KEY] = token
        response.set_cookie(
            self.cookie_name,
            token,
            max_age=self.config["token_cookie_max_age"],
            path="/",
            samesite="lax",
            secure=self.config["cookie_secure"],
        )
        logger.log_session_event("token_stored", {"access_token": token})

    def clear(self, response: Optional[Response] = None) -> None:
        """Forget the token everywhere."""
        self.request.session.pop(SESSION_TOKEN_KEY, None)
        if response is not None:
            response.delete_cookie(self.cookie_name, path="/", samesite="lax")
        logger.log_session_event("token_cleared", {"path": self.request.url.path})


def original_destination(request: Request) -> str:
    """Path plus query of the current request."""
    query = request.url.query
    return request.url.path + (f"?{query}" if query else "")


def flash(request: Request, message: str, category: str = "info") -> None:
    """Queue a one-time notice for the next rendered page."""
    flashes = request.session.get(FLASH_KEY, [])
    flashes.append({"message": message, "category": category})
    request.session[FLASH_KEY] = flashes


def pop_flashes(request: Request) -> List[dict]:
    """Take all queued notices, removing them from the session."""
    return request.session.pop(FLASH_KEY, [])


def get_session(request: Request) -> SessionManager:
    return SessionManager(request)


def get_token(session: SessionManager = Depends(get_session)) -> str:
    """Dependency: the bearer token, or redirect to login."""
    token = session.get_token()
    if not token:
        raise LoginRequired(return_to=original_destination(session.request))
    return token


async def require_user(request: Request,
                       token: str = Depends(get_token),
                       api: ApiClient = Depends(get_api_client)) -> UserProfile:
    """
    Dependency: the signed-in user's profile.

    A single failed profile fetch counts as "not authenticated"; the token
    copies are cleared and the visitor is sent to login with an error flag.
    """
    try:
        return parse_model(UserProfile, await api.get("/users/me", token=token))
    except ApiError as e:
        logger.log_error("session_bootstrap_failed", e.message, {
            "status_code": e.status_code,
            "path": request.url.path
        })
        raise LoginRequired(return_to=original_destination(request), error="session_expired") from e


async def require_developer(user: UserProfile = Depends(require_user)) -> UserProfile:
    """Dependency: a user allowed into the developer console."""
    if not user.is_developer:
        raise PermissionDenied()
    return user
