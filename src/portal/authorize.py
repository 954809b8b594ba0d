"""
OAuth authorize flow.

The portal does not implement authorization itself. It checks the incoming
parameters, looks up the client, and asks the authorization API to approve
the request on behalf of the signed-in user. The API answers with the
client callback URL (code and state included) that the browser is sent to.

States::

    loading -> auto_approving  -> redirecting
                               -> consent_required -> redirecting
            -> error

Every signed-in user gets a silent approval attempt before any consent
screen is shown. The API does not expose whether the user consented to this
client before, so the portal cannot tell first-time requests apart.
"""

from enum import Enum
from typing import List, Optional
from urllib.parse import urlencode, urlparse

from ..shared.logging_utils import PortalLogger
from ..shared.portal_models import AuthorizeParams, ClientInfo, ResponseType
from .api_client import ApiClient, ApiError

logger = PortalLogger("PORTAL")

MISSING_PARAMS_MESSAGE = "Missing required OAuth parameters."
UNKNOWN_CLIENT_MESSAGE = "Invalid or unknown client application."
NO_REDIRECT_MESSAGE = "No redirect URI returned from server."
AUTHORIZE_FAILED_MESSAGE = "Authorization failed."
AUTHORIZE_ERROR_MESSAGE = "An error occurred during authorization."


class AuthorizeState(str, Enum):
    LOADING = "loading"
    AUTO_APPROVING = "auto_approving"
    CONSENT_REQUIRED = "consent_required"
    REDIRECTING = "redirecting"
    ERROR = "error"


class AuthorizeFlow:
    """
    One run of the authorize page for one browser request.

    Args:
        params: Incoming OAuth query parameters
        token: Bearer token of the signed-in user
        api: Request-scoped API client
    """

    def __init__(self, params: AuthorizeParams, token: str, api: ApiClient):
        self.params = params
        self.token = token
        self.api = api
        self.state = AuthorizeState.LOADING
        self.client: Optional[ClientInfo] = None
        self.redirect_url: Optional[str] = None
        self.error: Optional[str] = None
        self.history: List[AuthorizeState] = [AuthorizeState.LOADING]

    def _transition(self, new_state: AuthorizeState, **details) -> None:
        logger.log_flow_transition("authorize", self.state.value, new_state.value, {
            "client_id": self.params.client_id,
            **details
        })
        self.state = new_state
        self.history.append(new_state)

    async def start(self) -> AuthorizeState:
        """
        Run the page-load half of the flow.

        Returns:
            AuthorizeState: ``redirecting``, ``consent_required`` or ``error``
        """
        if not self.params.is_complete:
            self.error = MISSING_PARAMS_MESSAGE
            self._transition(AuthorizeState.ERROR, missing=self.params.missing)
            return self.state

        if not await self.load_client():
            self.error = UNKNOWN_CLIENT_MESSAGE
            self._transition(AuthorizeState.ERROR)
            return self.state

        self._transition(AuthorizeState.AUTO_APPROVING)
        return await self._approve()

    async def load_client(self) -> bool:
        """Fetch the client's public metadata for the consent screen."""
        try:
            data = await self.api.get(f"/oauth2/clients/{self.params.client_id}")
            self.client = ClientInfo.model_validate(data)
        except (ApiError, ValueError) as e:
            logger.log_error("unknown_client", str(e), {"client_id": self.params.client_id})
            return False
        return True

    async def approve(self) -> AuthorizeState:
        """
        Handle a manual "Allow" from the consent screen.

        Sends the same approval request the automatic attempt sends.
        """
        if not self.params.is_complete:
            self.error = MISSING_PARAMS_MESSAGE
            self._transition(AuthorizeState.ERROR, missing=self.params.missing)
            return self.state
        if self.state == AuthorizeState.LOADING:
            self._transition(AuthorizeState.CONSENT_REQUIRED, action="allow")
        return await self._approve()

    async def _approve(self) -> AuthorizeState:
        query = dict(self.params.to_query())
        query["confirm"] = "true"

        try:
            data = await self.api.post(
                "/oauth2/authorize",
                token=self.token,
                params=query,
                error_fallback=AUTHORIZE_FAILED_MESSAGE,
            )
        except ApiError as e:
            self.error = AUTHORIZE_ERROR_MESSAGE if e.is_transport_error else e.message
            self._transition(AuthorizeState.CONSENT_REQUIRED, status_code=e.status_code)
            return self.state

        redirect_url = data.get("redirect_uri") if isinstance(data, dict) else None
        if not redirect_url:
            self.error = NO_REDIRECT_MESSAGE
            self._transition(AuthorizeState.CONSENT_REQUIRED)
            return self.state

        self.redirect_url = redirect_url
        self.error = None
        self._transition(AuthorizeState.REDIRECTING, redirect_uri=redirect_url)
        return self.state


def cancel_destination(params: AuthorizeParams) -> str:
    """
    Where "Cancel" on the consent screen sends the browser.

    With a known redirect URI the client gets an ``access_denied`` error and
    the original state back; otherwise the user lands on the dashboard.
    """
    if not params.redirect_uri:
        return "/dashboard"

    query = urlencode({"error": "access_denied", "state": params.state or ""})
    separator = "&" if urlparse(params.redirect_uri).query else "?"
    return f"{params.redirect_uri}{separator}{query}"


def authorize_url(client_id: str, redirect_uri: str, state: str,
                  scope: str = "openid profile email") -> str:
    """Build a portal ``/authorize`` link for a first-party launch."""
    query = urlencode({
        "client_id": client_id,
        "response_type": ResponseType.CODE.value,
        "scope": scope,
        "redirect_uri": redirect_uri,
        "state": state,
    })
    return f"/authorize?{query}"
