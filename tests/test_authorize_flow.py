"""
Tests for the OAuth authorize flow.

Covers the state machine on its own and the ``/authorize`` pages built on it.
"""

import asyncio
from urllib.parse import urlencode

import httpx
import pytest

from src.portal.api_client import ApiClient, build_http_client
from src.portal.authorize import (
    AUTHORIZE_ERROR_MESSAGE,
    MISSING_PARAMS_MESSAGE,
    NO_REDIRECT_MESSAGE,
    UNKNOWN_CLIENT_MESSAGE,
    AuthorizeFlow,
    AuthorizeState,
    authorize_url,
    cancel_destination,
)
from src.shared.portal_models import AuthorizeParams


CALLBACK = "https://courses.example.com/callback"
CLIENT_INFO = {"client_name": "Course Hub", "client_uri": "https://courses.example.com", "scope": "openid"}

PARAMS = {
    "client_id": "course-hub",
    "redirect_uri": CALLBACK,
    "response_type": "code",
    "scope": "openid profile email",
    "state": "xyz",
}


def run_flow(fake_api, params, action="start"):
    """Drive an ``AuthorizeFlow`` against ``fake_api`` and return it."""
    async def run():
        async with build_http_client(transport=httpx.MockTransport(fake_api.handler)) as http:
            flow = AuthorizeFlow(AuthorizeParams(**params), "user-token", ApiClient(http))
            await getattr(flow, action)()
            return flow
    return asyncio.run(run())


class TestAuthorizeFlow:
    """Test cases for the authorize state machine."""

    def test_missing_params_make_no_calls(self, fake_api):
        flow = run_flow(fake_api, {"client_id": "course-hub"})

        assert flow.state == AuthorizeState.ERROR
        assert flow.error == MISSING_PARAMS_MESSAGE
        assert fake_api.calls == []

    def test_unknown_client(self, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", status_code=404, json={"detail": "Client not found"})

        flow = run_flow(fake_api, PARAMS)

        assert flow.state == AuthorizeState.ERROR
        assert flow.error == UNKNOWN_CLIENT_MESSAGE
        assert fake_api.called("POST", "/oauth2/authorize") == []

    def test_silent_approval(self, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.add("POST", "/oauth2/authorize", json={"redirect_uri": f"{CALLBACK}?code=abc&state=xyz"})

        flow = run_flow(fake_api, PARAMS)

        assert flow.state == AuthorizeState.REDIRECTING
        assert flow.redirect_url == f"{CALLBACK}?code=abc&state=xyz"
        assert flow.history == [
            AuthorizeState.LOADING,
            AuthorizeState.AUTO_APPROVING,
            AuthorizeState.REDIRECTING,
        ]

        call = fake_api.called("POST", "/oauth2/authorize")[0]
        assert call.bearer == "user-token"
        assert call.params == {**PARAMS, "confirm": "true"}

    def test_rejected_approval_falls_back_to_consent(self, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.add("POST", "/oauth2/authorize", status_code=400, json={"detail": "Invalid redirect_uri"})

        flow = run_flow(fake_api, PARAMS)

        assert flow.state == AuthorizeState.CONSENT_REQUIRED
        assert flow.error == "Invalid redirect_uri"
        assert flow.client.client_name == "Course Hub"

    def test_transport_error_message(self, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.fail("POST", "/oauth2/authorize")

        flow = run_flow(fake_api, PARAMS)

        assert flow.state == AuthorizeState.CONSENT_REQUIRED
        assert flow.error == AUTHORIZE_ERROR_MESSAGE

    def test_missing_redirect_in_response(self, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.add("POST", "/oauth2/authorize", json={"status": "ok"})

        flow = run_flow(fake_api, PARAMS)

        assert flow.state == AuthorizeState.CONSENT_REQUIRED
        assert flow.error == NO_REDIRECT_MESSAGE

    def test_manual_approve_skips_client_lookup(self, fake_api):
        fake_api.add("POST", "/oauth2/authorize", json={"redirect_uri": f"{CALLBACK}?code=abc"})

        flow = run_flow(fake_api, PARAMS, action="approve")

        assert flow.state == AuthorizeState.REDIRECTING
        assert fake_api.called("GET", "/oauth2/clients/course-hub") == []


class TestCancelDestination:
    """Test cases for where "Cancel" sends the browser."""

    def test_with_redirect_uri(self):
        params = AuthorizeParams(**PARAMS)

        assert cancel_destination(params) == f"{CALLBACK}?error=access_denied&state=xyz"

    def test_redirect_uri_with_query(self):
        params = AuthorizeParams(**{**PARAMS, "redirect_uri": f"{CALLBACK}?tenant=7"})

        assert cancel_destination(params) == f"{CALLBACK}?tenant=7&error=access_denied&state=xyz"

    def test_without_state(self):
        params = AuthorizeParams(**{**PARAMS, "state": None})

        assert cancel_destination(params) == f"{CALLBACK}?error=access_denied&state="

    def test_without_redirect_uri(self):
        assert cancel_destination(AuthorizeParams(client_id="course-hub")) == "/dashboard"


def test_authorize_url():
    url = httpx.URL(authorize_url("course-hub", CALLBACK, "s-1"))

    assert url.path == "/authorize"
    assert dict(url.params) == {
        "client_id": "course-hub",
        "response_type": "code",
        "scope": "openid profile email",
        "redirect_uri": CALLBACK,
        "state": "s-1",
    }


class TestAuthorizePages:
    """Test cases for the /authorize routes."""

    def test_requires_token(self, client, fake_api):
        response = client.get("/authorize", params=PARAMS)

        pytest.assert_redirects_to_login(response)
        return_to = httpx.URL(response.headers["location"]).params["return_to"]
        assert return_to.startswith("/authorize?")
        assert "client_id=course-hub" in return_to
        assert fake_api.calls == []

    def test_allow_without_token_keeps_params_for_login(self, client, fake_api):
        response = client.post("/authorize", data=PARAMS)

        pytest.assert_redirects_to_login(response, return_to=f"/authorize?{urlencode(PARAMS)}")
        assert fake_api.calls == []

    def test_silent_approval_redirects(self, signed_in, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.add("POST", "/oauth2/authorize", json={"redirect_uri": f"{CALLBACK}?code=abc&state=xyz"})

        response = signed_in.get("/authorize", params=PARAMS)

        assert response.status_code == 303
        assert response.headers["location"] == f"{CALLBACK}?code=abc&state=xyz"

    def test_missing_params_page(self, signed_in, fake_api):
        response = signed_in.get("/authorize", params={"client_id": "course-hub"})

        assert response.status_code == 400
        assert MISSING_PARAMS_MESSAGE in response.text
        assert fake_api.calls == []

    def test_consent_screen(self, signed_in, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.add("POST", "/oauth2/authorize", status_code=403, json={"detail": "Consent required"})

        response = signed_in.get("/authorize", params=PARAMS)

        assert response.status_code == 200
        assert "Course Hub" in response.text
        assert "Consent required" in response.text
        assert "<li>profile</li>" in response.text
        assert 'name="state" value="xyz"' in response.text

    def test_allow_redirects(self, signed_in, fake_api):
        fake_api.add("POST", "/oauth2/authorize", json={"redirect_uri": f"{CALLBACK}?code=def&state=xyz"})

        response = signed_in.post("/authorize", data=PARAMS)

        assert response.status_code == 303
        assert response.headers["location"] == f"{CALLBACK}?code=def&state=xyz"
        assert fake_api.called("POST", "/oauth2/authorize")[0].params["confirm"] == "true"

    def test_allow_failure_reloads_client(self, signed_in, fake_api):
        fake_api.add("GET", "/oauth2/clients/course-hub", json=CLIENT_INFO)
        fake_api.add("POST", "/oauth2/authorize", status_code=400, json={"detail": "Invalid scope"})

        response = signed_in.post("/authorize", data=PARAMS)

        assert response.status_code == 200
        assert "Invalid scope" in response.text
        assert "Course Hub" in response.text

    def test_cancel(self, signed_in):
        response = signed_in.post("/authorize/cancel", data=PARAMS)

        assert response.status_code == 303
        assert response.headers["location"] == f"{CALLBACK}?error=access_denied&state=xyz"
