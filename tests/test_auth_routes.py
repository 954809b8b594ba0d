"""
Tests for the sign-in, registration, verification and password reset pages.
"""

import time
from unittest.mock import patch

import pytest

from src.portal.auth_routes import google_login_url, login_error_message
from src.portal.otp import EXPIRED_MESSAGE, INCOMPLETE_MESSAGE


def otp_cells(code: str) -> dict:
    return {f"otp_{i}": digit for i, digit in enumerate(code)}


class TestLoginPage:
    """Test cases for GET/POST /login."""

    def test_login_form_renders(self, client):
        response = client.get("/login")

        assert response.status_code == 200
        assert "Welcome back" in response.text
        assert "Continue with Google" in response.text

    @pytest.mark.parametrize("flag, message", [
        ("oauth_error", "Google Login failed. Please try again."),
        ("no_user_info", "Could not retrieve user info."),
        ("session_expired", "Your session has expired. Please sign in again."),
        ("something_else", "Authentication failed."),
    ])
    def test_error_flag_messages(self, client, flag, message):
        response = client.get("/login", params={"error": flag})

        assert message in response.text
        assert login_error_message(flag) == message

    def test_no_error_flag_no_message(self):
        assert login_error_message(None) is None

    def test_google_link_carries_return_to(self):
        url = google_login_url("/dashboard/billing")

        assert url.endswith("/api/v1/login/google?return_to=%2Fdashboard%2Fbilling")

    def test_login_success_stores_token_and_redirects(self, client, fake_api):
        fake_api.add("POST", "/login/access-token", json={"access_token": "fresh-token", "token_type": "bearer"})

        response = client.post("/login", data={
            "email": "alice@example.com",
            "password": "correct-horse",
            "return_to": "/dashboard/courses",
        })

        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard/courses"
        assert "accessToken=fresh-token" in response.headers["set-cookie"]

        sent = fake_api.called("POST", "/login/access-token")[0].form
        assert sent == {"username": "alice@example.com", "password": "correct-horse"}

    def test_login_default_destination(self, client, fake_api):
        fake_api.add("POST", "/login/access-token", json={"access_token": "fresh-token"})

        response = client.post("/login", data={"email": "alice@example.com", "password": "pw"})

        assert response.headers["location"] == "/dashboard"

    @pytest.mark.security
    @pytest.mark.parametrize("return_to", [
        "https://evil.example.com/phish",
        "//evil.example.com",
        "javascript:alert(1)",
    ])
    def test_login_refuses_offsite_return_to(self, client, fake_api, return_to):
        fake_api.add("POST", "/login/access-token", json={"access_token": "fresh-token"})

        response = client.post("/login", data={
            "email": "alice@example.com",
            "password": "pw",
            "return_to": return_to,
        })

        assert response.headers["location"] == "/dashboard"

    def test_login_rejected_shows_server_message(self, client, fake_api):
        """Wrong credentials: the API's own message, no token stored."""
        fake_api.add("POST", "/login/access-token", status_code=401,
                      json={"detail": "Invalid email or password."})

        response = client.post("/login", data={"email": "alice@example.com", "password": "wrong"})

        assert response.status_code == 401
        assert "Invalid email or password." in response.text
        assert "accessToken" not in response.headers.get("set-cookie", "")
        assert 'value="alice@example.com"' in response.text

    def test_login_api_down(self, client, fake_api):
        fake_api.fail("POST", "/login/access-token")

        response = client.post("/login", data={"email": "alice@example.com", "password": "pw"})

        assert response.status_code == 502
        assert "Something went wrong. Please try again." in response.text

    def test_login_validation_skips_api(self, client, fake_api):
        response = client.post("/login", data={"email": "", "password": ""})

        assert response.status_code == 400
        assert fake_api.calls == []

    def test_login_stores_client_id_for_dashboard(self, signed_in, fake_api):
        """``/login?client_id=`` makes the dashboard bounce into authorize."""
        fake_api.add("GET", "/clients/app-123", json={
            "client_id": "app-123",
            "client_name": "Course Hub",
            "redirect_uris": ["https://courses.example.com/cb"],
        })

        signed_in.get("/login", params={"client_id": "app-123"})
        response = signed_in.get("/dashboard")

        assert response.status_code == 303
        assert response.headers["location"].startswith("/authorize?client_id=app-123")


class TestSocialCallback:
    """Test cases for GET /callback."""

    def test_callback_with_token(self, client):
        response = client.get("/callback", params={"token": "social-token", "return_to": "/dashboard/settings"})

        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard/settings"
        assert "accessToken=social-token" in response.headers["set-cookie"]

    def test_callback_without_token(self, client):
        response = client.get("/callback", params={"error": "oauth_error", "detail": "denied"})

        assert response.status_code == 303
        assert response.headers["location"] == "/login?error=oauth_error&detail=denied"


class TestRegistration:
    """Test cases for POST /register."""

    valid = {
        "full_name": "Alice Smith",
        "email": "alice@example.com",
        "phone": "+1 415 555 0100",
        "password": "long-enough",
    }

    def test_register_success_goes_to_verification(self, client, fake_api):
        fake_api.add("POST", "/auth/register", json={"id": "u1", "email": "alice@example.com"})

        response = client.post("/register", data=self.valid)

        assert response.status_code == 303
        assert response.headers["location"] == "/verify-email?email=alice%40example.com"

        sent = fake_api.called("POST", "/auth/register")[0].json
        assert sent["phone"] == "+14155550100"
        assert sent["full_name"] == "Alice Smith"

    @pytest.mark.parametrize("field, value, message", [
        ("full_name", "A", "Name must be at least 2 characters."),
        ("email", "not-an-email", "Please enter a valid email address."),
        ("phone", "12", "Please enter a valid phone number."),
        ("password", "short", "Password must be at least 8 characters."),
    ])
    def test_register_field_errors(self, client, fake_api, field, value, message):
        response = client.post("/register", data={**self.valid, field: value})

        assert response.status_code == 400
        assert message in response.text
        assert fake_api.calls == []

    def test_register_duplicate_email(self, client, fake_api):
        fake_api.add("POST", "/auth/register", status_code=400,
                     json={"detail": "The user with this email already exists in the system."})

        response = client.post("/register", data=self.valid)

        assert response.status_code == 400
        assert "already exists" in response.text
        assert "long-enough" not in response.text


class TestEmailVerification:
    """Test cases for the OTP verification page."""

    email = "alice@example.com"

    def test_verify_page_without_email(self, client):
        response = client.get("/verify-email")

        assert response.headers["location"] == "/register"

    def test_verify_page_shows_countdown(self, client):
        response = client.get("/verify-email", params={"email": self.email})

        assert response.status_code == 200
        assert "Code expires in 10:00" in response.text
        assert response.text.count('class="otp-cell"') == 6

    def test_verify_success(self, client, fake_api):
        fake_api.add("POST", "/auth/verify-email", json={"message": "Email verified"})
        client.get("/verify-email", params={"email": self.email})

        response = client.post("/verify-email", data={"email": self.email, **otp_cells("123456")})

        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        assert fake_api.called("POST", "/auth/verify-email")[0].json == {"email": self.email, "otp": "123456"}

        login = client.get("/login")
        assert "Email verified successfully! You can now log in." in login.text

    def test_pasted_code_is_accepted(self, client, fake_api):
        fake_api.add("POST", "/auth/verify-email", json={"message": "Email verified"})
        client.get("/verify-email", params={"email": self.email})

        response = client.post("/verify-email", data={"email": self.email, "otp": "654321"})

        assert response.status_code == 303
        assert fake_api.called("POST", "/auth/verify-email")[0].json["otp"] == "654321"

    def test_incomplete_code_is_refused_locally(self, client, fake_api):
        client.get("/verify-email", params={"email": self.email})

        response = client.post("/verify-email", data={"email": self.email, **otp_cells("123")})

        assert response.status_code == 400
        assert INCOMPLETE_MESSAGE in response.text
        assert fake_api.called("POST", "/auth/verify-email") == []

    def test_wrong_code_clears_cells(self, client, fake_api):
        fake_api.add("POST", "/auth/verify-email", status_code=400, json={"detail": "Invalid OTP"})
        client.get("/verify-email", params={"email": self.email})

        response = client.post("/verify-email", data={"email": self.email, **otp_cells("999999")})

        assert response.status_code == 400
        assert "Invalid OTP" in response.text
        assert 'value="9"' not in response.text

    def test_expired_code_is_refused_locally(self, client, fake_api):
        client.get("/verify-email", params={"email": self.email})

        with patch("src.portal.otp.time") as mock_time:
            mock_time.time.return_value = time.time() + 601
            response = client.post("/verify-email", data={"email": self.email, **otp_cells("123456")})

        assert response.status_code == 400
        assert EXPIRED_MESSAGE in response.text
        assert fake_api.called("POST", "/auth/verify-email") == []

    def test_resend_before_expiry_is_refused(self, client, fake_api):
        client.get("/verify-email", params={"email": self.email})

        response = client.post("/verify-email/resend", data={"email": self.email})

        assert response.status_code == 429
        assert fake_api.called("POST", "/auth/resend-otp") == []

    def test_resend_after_expiry_restarts_countdown(self, client, fake_api):
        fake_api.add("POST", "/auth/resend-otp", json={"message": "OTP sent"})
        client.get("/verify-email", params={"email": self.email})

        with patch("src.portal.otp.time") as mock_time:
            mock_time.time.return_value = time.time() + 601
            expired = client.get("/verify-email", params={"email": self.email})
            assert EXPIRED_MESSAGE in expired.text

            response = client.post("/verify-email/resend", data={"email": self.email})

        assert response.status_code == 303
        assert fake_api.called("POST", "/auth/resend-otp")[0].json == {"email": self.email}

        page = client.get(response.headers["location"])
        assert "New OTP sent to your email!" in page.text
        assert "Code expires in 10:00" in page.text or "Code expires in 9:59" in page.text


class TestPasswordReset:
    """Test cases for the two-step password reset."""

    def test_request_needs_email_or_phone(self, client, fake_api):
        response = client.post("/forgot-password", data={})

        assert response.status_code == 400
        assert "Please provide either your email address or phone number" in response.text
        assert fake_api.calls == []

    def test_reset_sends_typed_email_not_masked_echo(self, client, fake_api):
        fake_api.add("POST", "/auth/password-reset/request",
                     json={"message": "Reset code sent", "email": "al***@example.com"})
        fake_api.add("POST", "/auth/password-reset/reset", json={"message": "Password updated"})

        step_one = client.post("/forgot-password", data={"email": "alice@example.com"})
        assert step_one.status_code == 200
        assert "Enter the code sent to al***@example.com" in step_one.text
        assert fake_api.called("POST", "/auth/password-reset/request")[0].json == {"email": "alice@example.com"}

        step_two = client.post("/forgot-password/reset", data={
            "otp": "123456",
            "new_password": "new-password-1",
            "confirm_password": "new-password-1",
        })

        assert step_two.status_code == 200
        assert "Password reset successfully! Redirecting to login..." in step_two.text
        assert 'content="3;url=/login"' in step_two.text
        assert fake_api.called("POST", "/auth/password-reset/reset")[0].json == {
            "email": "alice@example.com",
            "otp": "123456",
            "new_password": "new-password-1",
        }

    def test_reset_by_phone_sends_phone(self, client, fake_api):
        fake_api.add("POST", "/auth/password-reset/request",
                     json={"message": "Reset code sent", "email": "al***@example.com"})
        fake_api.add("POST", "/auth/password-reset/reset", json={"message": "Password updated"})

        step_one = client.post("/forgot-password", data={"phone": "+14155550100"})
        assert "al***@example.com" in step_one.text
        assert fake_api.called("POST", "/auth/password-reset/request")[0].json == {"phone": "+14155550100"}

        client.post("/forgot-password/reset", data={
            "otp": "123456",
            "new_password": "new-password-1",
            "confirm_password": "new-password-1",
        })

        assert fake_api.called("POST", "/auth/password-reset/reset")[0].json == {
            "phone": "+14155550100",
            "otp": "123456",
            "new_password": "new-password-1",
        }

    def test_reset_failure_keeps_target(self, client, fake_api):
        fake_api.add("POST", "/auth/password-reset/request",
                     json={"message": "Reset code sent", "email": "al***@example.com"})
        fake_api.add("POST", "/auth/password-reset/reset", status_code=400, json={"detail": "Invalid OTP"})
        client.post("/forgot-password", data={"email": "alice@example.com"})

        response = client.post("/forgot-password/reset", data={
            "otp": "000000",
            "new_password": "new-password-1",
            "confirm_password": "new-password-1",
        })

        assert response.status_code == 400
        assert "Invalid OTP" in response.text
        assert "Enter the code sent to al***@example.com" in response.text

    def test_reset_password_mismatch(self, client, fake_api):
        fake_api.add("POST", "/auth/password-reset/request", json={"message": "sent"})
        client.post("/forgot-password", data={"email": "alice@example.com"})

        response = client.post("/forgot-password/reset", data={
            "otp": "123456",
            "new_password": "new-password-1",
            "confirm_password": "different-1",
        })

        assert response.status_code == 400
        assert "Passwords do not match" in response.text
        assert fake_api.called("POST", "/auth/password-reset/reset") == []

    def test_reset_without_request_step(self, client):
        response = client.post("/forgot-password/reset", data={"otp": "123456"})

        assert response.status_code == 303
        assert response.headers["location"] == "/forgot-password"
