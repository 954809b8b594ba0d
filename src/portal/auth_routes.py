"""
Account Portal Auth Routes

Login, social-login callback, registration, email verification, password
reset, logout and the OAuth authorize screen. Every form is validated before
the authorization API is called; API failures are rendered inline with the
server's own message.
"""

import time
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from ..shared.logging_utils import PortalLogger
from ..shared.portal_models import AuthorizeParams
from ..shared.security import safe_return_path
from .api_client import GENERIC_ERROR, ApiClient, ApiError, get_api_client
from .authorize import AuthorizeFlow, AuthorizeState, cancel_destination
from .config import PORTAL_CONFIG, api_base_url
from .forms import (
    LoginForm,
    PasswordResetConfirmForm,
    PasswordResetRequestForm,
    RegisterForm,
    validate_form,
)
from .otp import EXPIRED_MESSAGE, INCOMPLETE_MESSAGE, OTP_LENGTH, OtpInput, ResendTimer
from .rendering import render
from .session import LoginRequired, SessionManager, flash, get_session, get_token

router = APIRouter()
logger = PortalLogger("PORTAL")

LOGIN_ERROR_MESSAGES = {
    "oauth_error": "Google Login failed. Please try again.",
    "no_user_info": "Could not retrieve user info.",
    "session_expired": "Your session has expired. Please sign in again.",
}
DEFAULT_LOGIN_ERROR = "Authentication failed."

OTP_TIMERS_KEY = "otp_sent_at"
RESET_IDENTITY_KEY = "reset_identity"
RESET_TARGET_KEY = "reset_target"
OAUTH_REDIRECT_CLIENT_KEY = "oauth_redirect_client_id"


def login_error_message(error: Optional[str]) -> Optional[str]:
    """Map a login page ``error`` flag to the text shown above the form."""
    if not error:
        return None
    return LOGIN_ERROR_MESSAGES.get(error, DEFAULT_LOGIN_ERROR)


def google_login_url(return_to: Optional[str] = None) -> str:
    url = f"{api_base_url(PORTAL_CONFIG)}/login/google"
    if return_to:
        url += f"?{urlencode({'return_to': return_to})}"
    return url


def _error_status(error: ApiError) -> int:
    return error.status_code if error.status_code >= 400 else 502


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


# Login / logout

@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request,
                     return_to: Optional[str] = None,
                     error: Optional[str] = None,
                     client_id: Optional[str] = None):
    """Show the sign-in form."""
    if client_id:
        request.session[OAUTH_REDIRECT_CLIENT_KEY] = client_id

    return render(request, "login.html", {
        "return_to": return_to or "",
        "error": login_error_message(error),
        "google_url": google_login_url(return_to),
        "email": "",
        "field_errors": {},
    })


@router.post("/login", response_class=HTMLResponse)
async def login_submit(request: Request,
                       session: SessionManager = Depends(get_session),
                       api: ApiClient = Depends(get_api_client)):
    """
    Exchange email and password for a bearer token.

    The token is stored only after the API accepts the credentials.
    """
    form_data = await request.form()
    email = (form_data.get("email") or "").strip()
    return_to = form_data.get("return_to") or ""

    context = {
        "return_to": return_to,
        "google_url": google_login_url(return_to or None),
        "email": email,
        "error": None,
        "field_errors": {},
    }

    form, errors = validate_form(LoginForm, {
        "email": email,
        "password": form_data.get("password") or "",
    })
    if errors:
        context["field_errors"] = errors
        return render(request, "login.html", context, status_code=400)

    try:
        data = await api.post("/login/access-token", data={
            "username": form.email,
            "password": form.password,
        })
    except ApiError as e:
        logger.log_error("login_failed", e.message, {"email": form.email, "status_code": e.status_code})
        context["error"] = e.message
        return render(request, "login.html", context, status_code=_error_status(e))

    token = data.get("access_token") if isinstance(data, dict) else None
    if not token:
        context["error"] = GENERIC_ERROR
        return render(request, "login.html", context, status_code=502)

    response = _redirect(safe_return_path(return_to))
    session.set_token(response, token)
    return response


@router.get("/callback")
async def social_callback(request: Request,
                          token: Optional[str] = None,
                          return_to: Optional[str] = None,
                          error: Optional[str] = None,
                          detail: Optional[str] = None,
                          session: SessionManager = Depends(get_session)):
    """Finish a social login started on the API's ``/login/google``."""
    if not token:
        query = urlencode({"error": error or "oauth_failed", "detail": detail or ""})
        return _redirect(f"/login?{query}")

    response = _redirect(safe_return_path(return_to))
    session.set_token(response, token)
    return response


@router.api_route("/logout", methods=["GET", "POST"])
async def logout(session: SessionManager = Depends(get_session)):
    response = _redirect("/login")
    session.clear(response)
    return response


# Registration and email verification

@router.get("/register", response_class=HTMLResponse)
async def register_page(request: Request):
    return render(request, "register.html", {"values": {}, "field_errors": {}, "error": None})


@router.post("/register", response_class=HTMLResponse)
async def register_submit(request: Request, api: ApiClient = Depends(get_api_client)):
    form_data = await request.form()
    values = {
        "full_name": form_data.get("full_name") or "",
        "email": form_data.get("email") or "",
        "phone": form_data.get("phone") or "",
        "password": form_data.get("password") or "",
    }
    context = {
        "values": {k: v for k, v in values.items() if k != "password"},
        "field_errors": {},
        "error": None,
    }

    form, errors = validate_form(RegisterForm, values)
    if errors:
        context["field_errors"] = errors
        return render(request, "register.html", context, status_code=400)

    try:
        await api.post("/auth/register", json={
            "email": str(form.email),
            "password": form.password,
            "full_name": form.full_name,
            "phone": form.phone,
        }, error_fallback="Registration failed")
    except ApiError as e:
        context["error"] = e.message
        return render(request, "register.html", context, status_code=_error_status(e))

    _start_otp_timer(request, str(form.email))
    flash(request, "Registration successful! Please check your email to verify your account.", "success")
    return _redirect(f"/verify-email?{urlencode({'email': str(form.email)})}")


def _start_otp_timer(request: Request, email: str) -> None:
    timers = dict(request.session.get(OTP_TIMERS_KEY, {}))
    timers[email] = time.time()
    request.session[OTP_TIMERS_KEY] = timers


def _otp_timer(request: Request, email: str) -> ResendTimer:
    """The resend countdown for ``email``, started on first sight."""
    started_at = request.session.get(OTP_TIMERS_KEY, {}).get(email)
    if started_at is None:
        _start_otp_timer(request, email)
        return ResendTimer(PORTAL_CONFIG["otp_ttl_seconds"])
    return ResendTimer.resume(started_at, duration=PORTAL_CONFIG["otp_ttl_seconds"])


def _render_verify(request: Request, email: str, timer: ResendTimer,
                   otp: Optional[OtpInput] = None, error: Optional[str] = None,
                   status_code: int = 200):
    return render(request, "verify_email.html", {
        "email": email,
        "cells": (otp or OtpInput()).cells,
        "otp_length": OTP_LENGTH,
        "remaining": timer.remaining,
        "timer_message": timer.message,
        "can_resend": timer.can_resend,
        "error": error,
    }, status_code=status_code)


@router.get("/verify-email", response_class=HTMLResponse)
async def verify_email_page(request: Request, email: Optional[str] = None):
    if not email:
        return _redirect("/register")
    return _render_verify(request, email, _otp_timer(request, email))


@router.post("/verify-email", response_class=HTMLResponse)
async def verify_email_submit(request: Request, api: ApiClient = Depends(get_api_client)):
    """
    Submit the six-digit code.

    Incomplete codes and expired timers are refused without calling the API.
    """
    form_data = await request.form()
    email = form_data.get("email") or ""
    if not email:
        return _redirect("/register")

    timer = _otp_timer(request, email)
    pasted = form_data.get("otp")
    if pasted:
        otp = OtpInput()
        otp.paste(pasted.strip())
    else:
        otp = OtpInput.from_cells([form_data.get(f"otp_{i}") for i in range(OTP_LENGTH)])

    if timer.expired:
        return _render_verify(request, email, timer, error=EXPIRED_MESSAGE, status_code=400)
    if not otp.is_complete:
        return _render_verify(request, email, timer, otp=otp, error=INCOMPLETE_MESSAGE, status_code=400)

    try:
        await api.post("/auth/verify-email", json={"email": email, "otp": otp.value},
                       error_fallback="Verification failed. Please try again.")
    except ApiError as e:
        otp.clear()
        return _render_verify(request, email, timer, otp=otp, error=e.message,
                              status_code=_error_status(e))

    timers = dict(request.session.get(OTP_TIMERS_KEY, {}))
    timers.pop(email, None)
    request.session[OTP_TIMERS_KEY] = timers
    flash(request, "Email verified successfully! You can now log in.", "success")
    return _redirect("/login")


@router.post("/verify-email/resend", response_class=HTMLResponse)
async def resend_otp(request: Request, api: ApiClient = Depends(get_api_client)):
    """Request a fresh code once the current one has expired."""
    form_data = await request.form()
    email = form_data.get("email") or ""
    if not email:
        return _redirect("/register")

    timer = _otp_timer(request, email)
    if not timer.can_resend:
        return _render_verify(request, email, timer, error=timer.message, status_code=429)

    try:
        await api.post("/auth/resend-otp", json={"email": email}, error_fallback="Failed to resend OTP")
    except ApiError as e:
        return _render_verify(request, email, timer, error=e.message, status_code=_error_status(e))

    _start_otp_timer(request, email)
    flash(request, "New OTP sent to your email!", "success")
    return _redirect(f"/verify-email?{urlencode({'email': email})}")


# Password reset

@router.get("/forgot-password", response_class=HTMLResponse)
async def forgot_password_page(request: Request):
    return render(request, "forgot_password.html", {"step": "request", "error": None, "message": None})


@router.post("/forgot-password", response_class=HTMLResponse)
async def forgot_password_request(request: Request, api: ApiClient = Depends(get_api_client)):
    """Step one: send a reset code to the account's email."""
    form_data = await request.form()
    form, errors = validate_form(PasswordResetRequestForm, {
        "email": form_data.get("email") or None,
        "phone": form_data.get("phone") or None,
    })
    if errors:
        return render(request, "forgot_password.html", {
            "step": "request",
            "error": next(iter(errors.values())),
            "message": None,
        }, status_code=400)

    try:
        data = await api.post("/auth/password-reset/request", json=form.to_payload(),
                              error_fallback="Failed to request password reset")
    except ApiError as e:
        return render(request, "forgot_password.html", {
            "step": "request", "error": e.message, "message": None,
        }, status_code=_error_status(e))

    data = data if isinstance(data, dict) else {}
    # The echoed address may be masked, so step two sends what was typed
    target = data.get("email") or form.email or form.phone or "your registered email"
    request.session[RESET_IDENTITY_KEY] = form.to_payload()
    request.session[RESET_TARGET_KEY] = target
    return render(request, "forgot_password.html", {
        "step": "reset",
        "error": None,
        "message": data.get("message"),
        "target_email": target,
    })


@router.post("/forgot-password/reset", response_class=HTMLResponse)
async def forgot_password_reset(request: Request, api: ApiClient = Depends(get_api_client)):
    """Step two: set a new password with the code."""
    identity = request.session.get(RESET_IDENTITY_KEY)
    if not identity:
        return _redirect("/forgot-password")

    form_data = await request.form()
    context = {
        "step": "reset",
        "message": None,
        "target_email": request.session.get(RESET_TARGET_KEY) or "your registered email",
    }

    form, errors = validate_form(PasswordResetConfirmForm, {
        "otp": form_data.get("otp") or "",
        "new_password": form_data.get("new_password") or "",
        "confirm_password": form_data.get("confirm_password") or "",
    })
    if errors:
        context["error"] = next(iter(errors.values()))
        return render(request, "forgot_password.html", context, status_code=400)

    try:
        await api.post("/auth/password-reset/reset", json={
            **identity,
            "otp": form.otp,
            "new_password": form.new_password,
        }, error_fallback="Failed to reset password")
    except ApiError as e:
        context["error"] = e.message
        return render(request, "forgot_password.html", context, status_code=_error_status(e))

    request.session.pop(RESET_IDENTITY_KEY, None)
    request.session.pop(RESET_TARGET_KEY, None)
    return render(request, "forgot_password.html", {
        "step": "done",
        "error": None,
        "message": "Password reset successfully! Redirecting to login...",
        "redirect_after": 3,
    })


# OAuth authorize

def _authorize_params(source) -> AuthorizeParams:
    return AuthorizeParams(**{name: source.get(name) or None for name in AuthorizeParams.FORWARDED})


def _authorize_return_to(params: AuthorizeParams) -> str:
    query = urlencode(params.to_query())
    return "/authorize" + (f"?{query}" if query else "")


def _render_authorize(request: Request, flow: AuthorizeFlow):
    status_code = 400 if flow.state == AuthorizeState.ERROR else 200
    return render(request, "authorize.html", {
        "flow": flow,
        "params": flow.params,
        "client": flow.client,
        "scopes": flow.params.scopes,
        "error": flow.error,
    }, status_code=status_code)


@router.get("/authorize", response_class=HTMLResponse)
async def authorize_page(request: Request,
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    """
    OAuth authorize entry point.

    A signed-in user is approved silently when the API allows it. The
    consent screen is only shown when that attempt fails.
    """
    flow = AuthorizeFlow(_authorize_params(request.query_params), token, api)
    state = await flow.start()

    if state == AuthorizeState.REDIRECTING:
        return _redirect(flow.redirect_url)
    return _render_authorize(request, flow)


@router.post("/authorize", response_class=HTMLResponse)
async def authorize_allow(request: Request,
                          session: SessionManager = Depends(get_session),
                          api: ApiClient = Depends(get_api_client)):
    """
    Manual "Allow" from the consent screen.

    The OAuth parameters arrive in the form body, so a signed-out visitor
    is sent to login with them rebuilt into ``return_to``.
    """
    form_data = await request.form()
    params = _authorize_params(form_data)
    token = session.get_token()
    if not token:
        raise LoginRequired(return_to=_authorize_return_to(params))

    flow = AuthorizeFlow(params, token, api)
    state = await flow.approve()

    if state == AuthorizeState.REDIRECTING:
        return _redirect(flow.redirect_url)
    if state == AuthorizeState.CONSENT_REQUIRED:
        await flow.load_client()
    return _render_authorize(request, flow)


@router.post("/authorize/cancel")
async def authorize_cancel(request: Request):
    """Manual "Cancel": tell the client the user said no."""
    form_data = await request.form()
    params = _authorize_params(form_data)
    logger.log_flow_transition("authorize", "consent_required", "cancelled", {"client_id": params.client_id})
    return _redirect(cancel_destination(params))
