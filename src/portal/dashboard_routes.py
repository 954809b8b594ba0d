"""
Account Portal Dashboard Routes

Home, settings, courses, billing and user management. Every page depends on
``require_user``, so a missing or rejected token never reaches a handler.
"""

import asyncio
import csv
import io
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from ..shared.logging_utils import PortalLogger
from ..shared.portal_models import (
    Course,
    Enrollment,
    OAuthClient,
    Transaction,
    UserProfile,
    UserStats,
)
from ..shared.security import InputValidator, generate_state
from .api_client import ApiClient, ApiError, get_api_client, parse_list, parse_model
from .authorize import authorize_url
from .config import PORTAL_CONFIG
from .forms import PasswordChangeForm, PhoneForm, ProfileForm, UserEditForm, validate_form
from .rendering import render
from .session import flash, get_token, require_developer, require_user

router = APIRouter(prefix="/dashboard")
logger = PortalLogger("PORTAL")

OAUTH_STATE_KEY = "oauth_state"
OAUTH_REDIRECT_CLIENT_KEY = "oauth_redirect_client_id"

VISIBLE_PAYMENT_STATUSES = ("success", "failed")
CSV_HEADER = ["ID", "Full Name", "Email", "Role", "Status", "Joined At"]


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


def launch_url(request: Request, client_id: str, redirect_uri: str) -> str:
    """
    Start a first-party authorize flow for ``client_id``.

    A fresh ``state`` is kept in the session for the client to check.
    """
    state = generate_state()
    request.session[OAUTH_STATE_KEY] = state
    return authorize_url(client_id, redirect_uri, state, PORTAL_CONFIG["default_scope"])


# Home

@router.get("", response_class=HTMLResponse)
async def dashboard_home(request: Request,
                         user: UserProfile = Depends(require_user),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    """
    Dashboard home with the public application launcher.

    A client remembered from the login page is launched once, right away.
    """
    pending_client_id = request.session.pop(OAUTH_REDIRECT_CLIENT_KEY, None)
    if pending_client_id:
        try:
            client = parse_model(OAuthClient, await api.get(f"/clients/{pending_client_id}", token=token))
        except ApiError as e:
            logger.log_error("auto_redirect_failed", e.message, {"client_id": pending_client_id})
        else:
            if client.redirect_uris:
                return _redirect(launch_url(request, client.client_id, client.redirect_uris[0]))

    clients: List[OAuthClient] = []
    error = None
    try:
        data = await api.get("/clients/public", token=token)
        clients = parse_list(OAuthClient, data)
    except ApiError:
        error = "Failed to load applications"

    return render(request, "dashboard.html", {
        "user": user,
        "clients": clients,
        "error": error,
        "needs_phone": not user.phone,
        "phone_error": None,
    })


@router.post("/launch")
async def launch_application(request: Request, user: UserProfile = Depends(require_user)):
    form_data = await request.form()
    client_id = form_data.get("client_id")
    redirect_uri = form_data.get("redirect_uri")

    if not client_id or not redirect_uri:
        flash(request, "Client has no registered redirect URIs", "error")
        return _redirect("/dashboard")

    return _redirect(launch_url(request, client_id, redirect_uri))


@router.post("/phone")
async def save_phone(request: Request,
                     user: UserProfile = Depends(require_user),
                     token: str = Depends(get_token),
                     api: ApiClient = Depends(get_api_client)):
    """Collect the phone number every account must have."""
    form_data = await request.form()
    form, errors = validate_form(PhoneForm, {"phone": form_data.get("phone") or ""})
    if errors:
        flash(request, errors["phone"], "error")
        return _redirect("/dashboard")

    try:
        await api.put("/users/me", token=token, json={"phone": form.phone},
                      error_fallback="Failed to update phone number")
    except ApiError as e:
        flash(request, e.message, "error")
    else:
        flash(request, "Phone number saved successfully", "success")
    return _redirect("/dashboard")


# Settings

def _render_settings(request: Request, user: UserProfile, values: Optional[dict] = None,
                     profile_error: Optional[str] = None, password_error: Optional[str] = None,
                     field_errors: Optional[dict] = None, status_code: int = 200):
    return render(request, "settings.html", {
        "user": user,
        "values": values or {
            "full_name": user.full_name or "",
            "phone": user.phone or "",
            "profile_image": user.profile_image or "",
        },
        "profile_error": profile_error,
        "password_error": password_error,
        "field_errors": field_errors or {},
    }, status_code=status_code)


@router.get("/settings", response_class=HTMLResponse)
async def settings_page(request: Request, user: UserProfile = Depends(require_user)):
    return _render_settings(request, user)


@router.post("/settings/profile", response_class=HTMLResponse)
async def update_profile(request: Request,
                         user: UserProfile = Depends(require_user),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    form_data = await request.form()
    values = {
        "full_name": form_data.get("full_name") or "",
        "phone": form_data.get("phone") or "",
        "profile_image": form_data.get("profile_image") or "",
    }
    form, errors = validate_form(ProfileForm, values)
    if errors:
        return _render_settings(request, user, values, field_errors=errors, status_code=400)

    try:
        await api.put("/users/me", token=token, json=form.model_dump(),
                      error_fallback="Failed to update profile")
    except ApiError as e:
        return _render_settings(request, user, values, profile_error=e.message, status_code=400)

    flash(request, "Profile updated successfully", "success")
    return _redirect("/dashboard/settings")


@router.post("/settings/password", response_class=HTMLResponse)
async def change_password(request: Request,
                          user: UserProfile = Depends(require_user),
                          token: str = Depends(get_token),
                          api: ApiClient = Depends(get_api_client)):
    form_data = await request.form()
    form, errors = validate_form(PasswordChangeForm, {
        "new_password": form_data.get("new_password") or "",
        "confirm_password": form_data.get("confirm_password") or "",
    })
    if errors:
        return _render_settings(request, user, password_error=next(iter(errors.values())), status_code=400)

    try:
        await api.post("/users/me/password", token=token, json={"new_password": form.new_password},
                       error_fallback="An error occurred. Please try again.")
    except ApiError as e:
        return _render_settings(request, user, password_error=e.message, status_code=400)

    flash(request, "Password set successfully", "success")
    return _redirect("/dashboard/settings")


# Courses and billing

def _records(data, key: str):
    return data.get(key) if isinstance(data, dict) else None


async def _fetch_courses(api: ApiClient, token: str) -> Tuple[List[Course], Optional[str]]:
    try:
        data = await api.get("/lms/courses", token=token)
        return parse_list(Course, _records(data, "courses")), None
    except ApiError as e:
        if e.is_transport_error:
            return [], "Unable to connect to course service"
        return [], "Failed to load available courses"


async def _fetch_enrollments(api: ApiClient, token: str) -> Tuple[List[Enrollment], Optional[str]]:
    try:
        data = await api.get("/lms/my-enrollments", token=token)
        return parse_list(Enrollment, _records(data, "enrollments")), None
    except ApiError as e:
        if e.is_transport_error:
            return [], "Unable to load your enrollments"
        return [], "Failed to load your enrollments"


def available_courses(courses: List[Course], enrollments: List[Enrollment]) -> List[Course]:
    """Courses the user is not enrolled in yet, matched by course id."""
    enrolled_ids = {enrollment.id for enrollment in enrollments}
    return [course for course in courses if course.id not in enrolled_ids]


@router.get("/courses", response_class=HTMLResponse)
async def courses_page(request: Request,
                       user: UserProfile = Depends(require_user),
                       token: str = Depends(get_token),
                       api: ApiClient = Depends(get_api_client)):
    """Enrolled and available courses, fetched concurrently."""
    (courses, courses_error), (enrollments, enrollments_error) = await asyncio.gather(
        _fetch_courses(api, token),
        _fetch_enrollments(api, token),
    )
    return render(request, "courses.html", {
        "user": user,
        "enrollments": enrollments,
        "courses": available_courses(courses, enrollments),
        "courses_error": courses_error,
        "enrollments_error": enrollments_error,
    })


def visible_transactions(orders: List[dict]) -> List[Transaction]:
    """Only settled orders are shown."""
    return [
        parse_model(Transaction, order)
        for order in orders
        if isinstance(order, dict) and order.get("payment_status") in VISIBLE_PAYMENT_STATUSES
    ]


@router.get("/billing", response_class=HTMLResponse)
async def billing_page(request: Request,
                       user: UserProfile = Depends(require_user),
                       token: str = Depends(get_token),
                       api: ApiClient = Depends(get_api_client)):
    transactions: List[Transaction] = []
    error = None
    try:
        data = await api.post("/lms/billing-history", token=token, json={
            "limit": PORTAL_CONFIG["billing_limit"],
            "offset": 0,
        })
        orders = ((data or {}).get("data") or {}).get("orders") or []
        transactions = visible_transactions(orders)
    except ApiError as e:
        error = "Unable to load billing history" if e.is_transport_error else "Failed to load billing history"

    return render(request, "billing.html", {"user": user, "transactions": transactions, "error": error})


# User management

def user_query(page: int, limit: int, search: Optional[str], role: Optional[str],
               status: Optional[str]) -> dict:
    """Query parameters for ``GET /users``; "all" filters are omitted."""
    params = {"skip": (page - 1) * limit, "limit": limit}
    if search:
        params["search"] = search
    if role and role != "all":
        params["role"] = role
    if status and status != "all":
        params["is_active"] = "true" if status == "active" else "false"
    return params


def parse_user_list(data) -> Tuple[List[UserProfile], int]:
    """Accept a paginated ``{items, total}`` object or a bare list."""
    if isinstance(data, dict) and "items" in data:
        items = data.get("items") or []
        total = data.get("total") or len(items)
    else:
        items = data or []
        total = len(items)
    return parse_list(UserProfile, items), total


def users_csv(users: List[UserProfile]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for row in users:
        writer.writerow([
            row.id,
            row.full_name or "",
            row.email,
            row.role or "",
            "Active" if row.is_active else "Inactive",
            row.created_at or "",
        ])
    return buffer.getvalue()


@router.get("/users", response_class=HTMLResponse)
async def users_page(request: Request,
                     page: int = 1,
                     search: Optional[str] = None,
                     role: str = "all",
                     status: str = "all",
                     edit: Optional[str] = None,
                     delete: Optional[str] = None,
                     user: UserProfile = Depends(require_developer),
                     token: str = Depends(get_token),
                     api: ApiClient = Depends(get_api_client)):
    """
    User list with stats, filters and pagination.

    ``edit`` or ``delete`` select a listed user for the edit form or the
    delete confirmation.
    """
    page = max(page, 1)
    limit = PORTAL_CONFIG["users_page_size"]
    search = InputValidator.sanitize_string(search or "", max_length=100) or None

    stats = None
    roles: List[str] = []
    # Stats and roles are optional extras; the list still renders without them
    try:
        stats = parse_model(UserStats, await api.get("/users/stats", token=token) or {})
    except ApiError as e:
        logger.log_error("user_stats_unavailable", e.message, {"status_code": e.status_code})
    try:
        roles = await api.get("/users/roles", token=token) or []
    except ApiError as e:
        logger.log_error("user_roles_unavailable", e.message, {"status_code": e.status_code})

    users: List[UserProfile] = []
    total = 0
    error = None
    try:
        data = await api.get("/users", token=token, params=user_query(page, limit, search, role, status))
        users, total = parse_user_list(data)
    except ApiError as e:
        error = "Error loading data" if e.is_transport_error else "Failed to fetch users"

    selected = next((u for u in users if str(u.id) in (edit, delete)), None)

    return render(request, "users.html", {
        "user": user,
        "users": users,
        "stats": stats,
        "roles": roles,
        "total": total,
        "page": page,
        "pages": max(1, -(-total // limit)),
        "filters": {"search": search or "", "role": role, "status": status},
        "editing": selected if edit else None,
        "deleting": selected if delete else None,
        "error": error,
    })


@router.get("/users/export")
async def export_users(request: Request,
                       search: Optional[str] = None,
                       role: str = "all",
                       status: str = "all",
                       user: UserProfile = Depends(require_developer),
                       token: str = Depends(get_token),
                       api: ApiClient = Depends(get_api_client)):
    """Download every user matching the filters as CSV."""
    params = user_query(1, 10000, search, role, status)
    try:
        users, _ = parse_user_list(await api.get("/users", token=token, params=params))
    except ApiError:
        flash(request, "Export failed", "error")
        return _redirect("/dashboard/users")

    return Response(
        content=users_csv(users),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="users_export.csv"'},
    )


@router.post("/users/{user_id}/edit")
async def update_user(request: Request,
                      user_id: str,
                      user: UserProfile = Depends(require_developer),
                      token: str = Depends(get_token),
                      api: ApiClient = Depends(get_api_client)):
    form_data = await request.form()
    form, errors = validate_form(UserEditForm, {
        "full_name": form_data.get("full_name") or "",
        "role": form_data.get("role") or "user",
        "is_active": form_data.get("is_active") == "true",
        "phone": form_data.get("phone"),
    })
    if errors:
        flash(request, next(iter(errors.values())), "error")
        return _redirect(f"/dashboard/users?edit={user_id}")

    try:
        await api.patch(f"/users/{user_id}", token=token, json=form.model_dump())
    except ApiError as e:
        flash(request, "An error occurred" if e.is_transport_error else "Failed to update user", "error")
    else:
        flash(request, "User updated successfully", "success")
    return _redirect("/dashboard/users")


@router.post("/users/{user_id}/delete")
async def delete_user(request: Request,
                      user_id: str,
                      user: UserProfile = Depends(require_developer),
                      token: str = Depends(get_token),
                      api: ApiClient = Depends(get_api_client)):
    """Delete a user after the confirmation step."""
    try:
        await api.delete(f"/users/{user_id}", token=token, error_fallback="Failed to delete user")
    except ApiError as e:
        flash(request, "An error occurred" if e.is_transport_error else e.message, "error")
    else:
        flash(request, "User deleted successfully", "success")
    return _redirect("/dashboard/users")
