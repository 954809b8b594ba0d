"""
Account Portal Developer Console Routes

OAuth client registrations, service accounts and their request logs.

Client secrets and API keys are only ever present in the response to the
request that created or rotated them. They are rendered with no-store
caching headers and never written to the session.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError

from ..shared.logging_utils import PortalLogger
from ..shared.portal_models import LogPage, OAuthClient, ServiceAccount, UserProfile
from ..shared.security import InputValidator, SecurityHeaders
from .api_client import ApiClient, ApiError, get_api_client, parse_list, parse_model
from .config import PORTAL_CONFIG
from .drafts import StagedChanges
from .forms import ClientForm, ServiceForm, ServiceUpdateForm, validate_form
from .rendering import render
from .session import flash, get_token, require_developer

router = APIRouter(prefix="/dashboard/developer")
logger = PortalLogger("PORTAL")

CLIENT_FIELDS = (
    "client_name",
    "client_uri",
    "logo_uri",
    "description",
    "redirect_uris",
    "scope",
    "visible_on_dashboard",
)
SERVICE_FIELDS = ("description", "allowed_ips", "is_active")

INVALID_IPS_MESSAGE = "Invalid IP address(es) ignored."
LOG_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


def _client_form_data(form_data) -> dict:
    return {
        "client_name": form_data.get("client_name") or "",
        "client_uri": form_data.get("client_uri"),
        "logo_uri": form_data.get("logo_uri"),
        "description": form_data.get("description"),
        "redirect_uris": form_data.get("redirect_uris") or "",
        "scope": form_data.get("scope") or PORTAL_CONFIG["default_scope"],
        "visible_on_dashboard": form_data.get("visible_on_dashboard") == "on",
    }


def _secret_headers() -> dict:
    return SecurityHeaders.get_secret_display_headers()


def _payload(data) -> dict:
    """A JSON object body, or an empty dict for anything else."""
    return data if isinstance(data, dict) else {}


# OAuth clients

@router.get("", response_class=HTMLResponse)
async def developer_home(request: Request,
                         user: UserProfile = Depends(require_developer),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    """List the developer's OAuth applications."""
    clients: List[OAuthClient] = []
    error = None
    try:
        clients = parse_list(OAuthClient, await api.get("/clients/", token=token))
    except ApiError as e:
        logger.log_error("client_list_failed", e.message, {"status_code": e.status_code})
        error = "Failed to load applications"

    return render(request, "developer/clients.html", {"user": user, "clients": clients, "error": error})


@router.get("/clients/new", response_class=HTMLResponse)
async def new_client_page(request: Request, user: UserProfile = Depends(require_developer)):
    return render(request, "developer/client_form.html", {
        "user": user,
        "values": {"scope": PORTAL_CONFIG["default_scope"], "redirect_uris": ""},
        "field_errors": {},
        "error": None,
    })


@router.post("/clients/new", response_class=HTMLResponse)
async def create_client(request: Request,
                        user: UserProfile = Depends(require_developer),
                        token: str = Depends(get_token),
                        api: ApiClient = Depends(get_api_client)):
    """
    Register an OAuth application.

    The response is the only place its client secret is ever shown.
    """
    form_data = await request.form()
    values = _client_form_data(form_data)
    form, errors = validate_form(ClientForm, values)
    context = {"user": user, "values": values, "field_errors": errors, "error": None}
    if errors:
        return render(request, "developer/client_form.html", context, status_code=400)

    try:
        data = await api.post("/clients/", token=token, json=form.to_payload(),
                              error_fallback="Failed to create application. Please try again.")
    except ApiError as e:
        context["error"] = e.message
        return render(request, "developer/client_form.html", context, status_code=400)

    payload = _payload(data)
    logger.log_info("OAuth application created", {"client_id": payload.get("client_id")})
    return render(request, "developer/client_secret.html", {
        "user": user,
        "client_id": payload.get("client_id"),
        "client_name": payload.get("client_name") or form.client_name,
        "secret": payload.get("client_secret"),
        "created": True,
    }, headers=_secret_headers())


async def _load_client(api: ApiClient, token: str, client_id: str) -> OAuthClient:
    return parse_model(OAuthClient, await api.get(f"/clients/{client_id}", token=token))


def _render_client_detail(request: Request, user: UserProfile, client: OAuthClient,
                          draft: Optional[dict] = None, field_errors: Optional[dict] = None,
                          error: Optional[str] = None, status_code: int = 200):
    values = dict(draft or client.model_dump(include=set(CLIENT_FIELDS)))
    if isinstance(values.get("redirect_uris"), list):
        values["redirect_uris"] = "\n".join(values["redirect_uris"])
    return render(request, "developer/client_detail.html", {
        "user": user,
        "client": client,
        "values": values,
        "field_errors": field_errors or {},
        "error": error,
    }, status_code=status_code)


@router.get("/clients/{client_id}", response_class=HTMLResponse)
async def client_detail(request: Request,
                        client_id: str,
                        user: UserProfile = Depends(require_developer),
                        token: str = Depends(get_token),
                        api: ApiClient = Depends(get_api_client)):
    try:
        client = await _load_client(api, token, client_id)
    except ApiError:
        flash(request, "Failed to load application details.", "error")
        return _redirect("/dashboard/developer")

    return _render_client_detail(request, user, client)


@router.post("/clients/{client_id}", response_class=HTMLResponse)
async def update_client(request: Request,
                        client_id: str,
                        user: UserProfile = Depends(require_developer),
                        token: str = Depends(get_token),
                        api: ApiClient = Depends(get_api_client)):
    """
    Save edits to an application.

    The submitted values are staged on top of the server's current record.
    Nothing is sent when they match it, and the record shown afterwards is
    the one the server returns.
    """
    try:
        client = await _load_client(api, token, client_id)
    except ApiError:
        flash(request, "Failed to load application details.", "error")
        return _redirect("/dashboard/developer")

    changes = StagedChanges(client.model_dump(), CLIENT_FIELDS)
    values = _client_form_data(await request.form())
    form, errors = validate_form(ClientForm, values)
    if errors:
        return _render_client_detail(request, user, client, draft=values, field_errors=errors, status_code=400)

    changes.stage(**form.model_dump(include=set(CLIENT_FIELDS)))
    if not changes.has_changes:
        flash(request, "No changes to save.", "info")
        return _redirect(f"/dashboard/developer/clients/{client_id}")

    try:
        data = await api.put(f"/clients/{client_id}", token=token, json=changes.draft,
                             error_fallback="Failed to update application.")
    except ApiError as e:
        return _render_client_detail(request, user, client, draft=changes.draft, error=e.message, status_code=400)

    changes.commit(data if isinstance(data, dict) else None)
    flash(request, "Application updated successfully.", "success")
    return _redirect(f"/dashboard/developer/clients/{client_id}")


@router.post("/clients/{client_id}/regenerate-secret", response_class=HTMLResponse)
async def regenerate_client_secret(request: Request,
                                   client_id: str,
                                   user: UserProfile = Depends(require_developer),
                                   token: str = Depends(get_token),
                                   api: ApiClient = Depends(get_api_client)):
    """
    Issue a new client secret. The old one stops working immediately.
    """
    try:
        data = await api.post(f"/clients/{client_id}/regenerate-secret", token=token)
    except ApiError as e:
        flash(request, "An error occurred." if e.is_transport_error else "Failed to regenerate secret.", "error")
        return _redirect(f"/dashboard/developer/clients/{client_id}")

    payload = _payload(data)
    return render(request, "developer/client_secret.html", {
        "user": user,
        "client_id": client_id,
        "client_name": payload.get("client_name"),
        "secret": payload.get("client_secret"),
        "created": False,
    }, headers=_secret_headers())


@router.get("/clients/{client_id}/delete", response_class=HTMLResponse)
async def confirm_delete_client(request: Request,
                                client_id: str,
                                user: UserProfile = Depends(require_developer),
                                token: str = Depends(get_token),
                                api: ApiClient = Depends(get_api_client)):
    try:
        client = await _load_client(api, token, client_id)
    except ApiError:
        flash(request, "Failed to load application details.", "error")
        return _redirect("/dashboard/developer")

    return render(request, "developer/confirm_delete.html", {
        "user": user,
        "kind": "application",
        "name": client.client_name,
        "action": f"/dashboard/developer/clients/{client_id}/delete",
        "cancel_url": f"/dashboard/developer/clients/{client_id}",
    })


@router.post("/clients/{client_id}/delete")
async def delete_client(request: Request,
                        client_id: str,
                        user: UserProfile = Depends(require_developer),
                        token: str = Depends(get_token),
                        api: ApiClient = Depends(get_api_client)):
    try:
        await api.delete(f"/clients/{client_id}", token=token)
    except ApiError as e:
        flash(request, "An error occurred." if e.is_transport_error else "Failed to delete application.", "error")
        return _redirect(f"/dashboard/developer/clients/{client_id}")

    flash(request, "Application deleted successfully.", "success")
    return _redirect("/dashboard/developer")


# Service accounts

async def _list_services(api: ApiClient, token: str) -> List[ServiceAccount]:
    return parse_list(ServiceAccount, await api.get("/management/services/", token=token))


async def find_service(api: ApiClient, token: str, service_id: str) -> Optional[ServiceAccount]:
    """There is no single-service endpoint; look the service up in the list."""
    try:
        services = await _list_services(api, token)
    except ApiError as e:
        logger.log_error("service_lookup_failed", e.message, {"service_id": service_id})
        return None
    for service in services:
        if str(service.id) == service_id:
            return service
    return None


@router.get("/services", response_class=HTMLResponse)
async def services_page(request: Request,
                        user: UserProfile = Depends(require_developer),
                        token: str = Depends(get_token),
                        api: ApiClient = Depends(get_api_client)):
    services: List[ServiceAccount] = []
    error = None
    try:
        services = await _list_services(api, token)
    except ApiError as e:
        logger.log_error("service_list_failed", e.message, {"status_code": e.status_code})
        error = "Failed to load services"

    return render(request, "developer/services.html", {"user": user, "services": services, "error": error})


@router.get("/services/create", response_class=HTMLResponse)
async def new_service_page(request: Request, user: UserProfile = Depends(require_developer)):
    return render(request, "developer/service_form.html", {
        "user": user, "values": {}, "field_errors": {}, "error": None, "notice": None,
    })


@router.post("/services/create", response_class=HTMLResponse)
async def create_service(request: Request,
                         user: UserProfile = Depends(require_developer),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    """
    Create a service account.

    Invalid allow-list entries are dropped and the form is shown again so
    the cleaned list can be reviewed before anything is created.
    """
    form_data = await request.form()
    allowed_ips, invalid_found = InputValidator.parse_ip_list(form_data.get("allowed_ips") or "")
    values = {
        "service_name": form_data.get("service_name") or "",
        "description": form_data.get("description") or "",
        "allowed_ips": allowed_ips,
    }
    context = {"user": user, "values": values, "field_errors": {}, "error": None, "notice": None}

    form, errors = validate_form(ServiceForm, values)
    if errors or invalid_found:
        context["field_errors"] = errors
        context["notice"] = INVALID_IPS_MESSAGE if invalid_found else None
        return render(request, "developer/service_form.html", context, status_code=400)

    try:
        data = await api.post("/management/services/", token=token, json=form.model_dump(),
                              error_fallback="Failed to create service")
    except ApiError as e:
        context["error"] = e.message
        return render(request, "developer/service_form.html", context, status_code=400)

    payload = _payload(data)
    logger.log_info("Service account created", {"service_id": payload.get("id")})
    return render(request, "developer/service_key.html", {
        "user": user,
        "service_id": payload.get("id"),
        "service_name": payload.get("service_name") or form.service_name,
        "api_key": payload.get("api_key"),
        "created": True,
    }, headers=_secret_headers())


def log_filters(search: Optional[str], method: Optional[str], status: Optional[str], page: int) -> dict:
    """Query for the logs endpoint; "all" and empty filters are omitted."""
    params = {"page": max(page, 1), "limit": PORTAL_CONFIG["log_page_size"]}
    if search:
        params["search"] = search
    if method and method != "all":
        params["method"] = method
    if status and status != "all":
        params["status"] = status
    return params


@router.get("/services/{service_id}", response_class=HTMLResponse)
async def service_detail(request: Request,
                         service_id: str,
                         search: Optional[str] = None,
                         method: str = "all",
                         status: str = "all",
                         page: int = 1,
                         log: Optional[str] = None,
                         user: UserProfile = Depends(require_developer),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    """
    Service configuration plus its request logs.

    Every filter change is a new request, so the logs are always fetched
    with the current filters. ``log`` selects an entry for the detail panel.
    """
    search = InputValidator.sanitize_string(search or "", max_length=200) or None
    service = await find_service(api, token, service_id)
    if service is None:
        return render(request, "developer/not_found.html", {
            "user": user, "message": "Service not found",
        }, status_code=404)

    return await _render_service_detail(request, user, token, api, service,
                                        search=search, method=method, status=status,
                                        page=page, selected_log=log)


async def _render_service_detail(request: Request, user: UserProfile, token: str, api: ApiClient,
                                 service: ServiceAccount, search: Optional[str] = None,
                                 method: str = "all", status: str = "all", page: int = 1,
                                 selected_log: Optional[str] = None, draft: Optional[dict] = None,
                                 error: Optional[str] = None, notice: Optional[str] = None,
                                 status_code: int = 200):
    params = log_filters(search, method, status, page)
    logs_error = None
    try:
        data = await api.get(f"/management/services/{service.id}/logs", token=token, params=params)
        logs = LogPage.from_response(data, page=params["page"])
    except (ApiError, ValidationError) as e:
        logger.log_error("log_fetch_failed", str(e), {"service_id": service.id})
        logs = LogPage(page=params["page"])
        logs_error = "Failed to load logs"

    selected = next((entry for entry in logs.items if str(entry.id) == selected_log), None)
    values = dict(draft or service.model_dump(include=set(SERVICE_FIELDS)))
    values["allowed_ips_text"] = "\n".join(values.get("allowed_ips") or [])

    return render(request, "developer/service_detail.html", {
        "user": user,
        "service": service,
        "values": values,
        "logs": logs,
        "logs_error": logs_error,
        "selected_log": selected,
        "filters": {"search": search or "", "method": method, "status": status},
        "methods": LOG_METHODS,
        "error": error,
        "notice": notice,
    }, status_code=status_code)


@router.post("/services/{service_id}", response_class=HTMLResponse)
async def update_service(request: Request,
                         service_id: str,
                         user: UserProfile = Depends(require_developer),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    """Save description, allow-list and active flag as one staged draft."""
    service = await find_service(api, token, service_id)
    if service is None:
        flash(request, "Service not found", "error")
        return _redirect("/dashboard/developer/services")

    form_data = await request.form()
    allowed_ips, invalid_found = InputValidator.parse_ip_list(form_data.get("allowed_ips") or "")
    form, _ = validate_form(ServiceUpdateForm, {
        "description": form_data.get("description") or "",
        "allowed_ips": allowed_ips,
        "is_active": form_data.get("is_active") == "on",
    })

    changes = StagedChanges(service.model_dump(), SERVICE_FIELDS)
    changes.stage(**form.model_dump())
    if invalid_found:
        return await _render_service_detail(request, user, token, api, service,
                                            draft=changes.draft, notice=INVALID_IPS_MESSAGE,
                                            status_code=400)
    if not changes.has_changes:
        flash(request, "No changes to save.", "info")
        return _redirect(f"/dashboard/developer/services/{service_id}")

    try:
        data = await api.put(f"/management/services/{service_id}", token=token, json=changes.draft)
    except ApiError:
        return await _render_service_detail(request, user, token, api, service,
                                            draft=changes.draft, error="Failed to update configuration",
                                            status_code=400)

    changes.commit(data if isinstance(data, dict) else None)
    flash(request, "Configuration saved successfully", "success")
    return _redirect(f"/dashboard/developer/services/{service_id}")


@router.post("/services/{service_id}/rotate-key", response_class=HTMLResponse)
async def rotate_service_key(request: Request,
                             service_id: str,
                             user: UserProfile = Depends(require_developer),
                             token: str = Depends(get_token),
                             api: ApiClient = Depends(get_api_client)):
    """Issue a new API key. The previous key is revoked at once."""
    try:
        data = await api.post(f"/management/services/{service_id}/rotate-key", token=token, json={})
    except ApiError:
        flash(request, "Failed to rotate key", "error")
        return _redirect(f"/dashboard/developer/services/{service_id}")

    return render(request, "developer/service_key.html", {
        "user": user,
        "service_id": service_id,
        "service_name": None,
        "api_key": _payload(data).get("api_key"),
        "created": False,
    }, headers=_secret_headers())


@router.get("/services/{service_id}/delete", response_class=HTMLResponse)
async def confirm_delete_service(request: Request,
                                 service_id: str,
                                 user: UserProfile = Depends(require_developer),
                                 token: str = Depends(get_token),
                                 api: ApiClient = Depends(get_api_client)):
    service = await find_service(api, token, service_id)
    if service is None:
        flash(request, "Service not found", "error")
        return _redirect("/dashboard/developer/services")

    return render(request, "developer/confirm_delete.html", {
        "user": user,
        "kind": "service",
        "name": service.service_name,
        "action": f"/dashboard/developer/services/{service_id}/delete",
        "cancel_url": f"/dashboard/developer/services/{service_id}",
    })


@router.post("/services/{service_id}/delete")
async def delete_service(request: Request,
                         service_id: str,
                         user: UserProfile = Depends(require_developer),
                         token: str = Depends(get_token),
                         api: ApiClient = Depends(get_api_client)):
    try:
        await api.delete(f"/management/services/{service_id}", token=token)
    except ApiError:
        flash(request, "Failed to delete service", "error")
        return _redirect(f"/dashboard/developer/services/{service_id}")

    flash(request, "Service deleted", "success")
    return _redirect("/dashboard/developer/services")


@router.post("/services/{service_id}/logs/clear")
async def clear_service_logs(request: Request,
                             service_id: str,
                             user: UserProfile = Depends(require_developer),
                             token: str = Depends(get_token),
                             api: ApiClient = Depends(get_api_client)):
    try:
        await api.delete(f"/management/services/{service_id}/logs", token=token)
    except ApiError:
        flash(request, "Failed to clear logs", "error")
    else:
        flash(request, "Logs cleared successfully", "success")
    return _redirect(f"/dashboard/developer/services/{service_id}")


# Docs

@router.get("/docs", response_class=HTMLResponse)
async def developer_docs(request: Request, user: UserProfile = Depends(require_developer)):
    """Integration guide for the authorize and token endpoints."""
    base_url = str(request.base_url).rstrip("/")
    return render(request, "developer/docs.html", {
        "user": user,
        "authorize_endpoint": f"{base_url}/authorize",
        "default_scope": PORTAL_CONFIG["default_scope"],
    })
