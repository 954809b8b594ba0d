"""
OAuth Account Portal

This FastAPI application is the web front end of an OAuth/OIDC authorization
API. It renders the sign-in, registration, email verification and password
reset forms, the OAuth authorize screen, the user dashboard and the developer
console. Every decision (token issuance, password checks, code issuance,
secret rotation, consent storage) is made by the remote API; the portal only
calls it and renders the result.

Key Features:
- Bearer token kept in the signed session and an ``accessToken`` cookie
- Silent re-authorization for signed-in users on ``/authorize``
- Six-digit OTP entry with a ten-minute resend countdown
- OAuth client and service account management with one-time secrets
- Request log viewer with search, filters and pagination

Security Features:
- Post-login redirects restricted to paths on this site
- One-time secrets sent with no-store caching headers
- Security headers on every response
"""

from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from ..shared.logging_utils import PortalLogger
from ..shared.security import SecurityHeaders
from . import auth_routes, dashboard_routes, developer_routes
from .config import PORTAL_CONFIG, api_base_url
from .rendering import render
from .session import LoginRequired, PermissionDenied, SessionManager

logger = PortalLogger("PORTAL")

app = FastAPI(
    title="OAuth Account Portal",
    description="Sign-in, consent, dashboard and developer console for an OAuth authorization API",
    version="1.0.0",
)

# Signed session cookie: holds the token copy, flashes and OAuth state
app.add_middleware(
    SessionMiddleware,
    secret_key=PORTAL_CONFIG["session_secret"],
    session_cookie=PORTAL_CONFIG["session_cookie_name"],
    max_age=PORTAL_CONFIG["token_cookie_max_age"],
    same_site="lax",
    https_only=PORTAL_CONFIG["cookie_secure"],
)

static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

app.include_router(auth_routes.router)
app.include_router(dashboard_routes.router)
app.include_router(developer_routes.router)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Add security headers to all HTTP responses.

    Headers already set by a handler (no-store on secret pages) are kept.
    """
    if PORTAL_CONFIG["log_requests"] and not request.url.path.startswith("/static"):
        logger.log_http_request(request.method, request.url.path)

    response = await call_next(request)

    for header_name, header_value in SecurityHeaders.get_page_security_headers().items():
        response.headers.setdefault(header_name, header_value)

    return response


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    """
    Send the visitor to the sign-in page.

    When the token was rejected, every copy of it is cleared first.
    """
    response = RedirectResponse(url=exc.login_url(), status_code=303)
    if exc.error:
        SessionManager(request).clear(response)
    logger.log_portal_message(
        "PORTAL", "BROWSER",
        "REDIRECT",
        {"reason": exc.error or "no_token", "location": exc.login_url()}
    )
    return response


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    logger.log_error("permission_denied", "Developer access required", {"path": request.url.path})
    return render(request, "forbidden.html", {}, status_code=403)


@app.get("/")
async def index():
    return RedirectResponse(url="/dashboard", status_code=303)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and startup scripts.

    Returns:
        JSONResponse: Portal status and the API it talks to
    """
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "oauth-account-portal",
            "version": "1.0.0",
            "api_url": api_base_url(PORTAL_CONFIG),
        }
    )


if __name__ == "__main__":
    logger.log_startup(PORTAL_CONFIG["port"], {
        "API": api_base_url(PORTAL_CONFIG),
        "Session cookie": PORTAL_CONFIG["session_cookie_name"],
    })
    uvicorn.run(app, host=PORTAL_CONFIG["host"], port=PORTAL_CONFIG["port"])
