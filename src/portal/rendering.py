"""
Template rendering shared by all portal routers.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.templating import Jinja2Templates

from .config import PORTAL_CONFIG, api_base_url
from .session import pop_flashes

templates_dir = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=str(templates_dir))


def render(request: Request,
           name: str,
           context: Optional[Dict[str, Any]] = None,
           status_code: int = 200,
           headers: Optional[Dict[str, str]] = None):
    """
    Render a page with the queued flash messages.

    Flashes are consumed by the render, so each one is shown once.
    """
    page_context = {
        "flashes": pop_flashes(request),
        "api_url": api_base_url(PORTAL_CONFIG),
    }
    page_context.update(context or {})
    return templates.TemplateResponse(
        request, name, page_context, status_code=status_code, headers=headers
    )
