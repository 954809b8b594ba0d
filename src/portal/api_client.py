"""
HTTP client for the remote authorization API.

Every page handler talks to the backend through ``ApiClient``. It adds the
bearer token, decodes JSON, turns non-2xx responses into ``ApiError`` and
logs each call. Nothing is retried.
"""

import time
from typing import Any, AsyncIterator, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..shared.logging_utils import PortalLogger
from .config import PORTAL_CONFIG, api_base_url

logger = PortalLogger("PORTAL")

GENERIC_ERROR = "Something went wrong. Please try again."
INVALID_RESPONSE = "Unexpected response from the server."

ModelT = TypeVar("ModelT", bound=BaseModel)


class ApiError(Exception):
    """
    A failed call to the authorization API.

    ``status_code`` is 0 when no response was received at all.
    """

    def __init__(self, status_code: int, message: str, payload: Any = None):
        self.status_code = status_code
        self.message = message
        self.payload = payload
        super().__init__(message)

    @property
    def is_transport_error(self) -> bool:
        return self.status_code == 0


def extract_error_message(payload: Any, fallback: str) -> str:
    """
    Pick the most useful human-readable message out of an error body.

    Looks at ``detail`` (string, ``{description, error}`` object, or a
    validation error list), then ``error``, ``description`` and ``message``.

    Args:
        payload: Decoded JSON error body
        fallback: Message to use when nothing suitable is present

    Returns:
        str: Message to show the user
    """
    if not isinstance(payload, dict):
        return fallback

    detail = payload.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, dict):
        for key in ("description", "error_description", "error", "message"):
            if isinstance(detail.get(key), str) and detail[key]:
                return detail[key]
    if isinstance(detail, list) and detail:
        first = detail[0]
        if isinstance(first, dict) and isinstance(first.get("msg"), str):
            return first["msg"]

    for key in ("error_description", "error", "description", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value

    return fallback


def parse_model(model: Type[ModelT], data: Any) -> ModelT:
    """
    Validate a response body against ``model``.

    A malformed body is reported as an ``ApiError`` (502) so callers handle
    it on the same path as a failed call.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.log_error("invalid_api_response", str(e), {"model": model.__name__})
        raise ApiError(502, INVALID_RESPONSE, data) from e


def parse_list(model: Type[ModelT], data: Any) -> List[ModelT]:
    """Validate a JSON array of records; ``None`` counts as empty."""
    if data is None:
        return []
    if not isinstance(data, list):
        logger.log_error("invalid_api_response", "expected a list", {"model": model.__name__})
        raise ApiError(502, INVALID_RESPONSE, data)
    return [parse_model(model, item) for item in data]


class ApiClient:
    """
    Thin JSON-over-HTTP wrapper around ``httpx.AsyncClient``.

    One instance lives for exactly one page request (see ``get_api_client``),
    so closing the request closes any call still in flight.
    """

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def request(self,
                      method: str,
                      endpoint: str,
                      token: Optional[str] = None,
                      json: Any = None,
                      data: Optional[Dict[str, Any]] = None,
                      params: Optional[Dict[str, Any]] = None,
                      error_fallback: Optional[str] = None) -> Any:
        """
        Call the API and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: Path below the versioned prefix, e.g. ``/users/me``
            token: Bearer token to send, if any
            json: JSON body
            data: Form-encoded body
            params: Query parameters; ``None`` values are dropped
            error_fallback: Message used when the error body has none

        Returns:
            Decoded JSON, or ``None`` for 204 and empty bodies

        Raises:
            ApiError: On transport failure or non-2xx status
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if params:
            params = {key: value for key, value in params.items() if value is not None}

        started = time.perf_counter()
        try:
            response = await self.http.request(
                method,
                endpoint,
                headers=headers,
                json=json,
                data=data,
                params=params or None,
            )
        except httpx.HTTPError as e:
            logger.log_api_call(method, endpoint, 0, (time.perf_counter() - started) * 1000,
                                {"error": type(e).__name__})
            raise ApiError(0, GENERIC_ERROR) from e

        logger.log_api_call(method, endpoint, response.status_code,
                            (time.perf_counter() - started) * 1000)

        body = self._decode(response)

        if not response.is_success:
            fallback = error_fallback or f"Error {response.status_code}: {response.reason_phrase}"
            raise ApiError(response.status_code, extract_error_message(body, fallback), body)

        return body

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def get(self, endpoint: str, **kwargs) -> Any:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> Any:
        return await self.request("POST", endpoint, **kwargs)

    async def put(self, endpoint: str, **kwargs) -> Any:
        return await self.request("PUT", endpoint, **kwargs)

    async def patch(self, endpoint: str, **kwargs) -> Any:
        return await self.request("PATCH", endpoint, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> Any:
        return await self.request("DELETE", endpoint, **kwargs)


def build_http_client(config: dict = PORTAL_CONFIG,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Create the underlying httpx client for one request."""
    return httpx.AsyncClient(
        base_url=api_base_url(config),
        timeout=config["api_timeout"],
        transport=transport,
    )


async def get_api_client() -> AsyncIterator[ApiClient]:
    """
    FastAPI dependency yielding an ``ApiClient`` scoped to the request.
    """
    async with build_http_client() as http:
        yield ApiClient(http)
