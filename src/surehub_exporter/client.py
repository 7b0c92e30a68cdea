"""Thin async client for the SureHub cloud API.

Covers the three endpoints the exporter needs: login, device listing and
the activity timeline. Transport problems, unexpected status codes and
unparseable bodies are raised as distinct ``SurehubError`` subclasses so
callers can map them onto their own failure taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from surehub_exporter.models import (
    Device,
    DeviceListResponse,
    LoginResponse,
    TimelineItem,
    TimelineResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://app.api.surehub.io"
DEFAULT_REQUEST_TIMEOUT_S = 30.0

LOGIN_PATH = "/api/auth/login"
DEVICE_PATH = "/api/device"
TIMELINE_PATH = "/api/timeline"

_MAX_ERROR_BODY_CHARS = 500

_ResponseT = TypeVar("_ResponseT", bound=BaseModel)


class SurehubError(RuntimeError):
    """Base SureHub API error."""


class SurehubTransportError(SurehubError):
    """Raised when a request could not be completed (network, timeout)."""


class SurehubStatusError(SurehubError):
    """Raised when the API answers with a non-200 status code."""

    def __init__(self, *, operation: str, status_code: int, body: str) -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"unexpected status code from {operation}: {status_code} {body}")


class SurehubResponseError(SurehubError):
    """Raised when a 200 response body is not the expected JSON document."""


def _trimmed_body(response: httpx.Response) -> str:
    text = response.text.strip()
    if len(text) > _MAX_ERROR_BODY_CHARS:
        return text[:_MAX_ERROR_BODY_CHARS] + "..."
    return text


class SurehubClient:
    """SureHub API client bound to one base URL."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client if http_client is not None else httpx.AsyncClient(timeout=timeout_s)
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def login(self, *, client_uid: str, email: str, password: str) -> LoginResponse:
        return await self._request(
            "POST",
            LOGIN_PATH,
            operation="login",
            response_model=LoginResponse,
            json={
                "client_uid": client_uid,
                "email_address": email,
                "password": password,
            },
        )

    async def list_devices(self, *, authorization: str) -> list[Device]:
        response = await self._request(
            "GET",
            DEVICE_PATH,
            operation="list devices",
            response_model=DeviceListResponse,
            headers={"Authorization": authorization},
        )
        return response.data

    async def list_timeline(
        self,
        *,
        authorization: str,
        since_id: int | None = None,
    ) -> list[TimelineItem]:
        """Return timeline items newest-first, optionally only those after *since_id*."""
        params: dict[str, Any] = {}
        if since_id is not None:
            params["since_id"] = since_id
        response = await self._request(
            "GET",
            TIMELINE_PATH,
            operation="list timeline",
            response_model=TimelineResponse,
            headers={"Authorization": authorization},
            params=params,
        )
        return response.data

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        response_model: type[_ResponseT],
        **kwargs: Any,
    ) -> _ResponseT:
        url = f"{self._base_url}{path}"
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SurehubTransportError(f"failed to make {operation} request: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise SurehubStatusError(
                operation=operation,
                status_code=response.status_code,
                body=_trimmed_body(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise SurehubResponseError(f"{operation} returned invalid JSON") from exc

        try:
            return response_model.model_validate(payload)
        except ValidationError as exc:
            logger.debug("Unexpected %s response body: %s", operation, _trimmed_body(response))
            raise SurehubResponseError(f"{operation} returned an unexpected payload: {exc}") from exc
