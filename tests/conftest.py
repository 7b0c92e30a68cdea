"""Shared fixtures for the exporter test suite.

``FakeSurehubApi`` stands in for the SureHub cloud API behind an
``httpx.MockTransport`` so client, session and poller tests exercise the
real request/response code paths without network access.
"""

from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
import pytest
from prometheus_client import CollectorRegistry

from surehub_exporter.client import SurehubClient
from surehub_exporter.metrics import ExporterMetrics
from surehub_exporter.registry import MetricRegistry
from surehub_exporter.session import SessionManager

API_URL = "https://surehub.test"


def make_token(claims: dict[str, Any] | None = None) -> str:
    """Build an HS256 JWT; the exporter never verifies the signature."""
    payload = {"sub": "12345", "exp": int(time.time()) + 3600}
    if claims is not None:
        payload = claims
    return jwt.encode(payload, "signing-key-the-exporter-never-checks", algorithm="HS256")


@dataclass
class FakeSurehubApi:
    """In-memory SureHub API with scripted responses."""

    token: str = field(default_factory=make_token)
    devices: list[dict[str, Any]] = field(default_factory=list)
    timeline_pages: deque[list[dict[str, Any]]] = field(default_factory=deque)
    # path -> queue of (status_code, body) overrides consumed one per request
    failures: dict[str, deque[tuple[int, str]]] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def fail_next(self, path: str, status_code: int, body: str = "") -> None:
        self.failures.setdefault(path, deque()).append((status_code, body))

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        pending = self.failures.get(path)
        if pending:
            status_code, body = pending.popleft()
            return httpx.Response(status_code, text=body)

        if path == "/api/auth/login" and request.method == "POST":
            return httpx.Response(200, json={"data": {"token": self.token}})
        if path == "/api/device":
            return httpx.Response(200, json={"data": self.devices})
        if path == "/api/timeline":
            page = self.timeline_pages.popleft() if self.timeline_pages else []
            return httpx.Response(200, json={"data": page})
        return httpx.Response(404, text=json.dumps({"error": "not found"}))


@pytest.fixture
def fake_api() -> FakeSurehubApi:
    return FakeSurehubApi()


@pytest.fixture
async def surehub_client(fake_api: FakeSurehubApi):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler))
    client = SurehubClient(API_URL, http_client=http_client)
    yield client
    await http_client.aclose()


@pytest.fixture
def session_manager(surehub_client: SurehubClient) -> SessionManager:
    return SessionManager(surehub_client, email="owner@example.com", password="hunter2")


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metric_registry(collector_registry: CollectorRegistry) -> MetricRegistry:
    return MetricRegistry(collector_registry)


@pytest.fixture
def exporter_metrics(collector_registry: CollectorRegistry) -> ExporterMetrics:
    return ExporterMetrics(collector_registry)


@pytest.fixture
def token_factory():
    return make_token
