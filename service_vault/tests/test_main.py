"""
Tests for Vault service.
"""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_vault.app.domain import VaultOperation
from service_vault.app.main import create_app, VaultService
from shared.config import ServiceConfig
from shared.test_helpers import ManualClock, TestDataFactory, auth_headers


@pytest.fixture
def config():
    """Small quota so limits are easy to hit."""
    return ServiceConfig("vault", 8080, rate_limit_requests=5, rate_limit_window_seconds=60)


@pytest.fixture
def client(config):
    """Create test client."""
    app = create_app(config)
    return TestClient(app)


@pytest.fixture
def alice():
    return TestDataFactory.create_test_callers()[0]


@pytest.fixture
def bob():
    return TestDataFactory.create_test_callers()[1]


def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "vault"
    assert data["version"] == "1.0.0"


def test_health_check(client, alice):
    """Health reports limiter and store occupancy."""
    client.post("/vault", json=TestDataFactory.create_payload(), headers=alice.headers)

    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "vault"
    assert data["status"] == "ok"
    assert data["dependencies"]["rate_limiter"]["tracked_identities"] == 1
    assert data["dependencies"]["vault_store"]["items"] == 1


def test_metrics_endpoint(client, alice):
    """Prometheus exposition includes vault metrics."""
    client.get("/vault/items", headers=alice.headers)

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "rate_limit_decisions_total" in response.text
    assert "rate_limit_tracked_identities 1.0" in response.text
    assert 'endpoint="/vault/items"' in response.text


def test_create_item(client, alice):
    """POST /vault returns 201 with the created item and quota headers."""
    response = client.post("/vault", json=TestDataFactory.create_payload("db-password"), headers=alice.headers)

    assert response.status_code == 201
    data = response.json()
    assert data["payload"] == "db-password"
    assert data["id"]
    assert response.headers["x-ratelimit-remaining"] == "4"
    assert response.headers["x-ratelimit-retry-after"] == "0"
    assert response.headers["x-ratelimit-limit"] == "5"
    assert "x-request-id" in response.headers


def test_list_items_scoped_to_caller(client, alice, bob):
    """GET /vault/items only shows the caller's own items."""
    created = client.post("/vault", json=TestDataFactory.create_payload("a"), headers=alice.headers).json()

    own = client.get("/vault/items", headers=alice.headers)
    other = client.get("/vault/items", headers=bob.headers)

    assert own.status_code == 200
    assert own.json()["items"] == [created]
    assert other.status_code == 200
    assert other.json() == {"items": [], "count": 0}
    assert other.headers["x-ratelimit-remaining"] == "4"


def test_update_item(client, alice):
    """PUT /vault/items/{id} replaces the payload."""
    created = client.post("/vault", json=TestDataFactory.create_payload("v1"), headers=alice.headers).json()

    response = client.put(
        f"/vault/items/{created['id']}",
        json=TestDataFactory.create_payload("v2"),
        headers=alice.headers,
    )

    assert response.status_code == 200
    assert response.json()["payload"] == "v2"
    assert response.json()["created_at"] == created["created_at"]
    assert response.headers["x-ratelimit-remaining"] == "3"


def test_update_foreign_item_is_404(client, alice, bob):
    """Another caller's item id behaves like an unknown id."""
    created = client.post("/vault", json=TestDataFactory.create_payload("mine"), headers=alice.headers).json()

    foreign = client.put(f"/vault/items/{created['id']}", json=TestDataFactory.create_payload("x"), headers=bob.headers)
    unknown = client.put("/vault/items/unknown", json=TestDataFactory.create_payload("x"), headers=bob.headers)

    assert foreign.status_code == unknown.status_code == 404
    assert foreign.json()["message"] == unknown.json()["message"]
    assert foreign.headers["x-ratelimit-remaining"] == "4"
    assert unknown.headers["x-ratelimit-remaining"] == "3"


@pytest.mark.parametrize("method,path", [
    ("post", "/vault"),
    ("get", "/vault/items"),
    ("put", "/vault/items/some-id"),
])
@pytest.mark.parametrize("headers", [{}, {"Authorization": ""}, {"Authorization": "Bearer   "}])
def test_unauthorized_on_every_endpoint(client, method, path, headers):
    """Missing or blank credentials are 401 with headers on every endpoint."""
    kwargs = {"headers": headers}
    if method != "get":
        kwargs["json"] = TestDataFactory.create_payload()

    response = getattr(client, method)(path, **kwargs)

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"
    assert response.headers["x-ratelimit-remaining"] == "5"
    assert response.headers["x-ratelimit-retry-after"] == "0"


def test_unauthorized_leaves_quota_untouched(client, alice):
    """Blank-credential requests never spend the caller's quota."""
    for _ in range(10):
        client.get("/vault/items", headers={"Authorization": "Bearer"})

    response = client.get("/vault/items", headers=alice.headers)
    assert response.headers["x-ratelimit-remaining"] == "4"


def test_rate_limit_exceeded(client, alice, bob):
    """The sixth request is 429 with remaining=0 and a positive retry-after."""
    remaining = []
    for _ in range(5):
        response = client.get("/vault/items", headers=alice.headers)
        remaining.append(response.headers["x-ratelimit-remaining"])
    assert remaining == ["4", "3", "2", "1", "0"]

    response = client.post("/vault", json=TestDataFactory.create_payload(), headers=alice.headers)
    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMITED"
    assert response.headers["x-ratelimit-remaining"] == "0"
    assert 0 < int(response.headers["x-ratelimit-retry-after"]) <= 60
    assert response.headers["retry-after"] == response.headers["x-ratelimit-retry-after"]

    # Other callers are unaffected
    assert client.get("/vault/items", headers=bob.headers).status_code == 200


def test_invalid_body_is_422_with_headers(client, alice):
    """Malformed bodies are rejected after admission."""
    response = client.post(
        "/vault",
        content=b"{not json",
        headers={**alice.headers, "Content-Type": "application/json"},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.headers["x-ratelimit-remaining"] == "4"


def test_binary_payload_round_trip(client, alice):
    """Base64 payloads come back exactly as written."""
    body = TestDataFactory.create_binary_payload(b"\x89PNG\r\n\x1a\n")

    created = client.post("/vault", json=body, headers=alice.headers).json()
    listed = client.get("/vault/items", headers=alice.headers).json()

    assert created["encoding"] == "base64"
    assert listed["items"][0]["payload"] == body["payload"]


def test_scheme_is_optional(client):
    """A bare token without scheme still identifies the caller."""
    created = client.post("/vault", json=TestDataFactory.create_payload(), headers={"Authorization": "raw-token"})
    listed = client.get("/vault/items", headers=auth_headers("raw-token"))

    assert created.status_code == 201
    assert listed.json()["count"] == 1


def test_services_are_isolated():
    """Two service instances share no vault or limiter state."""
    config = ServiceConfig("vault", 8080, rate_limit_requests=1)
    first = TestClient(create_app(config))
    second = TestClient(create_app(config))
    headers = auth_headers("shared-token")

    assert first.post("/vault", json=TestDataFactory.create_payload(), headers=headers).status_code == 201
    assert first.get("/vault/items", headers=headers).status_code == 429
    assert second.get("/vault/items", headers=headers).json() == {"items": [], "count": 0}


def test_lifespan_starts_and_stops_sweeper(config):
    """The expired-window sweeper runs only while the app is up."""
    service = VaultService(config)

    with TestClient(service.app) as client:
        assert service._sweeper is not None
        assert client.get("/").status_code == 200

    assert service._sweeper is None


def test_config_from_environment(monkeypatch):
    """VAULT_* variables configure the service."""
    monkeypatch.setenv("VAULT_RATE_LIMIT_REQUESTS", "2")
    monkeypatch.setenv("VAULT_PORT", "9100")

    service = VaultService()

    assert service.config.port == 9100
    assert service.rate_limiter.limit == 2


INVALID_SETTINGS = [
    ("rate_limit_requests", 0),
    ("rate_limit_window_seconds", 0),
    ("rate_limit_window_seconds", -1),
    ("rate_limit_max_identities", 0),
    ("rate_limit_shards", 0),
    ("vault_shards", 0),
    ("rate_limit_sweep_interval_seconds", 0),
]


@pytest.mark.parametrize("field,value", INVALID_SETTINGS)
def test_invalid_config_rejected(field, value):
    """Out-of-range settings fail when the config is built."""
    with pytest.raises(ValidationError):
        ServiceConfig("vault", 8080, **{field: value})


@pytest.mark.parametrize("field,value", INVALID_SETTINGS)
def test_invalid_config_from_environment_rejected(monkeypatch, field, value):
    """Out-of-range VAULT_* variables stop the service at startup."""
    monkeypatch.setenv(f"VAULT_{field.upper()}", str(value))

    with pytest.raises(ValidationError):
        VaultService()


def test_wrong_method_on_vault_path_reports_quota(client, alice):
    """405 and 404 on vault paths carry quota headers without spending quota."""
    client.get("/vault/items", headers=alice.headers)

    wrong_method = client.get("/vault", headers=alice.headers)
    assert wrong_method.status_code == 405
    assert wrong_method.headers["x-ratelimit-limit"] == "5"
    assert wrong_method.headers["x-ratelimit-remaining"] == "4"
    assert wrong_method.headers["x-ratelimit-retry-after"] == "0"

    delete = client.delete("/vault/items/some-id", headers=alice.headers)
    assert delete.status_code == 405
    assert delete.headers["x-ratelimit-remaining"] == "4"

    unknown = client.get("/vault/nowhere", headers=alice.headers)
    assert unknown.status_code == 404
    assert unknown.headers["x-ratelimit-remaining"] == "4"

    assert client.get("/vault/items", headers=alice.headers).headers["x-ratelimit-remaining"] == "3"


def test_wrong_method_when_quota_exhausted(client, alice):
    """An exhausted caller sees when the window resets."""
    for _ in range(5):
        client.get("/vault/items", headers=alice.headers)

    response = client.get("/vault", headers=alice.headers)

    assert response.status_code == 405
    assert response.headers["x-ratelimit-remaining"] == "0"
    assert 0 < int(response.headers["x-ratelimit-retry-after"]) <= 60


def test_wrong_method_without_credentials(client):
    """Anonymous router errors report a full quota."""
    response = client.get("/vault")

    assert response.status_code == 405
    assert response.headers["x-ratelimit-remaining"] == "5"
    assert response.headers["x-ratelimit-retry-after"] == "0"


def test_unknown_path_outside_vault_has_no_quota_headers(client, alice):
    """Only vault paths are rate limited."""
    response = client.get("/missing", headers=alice.headers)

    assert response.status_code == 404
    assert "x-ratelimit-remaining" not in response.headers


def test_sweep_runs_off_event_loop():
    """The periodic sweep executes on a worker thread, not the loop thread."""
    service = VaultService(ServiceConfig("vault", 8080, rate_limit_sweep_interval_seconds=0.05))
    swept = threading.Event()
    calls = []

    def sweep_expired():
        try:
            asyncio.get_running_loop()
            calls.append("loop")
        except RuntimeError:
            calls.append("worker")
        swept.set()
        return 0

    service.rate_limiter.sweep_expired = sweep_expired

    with TestClient(service.app):
        assert swept.wait(timeout=5)

    assert calls
    assert set(calls) == {"worker"}


@pytest.mark.asyncio
async def test_sweep_counts_expired_windows_separately(config):
    """Swept windows are not reported as capacity evictions."""
    service = VaultService(config)
    clock = ManualClock()
    service.rate_limiter.clock = clock

    service.dispatcher.dispatch(VaultOperation.LIST, "Bearer alice")
    service.dispatcher.dispatch(VaultOperation.LIST, "Bearer bob")
    clock.advance(61)

    removed = await service._sweep_once()

    assert removed == 2
    assert service.rate_limiter.tracked_identities() == 0
    assert service.metrics.get_sample("rate_limit_swept_total") == 2
    assert service.metrics.get_sample("rate_limit_evictions_total") == 0
