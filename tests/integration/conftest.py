"""Pytest fixtures for integration tests.

The application is served in-process through httpx's ASGI transport on top
of the in-memory store, so the HTTP surface is exercised end to end without
a running database. Fixtures create an administrator, a registered voter
and a small election through the API itself.
"""

from typing import AsyncGenerator, Dict

import httpx
import pytest
from fastapi import FastAPI

from election_api.main import Services, create_app, limiter

ADMIN_COMPANY_ID = "ADMIN-001"
ADMIN_PASSWORD = "admin-password"
VOTER_COMPANY_ID = "EMP-1001"
VOTER_PASSWORD = "voter-password"


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(store, election_state, test_settings) -> FastAPI:
    """Application bound to the test store; rate limit counters start empty."""
    limiter.reset()
    return create_app(store=store, election_state=election_state, config=test_settings)


@pytest.fixture
def app_services(app) -> Services:
    return app.state.services


@pytest.fixture
async def api_client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for the API."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as client:
        yield client


@pytest.fixture
async def admin_headers(api_client, app_services) -> Dict[str, str]:
    """Bootstrap an administrator and log in through the API."""
    await app_services.voters.ensure_admin(ADMIN_COMPANY_ID, ADMIN_PASSWORD)
    response = await api_client.post(
        "/api/v1/auth/login",
        json={"company_id": ADMIN_COMPANY_ID, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200, response.text
    return auth_headers(response.json()["token"])


@pytest.fixture
async def voter_headers(api_client, admin_headers) -> Dict[str, str]:
    """Open registration, register one voter, close registration again."""
    response = await api_client.post("/api/v1/admin/enable-registration", headers=admin_headers)
    assert response.status_code == 200, response.text

    response = await api_client.post("/api/v1/auth/register", json={
        "first_name": "Ada",
        "last_name": "Lovelace",
        "company_id": VOTER_COMPANY_ID,
        "password": VOTER_PASSWORD,
    })
    assert response.status_code == 201, response.text

    await api_client.post("/api/v1/admin/disable-registration", headers=admin_headers)
    return auth_headers(response.json()["token"])


@pytest.fixture
async def election(api_client, admin_headers) -> Dict[str, str]:
    """Create positions and candidates through the API.

    - President: exactly one selection (Alice, Bob)
    - Board: one or two selections (Carol, Dave, Erin)
    """
    ids: Dict[str, str] = {}

    for key, payload in (
        ("president", {"name": "President", "order": 1, "min_winners": 1,
                       "min_selectable": 1, "max_selectable": 1}),
        ("board", {"name": "Board", "order": 2, "min_winners": 2,
                   "min_selectable": 1, "max_selectable": 2}),
    ):
        response = await api_client.post("/api/v1/positions", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        ids[key] = response.json()["id"]

    for key, first, last, position in (
        ("alice", "alice", "smith", "president"),
        ("bob", "bob", "jones", "president"),
        ("carol", "carol", "white", "board"),
        ("dave", "dave", "brown", "board"),
        ("erin", "erin", "black", "board"),
    ):
        response = await api_client.post("/api/v1/candidates", json={
            "first_name": first,
            "last_name": last,
            "position_id": ids[position],
        }, headers=admin_headers)
        assert response.status_code == 201, response.text
        ids[key] = response.json()["id"]

    return ids


@pytest.fixture
async def open_voting(api_client, admin_headers) -> None:
    response = await api_client.post("/api/v1/admin/open-voting", headers=admin_headers)
    assert response.status_code == 200, response.text
