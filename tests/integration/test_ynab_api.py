"""Integration tests for the YNAB configuration and sync endpoints."""

import asyncio

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from wallet.models.category import Category

PAYLOAD = {
    "data": {
        "category_groups": [
            {
                "id": "g1",
                "name": "Bills",
                "hidden": False,
                "deleted": False,
                "categories": [{"id": "c1", "name": "Rent", "hidden": False, "deleted": False}],
            }
        ]
    }
}

CONFIG = {"api_token": "my-token", "budget_id": "B", "account_id": "A"}


@pytest.fixture
def ynab_requests(ynab_handler):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=PAYLOAD)

    ynab_handler["handler"] = handler
    return requests


async def _local_categories(database, user_id):
    async with database.session() as session:
        result = await session.execute(select(Category).where(Category.user_id == user_id))
        return list(result.scalars().all())


class TestYnabConfig:
    @pytest.mark.asyncio
    async def test_no_config_yet(self, client: AsyncClient, make_user, auth_headers):
        await make_user("u1")

        response = await client.get("/api/v1/ynab/config", headers=auth_headers("u1"))

        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_update_then_read_masked(
        self, client: AsyncClient, app, make_user, auth_headers, ynab_requests
    ):
        await make_user("u1")

        response = await client.put(
            "/api/v1/ynab/config", json=CONFIG, headers=auth_headers("u1")
        )
        assert response.status_code == 200

        # Let the background initial sync finish
        await asyncio.gather(*app.state.config_service._background)

        config = await client.get("/api/v1/ynab/config", headers=auth_headers("u1"))
        data = config.json()
        assert data["api_token"] == "********"
        assert data["budget_id"] == "B"
        assert data["has_credentials"] is True
        assert "my-token" not in config.text
        assert len(ynab_requests) == 1
        assert ynab_requests[0].headers["Authorization"] == "Bearer my-token"

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, client: AsyncClient, make_user, auth_headers):
        await make_user("u1")

        response = await client.put(
            "/api/v1/ynab/config", json={"api_token": "t"}, headers=auth_headers("u1")
        )

        assert response.status_code == 400


class TestYnabSync:
    @pytest.mark.asyncio
    async def test_sync_now(
        self, client: AsyncClient, app, database, make_user, auth_headers, ynab_requests
    ):
        await make_user("u1")
        await client.put("/api/v1/ynab/config", json=CONFIG, headers=auth_headers("u1"))
        await asyncio.gather(*app.state.config_service._background)

        response = await client.post("/api/v1/ynab/sync", headers=auth_headers("u1"))

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert [c.name for c in await _local_categories(database, "u1")] == ["Rent"]

    @pytest.mark.asyncio
    async def test_sync_with_explicit_budget(
        self, client: AsyncClient, app, make_user, auth_headers, ynab_requests
    ):
        await make_user("u1")
        await client.put("/api/v1/ynab/config", json=CONFIG, headers=auth_headers("u1"))
        await asyncio.gather(*app.state.config_service._background)

        response = await client.post(
            "/api/v1/ynab/sync", json={"budget_id": "OTHER"}, headers=auth_headers("u1")
        )

        assert response.status_code == 200
        assert ynab_requests[-1].url.path.endswith("/budgets/OTHER/categories")

    @pytest.mark.asyncio
    async def test_sync_without_config(self, client: AsyncClient, make_user, auth_headers):
        await make_user("u1")

        response = await client.post("/api/v1/ynab/sync", headers=auth_headers("u1"))

        assert response.status_code == 500
        assert response.json()["error_code"] == "CFG_001"

    @pytest.mark.asyncio
    async def test_rejected_token_maps_to_401(
        self, client: AsyncClient, app, make_user, auth_headers, ynab_handler
    ):
        await make_user("u1")
        ynab_handler["handler"] = lambda request: httpx.Response(401)
        await client.put("/api/v1/ynab/config", json=CONFIG, headers=auth_headers("u1"))
        await asyncio.gather(*app.state.config_service._background)

        # The failed initial sync cleared the stored credentials
        config = await client.get("/api/v1/ynab/config", headers=auth_headers("u1"))
        assert config.json()["has_credentials"] is False

        response = await client.post(
            "/api/v1/ynab/sync", json={"budget_id": "B"}, headers=auth_headers("u1")
        )
        assert response.status_code == 401
        assert response.json()["error_code"] == "YNAB_001"
