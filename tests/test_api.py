"""End-to-end tests through the HTTP API."""
import uuid

import httpx
import pytest

from stocktake.core.security import create_access_token
from stocktake.database import get_db
from stocktake.main import app

from tests.conftest import LOCATION_A


@pytest.fixture
async def client(session_factory, stock):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


def _auth(role: str, user_id=None) -> dict:
    token = create_access_token(str(user_id or uuid.uuid4()), role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def counter_headers():
    return _auth("counter")


@pytest.fixture
def supervisor_headers():
    return _auth("Supervisor")


async def _create(client, headers, code="API-001"):
    response = await client.post(
        "/api/v1/inventories",
        json={"code": code, "location_ids": [str(LOCATION_A)]},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:

    async def test_missing_token(self, client):
        response = await client.get("/api/v1/inventories")
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client):
        response = await client.get("/api/v1/inventories", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401


class TestCountingFlow:

    async def test_full_campaign(self, client, counter_headers, supervisor_headers):
        inventory = await _create(client, counter_headers)
        inventory_id = inventory["id"]
        assert inventory["status"] == "planning"

        response = await client.post(f"/api/v1/inventories/{inventory_id}/open", headers=counter_headers)
        assert response.json()["status"] == "open"

        response = await client.get(f"/api/v1/inventories/{inventory_id}/items", headers=counter_headers)
        items = {i["product_code"]: i for i in response.json()}
        assert set(items) == {"P-001", "P-002"}

        for stage, quantities in ((1, {"P-001": "9", "P-002": "5"}), (2, {"P-001": "9", "P-002": "5"})):
            response = await client.post(
                f"/api/v1/inventories/{inventory_id}/start-counting", headers=counter_headers
            )
            assert response.status_code == 200, response.text
            for code, quantity in quantities.items():
                response = await client.post(
                    f"/api/v1/inventory-items/{items[code]['id']}/counts",
                    json={"stage": stage, "quantity": quantity},
                    headers=counter_headers,
                )
                assert response.status_code == 201, response.text
            response = await client.post(
                f"/api/v1/inventories/{inventory_id}/finish-counting", headers=counter_headers
            )
            assert response.status_code == 200, response.text

        body = response.json()
        assert body["transitions"] == ["count2_closed", "audit_mode"]
        assert body["status"] == "audit_mode"

        response = await client.get(f"/api/v1/inventories/{inventory_id}/can-close", headers=counter_headers)
        assert response.json()["allowed"] is True

        response = await client.post(f"/api/v1/inventories/{inventory_id}/close", headers=counter_headers)
        assert response.status_code == 403
        assert response.json()["error_code"] == "AUDIT_ACCESS_REQUIRED"

        response = await client.post(f"/api/v1/inventories/{inventory_id}/close", headers=supervisor_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "closed"

        response = await client.get(f"/api/v1/inventories/{inventory_id}/stats", headers=counter_headers)
        stats = response.json()
        assert stats["settled_items"] == 2
        assert stats["divergence"]["divergent_items"] == 1

        response = await client.get(
            f"/api/v1/inventory-items/{items['P-001']['id']}/counts", headers=counter_headers
        )
        assert response.status_code == 200
        assert [c["stage"] for c in response.json()] == [1, 2]

    async def test_count_on_closed_round_is_rejected(self, client, counter_headers):
        inventory = await _create(client, counter_headers, code="API-002")
        response = await client.get(f"/api/v1/inventories/{inventory['id']}/items", headers=counter_headers)
        item_id = response.json()[0]["id"]

        response = await client.post(
            f"/api/v1/inventory-items/{item_id}/counts",
            json={"stage": 1, "quantity": "3"},
            headers=counter_headers,
        )
        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "STAGE_NOT_OPEN"
        assert "count1_open" in body["message"]

    async def test_negative_quantity_carries_error_code(self, client, counter_headers):
        response = await client.post(
            f"/api/v1/inventory-items/{uuid.uuid4()}/counts",
            json={"stage": 1, "quantity": "-1"},
            headers=counter_headers,
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "NEGATIVE_QUANTITY"

    async def test_unknown_stage_carries_error_code(self, client, counter_headers):
        response = await client.post(
            f"/api/v1/inventory-items/{uuid.uuid4()}/counts",
            json={"stage": 5, "quantity": "1"},
            headers=counter_headers,
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_STAGE"

    async def test_unknown_item_is_not_found(self, client, counter_headers):
        item_id = uuid.uuid4()
        for path in (f"/api/v1/inventory-items/{item_id}", f"/api/v1/inventory-items/{item_id}/counts"):
            response = await client.get(path, headers=counter_headers)
            assert response.status_code == 404
            assert response.json()["error_code"] == "ITEM_NOT_FOUND"

    async def test_illegal_transition_is_conflict(self, client, counter_headers):
        inventory = await _create(client, counter_headers, code="API-003")
        response = await client.post(
            f"/api/v1/inventories/{inventory['id']}/finish-counting", headers=counter_headers
        )
        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    async def test_cancel_and_delete(self, client, counter_headers):
        inventory = await _create(client, counter_headers, code="API-004")
        inventory_id = inventory["id"]

        response = await client.delete(f"/api/v1/inventories/{inventory_id}", headers=counter_headers)
        assert response.status_code == 409

        response = await client.post(
            f"/api/v1/inventories/{inventory_id}/cancel",
            json={"reason": "Created by mistake"},
            headers=counter_headers,
        )
        assert response.json()["status"] == "cancelled"

        response = await client.delete(f"/api/v1/inventories/{inventory_id}", headers=counter_headers)
        assert response.status_code == 204

        response = await client.get(f"/api/v1/inventories/{inventory_id}", headers=counter_headers)
        assert response.status_code == 404
        assert response.json()["error_code"] == "INVENTORY_NOT_FOUND"


class TestSerialEndpoints:

    async def test_scan_and_summary(self, client, counter_headers):
        inventory = await _create(client, counter_headers, code="API-SER")
        inventory_id = inventory["id"]

        response = await client.post(
            f"/api/v1/inventories/{inventory_id}/serial-items/initialize", headers=counter_headers
        )
        assert response.json()["created"] == 2

        await client.post(f"/api/v1/inventories/{inventory_id}/open", headers=counter_headers)
        await client.post(f"/api/v1/inventories/{inventory_id}/start-counting", headers=counter_headers)

        response = await client.post(
            f"/api/v1/inventories/{inventory_id}/serial-readings",
            json={"serial_number": "SN-404", "location_id": str(LOCATION_A), "stage": 1},
            headers=counter_headers,
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["created"] is True
        assert body["serial_item"]["discrepancy_type"] == "unexpected_found"

        response = await client.get(
            f"/api/v1/inventories/{inventory_id}/serial-discrepancies/summary", headers=counter_headers
        )
        assert response.json()["unexpected_found"] == 1

        response = await client.get(
            f"/api/v1/inventories/{inventory_id}/serial-discrepancies",
            params={"discrepancy_type": "unexpected_found"},
            headers=counter_headers,
        )
        page = response.json()
        assert page["total"] == 1
        serial_item_id = page["items"][0]["id"]

        response = await client.post(
            f"/api/v1/serial-items/{serial_item_id}/resolve",
            json={"notes": "Borrowed from another branch"},
            headers=counter_headers,
        )
        assert response.status_code == 200
        assert response.json()["resolution_status"] == "resolved"


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
