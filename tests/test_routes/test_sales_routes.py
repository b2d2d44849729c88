from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from salesync.core.enums import PlatformName, SyncErrorKind
from salesync.core.exceptions import SyncError
from salesync.models.sale import Sale
from salesync.services.sales_sync_service import SyncErrorEntry, SyncResult

TEST_USER_ID = "user-123"


async def _seed(session_factory, *sales):
    async with session_factory() as session:
        session.add_all(sales)
        await session.commit()


def _sale(external_id, platform="ebay", price=100.0, day=1, user_id=TEST_USER_ID):
    return Sale(
        user_id=user_id,
        platform=platform,
        external_id=external_id,
        sale_price=price,
        shipping_cost=0.0,
        platform_fees=10.0,
        cost=0.0,
        sold_at=datetime(2024, 3, day, tzinfo=timezone.utc),
        item_title=f"Item {external_id}",
    )


@pytest.mark.asyncio
async def test_requires_user(client):
    response = await client.get("/api/sales", headers={"X-User-Id": ""})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_sales(client, session_factory):
    await _seed(
        session_factory,
        _sale("E1", day=1),
        _sale("T1", platform="etsy", day=5),
        _sale("X1", user_id="someone-else"),
    )

    response = await client.get("/api/sales")
    assert response.status_code == 200
    body = response.json()
    assert [s["external_id"] for s in body] == ["T1", "E1"]
    assert body[0]["profit"] == 90.0

    response = await client.get("/api/sales", params={"platform": "ebay"})
    assert [s["external_id"] for s in response.json()] == ["E1"]


@pytest.mark.asyncio
async def test_list_sales_rejects_unknown_platform(client):
    response = await client.get("/api/sales", params={"platform": "amazon"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stats(client, session_factory):
    await _seed(session_factory, _sale("E1", price=100.0), _sale("E2", price=50.0))

    response = await client.get("/api/sales/stats")

    assert response.status_code == 200
    assert response.json() == {
        "total_revenue": 150.0,
        "total_profit": 130.0,
        "total_sales": 2,
        "avg_profit": 65.0,
        "avg_sale_price": 75.0,
    }


@pytest.mark.asyncio
async def test_create_manual_sale(client):
    response = await client.post("/api/sales", json={
        "platform": "depop",
        "sale_price": 100.0,
        "shipping_cost": 5.0,
        "platform_fees": 10.0,
        "item_title": "Denim jacket",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["external_id"] is None
    assert body["profit"] == 85.0


@pytest.mark.asyncio
async def test_create_manual_sale_validates_price(client):
    response = await client.post("/api/sales", json={"platform": "ebay", "sale_price": -1})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_cost(client, session_factory):
    await _seed(session_factory, _sale("E1"))
    sale_id = (await client.get("/api/sales")).json()[0]["id"]

    response = await client.patch(f"/api/sales/{sale_id}/cost", json={"cost": 25.0})

    assert response.status_code == 200
    assert response.json()["cost"] == 25.0
    assert response.json()["profit"] == 65.0


@pytest.mark.asyncio
async def test_update_cost_missing_sale(client):
    response = await client.patch("/api/sales/999/cost", json={"cost": 1.0})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_sale(client, session_factory):
    await _seed(session_factory, _sale("E1"))
    sale_id = (await client.get("/api/sales")).json()[0]["id"]

    assert (await client.delete(f"/api/sales/{sale_id}")).status_code == 204
    assert (await client.delete(f"/api/sales/{sale_id}")).status_code == 404

    async with session_factory() as session:
        assert (await session.execute(select(Sale))).scalars().all() == []


@pytest.mark.asyncio
async def test_sync_returns_partial_result(client, sync_service, mocker):
    result = SyncResult(
        synced=3,
        total=5,
        errors=[SyncErrorEntry(PlatformName.DEPOP, "Depop session expired. Please reconnect in Settings.", SyncErrorKind.REAUTH)],
    )
    mock_sync = mocker.patch.object(sync_service, "sync_platform_sales", return_value=result)

    response = await client.post("/api/sales/sync", params={"force": "true"})

    assert response.status_code == 200
    body = response.json()
    assert body["synced"] == 3
    assert body["total"] == 5
    assert body["errors"] == [{
        "platform": "depop",
        "reason": "Depop session expired. Please reconnect in Settings.",
        "kind": "reauth",
    }]
    assert body["summary"].startswith("0 platforms synced, 1 failed")
    mock_sync.assert_awaited_once_with(TEST_USER_ID, start_date=None, force=True)


@pytest.mark.asyncio
async def test_sync_with_no_connections(client):
    response = await client.post("/api/sales/sync")

    assert response.status_code == 200
    assert response.json()["synced"] == 0
    assert response.json()["errors"] == []


@pytest.mark.asyncio
async def test_sync_that_cannot_start(client, sync_service, mocker):
    mocker.patch.object(sync_service, "sync_platform_sales", side_effect=SyncError("database unavailable"))

    response = await client.post("/api/sales/sync")

    assert response.status_code == 503
    assert "database unavailable" in response.json()["detail"]
