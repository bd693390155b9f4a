from decimal import Decimal

import pytest

from disputeflow.core.disputes.assessment import AssessmentAggregator
from disputeflow.tests.fakes import ADMIN_ID, BUYER_ID, scoring


async def _file_dispute(client, headers, order_id="order-1", **extra):
    return await client.post(
        "/api/v1/disputes",
        headers=headers,
        json={
            "order_id": order_id,
            "category": "item_damaged",
            "description": "Arrived with a cracked screen",
            **extra,
        },
    )


@pytest.mark.asyncio
async def test_file_dispute(client, buyer_headers, seed_order, enqueued):
    seed_order(total="80.00")

    response = await _file_dispute(client, buyer_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "open"
    assert data["category"] == "item_damaged"
    assert data["buyer_id"] == BUYER_ID
    assert data["reference"].startswith("DSP-")
    assert Decimal(data["disputed_amount"]) == Decimal("80")
    assert data["timeline"][0]["action"] == "dispute_created"
    assert enqueued == [data["id"]]


@pytest.mark.asyncio
async def test_file_dispute_requires_identity(client, seed_order):
    seed_order()
    response = await _file_dispute(client, {})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_file_dispute_validation(client, buyer_headers, seed_order):
    seed_order()
    response = await _file_dispute(client, buyer_headers, category="bad_vibes")
    assert response.status_code == 422

    response = await _file_dispute(client, buyer_headers, disputed_amount=-5)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_file_dispute_unknown_order(client, buyer_headers):
    response = await _file_dispute(client, buyer_headers, order_id="nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_duplicate_dispute_conflicts(client, buyer_headers, seller_headers, seed_order):
    seed_order()
    await _file_dispute(client, buyer_headers)
    response = await _file_dispute(client, seller_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_get_dispute_visibility(client, buyer_headers, seller_headers, admin_headers, seed_order):
    seed_order()
    dispute_id = (await _file_dispute(client, buyer_headers)).json()["id"]

    assert (await client.get(f"/api/v1/disputes/{dispute_id}", headers=seller_headers)).status_code == 200
    assert (await client.get(f"/api/v1/disputes/{dispute_id}", headers=admin_headers)).status_code == 200

    response = await client.get(f"/api/v1/disputes/{dispute_id}", headers={"X-Actor-Id": "stranger"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_get_dispute_not_found(client, admin_headers):
    for dispute_id in ("00000000-0000-0000-0000-000000000000", "not-a-uuid"):
        response = await client.get(f"/api/v1/disputes/{dispute_id}", headers=admin_headers)
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_my_disputes(client, buyer_headers, seller_headers, seed_order):
    seed_order(order_id="order-1")
    seed_order(order_id="order-2")
    await _file_dispute(client, buyer_headers, order_id="order-1")
    await _file_dispute(client, seller_headers, order_id="order-2")

    response = await client.get("/api/v1/disputes", headers=buyer_headers, params={"page_size": 1})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["total_pages"] == 2
    assert len(data["items"]) == 1


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(client, buyer_headers):
    assert (await client.get("/api/v1/disputes/admin/queue", headers=buyer_headers)).status_code == 403
    assert (await client.get("/api/v1/disputes/admin/statistics", headers=buyer_headers)).status_code == 403


@pytest.mark.asyncio
async def test_add_evidence_and_message(client, buyer_headers, seller_headers, seed_order):
    seed_order()
    dispute_id = (await _file_dispute(client, buyer_headers)).json()["id"]

    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/evidence",
        headers=buyer_headers,
        json={"type": "image", "url": "https://cdn.example/crack.jpg", "description": "Front"},
    )
    assert response.status_code == 201
    assert response.json()["evidence"][0]["type"] == "image"

    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/messages",
        headers=seller_headers,
        json={"message": "It left our warehouse intact"},
    )
    assert response.status_code == 201
    assert response.json()["messages"][0]["sender"] == "seller-1"


@pytest.mark.asyncio
async def test_escalated_dispute_admin_flow(
    client, service, scheduler, buyer_headers, seller_headers, admin_headers, seed_order, payments
):
    seed_order(total="150.00")
    service.aggregator = AssessmentAggregator(scoring(40))
    dispute_id = (await _file_dispute(client, buyer_headers)).json()["id"]

    await scheduler.run(dispute_id)

    queue = (await client.get("/api/v1/disputes/admin/queue", headers=admin_headers)).json()
    assert [d["id"] for d in queue["items"]] == [dispute_id]
    assert queue["items"][0]["status"] == "admin_review"

    response = await client.post(f"/api/v1/disputes/{dispute_id}/assign", headers=admin_headers, json={})
    assert response.status_code == 200
    assert response.json()["assigned_admin"] == ADMIN_ID

    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/resolve",
        headers=admin_headers,
        json={
            "decision": "partial_refund",
            "refund_amount": "75.00",
            "refund_percentage": 50,
            "seller_compensation": "75.00",
            "resolution_reason": "Damage confirmed but item usable",
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["dispute"]["status"] == "resolved"
    assert body["dispute"]["resolution"]["resolution_method"] == "escalated_admin"
    assert body["execution"]["succeeded"] == ["refund", "release"]
    assert [c[0] for c in payments.calls] == ["refund", "release"]

    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/appeal",
        headers=seller_headers,
        json={"reason": "Buyer dropped it"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "appealed"

    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/appeal/decision",
        headers=admin_headers,
        json={"approve": False, "notes": "Photos are conclusive"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "closed"
    assert data["appeal_info"]["appeal_status"] == "denied"
    assert data["resolution"]["decision"] == "partial_refund"


@pytest.mark.asyncio
async def test_resolve_from_open_is_rejected(client, buyer_headers, admin_headers, seed_order):
    seed_order()
    dispute_id = (await _file_dispute(client, buyer_headers)).json()["id"]

    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/resolve",
        headers=admin_headers,
        json={"decision": "buyer_wins", "refund_amount": "10", "resolution_reason": "x"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_failed_refund_is_retried(
    client, service, scheduler, buyer_headers, admin_headers, seed_order, payments
):
    seed_order()
    service.aggregator = AssessmentAggregator(scoring(10))
    dispute_id = (await _file_dispute(client, buyer_headers)).json()["id"]
    await scheduler.run(dispute_id)

    payments.fail_refund = True
    response = await client.post(
        f"/api/v1/disputes/{dispute_id}/resolve",
        headers=admin_headers,
        json={"decision": "buyer_wins", "refund_amount": "120.00", "resolution_reason": "Damaged"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["dispute"]["status"] == "resolved"
    assert body["dispute"]["requires_reconciliation"] is True
    assert "refund" in body["execution"]["failed"]

    payments.fail_refund = False
    response = await client.post(f"/api/v1/disputes/{dispute_id}/retry-effects", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["succeeded"] == ["refund"]

    data = (await client.get(f"/api/v1/disputes/{dispute_id}", headers=admin_headers)).json()
    assert data["requires_reconciliation"] is False


@pytest.mark.asyncio
async def test_priority_and_statistics(client, buyer_headers, admin_headers, seed_order):
    seed_order()
    dispute_id = (await _file_dispute(client, buyer_headers)).json()["id"]

    response = await client.patch(
        f"/api/v1/disputes/{dispute_id}/priority",
        headers=admin_headers,
        json={"priority": "urgent"},
    )
    assert response.status_code == 200
    assert response.json()["priority"] == "urgent"

    stats = (await client.get("/api/v1/disputes/admin/statistics", headers=admin_headers)).json()
    assert stats["total_disputes"] == 1
    assert stats["by_category"] == {"item_damaged": 1}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["integrations"]["marketplace"] is True
