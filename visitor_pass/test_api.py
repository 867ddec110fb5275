"""
HTTP API tests
Oversight endpoints, desk redemption and webhook intake
"""
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from visitor_pass import main
from visitor_pass.api.v1.passes import get_clock, get_pass_store


@pytest.fixture
async def client(store, clock):
    main.app.dependency_overrides[get_pass_store] = lambda: store
    main.app.dependency_overrides[get_clock] = lambda: clock

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    main.app.dependency_overrides.clear()


@pytest.fixture
def headers(resident):
    return {"x-facility-id": str(resident.facility_id)}


async def test_health(client, monkeypatch):
    monkeypatch.setattr(main.evolution_client, "get_instance_status", AsyncMock(return_value={"state": "open"}))

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["evolution_api"] == "open"


async def test_health_without_evolution_api(client, monkeypatch):
    monkeypatch.setattr(
        main.evolution_client,
        "get_instance_status",
        AsyncMock(side_effect=httpx.ConnectError("refused")),
    )

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["evolution_api"] == "disconnected"


async def test_facility_header_is_required(client):
    response = await client.get("/api/v1/passes/")
    assert response.status_code == 422


async def test_list_reports_effective_status(client, headers, make_pass, clock):
    lapsed = await make_pass(valid_until=clock.now + timedelta(minutes=30))
    live = await make_pass()
    clock.advance(hours=1)

    response = await client.get("/api/v1/passes/", headers=headers)
    statuses = {p["pass_code"]: p["status"] for p in response.json()}
    assert statuses == {lapsed.pass_code: "expired", live.pass_code: "active"}

    response = await client.get("/api/v1/passes/", headers=headers, params={"status": "expired"})
    assert [p["pass_code"] for p in response.json()] == [lapsed.pass_code]


async def test_list_rejects_unknown_status(client, headers):
    response = await client.get("/api/v1/passes/", headers=headers, params={"status": "lost"})
    assert response.status_code == 422


async def test_resident_listing_is_scoped_to_facility(client, headers, make_pass, resident):
    record = await make_pass()

    response = await client.get(f"/api/v1/passes/resident/{resident.id}", headers=headers)
    assert [p["pass_code"] for p in response.json()] == [record.pass_code]

    response = await client.get(
        f"/api/v1/passes/resident/{resident.id}",
        headers={"x-facility-id": str(uuid4())},
    )
    assert response.json() == []


async def test_get_pass_by_code(client, headers, make_pass):
    record = await make_pass()

    response = await client.get(f"/api/v1/passes/{record.pass_code.lower()}", headers=headers)
    assert response.status_code == 200
    assert response.json()["visitor_name"] == "Maria Santos"

    response = await client.get(f"/api/v1/passes/{record.pass_code}", headers={"x-facility-id": str(uuid4())})
    assert response.status_code == 404


async def test_redeem_maps_outcomes_to_status_codes(client, headers, make_pass, clock):
    single = await make_pass(single_use=True)

    response = await client.post("/api/v1/passes/redeem", headers=headers, json={"pass_code": single.pass_code})
    assert response.status_code == 200
    assert response.json()["used_count"] == 1

    response = await client.post("/api/v1/passes/redeem", headers=headers, json={"pass_code": single.pass_code})
    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "pass_not_active"
    assert response.json()["detail"]["status"] == "used"

    response = await client.post("/api/v1/passes/redeem", headers=headers, json={"pass_code": "VP000000"})
    assert response.status_code == 404

    later = await make_pass(valid_from=clock.now + timedelta(hours=1))
    response = await client.post("/api/v1/passes/redeem", headers=headers, json={"pass_code": later.pass_code})
    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "not_yet_valid"
    assert "valid_from" in response.json()["detail"]

    lapsing = await make_pass(valid_until=clock.now + timedelta(minutes=30))
    clock.advance(hours=1)
    response = await client.post("/api/v1/passes/redeem", headers=headers, json={"pass_code": lapsing.pass_code})
    assert response.status_code == 410


async def test_review_and_revoke(client, headers, make_pass):
    record = await make_pass()
    admin_id = str(uuid4())

    response = await client.post(
        f"/api/v1/passes/{record.pass_code}/review",
        headers=headers,
        json={"admin_id": admin_id, "notes": "Known contractor"},
    )
    assert response.status_code == 200
    assert response.json()["admin_notes"] == "Known contractor"
    assert response.json()["admin_reviewed_by"] == admin_id

    response = await client.post(
        f"/api/v1/passes/{record.pass_code}/revoke",
        headers=headers,
        json={"admin_id": admin_id, "reason": "Suspicious activity"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "revoked"
    assert response.json()["revoke_reason"] == "Suspicious activity"


async def test_revoke_used_pass_is_refused(client, headers, make_pass):
    record = await make_pass(single_use=True)
    await client.post("/api/v1/passes/redeem", headers=headers, json={"pass_code": record.pass_code})

    response = await client.post(
        f"/api/v1/passes/{record.pass_code}/revoke",
        headers=headers,
        json={"admin_id": str(uuid4())},
    )
    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "pass_immutable"


async def test_expire_overdue_sweeps_the_callers_facility(client, headers, make_pass, clock):
    await make_pass(valid_until=clock.now + timedelta(minutes=30))
    await make_pass()
    elsewhere = await make_pass(valid_until=clock.now + timedelta(minutes=30), facility_id=uuid4())
    clock.advance(hours=1)

    response = await client.post("/api/v1/passes/expire-overdue")
    assert response.status_code == 422

    response = await client.post("/api/v1/passes/expire-overdue", headers=headers)
    assert response.json() == {"expired": 1}

    response = await client.post("/api/v1/passes/expire-overdue", headers=headers)
    assert response.json() == {"expired": 0}

    response = await client.post(
        "/api/v1/passes/expire-overdue",
        headers={"x-facility-id": str(elsewhere.facility_id)},
    )
    assert response.json() == {"expired": 1}


def test_api_and_webhook_share_one_store():
    assert get_pass_store() is main.webhook_handler.store


async def test_webhook_hands_payload_to_handler(client, monkeypatch):
    process = AsyncMock()
    monkeypatch.setattr(main.webhook_handler, "process_message", process)
    payload = {"event": "messages.upsert", "data": {}}

    response = await client.post("/webhook", json=payload)

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    process.assert_awaited_once_with(payload)


async def test_webhook_rejects_invalid_json(client):
    response = await client.post(
        "/webhook",
        content=b"not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400


async def test_webhook_rejects_non_object_payload(client):
    response = await client.post("/webhook", json=["messages.upsert"])
    assert response.status_code == 400
