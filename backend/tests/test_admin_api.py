"""
HTTP API: customer checkout, payment callbacks and admin operations.
"""

import pytest

from backend.tests.factories import AMBIGUOUS_ADDRESS, GOTHENBURG_ADDRESS, STOCKHOLM_ADDRESS, bottles_rule

ADMIN = {"X-Actor": "admin:alice"}


async def create_pallet(client, seed, rules=None, pickup=None, delivery=None):
    response = await client.post("/v1/admin/pallets", json={
        "name": "Bordeaux to Stockholm",
        "pickup_zone_id": pickup or seed.bordeaux,
        "delivery_zone_id": delivery or seed.stockholm,
        "bottle_capacity": 600,
        "completion_rules": rules,
    }, headers=ADMIN)
    return response


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "req-42"})
    assert response.headers["X-Correlation-ID"] == "req-42"
    assert float(response.headers["X-Process-Time"]) >= 0


# TEST 1: Zones
@pytest.mark.asyncio
async def test_zone_admin_crud(client, seed):
    response = await client.post("/v1/admin/zones", json={
        "name": "Gothenburg", "zone_type": "delivery",
        "center_lat": 57.7089, "center_lon": 11.9746, "radius_km": 30, "country_code": "SE",
    }, headers=ADMIN)
    assert response.status_code == 201
    zone_id = response.json()["id"]

    response = await client.get("/v1/admin/zones", params={"zone_type": "delivery"})
    assert response.json()["total"] == 3

    response = await client.delete(f"/v1/admin/zones/{seed.bordeaux}", headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ZONE_004"

    response = await client.delete(f"/v1/admin/zones/{zone_id}", headers=ADMIN)
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_zone_validation(client):
    response = await client.post("/v1/admin/zones", json={
        "name": "Broken", "zone_type": "delivery", "center_lat": 95, "center_lon": 0, "radius_km": -1,
    })
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_match_address(client, seed):
    response = await client.post("/v1/zones/match", json={"address": AMBIGUOUS_ADDRESS})
    assert response.status_code == 200
    data = response.json()
    assert data["ambiguous"] is True
    assert [m["zone_id"] for m in data["matches"]] == [seed.uppsala, seed.stockholm]

    response = await client.post("/v1/zones/match", json={"address": GOTHENBURG_ADDRESS})
    assert response.json()["matches"] == []

    response = await client.post("/v1/zones/match", json={"address": "Unknown road 9"})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_GEO_001"
    assert response.json()["details"]["reason"] == "NO_RESULTS"


# TEST 2: Checkout
@pytest.mark.asyncio
async def test_checkout_flow(client, seed):
    payload = {"user_id": 7, "items": [{"wine_id": seed.claret, "quantity": 12}], "delivery_address": AMBIGUOUS_ADDRESS}

    response = await client.post("/v1/reservations", json=payload)
    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_GEO_002"
    assert len(body["details"]["candidates"]) == 2

    payload["delivery_zone_id"] = body["details"]["candidates"][0]["zone_id"]
    response = await client.post("/v1/reservations", json=payload)
    assert response.status_code == 201
    reservation = response.json()
    assert reservation["delivery_zone_id"] == seed.uppsala
    assert reservation["allocation_state"] == "awaiting_pallet"
    assert reservation["items"] == [
        {"wine_id": seed.claret, "producer_id": seed.chateau, "quantity": 12, "price_cents": 15000}
    ]

    response = await client.get(f"/v1/reservations/{reservation['id']}")
    assert response.json()["total_cost_cents"] == 12 * 15000

    response = await client.post(f"/v1/reservations/{reservation['id']}/cancel")
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_checkout_errors(client, seed):
    response = await client.post("/v1/reservations", json={"user_id": 1, "items": [{"wine_id": seed.claret, "quantity": 1}]})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"

    response = await client.post("/v1/reservations", json={
        "user_id": 1, "items": [{"wine_id": seed.claret, "quantity": 1}, {"wine_id": seed.syrah, "quantity": 1}],
        "delivery_address": STOCKHOLM_ADDRESS,
    })
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_ZONE_001"

    response = await client.post("/v1/reservations", json={
        "user_id": 1, "items": [{"wine_id": seed.claret, "quantity": 1}], "delivery_address": GOTHENBURG_ADDRESS,
    })
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_GEO_003"

    response = await client.get("/v1/reservations/4242")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_producer_decision(client, seed):
    response = await client.post("/v1/reservations", json={
        "user_id": 3, "items": [{"wine_id": seed.claret, "quantity": 6}],
        "delivery_zone_id": seed.stockholm, "requires_producer_approval": True,
    })
    reservation = response.json()
    assert reservation["status"] == "pending_producer_approval"

    url = f"/v1/reservations/{reservation['id']}/producer-decision"
    response = await client.post(url, json={"approved": True}, headers={"X-Actor": "producer:1"})
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    response = await client.post(url, json={"approved": False, "reason": "changed my mind"})
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_STATE_001"


# TEST 3: Pallets
@pytest.mark.asyncio
async def test_pallet_registration_conflict(client, seed):
    response = await create_pallet(client, seed)
    assert response.status_code == 201
    assert response.json()["status"] == "OPEN"

    response = await create_pallet(client, seed)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ZONE_002"

    response = await create_pallet(client, seed, pickup=seed.stockholm, delivery=seed.uppsala)
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_ZONE_003"


@pytest.mark.asyncio
async def test_completion_rules_and_payment_callbacks(client, seed, payments):
    pallet = (await create_pallet(client, seed)).json()

    response = await client.put(
        f"/v1/admin/pallets/{pallet['id']}/completion-rules",
        json={"groups": [{"conditions": [{"metric": "weight", "op": ">=", "value": 1}]}]},
        headers=ADMIN,
    )
    assert response.status_code == 422

    response = await client.put(f"/v1/admin/pallets/{pallet['id']}/completion-rules", json=bottles_rule(10), headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["completion_rules"]["groups"][0]["conditions"][0]["value"] == 10

    response = await client.post("/v1/reservations", json={
        "user_id": 3, "items": [{"wine_id": seed.claret, "quantity": 10}], "delivery_zone_id": seed.stockholm,
    })
    reservation = response.json()
    assert reservation["status"] == "pending_payment"

    response = await client.get(f"/v1/admin/pallets/{pallet['id']}/completion")
    evaluation = response.json()
    assert evaluation["status"] == "PAYMENT_PENDING"
    assert evaluation["would_complete"] is True
    assert evaluation["metrics"]["bottles"] == 10
    assert evaluation["metrics"]["fill_percentage"] == round(10 / 600 * 100, 2)
    assert evaluation["rules_description"] == "IF (Bottles >= 10) THEN Complete ELSE Incomplete"

    reference = f"test-1-{reservation['id']}"
    assert payments.charges == [(reservation["id"], 10 * 15000)]
    response = await client.post("/v1/payments/callback", json={"reference": reference, "succeeded": True})
    assert response.status_code == 200
    assert response.json()["status"] == "SUCCEEDED"

    response = await client.get(f"/v1/admin/pallets/{pallet['id']}")
    assert response.json()["status"] == "CONFIRMED"

    response = await client.post("/v1/payments/callback", json={"reference": "unknown", "succeeded": True})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reverse_completion_requires_confirmation(client, seed):
    pallet = (await create_pallet(client, seed, rules=bottles_rule(10))).json()
    await client.post("/v1/reservations", json={
        "user_id": 3, "items": [{"wine_id": seed.claret, "quantity": 10}], "delivery_zone_id": seed.stockholm,
    })

    response = await client.post(f"/v1/admin/pallets/{pallet['id']}/reverse-completion", json={"confirm": "ok"}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_CONFIRM_001"

    response = await client.post(f"/v1/admin/pallets/{pallet['id']}/reverse-completion", json={"confirm": "RESET"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "OPEN"
    assert len(response.json()["reverted_reservation_ids"]) == 1


@pytest.mark.asyncio
async def test_move_pallet(client, seed):
    pallet = (await create_pallet(client, seed)).json()
    response = await client.patch(
        f"/v1/admin/pallets/{pallet['id']}/zones",
        json={"pickup_zone_id": seed.bordeaux, "delivery_zone_id": seed.uppsala},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert response.json()["delivery_zone_id"] == seed.uppsala


# TEST 4: Operations
@pytest.mark.asyncio
async def test_admin_ops(client, seed):
    await create_pallet(client, seed)
    await client.post("/v1/reservations", json={
        "user_id": 3, "items": [{"wine_id": seed.claret, "quantity": 10}], "delivery_zone_id": seed.stockholm,
    })

    response = await client.post("/v1/admin/ops/reconcile", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["corrected"] == []
    assert response.json()["pallets_checked"] == 1

    response = await client.post("/v1/admin/ops/reconcile", json={"pallet_id": 4242}, headers=ADMIN)
    assert response.status_code == 404

    response = await client.post("/v1/admin/ops/check-completion", headers=ADMIN)
    assert response.json()["pallets_checked"] == 1
    assert response.json()["completed"] == []

    assert (await client.get("/v1/admin/ops/inconsistencies")).json() == []
    assert (await client.get("/v1/admin/ops/collisions")).json() == []

    response = await client.post("/v1/admin/ops/clear-cache")
    assert response.status_code == 200
