"""
Tests for Order API endpoints
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from dispatch_engine.db.models.order import OrderStatus, OrderType
from tests.conftest import DEFAULT_LAT, DEFAULT_LNG


@pytest.mark.integration
class TestCreateOrderApi:

    async def test_create_order(self, test_client, sample_shop):
        response = await test_client.post("/api/orders", json={
            "shopId": sample_shop.id,
            "customerId": "c-42",
            "subtotal": 400,
            "deliveryAddress": "221 Residency Road",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "placed"
        assert data["type"] == "delivery"
        assert data["deliveryFee"] == 0
        assert data["totalAmount"] == 405
        assert data["platformEarnings"] == 45
        assert data["deliveryPartnerId"] is None
        assert data["orderNumber"].startswith("ORD-")

    async def test_invalid_subtotal_is_rejected(self, test_client, sample_shop):
        response = await test_client.post("/api/orders", json={
            "shopId": sample_shop.id,
            "customerId": "c-42",
            "subtotal": -10,
        })
        assert response.status_code == 422

    async def test_unknown_shop(self, test_client):
        response = await test_client.post("/api/orders", json={
            "shopId": "nope",
            "customerId": "c-42",
            "subtotal": 100,
            "deliveryAddress": "x",
        })
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_1002"

    async def test_get_order(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop)

        response = await test_client.get(f"/api/orders/{order.id}")

        assert response.status_code == 200
        assert response.json()["id"] == order.id

    async def test_get_unknown_order(self, test_client):
        response = await test_client.get("/api/orders/missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"


@pytest.mark.integration
class TestStatusApi:

    async def test_transition_and_log(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop, status=OrderStatus.PLACED)

        response = await test_client.post(f"/api/orders/{order.id}/status", json={"status": "accepted"})
        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert response.json()["acceptedAt"] is not None

        log = await test_client.get(f"/api/orders/{order.id}/status-log")
        assert log.status_code == 200
        assert [e["status"] for e in log.json()] == ["accepted"]

    async def test_invalid_transition(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop, status=OrderStatus.PLACED)

        response = await test_client.post(f"/api/orders/{order.id}/status", json={"status": "delivered"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_6001"

    async def test_unassigned_delivery_cannot_be_picked_up(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop, status=OrderStatus.READY)

        response = await test_client.post(f"/api/orders/{order.id}/status", json={"status": "picked_up"})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "ERR_6001"
        assert error["details"]["reason"] == "no delivery partner assigned"

    async def test_unknown_status_value(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop, status=OrderStatus.PLACED)
        response = await test_client.post(f"/api/orders/{order.id}/status", json={"status": "teleported"})
        assert response.status_code == 422


@pytest.mark.integration
class TestAssignApi:

    async def test_assign_nearest(self, test_client, partner_factory, sample_shop, order_factory):
        near = await partner_factory(lat=DEFAULT_LAT + 0.001)
        await partner_factory(lat=DEFAULT_LAT + 0.01)
        order = await order_factory(sample_shop)

        response = await test_client.post(
            "/api/orders/assign",
            json={"orderId": order.id},
            headers={"X-Correlation-ID": "abc12345"},
        )

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "abc12345"
        assert response.json() == {
            "partnerId": near.id,
            "assigned": True,
            "distanceKm": pytest.approx(0.111, abs=0.001),
            "alreadyAssigned": False,
        }

    async def test_explicit_coordinates(self, test_client, partner_factory, shop_factory, order_factory):
        shop = await shop_factory(lat=None, lng=None)
        partner = await partner_factory()
        order = await order_factory(shop)

        response = await test_client.post("/api/orders/assign", json={
            "orderId": order.id,
            "shopLat": DEFAULT_LAT,
            "shopLng": DEFAULT_LNG,
        })

        assert response.json()["partnerId"] == partner.id
        assert response.json()["distanceKm"] == 0

    async def test_no_partner_is_not_an_error(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop)

        response = await test_client.post("/api/orders/assign", json={"orderId": order.id})

        assert response.status_code == 200
        assert response.json()["assigned"] is False
        assert response.json()["partnerId"] is None

    async def test_no_shop_location_anywhere(self, test_client, partner_factory, shop_factory, order_factory):
        shop = await shop_factory(lat=None, lng=None)
        await partner_factory()
        order = await order_factory(shop)

        response = await test_client.post("/api/orders/assign", json={"orderId": order.id})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_1001"

    async def test_half_a_coordinate(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop)
        response = await test_client.post("/api/orders/assign", json={"orderId": order.id, "shopLat": 12.9})
        assert response.status_code == 400

    async def test_out_of_range_coordinate(self, test_client, sample_shop, order_factory):
        order = await order_factory(sample_shop)
        response = await test_client.post(
            "/api/orders/assign", json={"orderId": order.id, "shopLat": 91, "shopLng": 0}
        )
        assert response.status_code == 422

    async def test_blank_order_id(self, test_client):
        response = await test_client.post("/api/orders/assign", json={"orderId": ""})
        assert response.status_code == 400

    async def test_pickup_order(self, test_client, partner_factory, sample_shop, order_factory):
        await partner_factory()
        order = await order_factory(sample_shop, order_type=OrderType.PICKUP)

        response = await test_client.post("/api/orders/assign", json={"orderId": order.id})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2003"

    async def test_store_failure_is_503(self, test_client, partner_factory, sample_shop, order_factory):
        await partner_factory()
        order = await order_factory(sample_shop)

        with patch(
            "dispatch_engine.domain.services.partner_directory_service.PartnerDirectoryService.list_available",
            side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
        ):
            response = await test_client.post("/api/orders/assign", json={"orderId": order.id})

        assert response.status_code == 503
        body = response.json()["error"]
        assert body["code"] == "ERR_5001"
        assert body["details"]["retryable"] is True


@pytest.mark.integration
class TestCompleteApi:

    async def test_complete_is_exactly_once(self, test_client, partner_factory, sample_shop, order_factory):
        partner = await partner_factory()
        order = await order_factory(sample_shop, status=OrderStatus.DELIVERED, delivery_partner_id=partner.id)
        payload = {"orderId": order.id, "partnerId": partner.id}

        first = await test_client.post("/api/orders/complete", json=payload)
        second = await test_client.post("/api/orders/complete", json=payload)

        assert first.status_code == 200
        assert first.json() == {"success": True, "amount": 20, "alreadySettled": False}
        assert second.status_code == 200
        assert second.json() == {"success": False, "amount": 0, "alreadySettled": True}

        wallet = await test_client.get(f"/api/wallets/{partner.id}")
        assert wallet.json()["balance"] == 20

    async def test_wrong_partner(self, test_client, partner_factory, sample_shop, order_factory):
        partner = await partner_factory()
        stranger = await partner_factory()
        order = await order_factory(sample_shop, status=OrderStatus.DELIVERED, delivery_partner_id=partner.id)

        response = await test_client.post(
            "/api/orders/complete", json={"orderId": order.id, "partnerId": stranger.id}
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2004"

    async def test_not_delivered_yet(self, test_client, partner_factory, sample_shop, order_factory):
        partner = await partner_factory()
        order = await order_factory(sample_shop, status=OrderStatus.READY, delivery_partner_id=partner.id)

        response = await test_client.post(
            "/api/orders/complete", json={"orderId": order.id, "partnerId": partner.id}
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2002"

    async def test_missing_wallet_is_500(self, test_client, partner_factory, sample_shop, order_factory):
        partner = await partner_factory(with_wallet=False)
        order = await order_factory(sample_shop, status=OrderStatus.DELIVERED, delivery_partner_id=partner.id)

        response = await test_client.post(
            "/api/orders/complete", json={"orderId": order.id, "partnerId": partner.id}
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "ERR_4001"
