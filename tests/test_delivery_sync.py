"""
Shipment delivery-status sync: selection, persistence rules, order transitions,
delivered notification and the admin/cron endpoint.
"""
import asyncio
from datetime import datetime

import pytest

from app.auth import create_access_token
from app.config import settings
from app.models import AdminUser, EmailLog
from app.services import email_service
from app.services.delivery_sync import clamp_limit, select_shipments, sync_delivery_statuses
from app.services.shiprocket_service import ShiprocketError
from conftest import FakeMailer, tracking_response

SYNC_URL = "/api/admin/shipments/sync-delivery"


@pytest.fixture
def sync_secret(monkeypatch):
    monkeypatch.setattr(settings, "SHIPROCKET_SYNC_SECRET", "cron-secret")
    return {"x-sync-secret": "cron-secret"}


def run_sync(db, shiprocket, mailer, **kw):
    return asyncio.run(sync_delivery_statuses(db, shiprocket, mailer, **kw))


class TestSelection:
    def test_only_tracked_shipments_of_settled_orders(self, db_session, order_factory, shipment_factory):
        paid = shipment_factory(order_factory(payment_status="paid"))
        completed = shipment_factory(order_factory(payment_status="completed"))
        confirmed = shipment_factory(order_factory(payment_status="CONFIRMED"))
        shipment_factory(order_factory(payment_status="pending"))
        shipment_factory(order_factory(payment_status="failed"))
        shipment_factory(order_factory(), shiprocket_awb=None)
        shipment_factory(order_factory(), shiprocket_awb="   ")
        shipment_factory(order_factory(), provider="delhivery")

        selected = select_shipments(db_session, 50)
        assert [s.id for s in selected] == [paid.id, completed.id, confirmed.id]

    def test_least_recently_updated_first(self, db_session, order_factory, shipment_factory):
        newer = shipment_factory(order_factory(), updated_at=datetime(2020, 3, 1))
        older = shipment_factory(order_factory(), updated_at=datetime(2020, 2, 1))
        assert [s.id for s in select_shipments(db_session, 50)] == [older.id, newer.id]

    def test_scoped_to_order_and_limited(self, db_session, order_factory, shipment_factory):
        target = order_factory()
        shipment_factory(order_factory())
        mine = shipment_factory(target)
        assert [s.id for s in select_shipments(db_session, 50, order_id=target.id)] == [mine.id]
        assert len(select_shipments(db_session, 1)) == 1

    @pytest.mark.parametrize("raw,expected", [
        (None, 20), (10, 10), ("7", 7), (0, 1), (-5, 1), (51, 50), (1000, 50),
        ("abc", 20), ("", 20), (True, 20), (12.9, 12), (float("nan"), 20), (float("inf"), 20),
    ])
    def test_clamp_limit(self, raw, expected):
        assert clamp_limit(raw) == expected


class TestShipmentSync:
    def test_batch_isolation(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        """One carrier failure is recorded and the rest of the batch still syncs"""
        s1 = shipment_factory(order_factory())
        s2 = shipment_factory(order_factory())
        s3 = shipment_factory(order_factory())
        shiprocket.responses = {
            s1.shiprocket_awb: tracking_response(current_status="In Transit"),
            s2.shiprocket_awb: ShiprocketError("Shiprocket request failed (502)"),
            s3.shiprocket_awb: tracking_response(current_status="Out For Delivery"),
        }

        result = run_sync(db_session, shiprocket, mailer)

        assert result["success"] is True
        assert result["synced"] == 3
        first, second, third = result["results"]
        assert first["shipStatus"] == "In Transit" and "error" not in first
        assert second["shipmentId"] == s2.id and "Shiprocket request failed" in second["error"]
        assert third["shipStatus"] == "Out For Delivery" and "error" not in third
        assert shiprocket.calls == [s1.shiprocket_awb, s2.shiprocket_awb, s3.shiprocket_awb]
        db_session.refresh(s3)
        assert s3.status == "Out For Delivery"

    def test_rto_cancels_processing_order(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        order = order_factory(order_status="processing")
        shipment = shipment_factory(order)
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="RTO Initiated")

        result = run_sync(db_session, shiprocket, mailer)

        assert result["results"][0]["orderUpdatedTo"] == "cancelled"
        db_session.refresh(order)
        assert order.order_status == "cancelled"
        assert mailer.sent == []

    def test_shipped_order_not_rewritten_as_shipped(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        order = order_factory(order_status="shipped")
        shipment = shipment_factory(order, status="Picked Up")
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="In Transit")

        result = run_sync(db_session, shiprocket, mailer)

        entry = result["results"][0]
        assert entry["shipStatus"] == "In Transit"
        assert entry["orderUpdatedTo"] is None
        db_session.refresh(order)
        db_session.refresh(shipment)
        assert order.order_status == "shipped"
        assert shipment.status == "In Transit"

    def test_confirmed_order_becomes_shipped(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        order = order_factory(order_status="confirmed")
        shipment = shipment_factory(order)
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="Picked Up")

        run_sync(db_session, shiprocket, mailer)

        db_session.refresh(order)
        assert order.order_status == "shipped"

    @pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
    @pytest.mark.parametrize("carrier_status", ["In Transit", "Delivered", "RTO Initiated", "Canceled"])
    def test_terminal_orders_never_move(self, db_session, order_factory, shipment_factory, shiprocket, mailer,
                                        terminal, carrier_status):
        order = order_factory(order_status=terminal)
        shipment = shipment_factory(order)
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status=carrier_status)

        result = run_sync(db_session, shiprocket, mailer)

        assert result["results"][0]["orderUpdatedTo"] is None
        db_session.refresh(order)
        assert order.order_status == terminal
        assert mailer.sent == []

    def test_numeric_status_does_not_overwrite_human_status(self, db_session, order_factory, shipment_factory,
                                                            shiprocket, mailer):
        order = order_factory(order_status="shipped")
        shipment = shipment_factory(order, status="Out for Delivery")
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(shipment_status="42")

        result = run_sync(db_session, shiprocket, mailer)

        assert result["results"][0]["shipStatus"] == "Out for Delivery"
        db_session.refresh(shipment)
        assert shipment.status == "Out for Delivery"

    def test_numeric_status_stored_as_label(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        shipment = shipment_factory(order_factory())
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(shipment_status="77777")

        run_sync(db_session, shiprocket, mailer)

        db_session.refresh(shipment)
        assert shipment.status == "Tracking in progress (code 77777)"

    def test_persistence_rules(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        """Courier name kept once known, tracking URL and AWB never cleared, raw response always replaced"""
        shipment = shipment_factory(
            order_factory(),
            shiprocket_courier_name="Delhivery",
            tracking_url="https://shiprocket.co/tracking/OLD",
            response_json={"old": True},
        )
        awb = shipment.shiprocket_awb
        response = tracking_response(current_status="In Transit", courier_name="Blue Dart")
        shiprocket.responses[awb] = response

        run_sync(db_session, shiprocket, mailer)

        db_session.refresh(shipment)
        assert shipment.shiprocket_courier_name == "Delhivery"
        assert shipment.tracking_url == "https://shiprocket.co/tracking/OLD"
        assert shipment.shiprocket_awb == awb
        assert shipment.response_json == response

    def test_missing_courier_and_url_are_filled(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        shipment = shipment_factory(order_factory())
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(
            current_status="In Transit", courier_name="Blue Dart", track_url="https://shiprocket.co/tracking/NEW",
        )

        run_sync(db_session, shiprocket, mailer)

        db_session.refresh(shipment)
        assert shipment.shiprocket_courier_name == "Blue Dart"
        assert shipment.tracking_url == "https://shiprocket.co/tracking/NEW"

    def test_synced_shipment_moves_to_back_of_queue(self, db_session, order_factory, shipment_factory,
                                                    shiprocket, mailer):
        first = shipment_factory(order_factory(), updated_at=datetime(2020, 1, 1))
        second = shipment_factory(order_factory(), updated_at=datetime(2020, 1, 2))

        run_sync(db_session, shiprocket, mailer, limit=1)

        assert shiprocket.calls == [first.shiprocket_awb]
        assert [s.id for s in select_shipments(db_session, 50)] == [second.id, first.id]


class TestDeliveredNotification:
    def test_delivered_email_sent_once(self, db_session, order_factory, shipment_factory, shiprocket, mailer):
        order = order_factory(order_status="shipped", customer_email="asha@example.com")
        shipment = shipment_factory(order)
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="Delivered")

        first = run_sync(db_session, shiprocket, mailer)
        second = run_sync(db_session, shiprocket, mailer)

        assert first["results"][0]["orderUpdatedTo"] == "delivered"
        assert second["results"][0]["orderUpdatedTo"] is None
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["to"] == "asha@example.com"
        assert "Delivered" in mailer.sent[0]["subject"]
        logs = db_session.query(EmailLog).filter(EmailLog.order_id == order.id).all()
        assert [(l.email_type, l.status) for l in logs] == [("order_delivered", "sent")]

    def test_email_failure_is_not_a_sync_failure(self, db_session, order_factory, shipment_factory, shiprocket):
        order = order_factory(order_status="processing")
        shipment = shipment_factory(order)
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="Delivered")

        result = run_sync(db_session, shiprocket, FakeMailer(fail=True))

        entry = result["results"][0]
        assert "error" not in entry
        assert entry["orderUpdatedTo"] == "delivered"
        db_session.refresh(order)
        assert order.order_status == "delivered"
        log = db_session.query(EmailLog).filter(EmailLog.order_id == order.id).one()
        assert log.status == "failed"
        assert "refused" in log.error_message

    def test_notification_error_is_not_a_sync_failure(self, db_session, order_factory, shipment_factory, shiprocket,
                                                      mailer, monkeypatch):
        def broken_render(order, shipment):
            raise RuntimeError("template data unreadable")

        monkeypatch.setattr(email_service, "render_delivered", broken_render)
        order = order_factory(order_status="shipped")
        shipment = shipment_factory(order)
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="Delivered")

        result = run_sync(db_session, shiprocket, mailer)

        entry = result["results"][0]
        assert "error" not in entry
        assert entry["orderUpdatedTo"] == "delivered"
        db_session.refresh(order)
        assert order.order_status == "delivered"
        assert mailer.sent == []


class TestSyncEndpoint:
    def test_unauthorized_without_session_or_secret(self, client, order_factory, shipment_factory, shiprocket):
        shipment_factory(order_factory())
        response = client.post(SYNC_URL, json={})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert shiprocket.calls == []

    def test_wrong_secret_rejected(self, client, sync_secret):
        response = client.post(SYNC_URL, json={}, headers={"x-sync-secret": "guess"})
        assert response.status_code == 401

    def test_secret_header_ignored_when_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "SHIPROCKET_SYNC_SECRET", "")
        response = client.post(SYNC_URL, json={}, headers={"x-sync-secret": ""})
        assert response.status_code == 401

    def test_sync_secret_authorizes(self, client, sync_secret, order_factory, shipment_factory, shiprocket):
        shipment = shipment_factory(order_factory())
        shiprocket.responses[shipment.shiprocket_awb] = tracking_response(current_status="In Transit")

        response = client.post(SYNC_URL, json={}, headers=sync_secret)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["synced"] == 1
        assert body["results"][0] == {
            "orderId": shipment.order_id,
            "shipmentId": shipment.id,
            "awb": shipment.shiprocket_awb,
            "shipStatus": "In Transit",
            "orderUpdatedTo": "shipped",
        }

    def test_empty_body_allowed(self, client, sync_secret):
        response = client.post(SYNC_URL, headers=sync_secret)
        assert response.status_code == 200
        assert response.json() == {"success": True, "synced": 0, "results": []}

    def test_admin_bearer_token(self, client, admin_user):
        token = create_access_token({"sub": str(admin_user.id)})
        response = client.post(SYNC_URL, json={}, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    def test_admin_cookie(self, client, db_session):
        manager = AdminUser(username="mgr", email="mgr@casebuddy.test", role="manager", is_active=True)
        db_session.add(manager)
        db_session.commit()
        token = create_access_token({"sub": str(manager.id)})
        response = client.post(SYNC_URL, json={}, headers={"cookie": f"admin_token={token}"})
        assert response.status_code == 200

    @pytest.mark.parametrize("role,active", [("staff", True), ("admin", False)])
    def test_staff_or_inactive_admin_rejected(self, client, db_session, role, active):
        user = AdminUser(username=f"u-{role}", email="u@casebuddy.test", role=role, is_active=active)
        db_session.add(user)
        db_session.commit()
        token = create_access_token({"sub": str(user.id)})
        response = client.post(SYNC_URL, json={}, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_garbage_token_rejected(self, client):
        response = client.post(SYNC_URL, json={}, headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_limit_clamped_to_fifty(self, client, sync_secret, order_factory, shipment_factory, shiprocket):
        for _ in range(55):
            shipment_factory(order_factory())
        response = client.post(SYNC_URL, json={"limit": 500}, headers=sync_secret)
        assert response.json()["synced"] == 50
        assert len(shiprocket.calls) == 50

    def test_non_numeric_limit_uses_default(self, client, sync_secret, order_factory, shipment_factory):
        for _ in range(25):
            shipment_factory(order_factory())
        response = client.post(SYNC_URL, json={"limit": "lots"}, headers=sync_secret)
        assert response.json()["synced"] == 20

    def test_order_scope(self, client, sync_secret, order_factory, shipment_factory, shiprocket):
        target = order_factory()
        shipment_factory(order_factory())
        mine = shipment_factory(target)
        response = client.post(SYNC_URL, json={"orderId": target.id}, headers=sync_secret)
        assert [r["shipmentId"] for r in response.json()["results"]] == [mine.id]
        assert shiprocket.calls == [mine.shiprocket_awb]
