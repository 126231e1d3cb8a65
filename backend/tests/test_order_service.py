"""
Order lifecycle after settlement: status transitions, tracking, listings.
"""

import pytest

from checkout.errors import InvalidTransition, NotFound, ValidationError
from checkout.models import TrackingEvent
from checkout.time_utils import parse_iso_datetime
from conftest import SHIPPING


@pytest.fixture
def cod_order(services, catalog, line):
    return services.settlement.place_cod_order(
        buyer_id="buyer-1",
        buyer_info=dict(SHIPPING),
        lines=[line(catalog["product"], 4, catalog["variant"])],
    )


@pytest.fixture
def paid_order(services, start_payment):
    return services.settlement.verify_and_commit(start_payment(quantity=4), {"signature": "valid"})


def _event_statuses(db_session, order_id):
    return [e.status for e in db_session.query(TrackingEvent).filter_by(order_id=order_id).order_by(TrackingEvent.id)]


class TestStatusTransitions:
    def test_happy_path_appends_tracking(self, services, paid_order, db_session, notifier):
        for status in ("PROCESSING", "SHIPPED", "DELIVERED"):
            services.orders.update_status(paid_order.id, status)

        order = services.orders.get(paid_order.id)
        assert order.status == "DELIVERED"
        assert order.shipped_at is not None
        assert order.delivered_at is not None
        assert _event_statuses(db_session, order.id) == ["CONFIRMED", "PROCESSING", "SHIPPED", "DELIVERED"]
        assert ("status", order.id, "SHIPPED", "DELIVERED") in notifier.events

    def test_illegal_transition_is_rejected(self, services, paid_order, db_session):
        with pytest.raises(InvalidTransition) as exc:
            services.orders.update_status(paid_order.id, "DELIVERED")

        assert exc.value.details == {"from": "CONFIRMED", "to": "DELIVERED"}
        assert services.orders.get(paid_order.id).status == "CONFIRMED"
        assert _event_statuses(db_session, paid_order.id) == ["CONFIRMED"]

    def test_refunded_only_through_refunds(self, services, paid_order):
        with pytest.raises(ValidationError):
            services.orders.update_status(paid_order.id, "REFUNDED")

    def test_same_status_only_updates_notes(self, services, paid_order, db_session, notifier):
        services.orders.update_status(paid_order.id, "CONFIRMED", admin_notes="Gift wrap")

        order = services.orders.get(paid_order.id)
        assert order.admin_notes == "Gift wrap"
        assert _event_statuses(db_session, order.id) == ["CONFIRMED"]
        assert not any(e[0] == "status" for e in notifier.events)

    def test_cod_delivery_marks_payment_collected(self, services, cod_order):
        services.orders.update_status(cod_order.id, "SHIPPED")
        order = services.orders.update_status(cod_order.id, "DELIVERED")

        assert order.payment_status == "PAID"

    def test_cancelling_unpaid_order_restores_stock(self, services, cod_order, catalog, db_session):
        services.orders.update_status(cod_order.id, "CANCELLED")

        db_session.refresh(catalog["variant"])
        assert catalog["variant"].stock == 100

    def test_cancelling_paid_order_keeps_stock_for_refund(self, services, paid_order, catalog, db_session):
        services.orders.update_status(paid_order.id, "CANCELLED")
        db_session.refresh(catalog["variant"])
        assert catalog["variant"].stock == 96

        services.refunds.refund(paid_order.id, reason="Cancelled by buyer")
        db_session.refresh(catalog["variant"])
        assert catalog["variant"].stock == 100


class TestTracking:
    def test_tracking_ships_order(self, services, paid_order, db_session):
        order = services.orders.update_tracking(
            paid_order.id,
            tracking_number="AWB123",
            carrier="BlueDart",
            tracking_url="https://track.test/AWB123",
            estimated_delivery=parse_iso_datetime("2026-11-01T00:00:00Z"),
        )

        assert order.status == "SHIPPED"
        assert order.to_dict()["estimated_delivery"] == "2026-11-01T00:00:00Z"
        events = db_session.query(TrackingEvent).filter_by(order_id=order.id).order_by(TrackingEvent.id).all()
        assert "BlueDart" in events[-1].description

    def test_second_tracking_update_appends_event(self, services, paid_order, db_session):
        services.orders.update_tracking(paid_order.id, tracking_number="AWB1", carrier="BlueDart")
        order = services.orders.update_tracking(paid_order.id, tracking_number="AWB2", carrier="Delhivery")

        assert order.tracking_number == "AWB2"
        assert _event_statuses(db_session, order.id) == ["CONFIRMED", "SHIPPED", "SHIPPED"]

    def test_delivered_order_cannot_be_reshipped(self, services, cod_order):
        services.orders.update_status(cod_order.id, "SHIPPED")
        services.orders.update_status(cod_order.id, "DELIVERED")

        with pytest.raises(InvalidTransition):
            services.orders.update_tracking(cod_order.id, tracking_number="X", carrier="Y")


class TestQueries:
    def test_buyer_cannot_see_other_orders(self, services, paid_order):
        with pytest.raises(NotFound):
            services.orders.get(paid_order.id, buyer_id="someone-else")
        with pytest.raises(NotFound):
            services.orders.get_by_number(paid_order.order_number, buyer_id="someone-else")

    def test_list_for_buyer_paginates(self, services, catalog, line):
        for _ in range(3):
            services.settlement.place_cod_order(
                buyer_id="buyer-1",
                buyer_info=dict(SHIPPING),
                lines=[line(catalog["product"], 1, catalog["variant"])],
            )

        result = services.orders.list_for_buyer("buyer-1", page=1, per_page=2)

        assert result["count"] == 2
        assert result["pagination"]["total"] == 3
        assert result["pagination"]["has_next"] is True
        assert services.orders.list_for_buyer("buyer-2")["pagination"]["total"] == 0

    def test_admin_search(self, services, paid_order, cod_order):
        result = services.orders.list_all(payment_status="paid")
        assert [o["id"] for o in result["items"]] == [paid_order.id]

        result = services.orders.list_all(search=cod_order.order_number)
        assert [o["id"] for o in result["items"]] == [cod_order.id]
