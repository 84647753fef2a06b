"""
Order audit log tests.

Verifies:
- One event per successful transition, none for rejected ones
- Events carry the explicit actor and structured metadata
- Listing filters by actor email, action, date range and location
"""

from datetime import timedelta

import pytest

from fuelops.models import OrderAuditEvent
from fuelops.services import audit_service, order_service
from fuelops.validation import ConflictError, ValidationError
from fuelops.time_utils import utcnow


def test_failed_transition_writes_nothing(make_order, admin, db_session):
    order = make_order()
    with pytest.raises(ConflictError):
        order_service.confirm_truck_exit(order.id, actor_user_id=admin.id)
    assert db_session.query(OrderAuditEvent).count() == 0


def test_event_records_actor_and_metadata(make_released_order, users):
    order = make_released_order()
    order_service.confirm_truck_exit(order.id, actor_user_id=users["security"].id)

    exit_event = audit_service.order_history(order.id)[-1]
    data = exit_event.to_dict()
    assert data["action"] == "truck_exit"
    assert data["actor"]["email"] == "security@depot.example"
    assert data["metadata"] == {"truck_number": "KJA-123XY"}
    assert data["timestamp"].endswith("Z")


def test_record_event_rejects_unknown_action(make_order, admin):
    order = make_order()
    with pytest.raises(ValueError):
        audit_service.record_event(order_id=order.id, action="refund", actor_user_id=admin.id)


def test_record_event_requires_actor(make_order):
    order = make_order()
    with pytest.raises(ValueError):
        audit_service.record_event(order_id=order.id, action="release", actor_user_id=None)


class TestListEvents:

    def test_filter_by_user_email_case_insensitive(self, make_order, users):
        first = make_order()
        second = make_order()
        order_service.confirm_payment(first.id, actor_user_id=users["finance"].id)
        order_service.confirm_payment(second.id, actor_user_id=users["admin"].id)

        page = audit_service.list_events(user_email="FINANCE@depot.example")
        assert page["count"] == 1
        assert page["results"][0]["order"]["id"] == first.id

    def test_filter_by_action(self, make_released_order):
        make_released_order()
        page = audit_service.list_events(action="release")
        assert page["count"] == 1
        assert page["results"][0]["action"] == "release"

    def test_filter_by_location(self, make_paid_order, other_depot):
        make_paid_order()
        make_paid_order(location=other_depot)

        page = audit_service.list_events(location_id=other_depot.id)
        assert page["count"] == 1
        assert page["results"][0]["order"]["location_id"] == other_depot.id

    def test_date_range_is_inclusive(self, make_paid_order):
        make_paid_order()
        now = utcnow()

        assert audit_service.list_events(start=now - timedelta(minutes=5), end=now + timedelta(minutes=5))["count"] == 1
        assert audit_service.list_events(start=now + timedelta(hours=1))["count"] == 0

    def test_newest_first(self, make_released_order):
        make_released_order()
        actions = [ev["action"] for ev in audit_service.list_events()["results"]]
        assert actions == ["release", "payment_confirmation"]

    def test_unknown_action_rejected(self, db_session):
        with pytest.raises(ValidationError):
            audit_service.list_events(action="refund")

    def test_inverted_range_rejected(self, db_session):
        now = utcnow()
        with pytest.raises(ValidationError):
            audit_service.list_events(start=now, end=now - timedelta(days=1))
