from unittest.mock import MagicMock

import pytest
from fastapi import BackgroundTasks

from auth import RequestContext
from errors import NotFound
from notifications import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationService,
    order_status_events,
    payment_events,
    quote_events,
)
from permissions import Role
from schemas import OrderStatus, PaymentStatus, QuoteStatus

ADMIN = RequestContext(user_id="admin-1", email="admin@example.com", role=Role.ADMIN)
USER = RequestContext(user_id="user-1", email="buyer@example.com", role=Role.USER)
ORDER = {"id": "ord-1", "user_id": "user-1", "customer_name": "Aline", "total_amount": 2500.0}


class TestDispatcher:
    def test_deliver_persists_unread_notification(self, store):
        dispatcher = NotificationDispatcher(store)
        notification_id = dispatcher.deliver(NotificationEvent.for_user("user-1", "ORDER_PAID", "Paid", "ok"))

        doc = store.get_document("notifications", notification_id)
        assert doc["recipient_id"] == "user-1"
        assert doc["scope"] == "personal"
        assert doc["is_read"] is False

    def test_delivery_failure_is_logged_and_swallowed(self, caplog):
        failing = MagicMock()
        failing.create_document.side_effect = RuntimeError("database down")
        dispatcher = NotificationDispatcher(failing)

        assert dispatcher.deliver(NotificationEvent.for_admin("ADMIN_NEW_ORDER", "New", "order")) is None
        assert "Failed to deliver ADMIN_NEW_ORDER" in caplog.text

    def test_emit_defers_to_background_tasks(self):
        store = MagicMock()
        tasks = BackgroundTasks()
        dispatcher = NotificationDispatcher(store, tasks)

        dispatcher.emit_all([
            NotificationEvent.for_admin("A", "a", "a"),
            NotificationEvent.for_user("user-1", "B", "b", "b"),
        ])

        assert len(tasks.tasks) == 2
        store.create_document.assert_not_called()


class TestEventBuilders:
    def test_admin_status_change_notifies_customer(self):
        events = order_status_events(ORDER, OrderStatus.CONFIRMED, ADMIN)
        assert [(e.recipient_id, e.type) for e in events] == [("user-1", "ORDER_CONFIRMED")]

    def test_customer_completion_notifies_admin(self):
        events = order_status_events(ORDER, OrderStatus.COMPLETED, USER)
        assert [(e.scope, e.type) for e in events] == [("admin", "ADMIN_ORDER_COMPLETED")]

    def test_cancellation_notifies_both(self):
        types = {e.type for e in order_status_events(ORDER, OrderStatus.CANCELLED, ADMIN)}
        assert types == {"ORDER_CANCELLED", "ADMIN_ORDER_CANCELLED"}

    def test_payment_events(self):
        assert [e.type for e in payment_events(ORDER, PaymentStatus.PAID, "RWF")] == ["ORDER_PAID"]
        assert "RWF 2500.00" in payment_events(ORDER, PaymentStatus.PAID, "RWF")[0].message
        assert len(payment_events(ORDER, PaymentStatus.FAILED, "RWF")) == 2
        assert payment_events(ORDER, PaymentStatus.PENDING, "RWF") == []

    def test_quote_events(self):
        quote = {"id": "QT-2026-000001", "user_id": "user-1", "email": "buyer@example.com", "final_amount": 3700}
        assert quote_events(quote, QuoteStatus.PENDING, "RWF")[0].scope == "admin"
        responded = quote_events(quote, QuoteStatus.RESPONDED, "RWF")[0]
        assert responded.recipient_id == "user-1"
        assert "RWF 3700.00" in responded.message
        assert quote_events(quote, QuoteStatus.ACCEPTED, "RWF")[0].type == "QUOTATION_ACCEPTED"
        assert quote_events(quote, QuoteStatus.EXPIRED, "RWF") == []


class TestNotificationService:
    def _seed(self, store):
        dispatcher = NotificationDispatcher(store)
        mine = dispatcher.deliver(NotificationEvent.for_user("user-1", "ORDER_PAID", "Paid", "ok"))
        theirs = dispatcher.deliver(NotificationEvent.for_user("user-2", "ORDER_PAID", "Paid", "ok"))
        admin = dispatcher.deliver(NotificationEvent.for_admin("ADMIN_NEW_ORDER", "New", "order"))
        return mine, theirs, admin

    def test_personal_listing_excludes_others(self, store):
        mine, _, _ = self._seed(store)
        service = NotificationService(store)
        assert [n["id"] for n in service.list_personal(USER)] == [mine]
        assert service.unread_count(USER) == 1

    def test_mark_read_requires_ownership(self, store):
        _, theirs, admin = self._seed(store)
        service = NotificationService(store)
        with pytest.raises(NotFound):
            service.mark_read(USER, theirs)
        with pytest.raises(NotFound):
            service.mark_read(USER, admin)
        assert service.mark_read(ADMIN, admin)["is_read"] is True

    def test_mark_all_read(self, store):
        self._seed(store)
        service = NotificationService(store)
        assert service.mark_all_read(USER) == 1
        assert service.unread_count(USER) == 0
        assert len(service.list_admin(unread_only=True)) == 1

    def test_guest_records_belong_to_matching_email(self, store):
        dispatcher = NotificationDispatcher(store)
        guest = dispatcher.deliver(NotificationEvent.for_user("guest:buyer@example.com", "QUOTATION_SENT", "Q", "q"))
        service = NotificationService(store)

        assert [n["id"] for n in service.list_personal(USER)] == [guest]
        assert service.mark_read(USER, guest)["is_read"] is True
        stranger = RequestContext(user_id="user-2", email="someone@example.com", role=Role.USER)
        with pytest.raises(NotFound):
            service.delete(stranger, guest)


class TestUnreadCountApi:
    def test_admin_scope(self, client, store, admin_headers):
        dispatcher = NotificationDispatcher(store)
        dispatcher.deliver(NotificationEvent.for_admin("ADMIN_NEW_ORDER", "New", "order"))
        dispatcher.deliver(NotificationEvent.for_admin("ADMIN_NEW_ORDER", "New", "order"))

        response = client.get("/api/notifications/unread-count?scope=admin", headers=admin_headers)
        assert response.json() == {"count": 2}
        assert client.get("/api/notifications/unread-count", headers=admin_headers).json() == {"count": 0}

        client.post("/api/notifications/read-all?scope=admin", headers=admin_headers)
        response = client.get("/api/notifications/unread-count?scope=admin", headers=admin_headers)
        assert response.json() == {"count": 0}

    def test_admin_scope_needs_admin(self, client, user_headers):
        response = client.get("/api/notifications/unread-count?scope=admin", headers=user_headers)
        assert response.status_code == 403
