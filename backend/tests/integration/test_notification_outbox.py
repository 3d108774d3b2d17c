"""Outbox enqueue idempotency and dispatcher delivery bookkeeping."""

from sqlalchemy import update
import pytest

from slotwise.models import EventOutbox
from slotwise.services.notification_service import (
    BACKOFF_SECONDS,
    MAX_DELIVERY_ATTEMPTS,
    NotificationDispatcher,
    NotificationService,
)
from tests.factories.booking_builders import MONDAY, at, create_booking


@pytest.fixture
def booking(booking_service, provider, service):
    return create_booking(booking_service, provider, service, at(MONDAY, 13))


@pytest.fixture
def created_event(booking_service, booking):
    return booking_service.notification_service.list_booking_events(booking.id)[0]


@pytest.fixture
def dispatcher(db):
    return NotificationDispatcher(db)


def _reload(db, event_id):
    db.expire_all()
    return db.get(EventOutbox, event_id)


class TestEnqueue:
    def test_same_booking_version_is_enqueued_once(self, db, booking, created_event):
        notifications = NotificationService(db)

        again = notifications.enqueue_booking_event(booking, "booking.created")
        db.commit()

        assert again.id == created_event.id
        assert len(notifications.list_booking_events(booking.id)) == 1

    def test_event_payload(self, created_event, booking):
        assert created_event.event_type == "booking.created"
        assert created_event.status == "PENDING"
        assert created_event.attempt_count == 0
        assert created_event.idempotency_key.startswith(f"booking:{booking.id}:booking.created:")
        assert created_event.payload["recipients"] == ["provider"]
        assert created_event.payload["booking_date"] == "2030-06-03T13:00:00+00:00"

    def test_extra_payload_is_merged(self, db, booking):
        notifications = NotificationService(db)
        event = notifications.enqueue_booking_event(
            booking, "booking.refund_issued", {"refunded_amount": 5000}
        )
        assert event.payload["refunded_amount"] == 5000

    def test_unknown_event_type(self, db, booking):
        with pytest.raises(ValueError):
            NotificationService(db).enqueue_booking_event(booking, "booking.teleported")


class TestDispatcher:
    def test_due_events(self, dispatcher, created_event):
        assert dispatcher.due_event_ids() == [created_event.id]

    def test_delivery_marks_sent(self, db, dispatcher, created_event):
        outcome = dispatcher.deliver(created_event.id)
        db.commit()

        assert outcome.status == "sent"
        assert outcome.attempt_count == 1
        event = _reload(db, created_event.id)
        assert event.status == "SENT"
        assert event.attempt_count == 1
        assert dispatcher.due_event_ids() == []

    def test_sent_event_is_not_delivered_twice(self, db, dispatcher, created_event):
        dispatcher.deliver(created_event.id)
        db.commit()
        db.expire_all()

        assert dispatcher.deliver(created_event.id).status == "skipped"

    def test_transient_failure_is_rescheduled(self, db, dispatcher, created_event, monkeypatch):
        monkeypatch.setenv("NOTIFICATION_PROVIDER_RAISE_ON", "booking.created")

        outcome = dispatcher.deliver(created_event.id)
        db.commit()

        assert outcome.status == "retry"
        assert outcome.backoff_seconds == BACKOFF_SECONDS[0] == 30
        event = _reload(db, created_event.id)
        assert event.status == "PENDING"
        assert event.attempt_count == 1
        assert "Simulated transient failure" in event.last_error
        assert created_event.id not in dispatcher.due_event_ids()

    def test_last_attempt_fails_terminally(self, db, dispatcher, created_event, monkeypatch):
        db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == created_event.id)
            .values(attempt_count=MAX_DELIVERY_ATTEMPTS - 1)
        )
        db.commit()
        db.expire_all()
        monkeypatch.setenv("NOTIFICATION_PROVIDER_RAISE_ON", "*")

        outcome = dispatcher.deliver(created_event.id)
        db.commit()

        assert outcome.status == "failed"
        assert outcome.attempt_count == MAX_DELIVERY_ATTEMPTS
        assert _reload(db, created_event.id).status == "FAILED"

    def test_missing_event(self, dispatcher):
        assert dispatcher.deliver("01HZZZZZZZZZZZZZZZZZZZZZZZ").status == "missing"
