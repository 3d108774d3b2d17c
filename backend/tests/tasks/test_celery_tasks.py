"""Tests for the Celery wiring and the booking / outbox tasks."""

from datetime import datetime, timezone
from unittest.mock import patch

from celery.exceptions import Retry
import pytest
from sqlalchemy.orm import sessionmaker

from slotwise.services.notification_service import DeliveryOutcome
from slotwise.tasks import booking_tasks, notification_tasks
from slotwise.tasks.beat_schedule import get_beat_schedule
from slotwise.tasks.celery_app import celery_app
from tests.factories.booking_builders import create_booking


class TestCeleryWiring:
    def test_tasks_are_registered(self):
        celery_app.loader.import_default_modules()
        for name in (
            "bookings.detect_no_shows",
            "outbox.dispatch_pending",
            "outbox.deliver_event",
            "slotwise.health_check",
        ):
            assert name in celery_app.tasks

    def test_beat_schedule(self):
        schedule = get_beat_schedule()

        assert schedule["detect-no-shows"]["task"] == "bookings.detect_no_shows"
        assert schedule["dispatch-notification-outbox"]["task"] == "outbox.dispatch_pending"
        assert celery_app.conf.beat_schedule.keys() == schedule.keys()

    def test_routes(self):
        assert celery_app.conf.task_routes["outbox.*"] == {"queue": "notifications"}


class TestDetectNoShows:
    def test_sweeps_with_a_fresh_session(
        self, db, db_engine, booking_service, provider, service, monkeypatch
    ):
        start = datetime(2020, 1, 6, 10, 0, tzinfo=timezone.utc)
        booking = create_booking(
            booking_service,
            provider,
            service,
            start,
            confirm=True,
            now=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )
        db.commit()
        monkeypatch.setattr(
            booking_tasks,
            "SessionLocal",
            sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False),
        )

        result = booking_tasks.detect_no_shows()

        assert result["total_found"] == 1
        assert result["total_processed"] == 1
        db.expire_all()
        assert booking_service.get_booking(booking.id).status == "no_show"


class TestDispatchPending:
    @patch("slotwise.tasks.notification_tasks.deliver_event")
    @patch("slotwise.tasks.notification_tasks.NotificationDispatcher")
    @patch("slotwise.tasks.notification_tasks.SessionLocal")
    def test_schedules_one_delivery_per_event(self, mock_session, mock_dispatcher, mock_deliver):
        mock_dispatcher.return_value.due_event_ids.return_value = ["evt-1", "evt-2"]

        assert notification_tasks.dispatch_pending() == 2

        assert mock_deliver.apply_async.call_count == 2
        mock_deliver.apply_async.assert_any_call(("evt-1",), queue="notifications")
        mock_session.return_value.commit.assert_called_once()
        mock_session.return_value.close.assert_called_once()

    @patch("slotwise.tasks.notification_tasks.deliver_event")
    @patch("slotwise.tasks.notification_tasks.NotificationDispatcher")
    @patch("slotwise.tasks.notification_tasks.SessionLocal")
    def test_nothing_due(self, mock_session, mock_dispatcher, mock_deliver):
        mock_dispatcher.return_value.due_event_ids.return_value = []

        assert notification_tasks.dispatch_pending() == 0
        mock_deliver.apply_async.assert_not_called()


class TestDeliverEvent:
    @patch("slotwise.tasks.notification_tasks.NotificationDispatcher")
    @patch("slotwise.tasks.notification_tasks.SessionLocal")
    def test_sent(self, mock_session, mock_dispatcher):
        mock_dispatcher.return_value.deliver.return_value = DeliveryOutcome(
            event_id="evt-1", status="sent", attempt_count=1
        )

        assert notification_tasks.deliver_event("evt-1") == "evt-1"
        mock_session.return_value.commit.assert_called_once()

    @patch("slotwise.tasks.notification_tasks.NotificationDispatcher")
    @patch("slotwise.tasks.notification_tasks.SessionLocal")
    def test_retry_is_raised_after_commit(self, mock_session, mock_dispatcher):
        mock_dispatcher.return_value.deliver.return_value = DeliveryOutcome(
            event_id="evt-1", status="retry", attempt_count=1, backoff_seconds=30, error="down"
        )

        with pytest.raises(Retry):
            notification_tasks.deliver_event("evt-1")
        mock_session.return_value.commit.assert_called_once()

    @pytest.mark.parametrize("status", ["failed", "skipped", "missing"])
    @patch("slotwise.tasks.notification_tasks.NotificationDispatcher")
    @patch("slotwise.tasks.notification_tasks.SessionLocal")
    def test_no_retry_for_final_outcomes(self, mock_session, mock_dispatcher, status):
        mock_dispatcher.return_value.deliver.return_value = DeliveryOutcome(
            event_id="evt-1", status=status
        )

        assert notification_tasks.deliver_event("evt-1") is None

    @patch("slotwise.tasks.notification_tasks.NotificationDispatcher")
    @patch("slotwise.tasks.notification_tasks.SessionLocal")
    def test_dispatcher_error_rolls_back(self, mock_session, mock_dispatcher):
        mock_dispatcher.return_value.deliver.side_effect = RuntimeError("db gone")

        with pytest.raises(RuntimeError):
            notification_tasks.deliver_event("evt-1")

        session = mock_session.return_value
        session.rollback.assert_called_once()
        session.commit.assert_not_called()
        session.close.assert_called_once()
