import pytest

from slotwise.schemas.availability import BlockedSlotCreate
from slotwise.services.conflict_checker import ConflictChecker
from tests.factories.booking_builders import MONDAY, NOW, at, create_booking


@pytest.fixture
def checker(db):
    return ConflictChecker(db)


@pytest.fixture
def booked(booking_service, provider, service):
    return create_booking(booking_service, provider, service, at(MONDAY, 13), confirm=True)


class TestConflictChecker:
    def test_overlapping_window_is_taken(self, checker, provider, booked):
        assert not checker.is_free(provider.id, at(MONDAY, 13, 30), 30)
        assert not checker.is_free(provider.id, at(MONDAY, 12, 30), 60)

    def test_touching_windows_are_free(self, checker, provider, booked):
        assert checker.is_free(provider.id, at(MONDAY, 14), 60)
        assert checker.is_free(provider.id, at(MONDAY, 12), 60)

    def test_conflict_details(self, checker, provider, booked):
        conflicts = checker.find_conflicts(provider.id, at(MONDAY, 13), 60)

        assert [c["booking_id"] for c in conflicts["bookings"]] == [booked.id]
        assert conflicts["bookings"][0]["status"] == "confirmed"
        assert conflicts["blocked_slots"] == []

    def test_pending_booking_occupies(self, checker, booking_service, provider, service):
        create_booking(booking_service, provider, service, at(MONDAY, 9))
        assert not checker.is_free(provider.id, at(MONDAY, 9), 60)

    def test_cancelled_booking_does_not_occupy(self, checker, booking_service, provider, booked):
        booking_service.cancel_booking(booked.id, "customer", now=NOW)
        assert checker.is_free(provider.id, at(MONDAY, 13), 60)

    def test_excluding_a_booking(self, checker, provider, booked):
        assert checker.is_free(provider.id, at(MONDAY, 13), 60, exclude_booking_id=booked.id)

    def test_other_provider_unaffected(self, checker, make_provider, booked):
        other = make_provider()
        assert checker.is_free(other.id, at(MONDAY, 13), 60)

    def test_blocked_slot_conflicts(self, checker, availability_service, provider):
        availability_service.create_blocked_slot(
            provider.id,
            BlockedSlotCreate(start_time=at(MONDAY, 10), end_time=at(MONDAY, 12), reason="Holiday"),
        )

        conflicts = checker.find_conflicts(provider.id, at(MONDAY, 11), 60)

        assert conflicts["bookings"] == []
        assert conflicts["blocked_slots"][0]["reason"] == "Holiday"
