import pytest

from slotwise.services.no_show_detection import NoShowDetectionService
from tests.factories.booking_builders import MONDAY, at, create_booking


@pytest.fixture
def detector(db, booking_service):
    return NoShowDetectionService(db, booking_service=booking_service, grace_period_hours=2)


@pytest.fixture
def bookings(booking_service, provider, service):
    return {
        "late": create_booking(booking_service, provider, service, at(MONDAY, 13), confirm=True),
        "recent": create_booking(booking_service, provider, service, at(MONDAY, 15), confirm=True),
        "unpaid": create_booking(booking_service, provider, service, at(MONDAY, 9)),
    }


class TestNoShowDetection:
    def test_candidates_respect_grace_period(self, detector, bookings):
        candidates = detector.find_candidates(now=at(MONDAY, 16))
        assert [b.id for b in candidates] == [bookings["late"].id]

    def test_sweep_marks_candidates(self, detector, booking_service, bookings):
        summary = detector.process_no_shows(now=at(MONDAY, 16))

        assert (summary.total_found, summary.total_processed, summary.total_failed) == (1, 1, 0)
        late = booking_service.get_booking(bookings["late"].id)
        assert late.status == "no_show"
        assert late.cancellation_reason == detector.automatic_reason
        assert "2h grace period" in detector.automatic_reason
        assert booking_service.get_booking(bookings["recent"].id).status == "confirmed"
        assert booking_service.get_booking(bookings["unpaid"].id).status == "pending"

    def test_failures_are_collected(self, detector, booking_service, payment_gateway, bookings):
        payment_gateway.fail_refunds = True

        summary = detector.process_no_shows(now=at(MONDAY, 16))

        assert summary.total_failed == 1
        assert summary.errors == [
            {
                "booking_id": bookings["late"].id,
                "error": "Failed to process refund for no-show",
            }
        ]
        assert booking_service.get_booking(bookings["late"].id).status == "confirmed"
        assert summary.to_response().total_failed == 1

    def test_statistics(self, detector, provider, bookings):
        detector.process_no_shows(now=at(MONDAY, 16))

        stats = detector.get_statistics(provider.id)

        assert stats == {"total_no_shows": 1, "total_fees_charged": 3000, "average_fee": 3000}
        assert detector.get_statistics(provider.id, date_from=at(MONDAY, 14))["total_no_shows"] == 0

    def test_statistics_without_no_shows(self, detector, provider):
        assert detector.get_statistics(provider.id)["average_fee"] == 0
