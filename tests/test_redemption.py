"""
Tests for the redemption gate
"""
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from repair_booking import repository
from repair_booking.errors import (
    BadSignature,
    Expired,
    OfferInactive,
    OfferNotFound,
    RequestAlreadyBooked,
    SlotAlreadyBooked,
    TechnicianUnavailable,
)
from repair_booking.models import Booking, BookingRequest, TechTimeOff
from repair_booking.services.redemption import (
    check_offer_redeemable,
    record_failed_payment,
    redeem,
    select_offer,
    sync_calendar_event,
)
from repair_booking.services.token_codec import now_ms, sign_token
from repair_booking.services.zones import Slot

from tests.conftest import SECRET

MON = date(2026, 2, 9)


@pytest.mark.integration
class TestRedeem:
    """Happy path and hard gates"""

    def test_redeem_books_slot(self, test_db_session, make_request, make_offer):
        request = make_request()
        offer = make_offer(request, MON, 1)

        result = redeem(test_db_session, offer.offer_token, SECRET, payment_session_id="cs_1")

        booking = result.booking
        assert booking.id is not None
        assert booking.zone_code == "B"
        assert booking.slot_code == "2026-02-09#1"
        assert booking.window_start == datetime(2026, 2, 9, 8, 0)
        assert booking.window_end == datetime(2026, 2, 9, 10, 0)
        assert booking.selected_option_id == offer.id
        assert booking.job_ref.startswith("DR-")
        assert not result.already_processed

        test_db_session.refresh(request)
        test_db_session.refresh(offer)
        assert request.status == "booked"
        assert offer.is_active is False

    def test_expired_token_never_reaches_store(self, test_db_session, make_request, make_offer, monkeypatch):
        request = make_request()
        offer = make_offer(request, MON, 1, expires_at_ms=now_ms() - 1)

        lookup = MagicMock(side_effect=AssertionError("store was queried"))
        monkeypatch.setattr(repository, "get_offer_by_token", lookup)

        with pytest.raises(Expired):
            redeem(test_db_session, offer.offer_token, SECRET)
        lookup.assert_not_called()
        assert test_db_session.query(Booking).count() == 0

    def test_bad_signature(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(), MON, 1)
        with pytest.raises(BadSignature):
            redeem(test_db_session, offer.offer_token, "wrong-secret")

    def test_unknown_offer(self, test_db_session):
        token = sign_token({"request_id": 1, "exp": now_ms() + 60_000}, SECRET)
        with pytest.raises(OfferNotFound):
            redeem(test_db_session, token, SECRET)

    def test_inactive_offer(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(), MON, 1)
        offer.is_active = False
        test_db_session.commit()

        with pytest.raises(OfferInactive):
            redeem(test_db_session, offer.offer_token, SECRET)
        assert test_db_session.query(Booking).count() == 0


@pytest.mark.integration
class TestSiblingCascade:
    """Every offer for the same physical window is retired"""

    def test_siblings_deactivated(self, test_db_session, make_request, make_offer):
        winner = make_offer(make_request(name="First"), MON, 1)
        sibling_a = make_offer(make_request(name="Second"), MON, 1)
        sibling_b = make_offer(make_request(name="Third"), MON, 1, offer_group="more")
        other_slot = make_offer(make_request(name="Fourth"), MON, 2)

        result = redeem(test_db_session, winner.offer_token, SECRET)

        assert result.deactivated == 3
        for offer in (winner, sibling_a, sibling_b):
            test_db_session.refresh(offer)
            assert offer.is_active is False
        test_db_session.refresh(other_slot)
        assert other_slot.is_active is True

        for offer in (sibling_a, sibling_b):
            with pytest.raises(OfferInactive):
                redeem(test_db_session, offer.offer_token, SECRET)

    def test_other_appointment_type_unaffected(self, test_db_session, make_request, make_offer):
        standard = make_offer(make_request(), MON, 1)
        full = make_offer(make_request(appointment_type="full_service"), MON, 1)

        redeem(test_db_session, standard.offer_token, SECRET)

        test_db_session.refresh(full)
        assert full.is_active is True


@pytest.mark.integration
class TestAtMostOneBooking:
    """The unique constraint is the guarantee"""

    def test_n_inserts_one_winner(self, test_db_session):
        slot = Slot.from_template(MON, 3, "B")
        successes = 0
        conflicts = 0
        for n in range(5):
            booking = Booking(
                zone_code="B",
                appointment_type="standard",
                slot_code=slot.slot_code,
                window_start=slot.start_at,
                window_end=slot.end_at,
                job_ref=f"DR-RACE{n}",
            )
            try:
                repository.insert_booking(test_db_session, booking)
                test_db_session.commit()
                successes += 1
            except SlotAlreadyBooked:
                conflicts += 1

        assert successes == 1
        assert conflicts == 4
        assert test_db_session.query(Booking).count() == 1

    def test_race_past_the_active_check(self, test_db_session, make_request, make_offer):
        """A competitor that read its offer as active before the winner committed"""
        winner = make_offer(make_request(name="First"), MON, 1)
        loser = make_offer(make_request(name="Second"), MON, 1)

        redeem(test_db_session, winner.offer_token, SECRET)

        # Replay the competitor's stale view of its offer
        loser.is_active = True
        test_db_session.commit()

        with pytest.raises(SlotAlreadyBooked):
            redeem(test_db_session, loser.offer_token, SECRET)

        assert test_db_session.query(Booking).count() == 1
        loser_request = test_db_session.get(BookingRequest, loser.request_id)
        assert loser_request.status == "sent"

    def test_concurrent_offers_all_but_one_rejected(self, test_db_session, make_request, make_offer):
        offers = [make_offer(make_request(name=f"Customer {n}"), MON, 4) for n in range(4)]

        results = []
        for offer in offers:
            # Each attempt sees its own offer as still active
            offer.is_active = True
            test_db_session.commit()
            try:
                redeem(test_db_session, offer.offer_token, SECRET)
                results.append("booked")
            except SlotAlreadyBooked:
                results.append("conflict")

        assert results.count("booked") == 1
        assert results.count("conflict") == 3


@pytest.mark.integration
class TestPaymentSessionIdempotency:
    """Redelivered payment events"""

    def test_retry_short_circuits(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(), MON, 1)
        dispatcher = MagicMock()
        dispatcher.send_booking_confirmation.return_value = {"sms": {"status": "success"}}

        first = redeem(test_db_session, offer.offer_token, SECRET, payment_session_id="cs_42", dispatcher=dispatcher)
        second = redeem(test_db_session, offer.offer_token, SECRET, payment_session_id="cs_42", dispatcher=dispatcher)

        assert second.already_processed
        assert second.booking.id == first.booking.id
        assert dispatcher.send_booking_confirmation.call_count == 1
        assert test_db_session.query(Booking).count() == 1

    def test_different_session_same_offer_rejected(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(), MON, 1)
        redeem(test_db_session, offer.offer_token, SECRET, payment_session_id="cs_1")

        with pytest.raises(OfferInactive):
            redeem(test_db_session, offer.offer_token, SECRET, payment_session_id="cs_2")


@pytest.mark.integration
class TestOneBookingPerRequest:
    """A request holds at most one booking whichever of its links is paid"""

    def test_other_links_retired_on_booking(self, test_db_session, make_request, make_offer):
        request = make_request()
        first = make_offer(request, MON, 1)
        second = make_offer(request, MON, 5)

        result = redeem(test_db_session, first.offer_token, SECRET, payment_session_id="cs_1")

        assert result.deactivated == 2
        test_db_session.refresh(second)
        assert second.is_active is False
        with pytest.raises(OfferInactive):
            redeem(test_db_session, second.offer_token, SECRET, payment_session_id="cs_2")
        assert test_db_session.query(Booking).filter(Booking.request_id == request.id).count() == 1

    def test_booked_request_rejected_even_with_live_link(self, test_db_session, make_request, make_offer):
        request = make_request()
        first = make_offer(request, MON, 1)
        second = make_offer(request, MON, 5)
        redeem(test_db_session, first.offer_token, SECRET)

        # A link left active after the booking, e.g. one seeded later
        second.is_active = True
        test_db_session.commit()

        with pytest.raises(RequestAlreadyBooked):
            check_offer_redeemable(test_db_session, second.offer_token, SECRET)
        with pytest.raises(RequestAlreadyBooked):
            redeem(test_db_session, second.offer_token, SECRET, payment_session_id="cs_2")
        assert test_db_session.query(Booking).count() == 1


@pytest.mark.integration
class TestRecordFailedPayment:
    """Paid checkouts that could not be booked"""

    def test_marks_request_failed(self, test_db_session, make_request):
        request = make_request(status="selected")

        recorded = record_failed_payment(test_db_session, request.id, "cs_9", "pi_9", "slot_already_booked")

        assert recorded.id == request.id
        test_db_session.refresh(request)
        assert request.status == "failed"
        assert (request.failed_payment_session_id, request.failed_payment_intent) == ("cs_9", "pi_9")
        assert request.failure_reason == "slot_already_booked"

    def test_booked_request_keeps_status(self, test_db_session, make_request):
        request = make_request(status="booked")

        record_failed_payment(test_db_session, request.id, "cs_9", None, "already_booked")

        test_db_session.refresh(request)
        assert request.status == "booked"
        assert request.failed_payment_session_id == "cs_9"

    @pytest.mark.parametrize("request_id", [None, 999])
    def test_unknown_request(self, test_db_session, request_id):
        assert record_failed_payment(test_db_session, request_id, "cs_9", None, "expired") is None


@pytest.mark.integration
class TestSideEffects:
    """Notification and calendar failures never undo a booking"""

    def test_notification_failure_reported(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(), MON, 1)
        dispatcher = MagicMock()
        dispatcher.send_booking_confirmation.return_value = {
            "sms": {"status": "error", "message": "Error sending SMS: boom"},
        }

        result = redeem(test_db_session, offer.offer_token, SECRET, dispatcher=dispatcher)

        assert result.notifications["sms"]["status"] == "error"
        assert test_db_session.query(Booking).count() == 1
        assert result.to_dict()["ok"] is True

    def test_calendar_event_recorded(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(), MON, 1)
        calendar = MagicMock()
        calendar.create_booking_event.return_value = {"status": "success", "event_id": "evt_1"}

        result = redeem(test_db_session, offer.offer_token, SECRET, calendar=calendar)

        assert result.calendar["event_id"] == "evt_1"
        assert result.booking.google_event_id == "evt_1"

    def test_calendar_failure_reported(self, test_db_session, sample_booking):
        calendar = MagicMock()
        calendar.create_booking_event.return_value = {"status": "error", "message": "Failed to create event"}

        outcome = sync_calendar_event(test_db_session, sample_booking, calendar)

        assert outcome["status"] == "error"
        assert sample_booking.google_event_id is None


@pytest.mark.integration
class TestSelectOffer:
    """Selection ahead of checkout"""

    def test_marks_request_selected(self, test_db_session, make_request, make_offer):
        request = make_request()
        offer = make_offer(request, MON, 1)

        selected = select_offer(test_db_session, offer.offer_token, SECRET)

        assert selected.id == offer.id
        test_db_session.refresh(request)
        assert request.status == "selected"
        assert test_db_session.query(Booking).count() == 0

    def test_booked_window_rejected(self, test_db_session, make_request, make_offer, sample_booking):
        offer = make_offer(make_request(name="Late"), MON, 1)
        with pytest.raises(OfferInactive):
            check_offer_redeemable(test_db_session, offer.offer_token, SECRET)

    def test_booked_request_rejected(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(status="booked"), MON, 2)
        with pytest.raises(RequestAlreadyBooked):
            select_offer(test_db_session, offer.offer_token, SECRET)

    def test_time_off_blocks_only_when_every_tech_is_off(
        self, test_db_session, make_request, make_offer, sample_technician
    ):
        offer = make_offer(make_request(), MON, 1)
        test_db_session.add(TechTimeOff(
            tech_id=sample_technician.id,
            start_ts=datetime(2026, 2, 9, 9, 0),
            end_ts=datetime(2026, 2, 9, 12, 0),
            type="range",
        ))
        test_db_session.commit()

        with pytest.raises(TechnicianUnavailable):
            select_offer(test_db_session, offer.offer_token, SECRET)

    def test_adjacent_time_off_does_not_block(self, test_db_session, make_request, make_offer, sample_technician):
        """Time off ending exactly at the window start does not overlap"""
        offer = make_offer(make_request(), MON, 1)
        test_db_session.add(TechTimeOff(
            tech_id=sample_technician.id,
            start_ts=datetime(2026, 2, 9, 6, 0),
            end_ts=datetime(2026, 2, 9, 8, 0),
        ))
        test_db_session.commit()

        assert select_offer(test_db_session, offer.offer_token, SECRET).id == offer.id

    def test_no_mapped_technician_allows_selection(self, test_db_session, make_request, make_offer):
        offer = make_offer(make_request(zone_code="C"), date(2026, 2, 6), 1)
        assert select_offer(test_db_session, offer.offer_token, SECRET).id == offer.id
