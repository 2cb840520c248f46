import threading
import uuid
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from django.test import SimpleTestCase

from common.utils.clock import FixedClock
from services.dispatch import events
from services.dispatch.types import OfferStatus, RequestStatus
from services.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OfferAlreadyAcceptedError,
    ValidationError,
)
from services.offers import OfferLifecycleManager, parse_estimated_minutes, parse_price

from .fakes import T0, InMemoryRepository, RecordingNotifier, make_offer, make_operator, make_request

OWNER = "+48500100200"


class PriceAndEtaParsingTests(SimpleTestCase):

    def test_price_bounds_are_inclusive(self):
        self.assertEqual(parse_price(0, Decimal("100000")), Decimal("0"))
        self.assertEqual(parse_price("100000", Decimal("100000")), Decimal("100000"))
        self.assertEqual(parse_price(150.5, Decimal("100000")), Decimal("150.5"))

    def test_price_out_of_range_or_garbage(self):
        for bad in (-1, "-0.01", "100000.01", "abc", None, True, "NaN", "Infinity"):
            with self.subTest(price=bad):
                with self.assertRaises(ValidationError):
                    parse_price(bad, Decimal("100000"))

    def test_price_is_stored_in_whole_cents(self):
        self.assertEqual(str(parse_price("10.5", Decimal("100000"))), "10.50")
        self.assertEqual(str(parse_price("10.500", Decimal("100000"))), "10.50")
        for bad in ("99999.999", "0.001", 10.125):
            with self.subTest(price=bad):
                with self.assertRaises(ValidationError):
                    parse_price(bad, Decimal("100000"))

    def test_eta_is_optional_and_bounded(self):
        self.assertIsNone(parse_estimated_minutes(None, 1440))
        self.assertEqual(parse_estimated_minutes(0, 1440), 0)
        self.assertEqual(parse_estimated_minutes("1440", 1440), 1440)
        self.assertEqual(parse_estimated_minutes(25.0, 1440), 25)
        for bad in (-1, 1441, 12.5, "soon", False):
            with self.subTest(minutes=bad):
                with self.assertRaises(ValidationError):
                    parse_estimated_minutes(bad, 1440)


class SubmitOfferTests(SimpleTestCase):

    def setUp(self):
        self.clock = FixedClock(T0 + timedelta(seconds=10))
        self.operator = make_operator("Tow Team")
        self.repository = InMemoryRepository(operators=[self.operator])
        self.notifier = RecordingNotifier()
        self.manager = OfferLifecycleManager(self.repository, self.notifier, clock=self.clock)
        self.request = self.repository.add_request(make_request(phone_number=OWNER))

    def test_first_offer_moves_request_to_offer_received(self):
        result = self.manager.submit_offer(self.request.id, self.operator.id, "250", 20)

        self.assertTrue(result.success)
        stored = self.repository.get_offer(result.offer.id)
        self.assertEqual(stored.status, OfferStatus.PROPOSED)
        self.assertEqual(stored.price, Decimal("250"))
        self.assertEqual(stored.estimated_time_minutes, 20)
        self.assertEqual(stored.created_at, self.clock.now())

        request = self.repository.get_request(self.request.id)
        self.assertEqual(request.status, RequestStatus.OFFER_RECEIVED)
        self.assertEqual(request.version, self.request.version + 1)
        self.assertEqual(result.request.version, request.version)

    def test_offer_received_event_is_published(self):
        result = self.manager.submit_offer(self.request.id, self.operator.id, 99)

        request_id, name, payload = self.notifier.request_events[-1]
        self.assertEqual((request_id, name), (self.request.id, events.OFFER_RECEIVED))
        self.assertEqual(payload["offer_id"], str(result.offer.id))
        self.assertEqual(payload["operator_name"], "Tow Team")
        self.assertEqual(payload["price"], 99.0)

    def test_price_boundaries(self):
        with self.assertRaises(ValidationError):
            self.manager.submit_offer(self.request.id, self.operator.id, -1)
        with self.assertRaises(ValidationError):
            self.manager.submit_offer(self.request.id, self.operator.id, "100000.01")

        result = self.manager.submit_offer(self.request.id, self.operator.id, 100000)
        self.assertEqual(result.offer.price, Decimal("100000"))

    def test_invalid_input_leaves_no_trace(self):
        with self.assertRaises(ValidationError):
            self.manager.submit_offer(self.request.id, self.operator.id, 10, estimated_time_minutes=2000)

        self.assertEqual(self.repository.offers, {})
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.SEARCHING)
        self.assertEqual(self.notifier.request_events, [])

    def test_second_offer_keeps_offer_received(self):
        other = self.repository.add_operator(make_operator("Second"))
        self.manager.submit_offer(self.request.id, self.operator.id, 100)
        self.manager.submit_offer(self.request.id, other.id, 80)

        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.OFFER_RECEIVED)
        self.assertEqual(len(self.repository.list_offers(self.request.id, OfferStatus.PROPOSED)), 2)

    def test_unknown_request_or_operator(self):
        with self.assertRaises(NotFoundError):
            self.manager.submit_offer(uuid.uuid4(), self.operator.id, 10)
        with self.assertRaises(NotFoundError):
            self.manager.submit_offer(self.request.id, uuid.uuid4(), 10)

    def test_unavailable_operator_cannot_offer(self):
        busy = self.repository.add_operator(make_operator("Busy", is_available=False))

        with self.assertRaises(ConflictError) as ctx:
            self.manager.submit_offer(self.request.id, busy.id, 10)
        self.assertEqual(ctx.exception.message, "Operator not available")

    def test_closed_request_rejects_offers(self):
        for status in (RequestStatus.ACCEPTED, RequestStatus.CANCELLED, RequestStatus.COMPLETED):
            request = self.repository.add_request(make_request(status=status))
            with self.subTest(status=status):
                with self.assertRaises(ConflictError):
                    self.manager.submit_offer(request.id, self.operator.id, 10)

    def _bid_concurrently(self, request, operators):
        barrier = threading.Barrier(len(operators))
        original_get_operator = self.repository.get_operator
        outcomes = {}

        def synchronised_get_operator(operator_id):
            # Both bidders have read the request before either writes
            operator = original_get_operator(operator_id)
            barrier.wait(timeout=5)
            return operator

        self.repository.get_operator = synchronised_get_operator

        def bid(operator):
            try:
                self.manager.submit_offer(request.id, operator.id, 80)
                outcomes[operator.id] = "ok"
            except ConflictError:
                outcomes[operator.id] = "conflict"

        threads = [threading.Thread(target=bid, args=(operator,)) for operator in operators]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)
        self.repository.get_operator = original_get_operator
        return outcomes

    def test_simultaneous_bids_on_fresh_request_both_land(self):
        rivals = [self.operator, self.repository.add_operator(make_operator("Rival"))]

        outcomes = self._bid_concurrently(self.request, rivals)

        self.assertEqual(sorted(outcomes.values()), ["ok", "ok"])
        proposed = self.repository.list_offers(self.request.id, status=OfferStatus.PROPOSED)
        self.assertEqual(len(proposed), 2)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.OFFER_RECEIVED)
        self.assertEqual(self.notifier.request_event_names().count(events.OFFER_RECEIVED), 2)

    def test_simultaneous_bids_after_first_offer_both_land(self):
        early = self.repository.add_operator(make_operator("Early"))
        self.manager.submit_offer(self.request.id, early.id, 120)
        rivals = [self.operator, self.repository.add_operator(make_operator("Rival"))]

        outcomes = self._bid_concurrently(self.request, rivals)

        self.assertEqual(sorted(outcomes.values()), ["ok", "ok"])
        proposed = self.repository.list_offers(self.request.id, status=OfferStatus.PROPOSED)
        self.assertEqual(len(proposed), 3)

    def test_bid_racing_a_cancellation_is_refused(self):
        original_get_operator = self.repository.get_operator

        def cancel_then_get_operator(operator_id):
            self.repository.get_operator = original_get_operator
            current = self.repository.get_request(self.request.id)
            self.repository.transactional_update(
                [replace(current, status=RequestStatus.CANCELLED)], {current.id: current.version}
            )
            return original_get_operator(operator_id)

        self.repository.get_operator = cancel_then_get_operator
        with self.assertRaises(ConflictError):
            self.manager.submit_offer(self.request.id, self.operator.id, 10)

        self.assertEqual(self.repository.list_offers(self.request.id), [])


class AcceptOfferTests(SimpleTestCase):

    def setUp(self):
        self.clock = FixedClock(T0 + timedelta(seconds=40))
        self.first = make_operator("First")
        self.second = make_operator("Second")
        self.third = make_operator("Third")
        self.repository = InMemoryRepository(operators=[self.first, self.second, self.third])
        self.notifier = RecordingNotifier()
        self.manager = OfferLifecycleManager(self.repository, self.notifier, clock=self.clock)

        self.request = self.repository.add_request(make_request(phone_number=OWNER))
        self.offer_a = self.manager.submit_offer(self.request.id, self.first.id, 120).offer
        self.offer_b = self.manager.submit_offer(self.request.id, self.second.id, 100).offer
        self.offer_c = self.manager.submit_offer(self.request.id, self.third.id, 140).offer

    def _status(self, offer):
        return self.repository.get_offer(offer.id).status

    def test_accept_marks_winner_and_rejects_siblings(self):
        result = self.manager.accept_offer(self.offer_b.id, OWNER)

        self.assertEqual(self._status(self.offer_b), OfferStatus.ACCEPTED)
        self.assertEqual(self._status(self.offer_a), OfferStatus.REJECTED)
        self.assertEqual(self._status(self.offer_c), OfferStatus.REJECTED)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.ACCEPTED)
        self.assertEqual(self.repository.get_offer(self.offer_b.id).accepted_at, self.clock.now())
        self.assertEqual(result.offer.status, OfferStatus.ACCEPTED)

    def test_offer_accepted_event_carries_operator_contact(self):
        self.manager.accept_offer(self.offer_b.id, OWNER)

        request_id, name, payload = self.notifier.request_events[-1]
        self.assertEqual(name, events.OFFER_ACCEPTED)
        self.assertEqual(payload["operator_name"], "Second")
        self.assertEqual(payload["operator_phone"], self.second.phone)

    def test_wrong_phone_is_rejected_and_nothing_changes(self):
        with self.assertRaises(AuthorizationError):
            self.manager.accept_offer(self.offer_a.id, "+48999999999")

        self.assertEqual(self._status(self.offer_a), OfferStatus.PROPOSED)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.OFFER_RECEIVED)

    def test_unknown_offer(self):
        with self.assertRaises(NotFoundError):
            self.manager.accept_offer(uuid.uuid4(), OWNER)

    def test_second_accept_after_winner_conflicts(self):
        self.manager.accept_offer(self.offer_a.id, OWNER)

        with self.assertRaises(ConflictError):
            self.manager.accept_offer(self.offer_b.id, OWNER)
        with self.assertRaises(ConflictError):
            self.manager.accept_offer(self.offer_a.id, OWNER)

    def test_stale_read_loses_with_offer_already_accepted(self):
        # Accept of B lands after A's reads, before A's write
        original_list_offers = self.repository.list_offers

        def accept_b_first(request_id, status=None):
            self.repository.list_offers = original_list_offers
            self.manager.accept_offer(self.offer_b.id, OWNER)
            return original_list_offers(request_id, status)

        self.repository.list_offers = accept_b_first
        with self.assertRaises(OfferAlreadyAcceptedError):
            self.manager.accept_offer(self.offer_a.id, OWNER)

        self.assertEqual(self._status(self.offer_b), OfferStatus.ACCEPTED)
        self.assertEqual(self._status(self.offer_a), OfferStatus.REJECTED)

    def test_concurrent_accepts_have_exactly_one_winner(self):
        barrier = threading.Barrier(2)
        original_list_offers = self.repository.list_offers
        outcomes = {}

        def synchronised_list_offers(request_id, status=None):
            # Line both threads up after their reads, right before the write
            offers = original_list_offers(request_id, status)
            barrier.wait(timeout=5)
            return offers

        self.repository.list_offers = synchronised_list_offers

        def accept(offer):
            try:
                self.manager.accept_offer(offer.id, OWNER)
                outcomes[offer.id] = "won"
            except OfferAlreadyAcceptedError:
                outcomes[offer.id] = "lost"

        threads = [threading.Thread(target=accept, args=(offer,)) for offer in (self.offer_a, self.offer_c)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        self.assertEqual(sorted(outcomes.values()), ["lost", "won"])
        statuses = [self._status(offer) for offer in (self.offer_a, self.offer_b, self.offer_c)]
        self.assertEqual(statuses.count(OfferStatus.ACCEPTED), 1)
        self.assertEqual(statuses.count(OfferStatus.REJECTED), 2)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.ACCEPTED)
        self.assertEqual(self.notifier.request_event_names().count(events.OFFER_ACCEPTED), 1)

    def test_bid_landing_mid_accept_is_rejected_on_retry(self):
        latecomer = self.repository.add_operator(make_operator("Late"))
        original_list_offers = self.repository.list_offers
        late_offers = []

        def bid_before_write(request_id, status=None):
            self.repository.list_offers = original_list_offers
            offers = original_list_offers(request_id, status)
            late_offers.append(self.manager.submit_offer(self.request.id, latecomer.id, 90).offer)
            return offers

        self.repository.list_offers = bid_before_write
        result = self.manager.accept_offer(self.offer_a.id, OWNER)

        self.assertTrue(result.success)
        self.assertEqual(self._status(self.offer_a), OfferStatus.ACCEPTED)
        for offer in (self.offer_b, self.offer_c, late_offers[0]):
            self.assertEqual(self._status(offer), OfferStatus.REJECTED)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.ACCEPTED)

    def test_cancellation_mid_accept_is_a_plain_conflict(self):
        original_list_offers = self.repository.list_offers

        def cancel_before_write(request_id, status=None):
            self.repository.list_offers = original_list_offers
            current = self.repository.get_request(self.request.id)
            self.repository.transactional_update(
                [replace(current, status=RequestStatus.CANCELLED)], {current.id: current.version}
            )
            return original_list_offers(request_id, status)

        self.repository.list_offers = cancel_before_write
        with self.assertRaises(ConflictError) as ctx:
            self.manager.accept_offer(self.offer_a.id, OWNER)

        self.assertNotIsInstance(ctx.exception, OfferAlreadyAcceptedError)
        self.assertEqual(self._status(self.offer_a), OfferStatus.PROPOSED)

    def test_accept_gives_up_when_bids_keep_landing(self):
        original_list_offers = self.repository.list_offers
        bidders = iter(self.repository.add_operator(make_operator(f"Bidder {n}")) for n in range(5))

        def bid_every_time(request_id, status=None):
            offers = original_list_offers(request_id, status)
            self.manager.submit_offer(self.request.id, next(bidders).id, 95)
            return offers

        self.repository.list_offers = bid_every_time
        with self.assertRaises(ConflictError) as ctx:
            self.manager.accept_offer(self.offer_a.id, OWNER)

        self.assertNotIsInstance(ctx.exception, OfferAlreadyAcceptedError)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.OFFER_RECEIVED)

    def test_new_offer_after_acceptance_is_refused(self):
        self.manager.accept_offer(self.offer_a.id, OWNER)
        latecomer = self.repository.add_operator(make_operator("Late"))

        with self.assertRaises(ConflictError):
            self.manager.submit_offer(self.request.id, latecomer.id, 50)


class OfferProgressTests(SimpleTestCase):

    def setUp(self):
        self.clock = FixedClock(T0)
        self.operator = make_operator("Winner")
        self.other = make_operator("Other")
        self.repository = InMemoryRepository(operators=[self.operator, self.other])
        self.notifier = RecordingNotifier()
        self.manager = OfferLifecycleManager(self.repository, self.notifier, clock=self.clock)
        self.request = self.repository.add_request(make_request(phone_number=OWNER))
        self.offer = self.manager.submit_offer(self.request.id, self.operator.id, 200).offer

    def test_on_the_way_then_complete(self):
        self.manager.accept_offer(self.offer.id, OWNER)

        self.manager.mark_on_the_way(self.offer.id, self.operator.id)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.ON_THE_WAY)

        self.manager.complete(self.offer.id, str(self.operator.id))
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.COMPLETED)
        self.assertEqual(
            self.notifier.request_event_names()[-2:],
            [events.REQUEST_STATUS_CHANGED, events.REQUEST_STATUS_CHANGED],
        )

    def test_complete_straight_from_accepted(self):
        self.manager.accept_offer(self.offer.id, OWNER)
        self.manager.complete(self.offer.id, self.operator.id)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.COMPLETED)

    def test_only_the_winning_operator_can_progress(self):
        self.manager.accept_offer(self.offer.id, OWNER)

        with self.assertRaises(AuthorizationError):
            self.manager.mark_on_the_way(self.offer.id, self.other.id)

    def test_progress_requires_accepted_offer(self):
        with self.assertRaises(ConflictError):
            self.manager.mark_on_the_way(self.offer.id, self.operator.id)

    def test_cannot_go_back_on_the_way_after_completion(self):
        self.manager.accept_offer(self.offer.id, OWNER)
        self.manager.complete(self.offer.id, self.operator.id)

        with self.assertRaises(ConflictError):
            self.manager.mark_on_the_way(self.offer.id, self.operator.id)
