import threading
import uuid
from datetime import timedelta

from django.test import SimpleTestCase

from common.utils.clock import FixedClock
from services.dispatch import DispatchConfig, DispatchScheduler
from services.dispatch import events
from services.dispatch.types import PushResult, PushStatus, RequestStatus
from services.offers import OfferLifecycleManager

from .fakes import T0, InMemoryRepository, RecordingNotifier, make_offer, make_operator, make_request


def _operators(count, step=0.001):
    """`count` operators spaced ~110 m apart going north, nearest first."""
    return [make_operator(f"Op {i:02d}", offset_lat=step * (i + 1)) for i in range(count)]


class DispatchSchedulerTests(SimpleTestCase):

    def setUp(self):
        self.clock = FixedClock(T0)
        self.notifier = RecordingNotifier()
        self.operators = _operators(50)
        self.repository = InMemoryRepository(operators=self.operators)
        self.scheduler = DispatchScheduler(
            self.repository, self.notifier, clock=self.clock, config=DispatchConfig()
        )
        self.request = self.repository.add_request(make_request(created_at=T0))

    def _notified(self):
        return self.notifier.notified_operator_ids()

    def test_round_zero_notifies_fifteen_nearest(self):
        summary = self.scheduler.run_once()

        self.assertEqual(summary.operators_notified, 15)
        self.assertEqual(self._notified(), [op.id for op in self.operators[:15]])
        self.assertTrue(all(name == events.NEW_REQUEST for (_, name, _) in self.notifier.operator_events))

    def test_payload_carries_distance_and_round(self):
        self.scheduler.run_once()

        _, _, payload = self.notifier.operator_events[0]
        self.assertEqual(payload["request_id"], str(self.request.id))
        self.assertEqual(payload["round"], 0)
        self.assertEqual(payload["distance"], 0.1)
        self.assertEqual(payload["phone_number"], self.request.phone_number)

    def test_same_round_is_not_announced_twice(self):
        self.scheduler.run_once()
        self.clock.advance(seconds=5)
        summary = self.scheduler.run_once()

        self.assertEqual(summary.operators_notified, 0)
        self.assertEqual(len(self._notified()), 15)

    def test_each_round_adds_only_new_operators(self):
        pools = []
        for seconds in (0, 30, 60, 90):
            self.clock.set(T0 + timedelta(seconds=seconds))
            self.scheduler.run_once()
            pools.append(len(self._notified()))

        # 15, then +10 per round up to 45 in total
        self.assertEqual(pools, [15, 25, 35, 45])
        self.assertEqual(len(set(self._notified())), 45)
        self.assertEqual(self._notified(), [op.id for op in self.operators[:45]])

    def test_ticks_mid_round_do_not_renotify(self):
        for seconds in range(0, 91, 5):
            self.clock.set(T0 + timedelta(seconds=seconds))
            self.scheduler.run_once()

        self.assertEqual(len(self._notified()), 45)
        self.assertEqual(len(set(self._notified())), 45)

    def test_late_first_tick_starts_at_current_round(self):
        self.clock.advance(seconds=65)
        self.scheduler.run_once()

        # Round 2 pool straight away
        self.assertEqual(len(self._notified()), 35)

    def test_timeout_after_last_round_cancels_and_stops(self):
        self.clock.advance(seconds=120)
        summary = self.scheduler.run_once()

        self.assertEqual(summary.timed_out, 1)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.CANCELLED)
        self.assertEqual(self.notifier.request_event_names(self.request.id), [events.SEARCH_TIMED_OUT])
        self.assertEqual(self._notified(), [])

        self.clock.advance(seconds=30)
        summary = self.scheduler.run_once()
        self.assertEqual(summary.scanned, 0)
        self.assertEqual(self.notifier.request_event_names(self.request.id), [events.SEARCH_TIMED_OUT])

    def test_request_with_proposed_offer_is_left_alone(self):
        self.repository.add_offer(make_offer(self.request, self.operators[0]))
        self.clock.advance(seconds=300)

        summary = self.scheduler.run_once()

        self.assertEqual(summary.skipped, 1)
        self.assertEqual(summary.timed_out, 0)
        self.assertEqual(self.repository.get_request(self.request.id).status, RequestStatus.SEARCHING)
        self.assertEqual(self._notified(), [])

    def test_offer_landing_before_round_claim_stops_announcement(self):
        original_claim = self.repository.claim_notification_round
        offers = OfferLifecycleManager(self.repository, RecordingNotifier(), clock=self.clock)

        def bid_then_claim(request_id, round_number):
            self.repository.claim_notification_round = original_claim
            offers.submit_offer(request_id, self.operators[0].id, 150)
            return original_claim(request_id, round_number)

        self.repository.claim_notification_round = bid_then_claim
        summary = self.scheduler.run_once()

        self.assertEqual(summary.operators_notified, 0)
        self.assertEqual(self._notified(), [])
        self.assertIsNone(self.repository.requests[self.request.id].last_notified_round)

    def test_round_claim_requires_open_request(self):
        for status in (RequestStatus.OFFER_RECEIVED, RequestStatus.ACCEPTED, RequestStatus.CANCELLED):
            request = self.repository.add_request(make_request(status=status))
            with self.subTest(status=status):
                self.assertFalse(self.repository.claim_notification_round(request.id, 0))

    def test_timeout_conflict_is_counted_not_raised(self):
        self.clock.advance(seconds=120)
        original = self.repository.transactional_update

        def bump_first(entities, expected_versions, created=()):
            # Another writer lands between the read and the write
            self.repository.transactional_update = original
            stale = self.repository.requests[self.request.id]
            original([stale], {})
            return original(entities, expected_versions, created)

        self.repository.transactional_update = bump_first
        summary = self.scheduler.run_once()

        self.assertEqual(summary.conflicts, 1)
        self.assertEqual(summary.timed_out, 0)
        self.assertEqual(self.notifier.request_event_names(), [])

    def test_only_eligible_operators_are_notified(self):
        repository = InMemoryRepository(operators=[
            make_operator("Near", offset_lat=5 / 111.195),
            make_operator("Far", offset_lat=30 / 111.195),
        ])
        request = repository.add_request(make_request())
        scheduler = DispatchScheduler(repository, self.notifier, clock=self.clock)

        scheduler.run_once()

        notified = [repository.get_operator(op_id).name for op_id in self._notified()]
        self.assertEqual(notified, ["Near"])
        self.assertEqual(self.notifier.operator_events[0][2]["request_id"], str(request.id))

    def test_one_failing_operator_does_not_block_the_rest(self):
        self.notifier.failing_operators.add(self.operators[0].id)

        summary = self.scheduler.run_once()

        self.assertEqual(summary.operators_notified, 14)
        self.assertEqual(self._notified(), [op.id for op in self.operators[1:15]])
        # Still gets the offline push
        self.assertIn(self.operators[0].id, [op_id for op_id, _ in self.notifier.pushes])

    def test_invalid_push_subscription_is_deactivated(self):
        gone = uuid.uuid4()
        flaky = uuid.uuid4()
        self.notifier.push_results[self.operators[0].id] = [
            PushResult(PushStatus.INVALID, gone, "HTTP 410"),
            PushResult(PushStatus.TRANSIENT, flaky, "timeout"),
        ]

        self.scheduler.run_once()

        self.assertEqual(self.repository.deactivated_subscriptions, [gone])

    def test_failure_on_one_request_does_not_stop_the_tick(self):
        second = self.repository.add_request(make_request(created_at=T0))
        original = self.repository.claim_notification_round

        def explode_for_first(request_id, round_number):
            if request_id == self.request.id:
                raise RuntimeError("database went away")
            return original(request_id, round_number)

        self.repository.claim_notification_round = explode_for_first
        summary = self.scheduler.run_once()

        self.assertEqual(summary.failures, 1)
        self.assertEqual(summary.rounds_notified, 1)
        self.assertEqual(len(self.repository.notified_operator_ids(second.id)), 15)


class SchedulerLifecycleTests(SimpleTestCase):

    def test_start_runs_ticks_until_stopped(self):
        ticked = threading.Event()
        repository = InMemoryRepository()
        scheduler = DispatchScheduler(
            repository,
            RecordingNotifier(),
            config=DispatchConfig(tick_interval_seconds=0.01),
            on_tick_complete=ticked.set,
        )

        scheduler.start()
        scheduler.start()  # idempotent
        try:
            self.assertTrue(ticked.wait(2))
            self.assertTrue(scheduler.is_running)
        finally:
            scheduler.stop(timeout=2)

        self.assertFalse(scheduler.is_running)

    def test_tick_errors_are_logged_and_loop_survives(self):
        calls = []
        done = threading.Event()

        class BrokenRepository(InMemoryRepository):
            def list_open_requests(self):
                calls.append(1)
                if len(calls) >= 2:
                    done.set()
                raise RuntimeError("boom")

        scheduler = DispatchScheduler(
            BrokenRepository(), RecordingNotifier(), config=DispatchConfig(tick_interval_seconds=0.01)
        )
        with self.assertLogs("services.dispatch.scheduler", level="ERROR"):
            scheduler.start()
            try:
                self.assertTrue(done.wait(2))
            finally:
                scheduler.stop(timeout=2)
