"""
Background dispatch loop.

Every tick the scheduler scans requests that are still searching, works out
which expansion round each one is in, cancels the ones that ran out of
rounds, and notifies the nearest eligible operators when a request enters a
new round:

1. elapsed = now - created_at, round = elapsed // round_duration
2. round > max_rounds and no proposed offer -> Cancelled + "search_timed_out"
3. otherwise, on a round not yet announced, notify the top
   initial_pool + round * increment eligible operators not notified before
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from common.utils.clock import Clock, SystemClock

from . import events
from .eligibility import rank_eligible_operators
from .expansion import elapsed_seconds, expansion_round, has_timed_out, pool_size, should_notify
from .ports import Notifier, Persistence
from .types import (
    OPEN_REQUEST_STATUSES,
    DispatchConfig,
    OperatorSnapshot,
    PushStatus,
    RequestSnapshot,
    RequestStatus,
    TickSummary,
    WriteOutcome,
)

logger = logging.getLogger(__name__)


class DispatchScheduler:
    """
    Single long-lived dispatch loop per process.

    Ticks never overlap: the loop runs them back to back with a fixed delay,
    and run_once() from any other thread waits for an in-flight tick.
    """

    def __init__(
        self,
        repository: Persistence,
        notifier: Notifier,
        clock: Optional[Clock] = None,
        config: Optional[DispatchConfig] = None,
        on_tick_complete: Optional[Callable[[], None]] = None,
    ):
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.config = config or DispatchConfig()
        self.on_tick_complete = on_tick_complete
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    # ---------------------- Lifecycle ----------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="dispatch-scheduler", daemon=True)
        logger.info(
            "Starting dispatch scheduler (tick=%ss round=%ss pool=%s+%s max_rounds=%s)",
            self.config.tick_interval_seconds,
            self.config.round_duration_seconds,
            self.config.initial_pool_size,
            self.config.expansion_increment,
            self.config.max_rounds,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Signal the loop to exit and wait for the in-flight tick to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Dispatch scheduler stopped")

    def _run(self):
        while not self._stop_event.is_set():
            try:
                summary = self.run_once()
                if summary.eventful:
                    logger.info(
                        "Dispatch tick: scanned=%s timed_out=%s notified=%s conflicts=%s failures=%s",
                        summary.scanned,
                        summary.timed_out,
                        summary.operators_notified,
                        summary.conflicts,
                        summary.failures,
                    )
            except Exception:
                logger.exception("Dispatch scheduler tick failed")
            finally:
                self._tick_complete()

            if self._stop_event.wait(self.config.tick_interval_seconds):
                break

    def _tick_complete(self):
        if self.on_tick_complete is None:
            return
        try:
            self.on_tick_complete()
        except Exception:
            logger.exception("Dispatch scheduler post-tick hook failed")

    # ---------------------- Tick ----------------------

    def run_once(self) -> TickSummary:
        """Process every open request once. Errors are contained per request."""
        with self._tick_lock:
            summary = TickSummary()
            now = self.clock.now()
            operators: List[OperatorSnapshot] = []
            operators_loaded = False

            for request in self.repository.list_open_requests():
                summary.scanned += 1
                try:
                    if not self._is_dispatchable(request):
                        summary.skipped += 1
                        continue

                    round_number = expansion_round(
                        elapsed_seconds(request.created_at, now), self.config
                    )

                    if has_timed_out(round_number, self.config):
                        self._time_out(request, round_number, now, summary)
                        continue

                    if not should_notify(round_number, request.last_notified_round):
                        continue

                    if not operators_loaded:
                        operators = self.repository.list_available_operators()
                        operators_loaded = True

                    self._notify_round(request, round_number, operators, summary)
                except Exception:
                    summary.failures += 1
                    logger.exception("Dispatch failed for request %s", request.id)

            return summary

    @staticmethod
    def _is_dispatchable(request: RequestSnapshot) -> bool:
        # A proposed offer freezes the search: no expansion, no timeout
        return request.status in OPEN_REQUEST_STATUSES and not request.has_proposed_offer

    def _time_out(self, request: RequestSnapshot, round_number: int, now, summary: TickSummary):
        cancelled = replace(request, status=RequestStatus.CANCELLED, updated_at=now)
        outcome = self.repository.transactional_update([cancelled], {request.id: request.version})

        if outcome is WriteOutcome.VERSION_CONFLICT:
            summary.conflicts += 1
            logger.info(
                "Request %s changed while timing out (round %s); will re-evaluate next tick",
                request.id,
                round_number,
            )
            return

        summary.timed_out += 1
        logger.info("Request %s timed out after %s expansion rounds", request.id, round_number)
        self._publish_request_event(
            request, events.SEARCH_TIMED_OUT, events.search_timed_out_payload(cancelled)
        )

    def _notify_round(
        self,
        request: RequestSnapshot,
        round_number: int,
        operators: List[OperatorSnapshot],
        summary: TickSummary,
    ):
        pool = rank_eligible_operators(
            request, operators, limit=pool_size(round_number, self.config)
        )

        if not self.repository.claim_notification_round(request.id, round_number):
            logger.debug("Round %s of request %s already announced", round_number, request.id)
            return
        summary.rounds_notified += 1

        already_notified = self.repository.notified_operator_ids(request.id)
        recipients = [(op, dist) for op, dist in pool if op.id not in already_notified]
        if not recipients:
            logger.info(
                "No new operators to notify for request %s (round %s, pool=%s)",
                request.id, round_number, len(pool),
            )
            return

        self.repository.record_notifications(
            request.id, [op.id for op, _ in recipients], round_number
        )
        summary.operators_notified += self._fan_out(request, recipients, round_number)

        logger.info(
            "Sent notifications for request %s to %s operators (round %s, pool=%s)",
            request.id, len(recipients), round_number, len(pool),
        )

    # ---------------------- Fan-out ----------------------

    def _fan_out(
        self,
        request: RequestSnapshot,
        recipients: List[Tuple[OperatorSnapshot, float]],
        round_number: int,
    ) -> int:
        """Deliver to every recipient independently; one failure never blocks the rest."""
        delivered = 0
        for operator, distance in recipients:
            payload = events.new_request_payload(request, distance, round_number)
            if self._deliver_live(operator, payload):
                delivered += 1
            self._deliver_offline(operator, payload)
        return delivered

    def _deliver_live(self, operator: OperatorSnapshot, payload) -> bool:
        try:
            self.notifier.publish_to_operator_channel(operator.id, events.NEW_REQUEST, payload)
            return True
        except Exception:
            logger.warning("Live notification to operator %s failed", operator.id, exc_info=True)
            return False

    def _deliver_offline(self, operator: OperatorSnapshot, payload):
        try:
            results = self.notifier.send_offline_push(operator.id, payload)
        except Exception:
            logger.warning("Offline push to operator %s failed", operator.id, exc_info=True)
            return

        for result in results:
            if result.status is PushStatus.INVALID and result.subscription_id is not None:
                try:
                    self.repository.deactivate_push_subscription(result.subscription_id)
                    logger.info(
                        "Deactivated push subscription %s of operator %s (%s)",
                        result.subscription_id, operator.id, result.detail,
                    )
                except Exception:
                    logger.warning(
                        "Could not deactivate push subscription %s", result.subscription_id,
                        exc_info=True,
                    )
            elif result.status is PushStatus.TRANSIENT:
                logger.warning(
                    "Offline push to operator %s (subscription %s) failed: %s",
                    operator.id, result.subscription_id, result.detail,
                )

    def _publish_request_event(self, request: RequestSnapshot, event_name: str, payload):
        try:
            self.notifier.publish_to_request_channel(request.id, event_name, payload)
        except Exception:
            logger.warning(
                "Could not publish %s for request %s", event_name, request.id, exc_info=True
            )
