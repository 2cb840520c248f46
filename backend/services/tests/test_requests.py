import uuid

from django.test import SimpleTestCase

from common.utils.clock import FixedClock
from services.dispatch import DispatchScheduler, events
from services.dispatch.types import EquipmentSnapshot, RequestStatus
from services.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from services.help_requests import RequestService
from services.offers import OfferLifecycleManager

from .fakes import T0, InMemoryRepository, RecordingNotifier, make_operator

OWNER = "+48500100200"


class RequestServiceTests(SimpleTestCase):

    def setUp(self):
        self.clock = FixedClock(T0)
        self.winch = EquipmentSnapshot(id=uuid.uuid4(), name="Winch")
        self.repository = InMemoryRepository(equipment=[self.winch])
        self.notifier = RecordingNotifier()
        self.service = RequestService(self.repository, self.notifier, clock=self.clock)

    def _create(self, **overrides):
        values = dict(phone_number=OWNER, from_latitude=52.23, from_longitude=21.01)
        values.update(overrides)
        return self.service.create_request(**values)

    def test_create_starts_searching_and_publishes(self):
        request = self._create(description="  Flat tyre  ", to_latitude=52.4, to_longitude=21.2)

        self.assertEqual(request.status, RequestStatus.SEARCHING)
        self.assertEqual(request.created_at, T0)
        self.assertEqual(request.description, "Flat tyre")
        self.assertEqual(request.destination.latitude, 52.4)
        self.assertEqual(self.notifier.request_event_names(request.id), [events.REQUEST_CREATED])

    def test_create_validates_input(self):
        with self.assertRaises(ValidationError):
            self._create(phone_number="   ")
        with self.assertRaises(ValidationError):
            self._create(from_latitude=91)
        with self.assertRaises(ValidationError):
            self._create(to_latitude=52.0)
        with self.assertRaises(ValidationError):
            self._create(description="x" * 1001)
        with self.assertRaises(ValidationError):
            self._create(required_equipment_id="not-a-uuid")

    def test_create_requires_known_equipment(self):
        with self.assertRaises(NotFoundError):
            self._create(required_equipment_id=uuid.uuid4())

        request = self._create(required_equipment_id=str(self.winch.id))
        self.assertEqual(request.required_equipment_id, self.winch.id)

    def test_owner_lookup(self):
        request = self._create()

        self.assertEqual(self.service.get_request_for_owner(request.id, OWNER).id, request.id)
        with self.assertRaises(AuthorizationError):
            self.service.get_request_for_owner(request.id, "+48111111111")
        with self.assertRaises(NotFoundError):
            self.service.get_request_for_owner(uuid.uuid4(), OWNER)

    def test_cancel_searching_request(self):
        request = self._create()
        self.clock.advance(seconds=12)

        cancelled = self.service.cancel_request(request.id, OWNER)

        self.assertEqual(cancelled.status, RequestStatus.CANCELLED)
        self.assertEqual(self.repository.get_request(request.id).updated_at, self.clock.now())
        self.assertEqual(self.notifier.request_event_names(request.id)[-1], events.REQUEST_CANCELLED)

    def test_cancel_requires_owner(self):
        request = self._create()
        with self.assertRaises(AuthorizationError):
            self.service.cancel_request(request.id, "+48111111111")
        self.assertEqual(self.repository.get_request(request.id).status, RequestStatus.SEARCHING)

    def test_cancel_is_refused_once_offers_arrived(self):
        operator = self.repository.add_operator(make_operator())
        request = self._create()
        OfferLifecycleManager(self.repository, self.notifier, clock=self.clock).submit_offer(
            request.id, operator.id, 100
        )

        with self.assertRaises(ConflictError):
            self.service.cancel_request(request.id, OWNER)

    def test_cancelled_request_is_never_dispatched(self):
        self.repository.add_operator(make_operator())
        request = self._create()
        self.service.cancel_request(request.id, OWNER)

        scheduler = DispatchScheduler(self.repository, self.notifier, clock=self.clock)
        self.clock.advance(seconds=31)
        summary = scheduler.run_once()

        self.assertEqual(summary.scanned, 0)
        self.assertEqual(self.notifier.operator_events, [])

    def test_proposed_offers_cheapest_first(self):
        cheap = self.repository.add_operator(make_operator("Cheap"))
        pricey = self.repository.add_operator(make_operator("Pricey"))
        request = self._create()
        manager = OfferLifecycleManager(self.repository, self.notifier, clock=self.clock)
        manager.submit_offer(request.id, pricey.id, 300)
        self.clock.advance(seconds=1)
        manager.submit_offer(request.id, cheap.id, 120)

        offers = self.service.list_proposed_offers(request.id)

        self.assertEqual([offer.operator_name for offer in offers], ["Cheap", "Pricey"])

    def test_proposed_offers_of_unknown_request(self):
        with self.assertRaises(NotFoundError):
            self.service.list_proposed_offers(uuid.uuid4())
