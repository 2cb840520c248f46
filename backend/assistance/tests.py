from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from io import StringIO
import uuid

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient
from unittest.mock import patch

from common.utils.clock import FixedClock
from operators.models import Equipment, Operator, PushSubscription
from services.dispatch import DispatchScheduler
from services.dispatch.types import OFFERABLE_REQUEST_STATUSES, OfferStatus, RequestStatus, WriteOutcome
from services.exceptions import OfferAlreadyAcceptedError
from services.offers import OfferLifecycleManager
from services.tests.fakes import RecordingNotifier, make_offer

from .models import AssistanceRequest, DispatchNotification, Offer
from .repository import DjangoRepository
from .tasks import cleanup_old_requests_task, dispatch_tick_task

OWNER = '+48500100200'


def create_operator(name, lat=52.23, lng=21.01, **extra):
	return Operator.objects.create(
		name=name,
		phone='+4860000%04d' % Operator.objects.count(),
		current_latitude=lat,
		current_longitude=lng,
		**extra
	)


def create_request(**extra):
	values = dict(
		phone_number=OWNER,
		from_latitude=Decimal('52.230000'),
		from_longitude=Decimal('21.010000'),
		status='searching',
	)
	values.update(extra)
	return AssistanceRequest.objects.create(**values)


class DjangoRepositoryTests(TestCase):
	def setUp(self):
		self.repository = DjangoRepository()
		self.operator = create_operator('Tow Team')
		self.request = create_request()

	def test_snapshots_are_fully_materialized(self):
		winch = Equipment.objects.create(name='Winch')
		self.operator.equipment.add(winch)

		operator = self.repository.get_operator(self.operator.id)
		request = self.repository.get_request(self.request.id)

		self.assertEqual(operator.equipment_ids, frozenset({winch.id}))
		self.assertEqual(operator.service_radius_km, 20.0)
		self.assertEqual(request.status, RequestStatus.SEARCHING)
		self.assertAlmostEqual(request.origin.latitude, 52.23)
		self.assertIsNone(request.destination)
		self.assertFalse(request.has_proposed_offer)

	def test_malformed_ids_read_as_missing(self):
		self.assertIsNone(self.repository.get_request('nope'))
		self.assertIsNone(self.repository.get_offer(None))
		self.assertIsNone(self.repository.get_operator(uuid.uuid4()))
		self.assertEqual(self.repository.list_offers('nope'), [])

	def test_open_requests_and_available_operators(self):
		create_request(status='completed')
		Operator.objects.create(name='No GPS', phone='1')
		create_operator('Off duty', is_available=False)

		self.assertEqual([r.id for r in self.repository.list_open_requests()], [self.request.id])
		self.assertEqual([o.name for o in self.repository.list_available_operators()], ['Tow Team'])

	def test_submit_inserts_offer_and_bumps_request_version(self):
		manager = OfferLifecycleManager(self.repository, RecordingNotifier())
		result = manager.submit_offer(self.request.id, self.operator.id, '150.50', 15)

		offer = Offer.objects.get(pk=result.offer.id)
		self.request.refresh_from_db()

		self.assertEqual(offer.price, Decimal('150.50'))
		self.assertEqual(offer.status, 'proposed')
		self.assertEqual(self.request.status, 'offer_received')
		self.assertEqual(self.request.version, 2)
		self.assertTrue(self.repository.get_request(self.request.id).has_proposed_offer)

	def test_stale_version_rolls_back_every_write(self):
		snapshot = self.repository.get_request(self.request.id)
		offer = Offer.objects.create(request=self.request, operator=self.operator, price=10)
		offer_snapshot = self.repository.get_offer(offer.id)

		# Somebody else writes first
		AssistanceRequest.objects.filter(pk=self.request.id).update(version=5)

		outcome = self.repository.transactional_update(
			[replace(offer_snapshot, status=OfferStatus.ACCEPTED), replace(snapshot, status=RequestStatus.ACCEPTED)],
			{offer.id: offer_snapshot.version, self.request.id: snapshot.version},
		)

		self.assertEqual(outcome, WriteOutcome.VERSION_CONFLICT)
		offer.refresh_from_db()
		self.assertEqual(offer.status, 'proposed')
		self.assertEqual(offer.version, 1)

	def test_stale_accept_loses_to_committed_accept(self):
		second = create_operator('Second')
		manager = OfferLifecycleManager(self.repository, RecordingNotifier())
		offer_a = manager.submit_offer(self.request.id, self.operator.id, 100).offer
		offer_b = manager.submit_offer(self.request.id, second.id, 90).offer

		real_list_offers = self.repository.list_offers

		def other_customer_tab_wins(request_id, status=None):
			# B gets accepted between A's reads and A's write
			with patch.object(self.repository, 'list_offers', real_list_offers):
				manager.accept_offer(offer_b.id, OWNER)
			return real_list_offers(request_id, status)

		with patch.object(self.repository, 'list_offers', side_effect=other_customer_tab_wins):
			with self.assertRaises(OfferAlreadyAcceptedError):
				manager.accept_offer(offer_a.id, OWNER)

		self.assertEqual(Offer.objects.filter(request=self.request, status='accepted').count(), 1)
		self.assertEqual(Offer.objects.get(pk=offer_b.id).status, 'accepted')
		self.assertEqual(Offer.objects.get(pk=offer_a.id).status, 'rejected')

	def test_second_accepted_offer_is_blocked_by_constraint(self):
		Offer.objects.create(request=self.request, operator=self.operator, price=10, status='accepted')
		other = Offer.objects.create(request=self.request, operator=create_operator('B'), price=12)
		snapshot = self.repository.get_offer(other.id)

		outcome = self.repository.transactional_update([replace(snapshot, status=OfferStatus.ACCEPTED)], {})

		self.assertEqual(outcome, WriteOutcome.VERSION_CONFLICT)

	def test_round_claim_is_monotonic_and_leaves_version(self):
		self.assertTrue(self.repository.claim_notification_round(self.request.id, 0))
		self.assertFalse(self.repository.claim_notification_round(self.request.id, 0))
		self.assertTrue(self.repository.claim_notification_round(self.request.id, 2))
		self.assertFalse(self.repository.claim_notification_round(self.request.id, 1))

		self.request.refresh_from_db()
		self.assertEqual(self.request.last_notified_round, 2)
		self.assertEqual(self.request.version, 1)

	def test_round_claim_skips_request_that_has_an_offer(self):
		self.request.status = 'offer_received'
		self.request.save()

		self.assertFalse(self.repository.claim_notification_round(self.request.id, 0))
		self.request.refresh_from_db()
		self.assertIsNone(self.request.last_notified_round)

	def test_status_guard_lets_stale_bid_land_on_open_request(self):
		stale = self.repository.get_request(self.request.id)
		AssistanceRequest.objects.filter(pk=self.request.id).update(version=7, status='offer_received')

		outcome = self.repository.transactional_update(
			[replace(stale, status=RequestStatus.OFFER_RECEIVED)], {},
			expected_statuses={self.request.id: OFFERABLE_REQUEST_STATUSES},
		)

		self.assertEqual(outcome, WriteOutcome.APPLIED)
		self.request.refresh_from_db()
		self.assertEqual(self.request.version, 8)

	def test_status_guard_refuses_closed_request(self):
		stale = self.repository.get_request(self.request.id)
		AssistanceRequest.objects.filter(pk=self.request.id).update(status='cancelled')
		offer = make_offer(stale, self.operator, price='40.00')

		outcome = self.repository.transactional_update(
			[replace(stale, status=RequestStatus.OFFER_RECEIVED)], {}, created=[offer],
			expected_statuses={self.request.id: OFFERABLE_REQUEST_STATUSES},
		)

		self.assertEqual(outcome, WriteOutcome.VERSION_CONFLICT)
		self.assertFalse(Offer.objects.filter(request=self.request).exists())

	def test_bid_during_accept_is_rejected_on_retry(self):
		second = create_operator('Second')
		late = create_operator('Late')
		manager = OfferLifecycleManager(self.repository, RecordingNotifier())
		offer_a = manager.submit_offer(self.request.id, self.operator.id, 100).offer
		manager.submit_offer(self.request.id, second.id, 90)
		real_list_offers = self.repository.list_offers
		late_bids = []

		def late_operator_bids(request_id, status=None):
			offers = real_list_offers(request_id, status)
			if not late_bids:
				late_bids.append(manager.submit_offer(self.request.id, late.id, 80).offer)
			return offers

		with patch.object(self.repository, 'list_offers', side_effect=late_operator_bids):
			result = manager.accept_offer(offer_a.id, OWNER)

		self.assertTrue(result.success)
		self.assertEqual(Offer.objects.get(pk=offer_a.id).status, 'accepted')
		self.assertEqual(Offer.objects.get(pk=late_bids[0].id).status, 'rejected')
		self.assertEqual(Offer.objects.filter(request=self.request, status='proposed').count(), 0)

	def test_notification_ledger_ignores_duplicates(self):
		self.repository.record_notifications(self.request.id, [self.operator.id], 0)
		self.repository.record_notifications(self.request.id, [self.operator.id], 1)

		self.assertEqual(self.repository.notified_operator_ids(self.request.id), {self.operator.id})
		self.assertEqual(DispatchNotification.objects.get().round, 0)

	def test_deactivate_push_subscription(self):
		subscription = PushSubscription.objects.create(
			operator=self.operator, endpoint='https://push.example.com/abc', p256dh_key='k', auth_key='a'
		)
		self.repository.deactivate_push_subscription(subscription.id)
		subscription.refresh_from_db()
		self.assertFalse(subscription.is_active)


class SchedulerWithDatabaseTests(TestCase):
	def test_tick_notifies_only_operators_in_their_radius(self):
		# ~5 km and ~30 km north of the request
		near = create_operator('Near', lat=52.23 + 5 / 111.195)
		create_operator('Far', lat=52.23 + 30 / 111.195)
		request = create_request()

		notifier = RecordingNotifier()
		clock = FixedClock(request.created_at + timedelta(seconds=1))
		summary = DispatchScheduler(DjangoRepository(), notifier, clock=clock).run_once()

		self.assertEqual(summary.operators_notified, 1)
		self.assertEqual(notifier.notified_operator_ids(), [near.id])
		self.assertEqual(list(DispatchNotification.objects.values_list('operator_id', flat=True)), [near.id])

		# Same round again: nothing new
		DispatchScheduler(DjangoRepository(), notifier, clock=clock).run_once()
		self.assertEqual(len(notifier.operator_events), 1)

	def test_timed_out_request_is_cancelled(self):
		request = create_request()
		notifier = RecordingNotifier()
		clock = FixedClock(request.created_at + timedelta(seconds=121))

		DispatchScheduler(DjangoRepository(), notifier, clock=clock).run_once()

		request.refresh_from_db()
		self.assertEqual(request.status, 'cancelled')
		self.assertEqual(notifier.request_event_names(), ['search_timed_out'])


@patch('assistance.wiring.ChannelsNotifier')
class RequestApiTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.operator = create_operator('Tow Team')

	def _create(self, **extra):
		payload = {'phone_number': OWNER, 'from_latitude': 52.23, 'from_longitude': 21.01}
		payload.update(extra)
		return self.client.post('/api/requests/', payload, format='json')

	def test_create_request(self, mock_notifier):
		response = self._create(description='Dead battery')

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['status'], 'searching')
		self.assertEqual(response.data['description'], 'Dead battery')
		self.assertTrue(AssistanceRequest.objects.filter(pk=response.data['id']).exists())
		mock_notifier.return_value.publish_to_request_channel.assert_called_once()

	def test_create_request_validation(self, mock_notifier):
		response = self._create(from_latitude=123)
		self.assertEqual(response.status_code, 400)

		response = self._create(required_equipment_id=str(uuid.uuid4()))
		self.assertEqual(response.status_code, 404)
		self.assertEqual(response.data['code'], 'not_found')

	def test_get_request_checks_phone(self, mock_notifier):
		request_id = self._create().data['id']

		self.assertEqual(self.client.get(f'/api/requests/{request_id}/', {'phone_number': OWNER}).status_code, 200)
		self.assertEqual(self.client.get(f'/api/requests/{request_id}/', {'phone_number': '1'}).status_code, 403)
		self.assertEqual(self.client.get(f'/api/requests/{request_id}/').status_code, 400)
		self.assertEqual(self.client.get('/api/requests/not-a-uuid/', {'phone_number': OWNER}).status_code, 400)

	def test_cancel_request(self, mock_notifier):
		request_id = self._create().data['id']

		response = self.client.put(f'/api/requests/{request_id}/cancel/', {'phone_number': OWNER}, format='json')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['request']['status'], 'cancelled')

		response = self.client.put(f'/api/requests/{request_id}/cancel/', {'phone_number': OWNER}, format='json')
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['code'], 'conflict')

	def test_offer_flow(self, mock_notifier):
		request_id = self._create().data['id']
		second = create_operator('Second')

		first_offer = self.client.post('/api/offers/', {
			'request_id': request_id, 'operator_id': str(self.operator.id), 'price': '180.00',
			'estimated_time_minutes': 25,
		}, format='json')
		second_offer = self.client.post('/api/offers/', {
			'request_id': request_id, 'operator_id': str(second.id), 'price': '150.00',
		}, format='json')
		self.assertEqual(first_offer.status_code, 201)
		self.assertEqual(second_offer.status_code, 201)

		offers = self.client.get(f'/api/requests/{request_id}/offers/')
		self.assertEqual([o['operator_name'] for o in offers.data], ['Second', 'Tow Team'])

		offer_id = second_offer.data['offer']['id']
		wrong_owner = self.client.post(f'/api/offers/{offer_id}/accept/', {'phone_number': '1'}, format='json')
		self.assertEqual(wrong_owner.status_code, 403)

		accepted = self.client.post(f'/api/offers/{offer_id}/accept/', {'phone_number': OWNER}, format='json')
		self.assertEqual(accepted.status_code, 200)
		self.assertEqual(accepted.data['request']['status'], 'accepted')
		self.assertEqual(Offer.objects.get(pk=first_offer.data['offer']['id']).status, 'rejected')

		again = self.client.post(
			f"/api/offers/{first_offer.data['offer']['id']}/accept/", {'phone_number': OWNER}, format='json'
		)
		self.assertEqual(again.status_code, 409)

		on_the_way = self.client.post(f'/api/offers/{offer_id}/on-the-way/', {'operator_id': str(second.id)}, format='json')
		self.assertEqual(on_the_way.data['request']['status'], 'on_the_way')

		not_theirs = self.client.post(
			f'/api/offers/{offer_id}/complete/', {'operator_id': str(self.operator.id)}, format='json'
		)
		self.assertEqual(not_theirs.status_code, 403)

		done = self.client.post(f'/api/offers/{offer_id}/complete/', {'operator_id': str(second.id)}, format='json')
		self.assertEqual(done.data['request']['status'], 'completed')

	def test_offer_price_limits(self, mock_notifier):
		request_id = self._create().data['id']

		for price, expected in (('-1', 400), ('100000.01', 400), ('100000', 201)):
			with self.subTest(price=price):
				response = self.client.post('/api/offers/', {
					'request_id': request_id, 'operator_id': str(self.operator.id), 'price': price,
				}, format='json')
				self.assertEqual(response.status_code, expected)

	def test_health_check(self, mock_notifier):
		response = self.client.get('/health/')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['services']['database'], 'healthy')


class CleanupTests(TestCase):
	def setUp(self):
		operator = create_operator('Tow Team')
		old = timezone.now() - timedelta(hours=30)

		self.stale = create_request(status='completed', created_at=old, updated_at=old)
		Offer.objects.create(request=self.stale, operator=operator, price=10, status='accepted')
		self.fresh = create_request(status='cancelled', updated_at=timezone.now())
		self.open = create_request(status='searching', created_at=old, updated_at=old)

	def test_dry_run_deletes_nothing(self):
		out = StringIO()
		call_command('cleanup_old_requests', dry_run=True, stdout=out)

		self.assertIn('Would delete 1 requests and 1 offers', out.getvalue())
		self.assertEqual(AssistanceRequest.objects.count(), 3)

	def test_command_deletes_old_terminal_requests(self):
		call_command('cleanup_old_requests', hours=24, stdout=StringIO())

		remaining = set(AssistanceRequest.objects.values_list('id', flat=True))
		self.assertEqual(remaining, {self.fresh.id, self.open.id})
		self.assertEqual(Offer.objects.count(), 0)

	def test_celery_task(self):
		result = cleanup_old_requests_task(hours=24)
		self.assertEqual(result, {'requests': 1, 'offers': 1})


@patch('assistance.wiring.ChannelsNotifier')
class SchedulerEntryPointTests(TestCase):
	def test_run_once_command_times_out_stale_request(self, mock_notifier):
		stale = create_request(created_at=timezone.now() - timedelta(minutes=5))

		out = StringIO()
		call_command('run_dispatch_scheduler', once=True, stdout=out)

		self.assertIn('Scanned 1 requests: 1 timed out', out.getvalue())
		stale.refresh_from_db()
		self.assertEqual(stale.status, 'cancelled')
		mock_notifier.return_value.publish_to_request_channel.assert_called_once()

	def test_dispatch_tick_task(self, mock_notifier):
		mock_notifier.return_value.send_offline_push.return_value = []
		create_operator('Tow Team')
		create_request()

		result = dispatch_tick_task()

		self.assertEqual(result['scanned'], 1)
		self.assertEqual(result['operators_notified'], 1)
