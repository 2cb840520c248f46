from decimal import Decimal
import uuid

from django.test import TestCase
from rest_framework.test import APIClient

from assistance.models import AssistanceRequest

from .models import Equipment, Operator, PushSubscription

ENDPOINT = 'https://push.example.com/device-1'


class OperatorApiTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.operator = Operator.objects.create(
			name='Tow Team',
			phone='+48600000001',
			current_latitude=Decimal('52.230000'),
			current_longitude=Decimal('21.010000'),
		)
		self.base = f'/api/operators/{self.operator.id}'

	def test_unknown_operator_is_404(self):
		response = self.client.get(f'/api/operators/{uuid.uuid4()}/location/')
		self.assertEqual(response.status_code, 404)
		self.assertEqual(self.client.get('/api/operators/garbage/location/').status_code, 404)

	def test_location_update(self):
		response = self.client.put(f'{self.base}/location/', {'latitude': '50.061400', 'longitude': '19.936600'},
								   format='json')
		self.assertEqual(response.status_code, 200)

		self.operator.refresh_from_db()
		self.assertEqual(self.operator.current_latitude, Decimal('50.061400'))
		self.assertIsNotNone(self.operator.last_location_update)

		response = self.client.put(f'{self.base}/location/', {'latitude': 91, 'longitude': 0}, format='json')
		self.assertEqual(response.status_code, 400)

		location = self.client.get(f'{self.base}/location/').data
		self.assertAlmostEqual(location['latitude'], 50.0614)

	def test_availability_toggle(self):
		response = self.client.put(f'{self.base}/availability/', {'is_available': False}, format='json')
		self.assertEqual(response.status_code, 200)
		self.operator.refresh_from_db()
		self.assertFalse(self.operator.is_available)

	def test_equipment_is_replaced(self):
		winch = Equipment.objects.create(name='Winch')
		jumper = Equipment.objects.create(name='Jump starter')
		self.operator.equipment.add(winch)

		response = self.client.put(f'{self.base}/equipment/', {'equipment_ids': [str(jumper.id)]}, format='json')
		self.assertEqual(response.status_code, 200)
		self.assertEqual([item['name'] for item in response.data], ['Jump starter'])
		self.assertEqual(list(self.operator.equipment.all()), [jumper])

		duplicate = self.client.put(
			f'{self.base}/equipment/', {'equipment_ids': [str(winch.id), str(winch.id)]}, format='json'
		)
		unknown = self.client.put(f'{self.base}/equipment/', {'equipment_ids': [str(uuid.uuid4())]}, format='json')
		self.assertEqual(duplicate.status_code, 400)
		self.assertEqual(unknown.status_code, 400)
		self.assertEqual(list(self.operator.equipment.all()), [jumper])

		cleared = self.client.put(f'{self.base}/equipment/', {'equipment_ids': []}, format='json')
		self.assertEqual(cleared.data, [])

	def test_push_subscription_upsert_and_remove(self):
		payload = {'endpoint': ENDPOINT, 'p256dh_key': 'key-1', 'auth_key': 'auth-1'}
		self.assertEqual(self.client.post(f'{self.base}/push-subscriptions/', payload, format='json').status_code, 201)

		payload['p256dh_key'] = 'key-2'
		self.client.post(f'{self.base}/push-subscriptions/', payload, format='json')

		subscription = PushSubscription.objects.get()
		self.assertEqual(subscription.p256dh_key, 'key-2')

		response = self.client.delete(f'{self.base}/push-subscriptions/', {'endpoint': ENDPOINT}, format='json')
		self.assertEqual(response.status_code, 204)
		subscription.refresh_from_db()
		self.assertFalse(subscription.is_active)

		response = self.client.delete(f'{self.base}/push-subscriptions/', {'endpoint': ENDPOINT}, format='json')
		self.assertEqual(response.status_code, 404)

	def test_nearby_operators(self):
		Operator.objects.create(
			name='Far Away', phone='2', current_latitude=Decimal('50.061400'), current_longitude=Decimal('19.936600')
		)
		Operator.objects.create(
			name='Busy', phone='3', is_available=False,
			current_latitude=Decimal('52.231000'), current_longitude=Decimal('21.010000'),
		)

		response = self.client.get('/api/operators/', {'lat': 52.24, 'lng': 21.01})
		self.assertEqual(response.status_code, 200)
		self.assertEqual([item['name'] for item in response.data['operators']], ['Tow Team'])
		self.assertEqual(response.data['operators'][0]['distance'], 1.1)

		wide = self.client.get('/api/operators/', {'lat': 52.24, 'lng': 21.01, 'radius': 400})
		self.assertEqual(wide.data['count'], 2)

		self.assertEqual(self.client.get('/api/operators/', {'lat': 100, 'lng': 0}).status_code, 400)

	def test_available_requests_follow_service_radius(self):
		near = AssistanceRequest.objects.create(
			phone_number='+48500100200', from_latitude=Decimal('52.275000'), from_longitude=Decimal('21.010000'),
			status='searching',
		)
		AssistanceRequest.objects.create(
			phone_number='+48500100201', from_latitude=Decimal('52.500000'), from_longitude=Decimal('21.010000'),
			status='searching',
		)
		AssistanceRequest.objects.create(
			phone_number='+48500100202', from_latitude=Decimal('52.230000'), from_longitude=Decimal('21.010000'),
			status='completed',
		)

		response = self.client.get(f'{self.base}/available-requests/')
		self.assertEqual(response.status_code, 200)
		self.assertEqual([item['id'] for item in response.data['requests']], [str(near.id)])
		self.assertEqual(response.data['requests'][0]['distance'], 5.0)

		self.operator.is_available = False
		self.operator.save()
		self.assertEqual(self.client.get(f'{self.base}/available-requests/').data['count'], 0)

	def test_equipment_catalogue(self):
		Equipment.objects.create(name='Winch')
		Equipment.objects.create(name='Jump starter')

		response = self.client.get('/api/equipment/')
		self.assertEqual([item['name'] for item in response.data], ['Jump starter', 'Winch'])
