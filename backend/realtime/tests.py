import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import requests
from asgiref.sync import async_to_sync
from channels.layers import InMemoryChannelLayer, get_channel_layer
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, TestCase

from operators.models import Operator, PushSubscription
from services.dispatch.types import PushStatus

from .consumers import DispatchConsumer
from .notifications import ChannelsNotifier, operator_group, request_group
from .push import PushGatewayClient

GATEWAY = "https://push-gateway.internal/send"


class ChannelsNotifierTests(SimpleTestCase):

    def setUp(self):
        self.layer = InMemoryChannelLayer()
        self.channel = async_to_sync(self.layer.new_channel)()
        self.notifier = ChannelsNotifier(channel_layer=self.layer, push_client=MagicMock())

    def test_request_events_reach_request_group(self):
        request_id = uuid.uuid4()
        async_to_sync(self.layer.group_add)(request_group(request_id), self.channel)

        self.notifier.publish_to_request_channel(request_id, "offer_received", {"price": "120.00"})

        message = async_to_sync(self.layer.receive)(self.channel)
        self.assertEqual(message, {"type": "offer_received", "event": "offer_received", "data": {"price": "120.00"}})

    def test_operator_events_reach_operator_group(self):
        operator_id = uuid.uuid4()
        async_to_sync(self.layer.group_add)(operator_group(operator_id), self.channel)

        self.notifier.publish_to_operator_channel(operator_id, "new_request", {"round": 0})

        message = async_to_sync(self.layer.receive)(self.channel)
        self.assertEqual(message["type"], "new_request")
        self.assertEqual(message["data"], {"round": 0})

    def test_offline_push_is_delegated(self):
        operator_id = uuid.uuid4()
        self.notifier.push_client.send_to_operator.return_value = []

        self.assertEqual(self.notifier.send_offline_push(operator_id, {"a": 1}), [])
        self.notifier.push_client.send_to_operator.assert_called_once_with(operator_id, {"a": 1})


class PushGatewayClientTests(TestCase):

    def setUp(self):
        self.operator = Operator.objects.create(name="Tow Team", phone="+48600000001")
        self.subscription = PushSubscription.objects.create(
            operator=self.operator, endpoint="https://push.example.com/1", p256dh_key="key", auth_key="auth"
        )
        self.session = MagicMock()
        self.client = PushGatewayClient(gateway_url=GATEWAY, timeout=2, session=self.session)

    def _respond(self, status_code):
        response = MagicMock(status_code=status_code)
        if status_code >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status_code}")
        self.session.post.return_value = response

    def test_delivered(self):
        self._respond(201)

        results = self.client.send_to_operator(self.operator.id, {"title": "New request"})

        self.assertEqual([r.status for r in results], [PushStatus.DELIVERED])
        body = self.session.post.call_args.kwargs["json"]
        self.assertEqual(body["subscription"]["keys"], {"p256dh": "key", "auth": "auth"})
        self.assertEqual(body["payload"], {"title": "New request"})
        self.subscription.refresh_from_db()
        self.assertIsNotNone(self.subscription.last_used_at)

    def test_gone_subscription_is_invalid(self):
        self._respond(410)

        results = self.client.send_to_operator(self.operator.id, {})

        self.assertEqual(results[0].status, PushStatus.INVALID)
        self.assertEqual(results[0].subscription_id, self.subscription.id)

    def test_gateway_errors_are_transient(self):
        self._respond(503)
        self.assertEqual(self.client.send_to_operator(self.operator.id, {})[0].status, PushStatus.TRANSIENT)

        self.session.post.side_effect = requests.ConnectionError("refused")
        self.assertEqual(self.client.send_to_operator(self.operator.id, {})[0].status, PushStatus.TRANSIENT)

    def test_inactive_subscriptions_and_disabled_gateway_are_skipped(self):
        self.subscription.is_active = False
        self.subscription.save()
        self.assertEqual(self.client.send_to_operator(self.operator.id, {}), [])

        disabled = PushGatewayClient(gateway_url="", session=self.session)
        self.assertFalse(disabled.enabled)
        self.session.post.assert_not_called()


class DispatchConsumerTests(SimpleTestCase):

    async def _connect(self):
        communicator = WebsocketCommunicator(DispatchConsumer.as_asgi(), "/ws/dispatch/")
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        self.assertEqual(await communicator.receive_json_from(), {"type": "connection_established"})
        return communicator

    @patch("realtime.consumers.dispatch_consumer.is_request_owner", new_callable=AsyncMock, return_value=True)
    async def test_joined_request_receives_events(self, is_owner):
        communicator = await self._connect()
        request_id = str(uuid.uuid4())

        await communicator.send_json_to({"type": "join_request", "request_id": request_id, "phone_number": "+48500100200"})
        joined = await communicator.receive_json_from()
        self.assertEqual(joined, {"type": "joined", "group": request_group(request_id)})

        await get_channel_layer().group_send(
            request_group(request_id),
            {"type": "offer_accepted", "event": "offer_accepted", "data": {"offer_id": "x"}},
        )
        self.assertEqual(
            await communicator.receive_json_from(), {"type": "offer_accepted", "data": {"offer_id": "x"}}
        )
        await communicator.disconnect()

    async def test_invalid_messages_get_errors(self):
        communicator = await self._connect()

        await communicator.send_json_to({"type": "join_operator", "operator_id": "nope"})
        self.assertEqual((await communicator.receive_json_from())["type"], "error")

        await communicator.send_json_to({"type": "dance"})
        self.assertEqual((await communicator.receive_json_from())["message"], "Unknown message type: dance")

        await communicator.send_json_to({"type": "ping"})
        self.assertEqual(await communicator.receive_json_from(), {"type": "pong"})
        await communicator.disconnect()

    async def test_left_operator_group_stops_receiving(self):
        communicator = await self._connect()
        operator_id = str(uuid.uuid4())

        await communicator.send_json_to({"type": "join_operator", "operator_id": operator_id})
        self.assertEqual(await communicator.receive_json_from(), {"type": "joined", "group": operator_group(operator_id)})
        await communicator.send_json_to({"type": "leave_operator", "operator_id": operator_id})
        self.assertEqual(await communicator.receive_json_from(), {"type": "left", "group": operator_group(operator_id)})

        await get_channel_layer().group_send(
            operator_group(operator_id), {"type": "new_request", "event": "new_request", "data": {}}
        )
        self.assertTrue(await communicator.receive_nothing())

        await communicator.send_json_to({"request_id": operator_id})
        self.assertEqual(
            await communicator.receive_json_from(), {"type": "error", "message": "Message type is required"}
        )
        await communicator.disconnect()

    @patch("realtime.consumers.dispatch_consumer.is_request_owner", new_callable=AsyncMock, return_value=False)
    async def test_request_channel_needs_owner_phone(self, is_owner):
        communicator = await self._connect()
        request_id = str(uuid.uuid4())

        await communicator.send_json_to({"type": "join_request", "request_id": request_id, "phone_number": "1"})

        self.assertEqual(await communicator.receive_json_from(), {"type": "error", "message": "Request not found"})
        is_owner.assert_awaited_once_with(request_id, "1")
        await communicator.disconnect()
