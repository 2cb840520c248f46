"""
Notification helpers for sending WebSocket messages to connected clients.

ChannelsNotifier is the Notifier used by the dispatch engine:
- request_<request_id> groups carry customer-facing events
- operator_<operator_id> groups carry new-request announcements
- offline push is delegated to realtime.push.PushGatewayClient
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from services.dispatch.types import PushResult

from .push import PushGatewayClient

logger = logging.getLogger(__name__)


def request_group(request_id) -> str:
    return f"request_{request_id}"


def operator_group(operator_id) -> str:
    return f"operator_{operator_id}"


class ChannelsNotifier:
    """Publishes dispatch events through the Channels layer."""

    def __init__(self, channel_layer=None, push_client: Optional[PushGatewayClient] = None):
        self._channel_layer = channel_layer
        self.push_client = push_client or PushGatewayClient()

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def _group_send(self, group: str, event_name: str, payload: Dict[str, Any]) -> bool:
        channel_layer = self.channel_layer
        if channel_layer is None:
            logger.warning("No channel layer configured; dropping %s for %s", event_name, group)
            return False

        # "type" selects the consumer handler method
        message = {"type": event_name, "event": event_name, "data": payload}
        logger.debug("WS -> %s: %s", group, event_name)
        async_to_sync(channel_layer.group_send)(group, message)
        return True

    def publish_to_request_channel(self, request_id, event_name: str, payload: Dict[str, Any]) -> None:
        self._group_send(request_group(request_id), event_name, payload)

    def publish_to_operator_channel(self, operator_id, event_name: str, payload: Dict[str, Any]) -> None:
        self._group_send(operator_group(operator_id), event_name, payload)

    def send_offline_push(self, operator_id, payload: Dict[str, Any]) -> List[PushResult]:
        return self.push_client.send_to_operator(operator_id, payload)
