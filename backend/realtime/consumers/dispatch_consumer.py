"""WebSocket consumer through which customers follow a request and operators receive new requests."""

import logging
import uuid
from typing import Dict, Any, Optional, Set

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from ..notifications import operator_group, request_group

logger = logging.getLogger(__name__)


def _parse_id(value) -> Optional[str]:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        return None


@database_sync_to_async
def is_request_owner(request_id: str, phone_number) -> bool:
    from assistance.wiring import get_repository

    help_request = get_repository().get_request(request_id)
    return help_request is not None and help_request.phone_number == str(phone_number or "").strip()


class DispatchConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer shared by customers and operators.

    Client messages:
        - join_request  {"request_id": ..., "phone_number": ...}
        - leave_request {"request_id": ...}
        - join_operator / leave_operator {"operator_id": ...}
        - ping

    Server events are relayed as {"type": <event name>, "data": {...}}.
    """

    async def connect(self):
        self.dispatch_groups: Set[str] = set()
        await self.accept()
        await self.send_json({"type": "connection_established"})

    async def disconnect(self, close_code):
        for group in list(getattr(self, "dispatch_groups", ())):
            try:
                await self.channel_layer.group_discard(group, self.channel_name)
            except Exception:
                logger.exception("Could not leave %s on disconnect of %s", group, self.channel_name)
        self.dispatch_groups = set()

    async def receive_json(self, content: Dict[str, Any], **kwargs):
        msg_type = content.get("type")
        if not msg_type:
            await self._reply_error("Message type is required")
            return

        try:
            await self._route(msg_type, content)
        except Exception:
            logger.exception("Error handling %s message on %s", msg_type, self.channel_name)
            await self._reply_error(f"Error processing {msg_type}")

    async def _route(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "join_request":
            await self._join_request(data)
        elif msg_type == "leave_request":
            await self._toggle_group(data, "request_id", request_group, join=False)
        elif msg_type == "join_operator":
            await self._toggle_group(data, "operator_id", operator_group, join=True)
        elif msg_type == "leave_operator":
            await self._toggle_group(data, "operator_id", operator_group, join=False)
        elif msg_type == "ping":
            await self.send_json({"type": "pong"})
        else:
            await self._reply_error(f"Unknown message type: {msg_type}")

    async def _join_request(self, data: Dict[str, Any]):
        # Only the customer who created the request may follow it
        request_id = _parse_id(data.get("request_id"))
        if request_id is not None and not await is_request_owner(request_id, data.get("phone_number")):
            logger.warning("Channel %s refused request_%s: phone mismatch", self.channel_name, request_id)
            await self._reply_error("Request not found")
            return
        await self._toggle_group(data, "request_id", request_group, join=True)

    async def _toggle_group(self, data: Dict[str, Any], key: str, group_for, join: bool):
        target_id = _parse_id(data.get(key))
        if target_id is None:
            await self._reply_error(f"A valid {key} is required")
            return

        group = group_for(target_id)
        if join:
            await self.channel_layer.group_add(group, self.channel_name)
            self.dispatch_groups.add(group)
            logger.debug("Channel %s joined %s", self.channel_name, group)
        else:
            await self.channel_layer.group_discard(group, self.channel_name)
            self.dispatch_groups.discard(group)
        await self.send_json({"type": "joined" if join else "left", "group": group})

    async def _reply_error(self, message: str):
        await self.send_json({"type": "error", "message": message})

    async def _relay(self, event: Dict[str, Any]):
        await self.send_json({
            "type": event.get("event", event.get("type")),
            "data": event.get("data", {}),
        })

    # ---------------------- Request channel events ----------------------

    async def request_created(self, event):
        await self._relay(event)

    async def request_cancelled(self, event):
        await self._relay(event)

    async def search_timed_out(self, event):
        await self._relay(event)

    async def offer_received(self, event):
        await self._relay(event)

    async def offer_accepted(self, event):
        await self._relay(event)

    async def request_status_changed(self, event):
        await self._relay(event)

    # ---------------------- Operator channel events ----------------------

    async def new_request(self, event):
        await self._relay(event)
