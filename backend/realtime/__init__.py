"""
Realtime delivery for dispatch events.

Key Components:
    - notifications.py: ChannelsNotifier (request_<id> / operator_<id> groups)
    - push.py: PushGatewayClient for offline operators
    - consumers/: WebSocket consumer relaying group events to clients

Usage:
    from realtime.notifications import ChannelsNotifier
    from realtime.routing import websocket_urlpatterns
"""
