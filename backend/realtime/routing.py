"""WebSocket URL routing for the realtime package."""

from django.urls import re_path

from .consumers.dispatch_consumer import DispatchConsumer

websocket_urlpatterns = [
    # Customers join request_<id>, operators join operator_<id>
    # URL: ws://localhost:8000/ws/dispatch/
    re_path(
        r"ws/dispatch/$",
        DispatchConsumer.as_asgi(),
        name="dispatch-ws"
    ),
]
