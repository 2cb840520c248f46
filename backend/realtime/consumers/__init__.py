"""Realtime consumers for WebSocket communication."""

from .dispatch_consumer import DispatchConsumer

__all__ = [
    "DispatchConsumer",
]
