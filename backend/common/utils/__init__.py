"""Common utility functions."""

from .geo import calculate_distance, is_valid_coordinate
from .clock import Clock, SystemClock, FixedClock

__all__ = [
    "calculate_distance",
    "is_valid_coordinate",
    "Clock",
    "SystemClock",
    "FixedClock",
]
