"""Realtime change feed and reconciler."""

from .events import ChangeEvent, EventType, FeedMessage
from .feed import ChangeFeed, FeedDisconnected, MQTTChangeFeed
from .reconciler import RealtimeReconciler

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "EventType",
    "FeedDisconnected",
    "FeedMessage",
    "MQTTChangeFeed",
    "RealtimeReconciler",
]
