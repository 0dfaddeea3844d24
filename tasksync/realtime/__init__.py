"""Realtime delivery: connection registry and the change notification bridge."""

from tasksync.realtime.registry import ClientHandle, ConnectionRegistry
from tasksync.realtime.bridge import BridgeState, ChangeNotificationBridge, to_change_event

__all__ = [
    "ClientHandle",
    "ConnectionRegistry",
    "BridgeState",
    "ChangeNotificationBridge",
    "to_change_event",
]
