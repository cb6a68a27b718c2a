"""Adapters package - event types and the fan-out bus.

Producers inside the backend publish typed events here; the transport
layer subscribes and streams them to the UI.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "Subscription",
    "event_to_dict",
    "dict_to_event",
]

from vibe.adapters.event_bus import EventBus, Subscription
from vibe.adapters.events import dict_to_event, event_to_dict
