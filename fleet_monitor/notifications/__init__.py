"""Notification delivery to downstream agent sessions."""

from .event_dispatcher import DeliveryResult, EventDispatcher

__all__ = ["EventDispatcher", "DeliveryResult"]
