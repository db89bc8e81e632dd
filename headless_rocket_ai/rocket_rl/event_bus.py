"""
Headless Rocket AI - Event Bus
==============================

Typed publish/subscribe channel for training telemetry. Subscribers receive
plain dict payloads; every subscription returns its own unsubscribe callable.

Author: AI Assistant
Date: August 2025
"""

import logging
from enum import Enum
from collections import defaultdict
from typing import Callable, Dict, List, Any, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], None]


class EventType(str, Enum):
    """Signals produced by the environment and the training orchestrator."""
    TRAINING_STARTED = 'ai:training_started'
    TRAINING_STOPPED = 'ai:training_stopped'
    TRAINING_PAUSED = 'ai:training_paused'
    TRAINING_RESUMED = 'ai:training_resumed'
    TRAINING_COMPLETED = 'ai:training_completed'
    TRAINING_ERROR = 'ai:training_error'
    TRAINING_PROGRESS = 'ai:training_progress'
    TRAINING_STEP = 'ai:training_step'
    EVALUATION_COMPLETED = 'ai:evaluation_completed'
    EPISODE_STARTED = 'ai:episode_started'
    EPISODE_ENDED = 'ai:episode_ended'


class EventBus:
    """
    Synchronous fire-and-forget event dispatcher.

    Handler exceptions are logged and never reach the emitter, so telemetry
    consumers cannot break a training run.
    """

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            Callable removing this subscription; safe to call more than once
        """
        self._handlers[event_type].append(handler)

        def unsubscribe():
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None):
        payload = payload if payload is not None else {}
        for handler in list(self._handlers.get(event_type, ())):
            try:
                handler(payload)
            except Exception as e:
                logger.warning(f"Event handler for {event_type.name} failed: {e}")

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self):
        self._handlers.clear()
