"""
Load Generation Runtime - Generator Lifecycle Events

Observers subscribe here to learn when generators are added, removed,
started or stopped. Listener failures are logged and never propagate back
into the registry or controller.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from loadgen.runtime.generators import LoadGenerator
    from loadgen.runtime.models import RuntimeState

logger = logging.getLogger(__name__)


class GeneratorEventType(Enum):
    """Types of events emitted for generators."""

    GENERATOR_ADDED = "generator_added"
    GENERATOR_REMOVED = "generator_removed"
    GENERATOR_STARTED = "generator_started"
    GENERATOR_STOPPED = "generator_stopped"


@dataclass
class GeneratorEvent:
    """Event emitted when a generator changes."""

    event_type: GeneratorEventType
    generator: "LoadGenerator"
    state: Optional["RuntimeState"] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def generator_id(self) -> str:
        return self.generator.generator_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "event_type": self.event_type.value,
            "generator_id": self.generator.generator_id,
            "short_name": self.generator.short_name,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.state is not None:
            result["mode"] = self.state.mode.value
        return result


# Type alias for event listeners
EventListener = Callable[[GeneratorEvent], None]


class GeneratorEvents:
    """
    Thread-safe fan-out of generator lifecycle events.

    Usage:
        events = GeneratorEvents()
        events.add_listener(lambda event: print(event.to_dict()))
    """

    def __init__(self):
        self._listeners: list[EventListener] = []
        self._listener_lock = threading.Lock()

    def add_listener(self, listener: EventListener) -> None:
        with self._listener_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> bool:
        """
        Remove an event listener.

        Returns:
            True if removed, False if not found
        """
        with self._listener_lock:
            try:
                self._listeners.remove(listener)
                return True
            except ValueError:
                return False

    def emit(self, event: GeneratorEvent) -> None:
        """Deliver an event to all listeners."""
        with self._listener_lock:
            listeners = list(self._listeners)

        logger.debug("Generator event", extra=event.to_dict())

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Event listener error",
                    extra={
                        "event_type": event.event_type.value,
                        "generator_id": event.generator_id,
                        "error": str(e),
                    },
                )

    # Convenience emitters

    def generator_added(self, generator: "LoadGenerator") -> None:
        self.emit(GeneratorEvent(GeneratorEventType.GENERATOR_ADDED, generator))

    def generator_removed(self, generator: "LoadGenerator") -> None:
        self.emit(GeneratorEvent(GeneratorEventType.GENERATOR_REMOVED, generator))

    def generator_started(self, generator: "LoadGenerator", state: "RuntimeState") -> None:
        self.emit(GeneratorEvent(GeneratorEventType.GENERATOR_STARTED, generator, state))

    def generator_stopped(self, generator: "LoadGenerator", state: "RuntimeState") -> None:
        self.emit(GeneratorEvent(GeneratorEventType.GENERATOR_STOPPED, generator, state))
