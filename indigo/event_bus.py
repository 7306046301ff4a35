import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class IndigoEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    source: str
    run_id: str | None = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventBus:
    """A lightweight, synchronous event bus for loop transitions, results and data-quality signals."""

    def __init__(self):
        self._subscribers: List[Callable[[IndigoEvent], None]] = []
        self.failed_deliveries = 0

    def subscribe(self, callback: Callable[[IndigoEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[IndigoEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(
        self,
        event_type: str,
        source: str,
        payload: Dict[str, Any] | None = None,
        run_id: str | None = None,
    ) -> IndigoEvent:
        """Construct and broadcast an IndigoEvent to all subscribers."""
        event = IndigoEvent(
            event_type=event_type,
            source=source,
            run_id=run_id,
            payload=payload or {},
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # A failing sink (bad file write) must not take the loop down
                self.failed_deliveries += 1
                logger.warning(f"[EVENTS] Subscriber failed on {event_type}: {e}")

        return event
