import json
import os
from pathlib import Path

from indigo.event_bus import EventBus, IndigoEvent


class AuditLogger:
    """
    Audit Logger that subscribes to an Event Bus and writes events
    to an append-only JSONL file, one object per line.
    """

    def __init__(self, file_path: str | Path, event_bus: EventBus):
        self.file_path = Path(os.path.expanduser(str(file_path)))
        self.event_bus = event_bus

        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self.event_bus.subscribe(self.log_event)

    def log_event(self, event: IndigoEvent) -> None:
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.model_dump(), default=str) + "\n")

    def close(self) -> None:
        self.event_bus.unsubscribe(self.log_event)
