"""Domain events for the media conversion pipeline.

Events flow through the EventBus and decouple the scheduler and encode drivers
from whatever presents progress (the console reporter, a recording subscriber
in tests, or nothing at all).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import MediaCategory


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class QueueBuilt(Event):
    """Emitted once the queue is flattened and output directories exist."""

    items: int
    output_root: Path


class ConversionStarted(Event):
    """Emitted when the encoder reports start for an item."""

    path: Path
    category: MediaCategory


class LiveProgress(Event):
    """Progress of one item, 0-100. A final 100 is always sent on success."""

    path: Path
    percent: float


class ConversionError(Event):
    """Emitted once per failed item, after the reaper ran."""

    path: Path
    message: str


class ConversionComplete(Event):
    """Emitted exactly once per run, when the queue is empty and nothing is active."""

    pass


class LogMessage(Event):
    """Mirror of a log record for subscribers that show diagnostics."""

    level: str
    message: str
