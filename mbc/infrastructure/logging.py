import logging
import threading
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from mbc.infrastructure.event_bus import EventBus


class EventBusLogHandler(logging.Handler):
    """Mirrors log records onto the EventBus as LogMessage events."""

    def __init__(self, event_bus: "EventBus", level: int = logging.NOTSET):
        super().__init__(level)
        self.event_bus = event_bus
        self._local = threading.local()

    def emit(self, record: logging.LogRecord) -> None:
        # A failing LogMessage subscriber logs a warning, which lands here again
        if getattr(self._local, "emitting", False):
            return
        from mbc.domain.events import LogMessage
        self._local.emitting = True
        try:
            self.event_bus.publish(LogMessage(level=record.levelname, message=record.getMessage()))
        except Exception:
            self.handleError(record)
        finally:
            self._local.emitting = False


def setup_logging(
    output_dir: Path,
    debug: bool = False,
    log_path: Optional[Path] = None,
    event_bus: Optional["EventBus"] = None,
) -> logging.Logger:
    """
    Setup logging configuration for MBC.

    Creates output directory and conversion.log file.
    Returns configured logger instance.

    Args:
        output_dir: Directory the run writes into (parent of converted/)
        debug: If True, enable DEBUG level logging with encoder command lines
        log_path: Optional path to log file (overrides output_dir)
        event_bus: Optional bus that receives every record as a LogMessage
    """
    # Create output directory
    output_dir.mkdir(parents=True, exist_ok=True)

    # Setup log file
    log_file = Path(log_path) if log_path else (output_dir / "conversion.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Configure logging level
    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.FileHandler(log_file)]
    if event_bus is not None:
        handlers.append(EventBusLogHandler(event_bus))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
