import threading
from pathlib import Path
from typing import Dict, Optional, Set

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from mbc.domain.events import (
    ConversionComplete, ConversionError, ConversionStarted, LiveProgress, LogMessage, QueueBuilt
)
from mbc.infrastructure.event_bus import EventBus


class ConsoleReporter:
    """Subscribes to EventBus and renders per-file progress bars with rich.

    Errors are printed inline while the other bars keep moving;
    ConversionComplete prints the summary and is the only "batch is over"
    signal.
    """

    def __init__(self, bus: EventBus, console: Optional[Console] = None, show_logs: bool = False):
        self.bus = bus
        self.console = console or Console()
        self.show_logs = show_logs
        self.progress = Progress(
            TextColumn("[bold]{task.fields[category]:>5}"),
            TextColumn("{task.description}", overflow="ellipsis"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )
        self._tasks: Dict[Path, TaskID] = {}
        self._errors: Dict[Path, str] = {}
        self._done: Set[Path] = set()
        self._total = 0
        self._lock = threading.Lock()
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(QueueBuilt, self.on_queue_built)
        self.bus.subscribe(ConversionStarted, self.on_started)
        self.bus.subscribe(LiveProgress, self.on_progress)
        self.bus.subscribe(ConversionError, self.on_error)
        self.bus.subscribe(ConversionComplete, self.on_complete)
        if self.show_logs:
            self.bus.subscribe(LogMessage, self.on_log)

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()
        return False

    def _task_for(self, path: Path, category: str = "") -> TaskID:
        with self._lock:
            task_id = self._tasks.get(path)
            if task_id is None:
                task_id = self.progress.add_task(path.name, total=100, category=category)
                self._tasks[path] = task_id
            return task_id

    def on_queue_built(self, event: QueueBuilt):
        self._total = event.items
        self.console.print(f"Queued [bold]{event.items}[/bold] files → {event.output_root}")

    def on_started(self, event: ConversionStarted):
        self._task_for(event.path, event.category.value)

    def on_progress(self, event: LiveProgress):
        task_id = self._task_for(event.path)
        self.progress.update(task_id, completed=event.percent)
        if event.percent >= 100.0:
            with self._lock:
                self._done.add(event.path)

    def on_error(self, event: ConversionError):
        with self._lock:
            self._errors[event.path] = event.message
            task_id = self._tasks.get(event.path)
        if task_id is not None:
            self.progress.update(task_id, description=f"[red]{event.path.name} (failed)")
        self.progress.console.print(f"[red]✗ {event.path}: {event.message}")

    def on_log(self, event: LogMessage):
        self.progress.console.print(f"[dim]{event.level}: {event.message}")

    def on_complete(self, event: ConversionComplete):
        with self._lock:
            done = len(self._done - set(self._errors))
            errors = dict(self._errors)
        table = Table(title="Conversion complete", show_header=False)
        table.add_row("Queued", str(self._total))
        table.add_row("Converted", f"[green]{done}")
        table.add_row("Failed", f"[red]{len(errors)}" if errors else "0")
        self.progress.console.print(table)

    @property
    def errors(self) -> Dict[Path, str]:
        with self._lock:
            return dict(self._errors)
