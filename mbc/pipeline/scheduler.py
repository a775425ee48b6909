"""Conversion scheduler: queue admission under a fixed concurrency budget.

A run flattens the selection into a queue (creating every mirrored output
directory first), then starts exactly `max_concurrent` admission workers.
Each worker repeatedly takes the queue head, runs the encode driver for its
category and records the outcome, so a freed slot is reused immediately.
When the queue is drained and nothing is active the run emits
ConversionComplete, exactly once.

Encode failures never propagate to the caller of run(): drivers report them
as ConversionError events and the scheduler keeps them in the run's outcome
set. Only queue-build failures (ConversionIOError) and overlapping runs
(AlreadyRunningError) raise.
"""

import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

from mbc.config.models import AppConfig
from mbc.config.thread_budget import clamp_concurrency, max_concurrent_for
from mbc.domain.errors import AlreadyRunningError
from mbc.domain.events import ConversionComplete, ConversionError, QueueBuilt
from mbc.domain.models import DirEntry, ItemOutcome, MediaCategory, WorkItem
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.ffmpeg import FFmpegAdapter
from mbc.infrastructure.process_reaper import ProcessReaper
from mbc.pipeline.drivers import EncodeDriver, build_drivers
from mbc.pipeline.queue_builder import build_queue
from mbc.pipeline.run_state import RunState


class ConversionScheduler:
    """Owns one run at a time and the encoder processes it spawns.

    Args:
        config: AppConfig (max_concurrent override, output_subdir).
        event_bus: EventBus receiving QueueBuilt, ConversionComplete and,
            via the drivers, progress and per-item errors.
        drivers: Encode driver per media category.
        reaper: ProcessReaper shared with the ffmpeg adapter.
        total_cores: Core count used for the concurrency cap (host default).
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        drivers: Dict[MediaCategory, EncodeDriver],
        reaper: ProcessReaper,
        total_cores: Optional[int] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.drivers = drivers
        self.reaper = reaper
        self.logger = logging.getLogger(__name__)

        if config.general.max_concurrent is not None:
            self.max_concurrent = clamp_concurrency(config.general.max_concurrent)
        else:
            self.max_concurrent = max_concurrent_for(total_cores)

        self._state: Optional[RunState] = None
        self._run_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig, event_bus: EventBus, total_cores: Optional[int] = None) -> "ConversionScheduler":
        """Wires reaper, ffmpeg adapter and the three drivers."""
        reaper = ProcessReaper()
        ffmpeg = FFmpegAdapter(reaper, ffmpeg_path=config.general.ffmpeg_path, debug=config.general.debug)
        drivers = build_drivers(config, event_bus, ffmpeg, reaper, total_cores)
        return cls(config, event_bus, drivers, reaper, total_cores)

    @property
    def current_run(self) -> Optional[RunState]:
        return self._state

    def run_conversion(self, tree: Sequence[DirEntry], output_dir: Union[str, Path]) -> RunState:
        """Entry point for callers: output always lands under <output_dir>/converted/."""
        return self.run(tree, Path(output_dir) / self.config.general.output_subdir)

    def run(self, tree: Sequence[DirEntry], output_root: Union[str, Path]) -> RunState:
        """Builds the queue and starts admission; returns without waiting for encodes."""
        output_root = Path(output_root)
        with self._run_lock:
            if self._state is not None and not self._state.is_finished:
                raise AlreadyRunningError("A conversion run is already in progress")
            self.reaper.reset()
            self.logger.info(f"Starting conversion to: {output_root}")
            queue = build_queue(tree, output_root)
            state = RunState(output_root, queue, self.max_concurrent)
            self._state = state

        self.event_bus.publish(QueueBuilt(items=state.total, output_root=output_root))
        self.logger.info(f"Admission started: items={state.total}, max_concurrent={state.max_concurrent}")

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=state.max_concurrent,
            thread_name_prefix="mbc-worker",
        )
        for _ in range(state.max_concurrent):
            executor.submit(self._worker, state)
        # Submitted workers keep running; the pool just takes no new work
        executor.shutdown(wait=False)
        return state

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the current run emitted ConversionComplete."""
        state = self._state
        if state is None:
            return True
        return state.finished.wait(timeout)

    def stop_all(self) -> str:
        """Kills every encoder process of this scheduler. Raises ReaperError on failure."""
        return self.reaper.stop_all()

    def shutdown(self) -> str:
        """Drops queued items of the current run and kills its encoders.

        The reaper refuses new encoder processes until the next run, so an
        item between passes cannot start its second pass. In-flight items
        then settle as failed and the run still completes.
        """
        state = self._state
        if state is not None:
            with state.lock:
                dropped = list(state.queue)
                state.queue.clear()
                for item in dropped:
                    state.outcomes.append(ItemOutcome.failed(item, "cancelled"))
            if dropped:
                self.logger.info(f"Shutdown: dropped {len(dropped)} queued items")
        return self.reaper.cancel()

    def _worker(self, state: RunState) -> None:
        while True:
            complete = False
            with state.lock:
                item = state.admit()
                if item is None:
                    complete = state.should_complete()

            if item is None:
                if complete:
                    self._finish(state)
                return

            outcome = self._convert(item)
            with state.lock:
                state.settle(outcome)

    def _convert(self, item: WorkItem) -> ItemOutcome:
        driver = self.drivers.get(item.category)
        if driver is None:
            message = f"No encode driver for {item.category.value}"
            self.logger.error(f"{message}: {item.input_path}")
            self.event_bus.publish(ConversionError(path=item.input_path, message=message))
            return ItemOutcome.failed(item, message)
        try:
            return driver.convert(item)
        except Exception as e:
            # Log exception but don't kill the worker
            message = f"Exception: {e}"
            self.logger.exception(f"Exception processing {item.input_path.name}: {e}")
            self.event_bus.publish(ConversionError(path=item.input_path, message=message))
            return ItemOutcome.failed(item, message)

    def _finish(self, state: RunState) -> None:
        with state.lock:
            succeeded = sum(1 for o in state.outcomes if o.ok)
            failed = len(state.outcomes) - succeeded
        self.logger.info(f"Conversion is complete: succeeded={succeeded}, failed={failed}")
        self.event_bus.publish(ConversionComplete())
        state.finished.set()
