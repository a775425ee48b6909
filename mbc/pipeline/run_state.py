import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

from mbc.domain.models import ItemOutcome, WorkItem


class RunState:
    """Everything one run owns: queue, active count, outcomes.

    All fields are guarded by `lock`; admission (check-pop-increment) and the
    completion check happen inside a single critical section.
    """

    def __init__(self, output_root: Path, queue: Deque[WorkItem], max_concurrent: int):
        self.output_root = output_root
        self.queue: Deque[WorkItem] = deque(queue)
        self.max_concurrent = max_concurrent
        self.total = len(self.queue)
        self.active_count = 0
        self.peak_active = 0
        self.completed = False
        self.outcomes: List[ItemOutcome] = []
        self.lock = threading.Condition()
        self.finished = threading.Event()

    def admit(self) -> Optional[WorkItem]:
        """Pops the next item and counts it active. Caller must hold `lock`."""
        if not self.queue or self.active_count >= self.max_concurrent:
            return None
        item = self.queue.popleft()
        self.active_count += 1
        self.peak_active = max(self.peak_active, self.active_count)
        return item

    def should_complete(self) -> bool:
        """True exactly once: queue drained and nothing active. Caller must hold `lock`."""
        if self.completed or self.queue or self.active_count:
            return False
        self.completed = True
        return True

    def settle(self, outcome: ItemOutcome) -> None:
        """Records a terminal outcome and frees the slot. Caller must hold `lock`."""
        self.active_count -= 1
        self.outcomes.append(outcome)

    @property
    def succeeded(self) -> List[ItemOutcome]:
        with self.lock:
            return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[ItemOutcome]:
        with self.lock:
            return [o for o in self.outcomes if not o.ok]

    @property
    def is_finished(self) -> bool:
        return self.finished.is_set()
