"""Flattening of a DirEntry selection into the conversion queue.

The whole queue is built, and every mirrored output directory created, before
the first encode is admitted: the queue length is known up front and no worker
ever writes into a directory that does not exist yet.
"""

import logging
from collections import deque
from pathlib import Path
from typing import Deque, Sequence

from mbc.domain.errors import ConversionIOError
from mbc.domain.models import DirEntry, FileEntry, FolderEntry, WorkItem

logger = logging.getLogger(__name__)


def _make_dir(directory: Path) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConversionIOError(f"Cannot create output directory {directory}: {e}") from e


def build_queue(tree: Sequence[DirEntry], output_root: Path) -> Deque[WorkItem]:
    """Pre-order walk of `tree`, mirroring folders under `output_root`.

    Raises ConversionIOError if any directory cannot be created.
    """
    queue: Deque[WorkItem] = deque()
    _make_dir(output_root)

    def _walk(entries: Sequence[DirEntry], current_dir: Path) -> None:
        for entry in entries:
            if isinstance(entry, FolderEntry):
                child_dir = current_dir / entry.name
                _make_dir(child_dir)
                _walk(entry.children, child_dir)
            elif isinstance(entry, FileEntry):
                queue.append(WorkItem(
                    category=entry.category,
                    input_path=Path(entry.path).absolute(),
                    output_path=(current_dir / Path(entry.name).stem).absolute(),
                ))

    _walk(tree, output_root)
    logger.info(f"Queue built: {len(queue)} items under {output_root}")
    return queue
