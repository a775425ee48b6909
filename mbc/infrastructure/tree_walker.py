import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Union

from mbc.config.models import AppConfig
from mbc.domain.models import DirEntry, FileEntry, FolderEntry, MediaCategory
from mbc.infrastructure.ffprobe import FFprobeAdapter

class TreeWalker:
    """Turns selected paths into a DirEntry tree with sizes and durations.

    Errors are collected per path: a path that cannot be read is logged and
    left out, the rest of the selection is still returned. Unsupported file
    extensions and symlinks are skipped.
    """

    def __init__(self, config: AppConfig, ffprobe: Optional[FFprobeAdapter] = None):
        self.config = config
        self.ffprobe = ffprobe
        self.logger = logging.getLogger(__name__)

    def detail_paths(self, paths: Iterable[Union[str, Path]]) -> List[DirEntry]:
        entries: List[DirEntry] = []
        for raw in paths:
            path = Path(raw)
            try:
                entry = self._detail(path)
            except OSError as e:
                self.logger.error(f"Error processing path {path}: {e}")
                continue
            if entry is not None:
                entries.append(entry)
        self.logger.info(f"Processing completed, found items: {len(entries)}")
        return entries

    def _detail(self, path: Path) -> Optional[DirEntry]:
        path.lstat()  # missing or unreadable paths raise here
        if path.is_symlink():
            return None
        if path.is_dir():
            children: List[DirEntry] = []
            # Ensure deterministic traversal: sort children by name
            for child in sorted(path.iterdir(), key=lambda p: p.name):
                try:
                    entry = self._detail(child)
                except OSError as e:
                    self.logger.error(f"Error processing path {child}: {e}")
                    continue
                if entry is not None:
                    children.append(entry)
            return FolderEntry(path=path, name=path.name, size=self._folder_size(path), children=children)

        if path.is_file():
            category = self.config.category_for(path)
            if category is None:
                return None
            duration = None
            if category != MediaCategory.IMAGE and self.ffprobe is not None:
                duration = self.ffprobe.try_get_duration(path)
            return FileEntry(
                path=path,
                name=path.name,
                category=category,
                size=path.stat().st_size,
                duration=duration,
            )
        return None

    def _folder_size(self, directory: Path) -> int:
        """Total bytes of every regular file under directory."""
        total = 0
        for root, dirs, files in os.walk(directory):
            for file_name in files:
                try:
                    total += (Path(root) / file_name).lstat().st_size
                except OSError:
                    # Skip files we can't access
                    continue
        return total
