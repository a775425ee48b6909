import os
from pathlib import Path

# ffmpeg names two-pass stats '<prefix>-0.log' and '<prefix>-0.log.mbtree'
PASSLOG_SUFFIX = ".2pass"

class HousekeepingService:
    """Service for cleaning up partial outputs and two-pass statistics."""

    def cleanup_temp_files(self, directory: Path):
        """Recursively removes all .tmp files in the directory."""
        self._remove_matching(directory, lambda name: name.endswith(".tmp"))

    def cleanup_pass_logs(self, directory: Path):
        """Recursively removes leftover two-pass statistics files."""
        self._remove_matching(directory, lambda name: f"{PASSLOG_SUFFIX}-" in name)

    def remove_pass_logs(self, prefix: Path):
        """Removes the statistics files written for one -passlogfile prefix."""
        if not prefix.parent.exists():
            return
        for path in prefix.parent.iterdir():
            if not path.name.startswith(f"{prefix.name}-"):
                continue
            try:
                path.unlink()
            except OSError:
                pass

    def _remove_matching(self, directory: Path, predicate):
        for root, dirs, files in os.walk(directory):
            for file in files:
                if predicate(file):
                    try:
                        (Path(root) / file).unlink()
                    except OSError:
                        pass
