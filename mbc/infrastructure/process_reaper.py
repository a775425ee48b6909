"""Termination of encoder subprocesses.

`ProcessReaper` kills exactly the ffmpeg processes spawned through it, so one
failing item can stop its siblings without touching unrelated encoder
invocations on the host. The module-level helpers work by process name for
callers that hold no handles (the `mbc stop` / `mbc status` commands).
"""

import logging
import subprocess
import sys
import threading
from typing import List, Set

from mbc.domain.errors import ReaperError

NO_PROCESSES = "No encoder processes were running"


class ProcessReaper:
    """Tracks live encoder processes and stops them on demand."""

    def __init__(self, terminate_timeout: float = 3.0):
        self.terminate_timeout = terminate_timeout
        self.logger = logging.getLogger(__name__)
        self._processes: Set[subprocess.Popen] = set()
        self._cancelled = False
        self._lock = threading.Lock()

    def track(self, process: subprocess.Popen) -> bool:
        """Registers a spawned process. Returns False once cancel() was called."""
        with self._lock:
            if self._cancelled:
                return False
            self._processes.add(process)
            return True

    def untrack(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    @property
    def tracked(self) -> int:
        with self._lock:
            return len(self._processes)

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> str:
        """Refuses further processes and stops the tracked ones."""
        with self._lock:
            self._cancelled = True
        return self.stop_all_quietly()

    def reset(self) -> None:
        """Accepts processes again, for the next run."""
        with self._lock:
            self._cancelled = False

    def stop_all(self) -> str:
        """Terminates every tracked process. Idempotent; raises ReaperError on kill failure."""
        with self._lock:
            processes = list(self._processes)
            self._processes.clear()

        if not processes:
            return NO_PROCESSES

        stopped = 0
        failures: List[str] = []
        for process in processes:
            if process.poll() is not None:
                continue
            try:
                process.terminate()
                try:
                    process.wait(timeout=self.terminate_timeout)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
                stopped += 1
            except ProcessLookupError:
                # Exited between poll() and terminate()
                continue
            except OSError as e:
                failures.append(f"pid {process.pid}: {e}")

        if failures:
            raise ReaperError(f"Failed to stop encoder processes: {'; '.join(failures)}")
        if stopped == 0:
            return NO_PROCESSES
        self.logger.info(f"REAPER: stopped {stopped} encoder process(es)")
        return f"Stopped {stopped} encoder process(es)"

    def stop_all_quietly(self) -> str:
        """stop_all() for internal call sites: failures are logged, never raised."""
        try:
            return self.stop_all()
        except ReaperError as e:
            self.logger.error(f"REAPER_FAILED: {e}")
            return str(e)


def _kill_command(name: str) -> List[str]:
    if sys.platform == "win32":
        return ["taskkill", "/F", "/IM", f"{name}.exe"]
    return ["pkill", "-9", name]


def _probe_command(name: str) -> List[str]:
    if sys.platform == "win32":
        return ["tasklist", "/FI", f"IMAGENAME eq {name}.exe", "/NH"]
    return ["pgrep", "-x", name]


def stop_encoder_processes_by_name(name: str = "ffmpeg") -> str:
    """Kills every process called `name` on the host. 'None found' counts as success."""
    logger = logging.getLogger(__name__)
    logger.info(f"Stopping all {name} processes")
    try:
        result = subprocess.run(_kill_command(name), capture_output=True, text=True)
    except OSError as e:
        raise ReaperError(f"Could not run kill command: {e}") from e

    output = f"{result.stdout or ''}{result.stderr or ''}".strip()
    # pkill exits 1 when nothing matched; taskkill prints "not found" (exit 128)
    if result.returncode == 1 and sys.platform != "win32":
        return NO_PROCESSES
    if "not found" in output.lower():
        return NO_PROCESSES
    if result.returncode != 0:
        logger.error(f"Error stopping {name} processes: {output}")
        raise ReaperError(output or f"kill command exited with code {result.returncode}")
    return result.stdout.strip() or f"Stopped all {name} processes"


def is_encoder_active(name: str = "ffmpeg") -> bool:
    """True if any process called `name` is running on the host."""
    try:
        result = subprocess.run(_probe_command(name), capture_output=True, text=True)
    except OSError as e:
        logging.getLogger(__name__).error(f"Error checking {name} status: {e}")
        return False
    if result.returncode != 0:
        return False
    stdout = result.stdout.strip()
    if sys.platform == "win32":
        return f"{name}.exe".lower() in stdout.lower()
    return bool(stdout)
