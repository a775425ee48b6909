import logging
import math
import re
import subprocess
import time
from collections import deque
from typing import Callable, List, Optional

from mbc.domain.errors import EncodeError
from mbc.infrastructure.process_reaper import ProcessReaper

# 'Duration: 00:01:02.50' from the input banner, 'time=00:00:31.25' from progress lines
DURATION_REGEX = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
TIME_REGEX = re.compile(r"time=\s*(\d+):(\d+):(\d+(?:\.\d+)?)")

ProgressCallback = Callable[[float], None]


def _to_seconds(match: "re.Match") -> float:
    h, m, s = map(float, match.groups())
    return h * 3600 + m * 60 + s


def _kill(process: subprocess.Popen) -> None:
    if process.poll() is None:
        process.kill()
    process.wait()


def progress_percent(current_seconds: float, total_seconds: Optional[float]) -> Optional[float]:
    """Percent done, or None when it cannot be known (no/zero duration)."""
    if not total_seconds or total_seconds <= 0 or math.isnan(total_seconds):
        return None
    percent = (current_seconds / total_seconds) * 100.0
    if math.isnan(percent):
        return None
    return max(0.0, min(100.0, percent))


class FFmpegAdapter:
    """Runs one ffmpeg invocation and translates its output into callbacks.

    Lifecycle: `on_start` once the process is spawned, `on_progress` with a
    numeric percent whenever a progress line can be turned into one (anything
    else is dropped), EncodeError on failure, plain return on success. Other
    stderr lines are only kept for the error message.
    """

    def __init__(self, reaper: ProcessReaper, ffmpeg_path: str = "ffmpeg", debug: bool = False):
        self.reaper = reaper
        self.ffmpeg_path = ffmpeg_path
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def build_command(self, input_path, args: List[str]) -> List[str]:
        return [self.ffmpeg_path, "-hide_banner", "-y", "-i", str(input_path), *args]

    def run(
        self,
        input_path,
        args: List[str],
        on_start: Optional[Callable[[], None]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Executes one encoder pass, blocking until it ends."""
        cmd = self.build_command(input_path, args)
        start_time = time.monotonic()
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        if self.reaper.cancelled:
            raise EncodeError("cancelled")

        try:
            # ffmpeg echoes raw file names and tags, which need not be valid UTF-8
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1
            )
        except OSError as e:
            raise EncodeError(f"Cannot start {self.ffmpeg_path}: {e}") from e

        if not self.reaper.track(process):
            # Cancelled between the check above and the spawn
            _kill(process)
            raise EncodeError("cancelled")
        tail: "deque[str]" = deque(maxlen=5)
        total_duration: Optional[float] = None
        try:
            if on_start:
                on_start()
            if process.stdout:
                for line in process.stdout:
                    line = line.strip()
                    if not line:
                        continue

                    if total_duration is None:
                        match = DURATION_REGEX.search(line)
                        if match:
                            total_duration = _to_seconds(match)
                            continue

                    match = TIME_REGEX.search(line)
                    if match:
                        if on_progress:
                            percent = progress_percent(_to_seconds(match), total_duration)
                            if percent is not None:
                                on_progress(percent)
                        continue

                    tail.append(line)
            process.wait()
        except BaseException:
            _kill(process)
            raise
        finally:
            self.reaper.untrack(process)

        elapsed = time.monotonic() - start_time
        if process.returncode != 0:
            detail = tail[-1] if tail else "no output"
            if process.returncode is not None and process.returncode < 0:
                message = f"ffmpeg was killed by signal {-process.returncode}"
            else:
                message = f"ffmpeg exited with code {process.returncode}: {detail}"
            if self.debug:
                self.logger.debug(f"FFMPEG_END: {input_path} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise EncodeError(message, returncode=process.returncode)

        if self.debug:
            self.logger.debug(f"FFMPEG_END: {input_path} status=completed elapsed={elapsed:.2f}s")
