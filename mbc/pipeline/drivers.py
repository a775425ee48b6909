"""Per-category encode strategies.

Each driver builds the ffmpeg argument contract for one WorkItem, runs it
through the FFmpegAdapter and reports through the EventBus:

- ConversionStarted when the (first) encoder process starts
- LiveProgress for numeric progress of the final pass, then a closing 100%
- ConversionError once, after the reaper ran, when any pass fails

Video and image use two passes: pass 1 writes to the discard sink only to
collect statistics and must finish before pass 2 writes the real output.
A failed pass 1 means pass 2 never runs. Nothing is retried.

Output goes to '<final>.tmp' with an explicit muxer and is renamed to the
final name only after the last pass succeeds.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from mbc.config.models import AppConfig
from mbc.config.thread_budget import threads_for
from mbc.domain.errors import ConversionIOError, EncodeError
from mbc.domain.events import ConversionError, ConversionStarted, LiveProgress
from mbc.domain.models import ItemOutcome, MediaCategory, WorkItem
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.ffmpeg import FFmpegAdapter
from mbc.infrastructure.housekeeping import HousekeepingService, PASSLOG_SUFFIX
from mbc.infrastructure.process_reaper import ProcessReaper


def discard_sink() -> str:
    """Path pass 1 writes to. Raises ConversionIOError if the host has none."""
    sink = os.devnull
    if os.name == "posix" and not os.path.exists(sink):
        raise ConversionIOError(f"Discard sink {sink} is not available")
    return sink


def scale_filter(max_width: int) -> str:
    # Downscale only when wider than max_width, keep aspect with an even height
    return f"scale='min({max_width},iw)':-2:flags=lanczos"


class EncodeDriver(ABC):
    category: MediaCategory
    suffix: str
    muxer: str
    label: str
    # Whether the final pass forwards numeric progress before the closing 100%
    reports_progress = True

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        ffmpeg: FFmpegAdapter,
        reaper: ProcessReaper,
        total_cores: Optional[int] = None,
        housekeeper: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.ffmpeg = ffmpeg
        self.reaper = reaper
        self.total_cores = total_cores
        self.housekeeper = housekeeper or HousekeepingService()
        self.logger = logging.getLogger(__name__)

    def output_file(self, item: WorkItem) -> Path:
        base = item.output_path
        return base.with_name(f"{base.name}{self.suffix}")

    def temp_file(self, item: WorkItem) -> Path:
        final = self.output_file(item)
        return final.with_name(f"{final.name}.tmp")

    def threads(self) -> int:
        return threads_for(self.category, self.total_cores)

    def convert(self, item: WorkItem) -> ItemOutcome:
        """Encodes one item. Never raises for encode failures; returns the outcome."""
        name = item.input_path.name
        tmp_path = self.temp_file(item)
        try:
            self._encode(item, tmp_path)
            tmp_path.replace(self.output_file(item))
        except EncodeError as e:
            self._remove(tmp_path)
            self.logger.error(f"[{self.label}] Failed: {name}: {e}")
            self.reaper.stop_all_quietly()
            self.event_bus.publish(ConversionError(path=item.input_path, message=str(e)))
            return ItemOutcome.failed(item, str(e))
        except (ConversionIOError, OSError) as e:
            # Nothing was spawned for this item, so there is nothing to reap
            self._remove(tmp_path)
            self.logger.error(f"[{self.label}] Failed: {name}: {e}")
            self.event_bus.publish(ConversionError(path=item.input_path, message=str(e)))
            return ItemOutcome.failed(item, str(e))

        self.event_bus.publish(LiveProgress(path=item.input_path, percent=100.0))
        self.logger.info(f"[{self.label}] Finished: {name}")
        return ItemOutcome.succeeded(item)

    @abstractmethod
    def _encode(self, item: WorkItem, tmp_path: Path) -> None:
        """Runs every encoder pass for item, writing the output to tmp_path."""

    def _on_start(self, item: WorkItem):
        def _started():
            message = f"[{self.label}] Starting: {item.input_path.name}"
            self.logger.info(message)
            self.event_bus.publish(ConversionStarted(path=item.input_path, category=self.category))
        return _started

    def _on_progress(self, item: WorkItem):
        def _progress(percent: float):
            self.logger.debug(f"[{self.label}] {item.input_path.name}: {percent:.1f}%")
            self.event_bus.publish(LiveProgress(path=item.input_path, percent=percent))
        return _progress

    def _remove(self, path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            self.logger.warning(f"Failed to cleanup temp file {path}: {e}")

    def audio_args(self) -> List[str]:
        audio = self.config.audio
        return [
            "-c:a", audio.codec,
            "-b:a", audio.bitrate,
            "-ar", str(audio.sample_rate),
            "-q:a", str(audio.quality),
            "-ac", str(audio.channels),
        ]


class AudioDriver(EncodeDriver):
    category = MediaCategory.AUDIO
    suffix = ".mp3"
    muxer = "mp3"
    label = "AUDIO"

    def build_args(self, output: Path) -> List[str]:
        return [
            "-vn",
            *self.audio_args(),
            "-threads", str(self.threads()),
            "-f", self.muxer,
            str(output),
        ]

    def _encode(self, item: WorkItem, tmp_path: Path) -> None:
        self.ffmpeg.run(
            item.input_path,
            self.build_args(tmp_path),
            on_start=self._on_start(item),
            on_progress=self._on_progress(item),
        )


class TwoPassDriver(EncodeDriver):
    """Shared shape of the video and image drivers."""

    @abstractmethod
    def common_args(self, threads: int) -> List[str]:
        """Arguments shared by both passes."""

    def pass_log_prefix(self, item: WorkItem) -> Path:
        return item.output_path.with_name(f"{item.output_path.name}{self.suffix}{PASSLOG_SUFFIX}")

    def first_pass_args(self, common: List[str], passlog: Path) -> List[str]:
        return [*common, "-pass", "1", "-passlogfile", str(passlog), "-f", "null", discard_sink()]

    def second_pass_args(self, common: List[str], passlog: Path, output: Path) -> List[str]:
        return [*common, "-pass", "2", "-passlogfile", str(passlog), "-f", self.muxer, str(output)]

    def _encode(self, item: WorkItem, tmp_path: Path) -> None:
        common = self.common_args(self.threads())
        passlog = self.pass_log_prefix(item)
        try:
            self.ffmpeg.run(item.input_path, self.first_pass_args(common, passlog), on_start=self._on_start(item))
            self.logger.info(f"[{self.label}] First pass completed: {item.input_path.name}")
            self.ffmpeg.run(
                item.input_path,
                self.second_pass_args(common, passlog, tmp_path),
                on_progress=self._on_progress(item) if self.reports_progress else None,
            )
        finally:
            self.housekeeper.remove_pass_logs(passlog)


class VideoDriver(TwoPassDriver):
    category = MediaCategory.VIDEO
    suffix = ".mp4"
    muxer = "mp4"
    label = "VIDEO"

    def common_args(self, threads: int) -> List[str]:
        video = self.config.video
        args = [
            "-c:v", video.codec,
            "-crf", str(video.crf),
            "-b:v", "0",
            "-preset", str(video.preset),
            "-pix_fmt", video.pix_fmt,
            "-g", str(video.gop),
        ]
        if video.svt_params:
            args.extend(["-svtav1-params", ":".join(video.svt_params)])
        args.extend(self.audio_args())
        args.extend(["-threads", str(threads)])
        if video.faststart:
            args.extend(["-movflags", "+faststart"])
        args.extend(["-vf", scale_filter(video.max_width)])
        return args


class ImageDriver(TwoPassDriver):
    category = MediaCategory.IMAGE
    suffix = ".avif"
    muxer = "avif"
    label = "IMAGE"
    # A still image has no timeline; the end of pass 2 is its only progress
    reports_progress = False

    def common_args(self, threads: int) -> List[str]:
        image = self.config.image
        return [
            "-c:v", image.codec,
            "-crf", str(image.crf),
            "-preset", str(image.preset),
            "-pix_fmt", image.pix_fmt,
            "-color_range", "1",
            "-threads", str(threads),
            "-vf", scale_filter(image.max_width),
        ]


def build_drivers(
    config: AppConfig,
    event_bus: EventBus,
    ffmpeg: FFmpegAdapter,
    reaper: ProcessReaper,
    total_cores: Optional[int] = None,
) -> Dict[MediaCategory, EncodeDriver]:
    housekeeper = HousekeepingService()
    return {
        driver_cls.category: driver_cls(config, event_bus, ffmpeg, reaper, total_cores, housekeeper)
        for driver_cls in (AudioDriver, VideoDriver, ImageDriver)
    }
