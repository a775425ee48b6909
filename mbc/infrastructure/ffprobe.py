import json
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterator, Optional


def parse_seconds(value: Any) -> float:
    """Seconds from '62.5', '01:02.5' or '00:01:02.500000000'; 0.0 if unparseable."""
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    parts = text.split(":")
    if len(parts) > 3:
        return 0.0
    seconds = 0.0
    try:
        for part in parts:
            seconds = seconds * 60 + float(part)
    except ValueError:
        return 0.0
    return seconds if seconds > 0 else 0.0


class FFprobeAdapter:
    """Reads media durations with ffprobe."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 30.0):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def probe(self, file_path: Path) -> Dict[str, Any]:
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {file_path}: {result.stderr}")
        return json.loads(result.stdout)

    @staticmethod
    def _duration_candidates(data: Dict[str, Any]) -> Iterator[Any]:
        # Container first, then Matroska-style DURATION tags, then per-stream values
        sections = [data.get("format") or {}] + list(data.get("streams") or [])
        for section in sections:
            yield section.get("duration")
            tags = section.get("tags") or {}
            yield tags.get("DURATION") or tags.get("duration")

    def get_duration(self, file_path: Path) -> float:
        """Duration in seconds (0.0 if ffprobe reports none). Raises on probe failure."""
        data = self.probe(file_path)
        for candidate in self._duration_candidates(data):
            seconds = parse_seconds(candidate)
            if seconds > 0:
                return seconds
        return 0.0

    def try_get_duration(self, file_path: Path) -> Optional[float]:
        """get_duration() that returns None instead of raising or reporting zero."""
        try:
            duration = self.get_duration(file_path)
        except (OSError, RuntimeError, ValueError, subprocess.TimeoutExpired):
            return None
        return duration or None
