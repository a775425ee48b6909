import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from mbc.domain.errors import EncodeError
from mbc.infrastructure.ffmpeg import FFmpegAdapter, progress_percent
from mbc.infrastructure.process_reaper import ProcessReaper

BANNER = "Duration: 00:00:10.00, start: 0.000000, bitrate: 1411 kb/s"

def progress_line(ts: str) -> str:
    return f"size=     256kB time={ts} bitrate= 128.0kbits/s speed=20.1x"

def test_build_command():
    adapter = FFmpegAdapter(ProcessReaper(), ffmpeg_path="/opt/ffmpeg")
    cmd = adapter.build_command(Path("in.wav"), ["-c:a", "libmp3lame", "out.mp3.tmp"])
    assert cmd == ["/opt/ffmpeg", "-hide_banner", "-y", "-i", "in.wav", "-c:a", "libmp3lame", "out.mp3.tmp"]

def test_progress_percent():
    assert progress_percent(5.0, 10.0) == 50.0
    assert progress_percent(12.0, 10.0) == 100.0
    assert progress_percent(-1.0, 10.0) == 0.0
    assert progress_percent(5.0, None) is None
    assert progress_percent(5.0, 0.0) is None
    assert progress_percent(5.0, float("nan")) is None
    assert progress_percent(float("nan"), 10.0) is None

def test_ffmpeg_run_success_reports_progress():
    reaper = ProcessReaper()
    seen = []
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = [
            BANNER,
            progress_line("00:00:02.50"),
            progress_line("00:00:05.00"),
            progress_line("00:00:11.00"),
        ]
        process_instance.returncode = 0

        adapter = FFmpegAdapter(reaper)
        adapter.run(Path("in.wav"), ["out.mp3.tmp"], on_progress=seen.append)

    assert seen == [25.0, 50.0, 100.0]
    args, kwargs = mock_popen.call_args
    assert args[0][:5] == ["ffmpeg", "-hide_banner", "-y", "-i", "in.wav"]
    assert kwargs["stderr"] is not None
    assert reaper.tracked == 0

def test_ffmpeg_run_without_duration_drops_progress():
    seen = []
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = [progress_line("00:00:05.00"), "time=N/A speed=N/A"]
        process_instance.returncode = 0

        FFmpegAdapter(ProcessReaper()).run(Path("in.png"), ["out"], on_progress=seen.append)

    assert seen == []

def test_ffmpeg_run_zero_duration_drops_progress():
    seen = []
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = ["Duration: 00:00:00.00, start: 0", progress_line("00:00:00.04")]
        process_instance.returncode = 0

        FFmpegAdapter(ProcessReaper()).run(Path("in.png"), ["out"], on_progress=seen.append)

    assert seen == []

def test_ffmpeg_run_calls_on_start_while_tracked():
    reaper = ProcessReaper()
    tracked_during_start = []
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = []
        process_instance.returncode = 0

        FFmpegAdapter(reaper).run(Path("in.wav"), ["out"], on_start=lambda: tracked_during_start.append(reaper.tracked))

    assert tracked_during_start == [1]
    assert reaper.tracked == 0

def test_ffmpeg_run_failure_raises():
    reaper = ProcessReaper()
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = [BANNER, "in.wav: Invalid data found when processing input"]
        process_instance.returncode = 1

        adapter = FFmpegAdapter(reaper)
        with pytest.raises(EncodeError) as exc_info:
            adapter.run(Path("in.wav"), ["out"])

    assert "ffmpeg exited with code 1" in str(exc_info.value)
    assert "Invalid data found" in str(exc_info.value)
    assert exc_info.value.returncode == 1
    assert reaper.tracked == 0

def test_ffmpeg_run_killed_by_signal():
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = []
        process_instance.returncode = -9

        with pytest.raises(EncodeError, match="killed by signal 9"):
            FFmpegAdapter(ProcessReaper()).run(Path("in.mov"), ["out"])

def test_ffmpeg_spawn_failure_raises():
    reaper = ProcessReaper()
    on_start = MagicMock()
    with patch("subprocess.Popen", side_effect=FileNotFoundError("No such file or directory: 'ffmpeg'")):
        with pytest.raises(EncodeError, match="Cannot start ffmpeg"):
            FFmpegAdapter(reaper).run(Path("in.mov"), ["out"], on_start=on_start)

    on_start.assert_not_called()
    assert reaper.tracked == 0

def test_ffmpeg_untracks_when_callback_raises():
    reaper = ProcessReaper()
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = [BANNER, progress_line("00:00:01.00")]
        process_instance.returncode = 0

        def broken(percent):
            raise RuntimeError("ui gone")

        with pytest.raises(RuntimeError):
            FFmpegAdapter(reaper).run(Path("in.wav"), ["out"], on_progress=broken)

    assert reaper.tracked == 0

def test_ffmpeg_decodes_output_leniently():
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = []
        process_instance.returncode = 0

        FFmpegAdapter(ProcessReaper()).run(Path("in.wav"), ["out"])

    kwargs = mock_popen.call_args[1]
    assert kwargs["encoding"] == "utf-8"
    assert kwargs["errors"] == "replace"

class UndecodableOutput:
    def __iter__(self):
        yield BANNER
        raise UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")

def test_ffmpeg_kills_process_when_reading_fails():
    reaper = ProcessReaper()
    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = UndecodableOutput()
        process_instance.poll.return_value = None

        with pytest.raises(UnicodeDecodeError):
            FFmpegAdapter(reaper).run(Path("in.wav"), ["out"])

    process_instance.kill.assert_called_once()
    process_instance.wait.assert_called()
    assert reaper.tracked == 0

def test_ffmpeg_refuses_to_start_after_cancel():
    reaper = ProcessReaper()
    reaper.cancel()
    with patch("subprocess.Popen") as mock_popen:
        with pytest.raises(EncodeError, match="cancelled"):
            FFmpegAdapter(reaper).run(Path("in.mov"), ["out"])
    mock_popen.assert_not_called()

def test_ffmpeg_kills_process_spawned_during_cancel():
    reaper = ProcessReaper()
    spawned = MagicMock()
    spawned.poll.return_value = None

    def spawn_while_cancelling(*args, **kwargs):
        reaper.cancel()
        return spawned

    with patch("subprocess.Popen", side_effect=spawn_while_cancelling):
        with pytest.raises(EncodeError, match="cancelled"):
            FFmpegAdapter(reaper).run(Path("in.mov"), ["out"], on_start=MagicMock())

    spawned.kill.assert_called_once()
    spawned.wait.assert_called_once()
    assert reaper.tracked == 0
