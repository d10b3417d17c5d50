import subprocess
import sys
import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch
from bpff.config.models import EncoderConfig
from bpff.infrastructure.ffmpeg import (
    EncoderHandle,
    FFmpegEncoder,
    parse_duration_line,
    parse_progress_line,
)


def test_parse_duration_line():
    line = "  Duration: 00:01:02.50, start: 0.000000, bitrate: 1205 kb/s"
    assert parse_duration_line(line) == pytest.approx(62.5)
    assert parse_duration_line("Stream #0:0: Video: h264") is None


def test_parse_progress_line_with_known_duration():
    line = "frame=  240 fps= 48 q=28.0 size=    1024kB time=00:00:15.00 bitrate= 559.2kbits/s speed=2.5x"
    tick = parse_progress_line(line, media_duration=60.0)
    assert tick.percent_complete == pytest.approx(25.0)
    assert tick.speed_multiplier == pytest.approx(2.5)


def test_parse_progress_line_caps_percent_and_handles_unknown_duration():
    line = "frame=1 time=00:02:00.00 speed=N/A"
    assert parse_progress_line(line, media_duration=60.0).percent_complete == 100.0
    tick = parse_progress_line(line, media_duration=0.0)
    assert tick.percent_complete == 0.0
    assert tick.speed_multiplier == 0.0


def test_parse_progress_line_ignores_other_lines():
    assert parse_progress_line("Press [q] to stop, [?] for help", 60.0) is None


def test_build_command_defaults():
    encoder = FFmpegEncoder(binary="/usr/bin/ffmpeg")
    cmd = encoder.build_command(Path("in.mkv"), Path("out.mkv"), EncoderConfig())
    assert cmd[:4] == ["/usr/bin/ffmpeg", "-y", "-hide_banner", "-nostdin"]
    assert cmd[cmd.index("-i") + 1] == "in.mkv"
    assert cmd[cmd.index("-c:v") + 1] == "h264"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert "-b:v" not in cmd
    assert "-hwaccel" not in cmd
    assert cmd[-1] == "out.mkv"


def test_build_command_with_options():
    options = EncoderConfig(
        video_codec="libx265",
        video_bitrate="2M",
        audio_bitrate="128k",
        hwaccel="cuda",
        extra_args=["-preset", "slow"],
    )
    cmd = FFmpegEncoder().build_command(Path("in.mp4"), Path("out.mp4"), options)
    assert cmd.index("-hwaccel") < cmd.index("-i")
    assert cmd[cmd.index("-b:v") + 1] == "2M"
    assert cmd[cmd.index("-b:a") + 1] == "128k"
    assert cmd[-3:] == ["-preset", "slow", "out.mp4"]


def test_start_uses_probed_duration():
    probe = MagicMock()
    probe.get_duration.return_value = 42.0
    encoder = FFmpegEncoder(binary="ffmpeg", probe=probe)
    with patch("bpff.infrastructure.ffmpeg.subprocess.Popen") as popen, \
            patch("bpff.infrastructure.ffmpeg.EncoderHandle") as handle_cls:
        encoder.start(Path("in.mp4"), Path("out.mp4"), EncoderConfig())
    assert popen.call_args.args[0][0] == "ffmpeg"
    assert handle_cls.call_args.args[2] == 42.0


def _python_process(script: str) -> subprocess.Popen:
    return subprocess.Popen(
        [sys.executable, "-c", script],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        universal_newlines=True,
        bufsize=1,
    )


def test_handle_reports_lines_and_progress():
    script = (
        "import sys\n"
        "print('  Duration: 00:00:10.00, start: 0.0')\n"
        "print('frame=1 time=00:00:05.00 speed=1.5x')\n"
        "sys.exit(0)\n"
    )
    lines, ticks = [], []
    handle = EncoderHandle(_python_process(script), ["x"], 0.0, on_line=lines.append, on_progress=ticks.append)
    assert handle.wait(timeout=10) == 0
    assert handle.media_duration == 10.0
    assert any("Duration" in line for line in lines)
    assert ticks[0].percent_complete == pytest.approx(50.0)
    assert ticks[0].speed_multiplier == pytest.approx(1.5)


def test_handle_wait_times_out_and_stop_terminates():
    handle = EncoderHandle(_python_process("import time\ntime.sleep(30)\n"), ["x"], 0.0)
    assert handle.wait(timeout=0.1) is None
    handle.stop(grace=3.0)
    assert handle.poll() is not None
