import subprocess
import re
import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional
from bpff.config.models import EncoderConfig
from bpff.domain.models import ProgressTick
from bpff.infrastructure.ffprobe import FFprobeAdapter

LineCallback = Callable[[str], None]
ProgressCallback = Callable[[ProgressTick], None]

# Regexes for ffmpeg's stderr: 'Duration: 00:01:02.50,' once per input and
# 'time=00:00:10.00 ... speed=2.5x' on every stats line.
DURATION_REGEX = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
TIME_REGEX = re.compile(r"time=\s*(-?\d+):(\d+):(\d+(?:\.\d+)?)")
SPEED_REGEX = re.compile(r"speed=\s*([\d.]+)x")


def _hms_to_seconds(groups) -> float:
    h, m, s = (float(g) for g in groups)
    return h * 3600 + m * 60 + s


def parse_duration_line(line: str) -> Optional[float]:
    match = DURATION_REGEX.search(line)
    if not match:
        return None
    return _hms_to_seconds(match.groups())


def parse_progress_line(line: str, media_duration: float) -> Optional[ProgressTick]:
    """Turns one ffmpeg stats line into a ProgressTick; None for any other line."""
    time_match = TIME_REGEX.search(line)
    if not time_match:
        return None
    current = max(0.0, _hms_to_seconds(time_match.groups()))
    percent = 0.0
    if media_duration > 0:
        percent = min(100.0, current / media_duration * 100.0)
    speed = 0.0
    speed_match = SPEED_REGEX.search(line)
    if speed_match:
        try:
            speed = float(speed_match.group(1))
        except ValueError:
            speed = 0.0
    return ProgressTick(percent_complete=percent, speed_multiplier=speed)


class EncoderHandle:
    """A running ffmpeg process.

    The reader thread forwards every output line to `on_line` and every parsed
    stats line to `on_progress`. Both callbacks run on the reader thread.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        args: List[str],
        media_duration: float,
        on_line: Optional[LineCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.process = process
        self.args = args
        self.media_duration = media_duration
        self._on_line = on_line
        self._on_progress = on_progress
        self._done = threading.Event()
        self.logger = logging.getLogger(__name__)
        self._reader = threading.Thread(target=self._read_output, daemon=True)
        self._reader.start()

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def _read_output(self):
        try:
            if not self.process.stdout:
                return
            for raw in self.process.stdout:
                line = raw.rstrip("\n")
                if not line:
                    continue
                if self.media_duration <= 0:
                    duration = parse_duration_line(line)
                    if duration:
                        self.media_duration = duration
                if self._on_line:
                    self._on_line(line)
                tick = parse_progress_line(line, self.media_duration)
                if tick is not None and self._on_progress:
                    self._on_progress(tick)
        except Exception:
            self.logger.exception(f"Reading encoder output failed (pid={self.process.pid})")
        finally:
            self._done.set()

    def poll(self) -> Optional[int]:
        return self.process.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Waits for exit; returns the exit code, or None when `timeout` expires first."""
        try:
            code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        # Drain the remaining output so the transcript is complete
        self._done.wait(timeout=5)
        return code

    def terminate(self):
        if self.process.poll() is None:
            self.process.terminate()

    def kill(self):
        if self.process.poll() is None:
            self.process.kill()

    def stop(self, grace: float = 3.0):
        """Terminates, then kills when the process ignores SIGTERM for `grace` seconds."""
        self.terminate()
        try:
            self.process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            self.kill()
            self.process.wait()


class FFmpegEncoder:
    """Starts ffmpeg encodes and hands back an EncoderHandle."""

    def __init__(self, binary: str = "ffmpeg", probe: Optional[FFprobeAdapter] = None):
        self.binary = binary
        self.probe = probe
        self.logger = logging.getLogger(__name__)

    def build_command(self, input_path: Path, output_path: Path, options: EncoderConfig) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [self.binary, "-y", "-hide_banner", "-nostdin"]
        if options.hwaccel:
            cmd.extend(["-hwaccel", options.hwaccel])
        cmd.extend(["-i", str(input_path)])
        if options.video_codec:
            cmd.extend(["-c:v", options.video_codec])
        if options.video_bitrate:
            cmd.extend(["-b:v", options.video_bitrate])
        if options.audio_codec:
            cmd.extend(["-c:a", options.audio_codec])
        if options.audio_bitrate:
            cmd.extend(["-b:a", options.audio_bitrate])
        if options.pixel_format:
            cmd.extend(["-pix_fmt", options.pixel_format])
        cmd.extend(options.extra_args)
        cmd.append(str(output_path))
        return cmd

    def start(
        self,
        input_path: Path,
        output_path: Path,
        options: EncoderConfig,
        on_line: Optional[LineCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EncoderHandle:
        media_duration = self.probe.get_duration(input_path) if self.probe else 0.0
        cmd = self.build_command(input_path, output_path, options)
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            universal_newlines=True,
            errors="replace",
            bufsize=1
        )
        return EncoderHandle(process, cmd, media_duration, on_line=on_line, on_progress=on_progress)
