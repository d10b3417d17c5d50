import subprocess
import json
import logging
from pathlib import Path
from typing import Any

class FFprobeAdapter:
    """Wrapper around ffprobe to read the playback duration of a media file."""

    def __init__(self, binary: str = "ffprobe", timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def parse_timestamp(cls, value: Any) -> float:
        """Parses '123.4', 'MM:SS.ss' or 'HH:MM:SS.ss' into seconds; 0.0 when unparseable."""
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        if ":" in text:
            parts = text.split(":")
            if len(parts) in (2, 3):
                try:
                    parts_f = [float(p) for p in parts]
                except ValueError:
                    return 0.0
                if len(parts_f) == 2:
                    minutes, seconds = parts_f
                    return minutes * 60 + seconds
                hours, minutes, seconds = parts_f
                return hours * 3600 + minutes * 60 + seconds
        return 0.0

    @classmethod
    def duration_from_probe(cls, data: dict) -> float:
        """Duration fallback order: format.duration, format tags, first stream duration, stream tags."""
        fmt = data.get("format", {}) or {}
        duration = cls._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = cls.parse_timestamp(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            for stream in data.get("streams", []) or []:
                duration = cls._to_float(stream.get("duration"))
                if duration <= 0:
                    tags = stream.get("tags", {}) or {}
                    duration = cls.parse_timestamp(tags.get("DURATION") or tags.get("duration"))
                if duration > 0:
                    break
        return max(0.0, duration)

    def get_duration(self, file_path: Path) -> float:
        """Executes ffprobe and returns the duration in seconds (0.0 when unknown)."""
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"ffprobe could not run for {file_path}: {e}")
            return 0.0
        if result.returncode != 0:
            self.logger.warning(f"ffprobe failed for {file_path}: {result.stderr.strip()}")
            return 0.0

        try:
            data = json.loads(result.stdout)
        except ValueError:
            self.logger.warning(f"ffprobe returned invalid JSON for {file_path}")
            return 0.0
        return self.duration_from_probe(data)
