from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

MAX_CONCURRENCY = 8

DEFAULT_EXTENSIONS = [
    ".mp4", ".mkv", ".mov", ".avi", ".wmv", ".flv", ".webm", ".m4v",
    ".mpg", ".mpeg", ".ts", ".m2ts", ".mts", ".3gp",
]

class GeneralConfig(BaseModel):
    concurrency: int = Field(default=3, ge=1, le=MAX_CONCURRENCY)
    overwrite: bool = False
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    max_failed_attempts: int = Field(default=3, ge=1)
    abort_grace_seconds: float = Field(default=2.0, ge=0.0)
    failed_display_seconds: float = Field(default=5.0, ge=0.0)
    scan_attempts: int = Field(default=3, ge=1)
    scan_backoff_seconds: float = Field(default=1.0, ge=0.0)
    debug: bool = False
    log_path: Optional[str] = None

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
        if not normalized:
            raise ValueError("extensions must contain at least one entry")
        return normalized

class EncoderConfig(BaseModel):
    """Options handed to the encoder adapter; the pipeline never reads them."""
    binary: Optional[str] = None
    video_codec: str = "h264"
    audio_codec: str = "aac"
    video_bitrate: str = ""
    audio_bitrate: str = ""
    pixel_format: str = "yuv420p"
    hwaccel: Optional[str] = None
    extra_args: List[str] = Field(default_factory=list)

class CheckpointConfig(BaseModel):
    interval_seconds: float = Field(default=20.0, gt=0)
    max_age_days: float = Field(default=5.0, gt=0)

class WatchConfig(BaseModel):
    enabled: bool = True

class UiConfig(BaseModel):
    """Display configuration."""
    refresh_per_second: int = Field(default=2, ge=1, le=10)
    message_seconds: float = Field(default=10.0, ge=1.0)
    abort_message_seconds: float = Field(default=20.0, ge=1.0)
    path_display_length: int = Field(default=20, ge=5)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    ui: UiConfig = Field(default_factory=UiConfig)
