import pytest
import yaml
from pydantic import ValidationError
from bpff.config.loader import ensure_config, load_config, write_default_config
from bpff.config.models import AppConfig, GeneralConfig


def test_defaults():
    config = AppConfig()
    assert config.general.concurrency == 3
    assert config.general.overwrite is False
    assert config.general.max_failed_attempts == 3
    assert config.checkpoint.interval_seconds == 20
    assert config.checkpoint.max_age_days == 5
    assert config.watch.enabled is True
    assert config.ui.abort_message_seconds == 20
    assert ".mkv" in config.general.extensions


def test_extensions_are_normalized():
    config = GeneralConfig(extensions=["MP4", ".mkv", " .Mp4 ", ""])
    assert config.extensions == [".mp4", ".mkv"]


def test_empty_extensions_rejected():
    with pytest.raises(ValidationError):
        GeneralConfig(extensions=[])


@pytest.mark.parametrize("value", [0, 9])
def test_concurrency_bounds(value):
    with pytest.raises(ValidationError):
        GeneralConfig(concurrency=value)


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({
        "general": {"concurrency": 5, "overwrite": True},
        "encoder": {"video_codec": "libx265", "extra_args": ["-crf", "28"]},
        "checkpoint": {"max_age_days": 2},
    }))
    config = load_config(path)
    assert config.general.concurrency == 5
    assert config.general.overwrite is True
    assert config.encoder.extra_args == ["-crf", "28"]
    assert config.checkpoint.max_age_days == 2
    assert config.checkpoint.interval_seconds == 20


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(path)


def test_load_config_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("")
    assert load_config(path) == AppConfig()


def test_load_config_invalid_values(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({"general": {"concurrency": 42}}))
    with pytest.raises(ValidationError):
        load_config(path)


def test_write_default_config_round_trips(tmp_path):
    path = tmp_path / "nested" / "settings.yaml"
    written = write_default_config(path)
    assert path.exists()
    assert load_config(path) == written


def test_ensure_config_creates_then_reuses(tmp_path):
    path = tmp_path / "settings.yaml"
    assert ensure_config(path) == AppConfig()
    path.write_text(yaml.safe_dump({"general": {"concurrency": 1}}))
    assert ensure_config(path).general.concurrency == 1
