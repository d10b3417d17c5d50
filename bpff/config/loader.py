import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML settings and parses them into the AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Settings file must contain a mapping: {config_path}")

    return AppConfig(**data)

def write_default_config(config_path: Path) -> AppConfig:
    """Writes a settings file holding the defaults and returns them."""
    config = AppConfig()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)
    return config

def ensure_config(config_path: Path) -> AppConfig:
    """Loads the settings file, creating it with defaults on first run."""
    if not config_path.exists():
        write_default_config(config_path)
    return load_config(config_path)
