import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Allow the extension table as a flat 'audio_extensions: [...]' style too
    extensions = data.get("extensions")
    if extensions is None:
        flat = {
            key[: -len("_extensions")]: data.pop(key)
            for key in list(data.keys())
            if key.endswith("_extensions")
        }
        if flat:
            data["extensions"] = flat

    return AppConfig(**data)
