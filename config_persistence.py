import json
from dataclasses import asdict
from pathlib import Path

from config import (
    Config,
    apply_dict_to_dataclass,
    migrate_config,
)


def get_config_dir() -> Path:
    """Get config directory (~/.bpmkey), creating it on first use."""
    config_dir = Path.home() / '.bpmkey'
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get config file path."""
    return get_config_dir() / 'config.json'


def save_config(config: Config, config_file: Path | None = None) -> bool:
    """Save config to JSON file."""
    try:
        config_file = Path(config_file) if config_file is not None else get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(asdict(config), f, indent=2)
        print(f"[Config] Saved to {config_file}")
        return True
    except (OSError, TypeError, ValueError) as e:
        print(f"[Config] Failed to save: {e}")
        return False


def load_config(config_file: Path | None = None) -> Config:
    """Load config from JSON file, returns default if not found or unreadable."""
    try:
        config_file = Path(config_file) if config_file is not None else get_config_file()
        if config_file.exists():
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            config = Config()
            apply_dict_to_dataclass(config, data)
            loaded_version = data.get('version') if isinstance(data, dict) else None
            migrate_config(config, loaded_version)

            print(f"[Config] Loaded from {config_file} (version={config.version})")

            if loaded_version != config.version:
                if not save_config(config, config_file):
                    print("[Config] Warning: could not auto-save migrated config")
            return config

        print("[Config] No saved config found, using defaults")
        return Config()
    except (OSError, ValueError) as e:
        print(f"[Config] Failed to load: {e}, using defaults")
        return Config()
