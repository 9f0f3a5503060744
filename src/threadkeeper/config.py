"""Configuration loading and saving.

Config file location: ~/.config/threadkeeper/config.toml

Schema:
    [storage]
    data_dir = "~/.local/share/threadkeeper"
    max_free_threads = 50

    [sync]
    api_url = "..."   # optional, defaults to the public service
    token = "..."     # bearer token for the sync service
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

CONFIG_DIR = Path.home() / ".config" / "threadkeeper"
CONFIG_FILE = CONFIG_DIR / "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "threadkeeper"
DEFAULT_MAX_FREE_THREADS = 50


@dataclass
class SyncConfig:
    token: str | None = None
    api_url: str | None = None


@dataclass
class AppConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    max_free_threads: int = DEFAULT_MAX_FREE_THREADS
    sync: SyncConfig = field(default_factory=SyncConfig)


def load_config(config_path: Path = CONFIG_FILE) -> AppConfig:
    """Load and validate config from TOML file."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    storage_data = data.get("storage", {})
    sync_data = data.get("sync", {})

    max_free_threads = int(storage_data.get("max_free_threads", DEFAULT_MAX_FREE_THREADS))
    if max_free_threads < 0:
        raise ValueError("storage.max_free_threads must not be negative")

    return AppConfig(
        data_dir=Path(storage_data.get("data_dir", str(DEFAULT_DATA_DIR))).expanduser(),
        max_free_threads=max_free_threads,
        sync=SyncConfig(
            token=sync_data.get("token") or None,
            api_url=sync_data.get("api_url") or None,
        ),
    )


def load_config_or_default(config_path: Path = CONFIG_FILE) -> AppConfig:
    """Load config if the file exists, otherwise return defaults."""
    if not config_exists(config_path):
        return AppConfig()
    return load_config(config_path)


def save_config(config: AppConfig, config_path: Path = CONFIG_FILE) -> None:
    """Write config to TOML file with restricted permissions."""
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict = {
        "storage": {
            "data_dir": str(config.data_dir),
            "max_free_threads": config.max_free_threads,
        },
    }

    sync_data = {}
    if config.sync.token:
        sync_data["token"] = config.sync.token
    if config.sync.api_url:
        sync_data["api_url"] = config.sync.api_url
    if sync_data:
        data["sync"] = sync_data

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)

    # Restrict permissions: file may contain the sync token
    os.chmod(config_path, 0o600)


def config_exists(config_path: Path = CONFIG_FILE) -> bool:
    """Check if config file exists."""
    return config_path.exists()
