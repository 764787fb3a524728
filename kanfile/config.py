# kanfile configuration
# Override the data file and defaults via config.yaml, KANFILE_* env vars or CLI args.

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("~/.config/kanfile/config.yaml")
CONFIG_ENV = "KANFILE_CONFIG"


@dataclass
class Config:
    """Runtime configuration for kanfile front ends."""

    # Storage
    data_file: str = "kanban.json"

    # Naming defaults
    default_sprint_prefix: str = "sprint"
    default_card_prefix: str = "task"
    default_sprint_duration_days: int = 14

    # Behavior: history and change detection
    history_depth: int = 100
    watch_debounce_ms: int = 250
    watch_channel_capacity: int = 10

    # Behavior: conflict retry
    retry_attempts: int = 5
    retry_initial_delay_ms: int = 50
    retry_max_delay_ms: int = 1000

    log_level: str = "WARNING"

    # HTTP API
    api_host: str = "127.0.0.1"
    api_port: int = 8090
    api_key: Optional[str] = None  # None = no auth

    def apply_env(self):
        """Environment variables win over the file."""
        self.data_file = os.environ.get("KANFILE_DATA_FILE", self.data_file)
        self.log_level = os.environ.get("KANFILE_LOG_LEVEL", self.log_level)
        self.api_key = os.environ.get("KANFILE_API_KEY", self.api_key)

    def resolve_paths(self):
        """Expand ~ in the data file path."""
        self.data_file = str(Path(self.data_file).expanduser())

    @property
    def retry_initial_delay(self) -> float:
        return self.retry_initial_delay_ms / 1000

    @property
    def retry_max_delay(self) -> float:
        return self.retry_max_delay_ms / 1000

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        if path:
            cfg_path = Path(path).expanduser()
        elif os.environ.get(CONFIG_ENV):
            cfg_path = Path(os.environ[CONFIG_ENV]).expanduser()
        else:
            cfg_path = CONFIG_PATH.expanduser()

        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except Exception as e:
                logger.warning(f"Could not read config {cfg_path}: {e}; using defaults")
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env()
        cfg.resolve_paths()
        return cfg
