"""Configuration management for the Cowork agent core."""

from __future__ import annotations

import os
import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("cowork.config")

APP_DIR_NAME = ".cowork"
CONFIG_FILENAME = "config.json"

DEFAULT_CONFIG = {
    "router_backend": "http",
    "router_url": "http://127.0.0.1:4000",
    "ollama_url": "http://127.0.0.1:11434",
    "ollama_timeout": 600.0,
    "ollama_num_ctx": 32768,
    "ollama_temperature": 0.6,
    "default_model": "rainy:gemini-2.0-flash",
    "default_provider": "rainyapi",
    "skills_url": "http://127.0.0.1:4100",
    "workspace_id": "default",
    "task_service_url": "http://127.0.0.1:4200",
    "runtime_url": "http://127.0.0.1:4300",
    "skill_timeout": 120.0,
    "request_timeout": 30.0,
    "server_host": "127.0.0.1",
    "server_port": 3000,
}


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from ~/.cowork/config.json."""

    # Model/routing service
    router_backend: str
    router_url: str

    # Ollama adapter
    ollama_url: str
    ollama_timeout: float
    ollama_num_ctx: int
    ollama_temperature: float

    # Model selection
    default_model: str
    default_provider: str

    # Capability layer
    skills_url: str
    workspace_id: str

    # Task service and agent runtime
    task_service_url: str
    runtime_url: str

    # Timeouts (seconds). skill_timeout <= 0 disables the per-call bound.
    skill_timeout: float
    request_timeout: float

    # HTTP server
    server_host: str
    server_port: int

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> Config:
        """Load config from specified path or default ~/.cowork/config.json."""
        if config_path:
            config_file = Path(config_path)
        else:
            config_dir = Path.home() / APP_DIR_NAME
            config_file = config_dir / CONFIG_FILENAME
            if not config_dir.exists():
                config_dir.mkdir(parents=True, exist_ok=True)

        current_config = DEFAULT_CONFIG.copy()

        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    user_config = json.load(f)
                current_config.update(
                    {k: v for k, v in user_config.items() if k in DEFAULT_CONFIG}
                )
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load config from {config_file}: {e}. Using defaults.")
        elif config_path is None:
            logger.info(f"No config found. Generating default config at {config_file}")
            try:
                with open(config_file, "w") as f:
                    json.dump(DEFAULT_CONFIG, f, indent=4)
            except OSError as e:
                logger.error(f"Failed to write default config: {e}")
        else:
            logger.warning(f"Configuration file not found at {config_file}; using defaults")

        # Environment overrides, e.g. COWORK_SKILL_TIMEOUT=30
        for key in current_config:
            env_key = f"COWORK_{key.upper()}"
            if env_key not in os.environ:
                continue
            val = os.environ[env_key]
            default_val = DEFAULT_CONFIG.get(key)
            try:
                if isinstance(default_val, bool):
                    current_config[key] = val.lower() in ("true", "1", "yes")
                elif isinstance(default_val, int):
                    current_config[key] = int(val)
                elif isinstance(default_val, float):
                    current_config[key] = float(val)
                else:
                    current_config[key] = val
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_key}: {val!r}")

        return cls(**current_config)


# Singleton
_config: Config | None = None


def get_config(config_path: str | None = None) -> Config:
    """Get or create the global config instance, optionally loading from a path."""
    global _config
    if _config is None:
        _config = Config.load(config_path)
    return _config


def reset_config() -> None:
    """Drop the cached instance so the next get_config() reloads."""
    global _config
    _config = None
