"""Configuration management for panelkit."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_FILE = "/etc/panelkit/config.yaml"


@dataclass
class PanelConfig:
    """panelkit configuration settings."""

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("/var/lib/panelkit"))
    base_dir: Path = field(default_factory=lambda: Path("/opt"))
    config_file: Path = field(
        default_factory=lambda: Path(os.environ.get("PANELKIT_CONFIG", DEFAULT_CONFIG_FILE))
    )

    # Database
    db_path: Path = field(default_factory=lambda: Path("/var/lib/panelkit/panelkit.db"))

    # Docker
    daemon_json_path: Path = field(default_factory=lambda: Path("/etc/docker/daemon.json"))
    docker_service: str = "docker"

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Convert string paths to Path objects if needed."""
        path_fields = [
            "data_dir",
            "base_dir",
            "config_file",
            "db_path",
            "daemon_json_path",
        ]
        for field_name in path_fields:
            value = getattr(self, field_name)
            if isinstance(value, str):
                setattr(self, field_name, Path(value))

    @property
    def compose_dir(self) -> Path:
        """Directory holding the compose projects managed by the panel."""
        return self.base_dir / "1panel" / "docker" / "compose"

    @classmethod
    def load(cls, config_path: Path | None = None) -> "PanelConfig":
        """Load configuration from YAML file, falling back to defaults."""
        config = cls()

        if config_path is None:
            config_path = config.config_file

        if config_path.exists():
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}
                config = cls._from_dict(data)
                config.config_file = config_path
            except (yaml.YAMLError, OSError):
                pass  # Fall back to defaults

        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "PanelConfig":
        """Create config from dictionary."""
        kwargs: dict[str, Any] = {}

        fields = [
            "data_dir",
            "base_dir",
            "db_path",
            "daemon_json_path",
            "docker_service",
            "log_level",
        ]
        for name in fields:
            if name in data:
                kwargs[name] = data[name]

        return cls(**kwargs)


# Global config instance (loaded lazily)
_config: PanelConfig | None = None


def get_config() -> PanelConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = PanelConfig.load()
    return _config


def reload_config() -> PanelConfig:
    """Reload configuration from file."""
    global _config
    _config = PanelConfig.load()
    return _config
