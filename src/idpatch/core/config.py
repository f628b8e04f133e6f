"""
IDPatch Configuration Management
Handles persisted application settings and the per-run configuration
"""

import json
import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, fields

from idpatch.core.models import StorageIdMode, RemediationChoice


@dataclass
class AppConfig:
    """Application configuration settings"""
    app_name: str = "IDPatch"
    version: str = "1.0.0"
    log_level: str = "INFO"
    log_file: str = "/tmp/idpatch.log"
    temp_dir: str = "/tmp"
    profile: str = "cursor-macos"
    sign_attempts: int = 3
    sign_retry_delay: float = 1.0
    kill_attempts: int = 5
    retain_bundle_backup: bool = False


class Config:
    """Central configuration manager for IDPatch"""

    def __init__(self, config_file: Optional[str] = None):
        self.logger = logging.getLogger(__name__)

        # Default configuration paths
        self.app_dir = Path(config_file).parent if config_file else Path.home() / ".idpatch"
        self.config_file = config_file or str(self.app_dir / "config.json")

        # Initialize configuration
        self._config = AppConfig()
        self._custom_settings: Dict[str, Any] = {}
        self._known_fields = {f.name for f in fields(AppConfig)}
        self._ensure_directories()
        self.load()

    def _ensure_directories(self):
        """Create necessary application directories"""
        self.app_dir.mkdir(parents=True, exist_ok=True)
        self.logger.debug(f"Ensured directory exists: {self.app_dir}")

    def load(self) -> bool:
        """Load configuration from file"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r') as f:
                    data = json.load(f)
                    app_values = {k: v for k, v in data.items() if k in self._known_fields}
                    self._custom_settings = {k: v for k, v in data.items() if k not in self._known_fields}
                    self._config = AppConfig(**app_values)
                    self.logger.info(f"Configuration loaded from {self.config_file}")
                    return True
            else:
                self.logger.info("No configuration file found, using defaults")
                self.save()  # Create default config file
                return False
        except Exception as e:
            self.logger.error(f"Error loading configuration: {e}")
            return False

    def save(self) -> bool:
        """Save configuration to file"""
        try:
            self._ensure_directories()
            with open(self.config_file, 'w') as f:
                data = asdict(self._config)
                data.update(self._custom_settings)
                json.dump(data, f, indent=2)
            self.logger.info(f"Configuration saved to {self.config_file}")
            return True
        except Exception as e:
            self.logger.error(f"Error saving configuration: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        if hasattr(self._config, key):
            return getattr(self._config, key)
        return self._custom_settings.get(key, default)

    def set(self, key: str, value: Any) -> bool:
        """Set configuration value"""
        if key in self._known_fields:
            setattr(self._config, key, value)
            self.logger.debug(f"Configuration updated: {key} = {value}")
            return True
        self._custom_settings[key] = value
        self.logger.debug(f"Custom configuration updated: {key} = {value}")
        return True

    def get_temp_dir(self) -> Path:
        """Get directory holding staged copies and bundle backups"""
        return Path(self._config.temp_dir)

    def get_log_file(self) -> Path:
        """Get per-run log file path"""
        return Path(self._config.log_file)


def get_invoking_user() -> str:
    """Return the user who launched the tool, looking through sudo"""
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return os.environ.get("SUDO_USER", "")
    return os.environ.get("USER", "")


@dataclass
class RunConfig:
    """
    Explicit configuration for a single pipeline run.

    Passed to every component instead of process-wide state.
    """
    install_root: Path
    temp_dir: Path
    current_user: str = ""
    owner_group: str = "staff"
    bundle_mode: int = 0o755
    sign_attempts: int = 3
    sign_retry_delay: float = 1.0
    kill_attempts: int = 5
    retain_bundle_backup: bool = False
    storage_ids: StorageIdMode = StorageIdMode.KEEP
    disable_updates: RemediationChoice = RemediationChoice.SKIP
    restore_bundle: RemediationChoice = RemediationChoice.SKIP
    fix_quarantine: RemediationChoice = RemediationChoice.SKIP

    def __post_init__(self):
        self.install_root = Path(self.install_root)
        self.temp_dir = Path(self.temp_dir)

    @classmethod
    def from_config(cls, config: Config, install_root: Path, owner_group: str = "staff",
                    bundle_mode: int = 0o755, **overrides: Any) -> "RunConfig":
        """Build a run configuration from persisted settings"""
        values: Dict[str, Any] = {
            "install_root": install_root,
            "temp_dir": config.get_temp_dir(),
            "current_user": get_invoking_user(),
            "owner_group": owner_group,
            "bundle_mode": bundle_mode,
            "sign_attempts": config.get("sign_attempts", 3),
            "sign_retry_delay": config.get("sign_retry_delay", 1.0),
            "kill_attempts": config.get("kill_attempts", 5),
            "retain_bundle_backup": config.get("retain_bundle_backup", False),
        }
        values.update(overrides)
        return cls(**values)
