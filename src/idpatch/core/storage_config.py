"""
IDPatch Storage Configuration
Backup, identifier rewrite and restore of the application's persisted
storage.json
"""

import os
import json
import shutil
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from idpatch.core.fs_utils import run_timestamp
from idpatch.core.patch_strategies import generate_machine_id, generate_uuid


BACKUP_MODE = 0o644
LOCKED_MODE = 0o444


class StorageConfigManager:
    """Manages the persisted identifier file of the target application"""

    def __init__(self, storage_file: Path, backup_dir: Path, current_user: str = ""):
        self.logger = logging.getLogger(__name__)
        self.storage_file = Path(storage_file)
        self.backup_dir = Path(backup_dir)
        self.current_user = current_user

    def _chown(self, path: Path):
        if not self.current_user:
            return
        try:
            shutil.chown(path, user=self.current_user)
        except (LookupError, OSError) as e:
            self.logger.warning(f"Could not change owner of {path}: {e}")

    def backup(self) -> Optional[Path]:
        """Copy storage.json into the backup directory; None if there is nothing to back up"""
        if not self.storage_file.exists():
            self.logger.warning("Configuration file does not exist, skipping backup")
            return None

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        backup_file = self.backup_dir / f"{self.storage_file.name}.backup_{run_timestamp()}"
        shutil.copy2(self.storage_file, backup_file)
        os.chmod(backup_file, BACKUP_MODE)
        self._chown(backup_file)
        self.logger.info(f"Configuration backed up to: {backup_file}")
        return backup_file

    def reset_identifiers(self) -> Dict[str, str]:
        """
        Write fresh deviceId/machineId values, adding keys that are absent.

        Returns the new values; raises OSError/ValueError on failure.
        """
        new_values = {
            "deviceId": generate_uuid(),
            "machineId": generate_machine_id(),
        }
        self.logger.info("Setting new device and machine IDs...")
        self.logger.debug(f"New device ID: {new_values['deviceId']}")
        self.logger.debug(f"New machine ID: {new_values['machineId']}")

        for key, value in new_values.items():
            self.set_value(key, value)
        self.logger.info("Configuration file modification successful")
        return new_values

    def set_value(self, key: str, value: Any):
        """Set one key in storage.json through a verified temp file, then lock the file"""
        if not self.storage_file.exists():
            raise FileNotFoundError(f"File does not exist: {self.storage_file}")

        os.chmod(self.storage_file, BACKUP_MODE)
        with open(self.storage_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected content in {self.storage_file}")
        data[key] = value

        original = os.stat(self.storage_file)
        fd, temp_name = tempfile.mkstemp(dir=str(self.storage_file.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=4)
            if os.path.getsize(temp_name) == 0:
                raise ValueError("Generated temporary file is empty")
            # Keep the invoking user as owner when running under sudo
            os.chown(temp_name, original.st_uid, original.st_gid)
            os.replace(temp_name, self.storage_file)
        finally:
            if os.path.exists(temp_name):
                os.unlink(temp_name)

        os.chmod(self.storage_file, LOCKED_MODE)

    def list_backups(self) -> List[Path]:
        """Backup files, oldest first"""
        if not self.backup_dir.is_dir():
            return []
        return sorted(p for p in self.backup_dir.iterdir()
                      if p.is_file() and ".backup_" in p.name)

    def restore(self, backup_file: Path) -> bool:
        """Restore storage.json from one of the backups"""
        backup_file = Path(backup_file)
        if not backup_file.is_file() or not os.access(backup_file, os.R_OK):
            self.logger.error("Unable to access selected backup file")
            return False

        try:
            if self.storage_file.exists():
                os.chmod(self.storage_file, BACKUP_MODE)
            shutil.copy2(backup_file, self.storage_file)
            os.chmod(self.storage_file, BACKUP_MODE)
        except OSError as e:
            self.logger.error(f"Failed to restore configuration: {e}")
            return False

        self._chown(self.storage_file)
        self.logger.info(f"Configuration restored from backup file: {backup_file.name}")
        return True
