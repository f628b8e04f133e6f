"""
IDPatch Auto-update Blocker
Stops the target application from replacing the patched bundle
"""

import os
import shutil
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


LOCKED_MODE = 0o444


@dataclass
class UpdateBlockResult:
    """What was disabled, and the manual commands for what was not"""
    update_config_disabled: bool = False
    updater_cache_disabled: bool = False
    manual_commands: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.manual_commands


class AutoUpdateBlocker:
    """Empties the update feed config and pins the updater cache as a read-only file"""

    def __init__(self, update_config: Optional[Path], updater_cache: Optional[Path]):
        self.logger = logging.getLogger(__name__)
        self.update_config = Path(update_config) if update_config else None
        self.updater_cache = Path(updater_cache) if updater_cache else None

    def disable(self) -> UpdateBlockResult:
        result = UpdateBlockResult()
        self.logger.info("Disabling auto-update...")

        if self.update_config is not None:
            result.update_config_disabled = self._disable_update_config(result)
        if self.updater_cache is not None:
            result.updater_cache_disabled = self._disable_updater_cache(result)

        if result.success:
            self.logger.info("Please restart the application after completion")
        return result

    def _disable_update_config(self, result: UpdateBlockResult) -> bool:
        path = self.update_config
        if not path.exists():
            self.logger.warning(f"{path.name} file not found")
            return False

        self.logger.info(f"Backing up and modifying {path.name}...")
        backup = path.with_name(path.name + ".bak")
        try:
            shutil.copy2(path, backup)
        except OSError as e:
            self.logger.warning(f"Failed to backup {path.name}, continuing... ({e})")

        try:
            os.chmod(path, 0o644)
            path.write_text("\n", encoding="utf-8")
            os.chmod(path, LOCKED_MODE)
        except OSError as e:
            self.logger.error(f"Failed to modify {path.name}: {e}")
            result.manual_commands.extend([
                f'sudo cp "{path}" "{backup}"',
                f'sudo bash -c \'echo "" > "{path}"\'',
                f'sudo chmod 444 "{path}"',
            ])
            return False

        self.logger.info(f"Successfully disabled {path.name}")
        return True

    def _disable_updater_cache(self, result: UpdateBlockResult) -> bool:
        path = self.updater_cache
        self.logger.info(f"Processing {path.name}...")
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                os.chmod(path, 0o644)
                path.unlink()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch()
            os.chmod(path, LOCKED_MODE)
        except OSError as e:
            self.logger.error(f"Failed to disable {path.name}: {e}")
            result.manual_commands.append(
                f'sudo rm -rf "{path}" && sudo touch "{path}" && sudo chmod 444 "{path}"'
            )
            return False

        self.logger.info(f"Successfully disabled {path.name}")
        return True

    def verification_steps(self) -> List[str]:
        steps = []
        for path in (self.updater_cache, self.update_config):
            if path is not None:
                steps.append(f'ls -l "{path}"  (expect permissions r--r--r--)')
        return steps
