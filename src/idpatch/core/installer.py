"""
IDPatch Installer
Swaps the original installation for the staged, patched, re-signed bundle,
rolling back to the original-bundle backup on any failure.
"""

import logging
from pathlib import Path
from typing import List, Optional

from idpatch.core.config import RunConfig
from idpatch.core.errors import InstallError, RollbackError, SigningError
from idpatch.core.fs_utils import copy_bundle, normalize_ownership, remove_tree
from idpatch.core.models import BundleState, InstallResult, SignatureState, StagedBundle


class Installer:
    """Atomic-as-possible install swap with rollback"""

    def __init__(self, run_config: RunConfig):
        self.logger = logging.getLogger(__name__)
        self.run_config = run_config
        self.last_error: Optional[str] = None

    def install(self, staged: StagedBundle, original_root: Path) -> InstallResult:
        """
        Replace ``original_root`` with the staged bundle.

        Raises SigningError if the staged bundle is not signed.
        Temporaries are never deleted here; the caller removes them only after
        INSTALLED.
        """
        original_root = Path(original_root)
        if staged.signature_state != SignatureState.SIGNED:
            raise SigningError(
                "Refusing to install an unsigned bundle",
                remediation=f"Sign {staged.app_path} first, then copy it to {original_root.parent}"
            )

        self.logger.info("Installing modified application...")
        self.last_error = None
        try:
            self._replace(staged.app_path, original_root)
        except InstallError as e:
            self.last_error = str(e)
            self.logger.error(f"Application replacement failed ({e}), restoring...")
            try:
                self._rollback(staged, original_root)
            except RollbackError as rollback_error:
                self.last_error = str(rollback_error)
                self.logger.critical(f"Rollback failed: {rollback_error}")
                return InstallResult.ROLLBACK_FAILED
            return InstallResult.ROLLED_BACK

        self._restore_permissions(original_root)
        staged.state = BundleState.ORIGINAL
        self.logger.info(f"Installed patched application at {original_root}")
        return InstallResult.INSTALLED

    def _rollback(self, staged: StagedBundle, original_root: Path):
        """Put the backup back in place of whatever partial state exists"""
        try:
            self._replace(staged.backup_path, original_root)
        except InstallError as e:
            raise RollbackError(f"rollback failed: {e}",
                                remediation="\n".join(self.recovery_steps(staged, original_root)))

        self._restore_permissions(original_root)
        staged.state = BundleState.BACKUP
        self.logger.info(f"Original application restored from {staged.backup_path}")

    def _replace(self, source: Path, original_root: Path):
        """Clear the installation location and copy ``source`` into it"""
        try:
            if not remove_tree(original_root):
                raise OSError(f"could not clear {original_root}")
            copy_bundle(source, original_root)
        except OSError as e:
            raise InstallError(str(e)) from e

    def _restore_permissions(self, root: Path):
        normalize_ownership(root, self.run_config.current_user,
                            self.run_config.owner_group, self.run_config.bundle_mode)

    def recovery_steps(self, staged: StagedBundle, original_root: Path) -> List[str]:
        """Manual recovery instructions for an unrecoverable install"""
        return [
            "Automatic rollback failed; the original application must be restored by hand:",
            f"  sudo rm -rf '{original_root}'",
            f"  sudo cp -R '{staged.backup_path}' '{original_root}'",
            f"Patched copy preserved at: {staged.app_path}",
            f"Original backup preserved at: {staged.backup_path}",
        ]
