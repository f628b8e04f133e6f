"""
IDPatch Remediation
Bundle restore from the latest backup and the "application is damaged" fix.
Both share the Bundle concept with the pipeline but never patch resources.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from idpatch.core.codesign import CodeSigner
from idpatch.core.config import RunConfig
from idpatch.core.fs_utils import copy_bundle, find_latest, normalize_ownership, remove_tree
from idpatch.core.process_guard import ProcessGuard
from idpatch.core.target_profiles import TargetProfile


@dataclass
class RemediationResult:
    """Outcome of a remediation step with follow-up hints"""
    success: bool
    message: str
    hints: List[str] = field(default_factory=list)


class BundleRestorer:
    """Replaces the installation with the newest bundle backup"""

    def __init__(self, profile: TargetProfile, run_config: RunConfig,
                 process_guard: Optional[ProcessGuard] = None):
        self.logger = logging.getLogger(__name__)
        self.profile = profile
        self.run_config = run_config
        self.process_guard = process_guard or ProcessGuard(
            profile.process_match, attempts=run_config.kill_attempts)

    def latest_backup(self) -> Optional[Path]:
        return find_latest(self.run_config.temp_dir, self.profile.backup_prefix)

    def restore(self) -> RemediationResult:
        self.logger.info("Attempting to restore the original application...")
        backup = self.latest_backup()
        if backup is None:
            self.logger.warning("No existing backup found")
            return RemediationResult(False, "No bundle backup found", hints=[
                "Reinstall the application from the vendor's download page",
            ])

        self.logger.info(f"Found existing backup: {backup}")
        self.process_guard.ensure_stopped()

        install_root = self.run_config.install_root
        if not remove_tree(install_root):
            return RemediationResult(False, f"Could not remove {install_root}", hints=[
                f"sudo rm -rf '{install_root}' && sudo cp -R '{backup}' '{install_root}'",
            ])
        try:
            copy_bundle(backup, install_root)
        except OSError as e:
            self.logger.error(f"Restore failed: {e}")
            return RemediationResult(False, f"Restore failed: {e}", hints=[
                f"sudo cp -R '{backup}' '{install_root}'",
            ])

        normalize_ownership(install_root, self.run_config.current_user,
                            self.run_config.owner_group, self.run_config.bundle_mode)
        self.logger.info("Original version restored")
        return RemediationResult(True, f"Restored {install_root} from {backup.name}", hints=[
            "Run the patch again if you still need the identifier modification",
        ])


class DamagedAppFixer:
    """Clears quarantine and re-signs an installed bundle"""

    GATEKEEPER_HINTS = [
        "Click 'Open Anyway' in System Settings -> Privacy & Security",
        "Temporarily disable Gatekeeper (not recommended): sudo spctl --master-disable",
        "Re-download and install the application",
    ]

    def __init__(self, install_root: Path, signer: Optional[CodeSigner] = None):
        self.logger = logging.getLogger(__name__)
        self.install_root = Path(install_root)
        self.signer = signer or CodeSigner()

    def fix(self) -> RemediationResult:
        self.logger.info("Fixing 'application is damaged' issue...")
        if not self.install_root.is_dir():
            self.logger.error(f"Application not found: {self.install_root}")
            return RemediationResult(False, f"Application not found: {self.install_root}")

        self.logger.info("Attempting to remove quarantine attribute...")
        if self.signer.remove_quarantine(self.install_root):
            self.logger.info("Successfully removed quarantine attribute")
        else:
            self.logger.warning("Failed to remove quarantine attribute")

        self.logger.info("Attempting to re-sign application...")
        if self.signer.sign(self.install_root, preserve_metadata=False).ok:
            self.logger.info("Application re-signing successful")
        else:
            self.logger.warning("Application re-signing failed")

        return RemediationResult(True, "Fix complete, try opening the application again",
                                 hints=list(self.GATEKEEPER_HINTS))
