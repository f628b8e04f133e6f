"""
IDPatch Bundle Stager
Produces a disposable, unsigned working copy of the installed bundle plus
an independent backup of the original.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from idpatch.core.codesign import CodeSigner
from idpatch.core.config import RunConfig
from idpatch.core.errors import StagingError
from idpatch.core.fs_utils import copy_bundle, normalize_ownership, remove_tree, run_timestamp
from idpatch.core.models import SignatureState, StagedBundle
from idpatch.core.target_profiles import TargetProfile


class BundleStager:
    """Creates staged working copies of application bundles"""

    def __init__(self, profile: TargetProfile, run_config: RunConfig,
                 signer: Optional[CodeSigner] = None,
                 clock: Callable[[], str] = run_timestamp):
        self.logger = logging.getLogger(__name__)
        self.profile = profile
        self.run_config = run_config
        self.signer = signer or CodeSigner()
        self.clock = clock

    def stage(self, bundle_root: Path) -> StagedBundle:
        """
        Stage ``bundle_root``.

        Steps 1-3 (working directory, backup, working copy) are fatal and
        raise StagingError; ownership and signature stripping only warn.
        """
        bundle_root = Path(bundle_root)
        timestamp = self.clock()
        temp_dir = self.run_config.temp_dir
        work_dir = temp_dir / f"{self.profile.work_prefix}{timestamp}"
        backup_path = temp_dir / f"{self.profile.backup_prefix}{timestamp}"
        app_path = work_dir / bundle_root.name

        # 1. Fresh working directory
        self.logger.debug(f"[TEMP_DIR] Creating temporary directory: {work_dir}")
        if work_dir.exists():
            self.logger.info("Cleaning up existing temporary directory...")
            remove_tree(work_dir)
        try:
            work_dir.mkdir(parents=True)
        except OSError as e:
            raise StagingError(f"Unable to create temporary directory: {work_dir} ({e})",
                               remediation=f"Check free space and permissions of {temp_dir}")

        # 2. Backup of the original, owned independently of the working copy
        self.logger.info("Backing up original application...")
        if backup_path.exists():
            remove_tree(work_dir)
            raise StagingError(f"Backup already exists: {backup_path}",
                               remediation="Wait a moment and run again, or move the existing backup away")
        self.logger.debug(f"[BACKUP] Starting backup: {bundle_root} -> {backup_path}")
        try:
            copy_bundle(bundle_root, backup_path)
        except OSError as e:
            remove_tree(work_dir)
            remove_tree(backup_path)
            raise StagingError(f"Unable to create application backup: {e}",
                               remediation=f"Check free space and permissions of {temp_dir}")
        self.logger.debug("[BACKUP] Backup complete")

        # 3. Working copy
        self.logger.info("Creating temporary working copy...")
        try:
            copy_bundle(bundle_root, app_path)
        except OSError as e:
            remove_tree(work_dir)
            remove_tree(backup_path)
            raise StagingError(f"Unable to copy application to temporary directory: {e}",
                               remediation=f"Check free space and permissions of {temp_dir}")
        self.logger.debug("[COPY] Copy complete")

        staged = StagedBundle(work_dir=work_dir, app_path=app_path,
                              backup_path=backup_path, timestamp=timestamp)

        # 4. Ownership and permissions
        normalize_ownership(work_dir, self.run_config.current_user,
                            self.run_config.owner_group, self.run_config.bundle_mode)

        # 5. Strip signatures
        self._strip_signatures(staged)
        return staged

    def _strip_signatures(self, staged: StagedBundle):
        self.logger.info("Removing application signature...")
        if not self.signer.remove_signature(staged.app_path):
            self.logger.warning("Failed to remove application signature")
        staged.signature_state = SignatureState.UNSIGNED

        for component in self.profile.components:
            component_path = staged.app_path / component
            if not component_path.exists():
                self.logger.debug(f"Component not present, skipping: {component}")
                continue
            self.logger.info(f"Removing signature: {component}")
            if not self.signer.remove_signature(component_path):
                self.logger.warning(f"Failed to remove component signature: {component}")
            staged.component_signatures[component] = SignatureState.UNSIGNED

    def discard(self, staged: StagedBundle, keep_backup: bool = False):
        """Delete staging temporaries after a confirmed install"""
        remove_tree(staged.work_dir)
        if not keep_backup:
            remove_tree(staged.backup_path)
