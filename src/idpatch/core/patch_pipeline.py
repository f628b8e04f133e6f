"""
IDPatch Patch Pipeline
Drives one run through locate, resolve, stage, apply, sign and install,
producing a RunReport in every case.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from idpatch.core.auto_update import AutoUpdateBlocker
from idpatch.core.bundle_stager import BundleStager
from idpatch.core.codesign import CodeSigner
from idpatch.core.config import RunConfig
from idpatch.core.errors import IDPatchError, PreconditionError, SigningError, StagingError
from idpatch.core.installer import Installer
from idpatch.core.models import (
    InstallResult, PatchOutcome, RemediationChoice, RunReport, RunState,
    StagedBundle, StorageIdMode, TargetResource
)
from idpatch.core.patch_applicator import PatchApplicator
from idpatch.core.patch_strategies import PatchStrategy, StrategyResolver
from idpatch.core.process_guard import ProcessGuard
from idpatch.core.recertification import RecertificationEngine
from idpatch.core.remediation import BundleRestorer
from idpatch.core.resource_locator import LocatorReport, ResourceLocator
from idpatch.core.safety_validator import SafetyValidator
from idpatch.core.storage_config import StorageConfigManager
from idpatch.core.target_profiles import TargetProfile


PatchPlanEntry = Tuple[TargetResource, PatchStrategy]


class PatchPipeline:
    """
    Orchestrates a patch run.

    State machine::

        LOCATED -> RESOLVED -> STAGED -> APPLIED -> SIGNED | DEGRADED_SIGNED
                -> INSTALLED | ROLLED_BACK | ROLLBACK_FAILED

    with early exits ABORTED (precondition or staging failure), NOOP (nothing
    to do) and PATCH_FAILED (no resource could be patched). The original
    installation is only touched by the Installer, and only once the staged
    bundle is signed.

    Every collaborator can be injected; defaults are built from the profile
    and run configuration.
    """

    def __init__(self, profile: TargetProfile, run_config: RunConfig,
                 validator: Optional[SafetyValidator] = None,
                 process_guard: Optional[ProcessGuard] = None,
                 locator: Optional[ResourceLocator] = None,
                 resolver: Optional[StrategyResolver] = None,
                 applicator: Optional[PatchApplicator] = None,
                 stager: Optional[BundleStager] = None,
                 recertifier: Optional[RecertificationEngine] = None,
                 installer: Optional[Installer] = None,
                 storage: Optional[StorageConfigManager] = None,
                 update_blocker: Optional[AutoUpdateBlocker] = None,
                 signer: Optional[CodeSigner] = None):
        self.logger = logging.getLogger(__name__)
        self.profile = profile
        self.run_config = run_config
        self.signer = signer or CodeSigner()

        self.validator = validator or SafetyValidator(expected_platform=profile.platform)
        self.process_guard = process_guard or ProcessGuard(
            profile.process_match, attempts=run_config.kill_attempts)
        self.locator = locator or ResourceLocator(profile)
        self.resolver = resolver or StrategyResolver()
        self.applicator = applicator or PatchApplicator()
        self.stager = stager or BundleStager(profile, run_config, signer=self.signer)
        self.recertifier = recertifier or RecertificationEngine(
            self.signer, attempts=run_config.sign_attempts, delay=run_config.sign_retry_delay)
        self.installer = installer or Installer(run_config)
        self.storage = storage
        if self.storage is None and profile.storage_file is not None:
            self.storage = StorageConfigManager(
                profile.storage_file,
                profile.storage_backup_dir or profile.storage_file.parent / "backups",
                run_config.current_user)
        self.update_blocker = update_blocker
        if self.update_blocker is None:
            update_config = (run_config.install_root / profile.update_config
                             if profile.update_config else None)
            self.update_blocker = AutoUpdateBlocker(update_config, profile.updater_cache)

    @property
    def install_root(self) -> Path:
        return self.run_config.install_root

    def run(self) -> RunReport:
        report = RunReport()
        try:
            return self._run(report)
        except IDPatchError as e:
            self.logger.error(str(e))
            if e.remediation:
                report.remediation.append(e.remediation)
            if report.staged is not None:
                report.remediation.append(f"Temporary files preserved at: {report.staged.work_dir}")
            return report.finish(RunState.ABORTED)

    def _run(self, report: RunReport) -> RunReport:
        self._check_preconditions()
        if self.run_config.restore_bundle == RemediationChoice.RUN:
            self._restore_original(report)

        # Locate
        located = self.locator.locate(self.install_root)
        report.resources = located.resources
        report.state = RunState.LOCATED
        located.raise_for_missing()

        self._update_storage_ids()

        if located.all_patched:
            self.logger.info("All target files are already patched, nothing to do")
            return self._finish_unchanged(report)

        # Resolve on the original content; staging is skipped if nothing applies
        plan = self._resolve(located, report)
        if not plan:
            self.logger.info("No applicable patch strategy, nothing to do")
            return self._finish_unchanged(report)
        report.state = RunState.RESOLVED

        # Stage
        try:
            staged = self.stager.stage(self.install_root)
        except StagingError:
            self.logger.error("Staging failed, original application untouched")
            raise
        report.staged = staged
        report.state = RunState.STAGED

        # Apply
        self._apply(plan, staged, report)
        if report.patched_count == 0:
            self.logger.error("No files were successfully modified")
            self.stager.discard(staged)
            report.remediation.append("The target resources have drifted beyond every known "
                                      "pattern; see the log for the file context")
            return report.finish(RunState.PATCH_FAILED)
        report.state = RunState.APPLIED
        self.logger.info(f"Successfully modified {report.patched_count} file(s)")

        # Sign
        try:
            self.recertifier.certify(staged, self.install_root)
        except SigningError as e:
            report.remediation.extend(e.remediation.splitlines())
            return report.finish(RunState.DEGRADED_SIGNED)
        report.state = RunState.SIGNED

        # Install
        return self._install(staged, report)

    def _check_preconditions(self):
        checks = self.validator.validate_prerequisites(self.run_config.current_user)
        checks.append(self.validator.validate_bundle(self.install_root))
        self.validator.enforce(checks)
        self.process_guard.ensure_stopped()

    def _restore_original(self, report: RunReport):
        """Start from the newest bundle backup instead of the current installation"""
        restored = BundleRestorer(self.profile, self.run_config, self.process_guard).restore()
        if not restored.success:
            self.logger.warning(f"Bundle restore skipped: {restored.message}")
            report.remediation.extend(restored.hints)

    def _resolve(self, located: LocatorReport, report: RunReport) -> List[PatchPlanEntry]:
        plan = []
        for resource in located.resources:
            if resource.already_patched:
                report.outcomes.append(PatchOutcome(
                    relative_path=resource.relative_path, skipped=True,
                    message="Already patched"))
                continue

            strategy = self.resolver.resolve(resource.kind, resource.content or "")
            if strategy is None:
                report.outcomes.append(PatchOutcome(
                    relative_path=resource.relative_path, skipped=True,
                    message="No applicable strategy"))
                continue
            plan.append((resource, strategy))
        return plan

    def _apply(self, plan: List[PatchPlanEntry], staged: StagedBundle, report: RunReport):
        for original, strategy in plan:
            path = staged.app_path / original.relative_path
            staged_resource = TargetResource(
                path=path, relative_path=original.relative_path, kind=original.kind,
                exists=path.is_file())

            if not staged_resource.exists:
                report.outcomes.append(PatchOutcome(
                    relative_path=original.relative_path, strategy=strategy.strategy_type,
                    message="Resource missing from staged copy"))
                self.logger.error(f"Staged copy lacks {original.relative_path}")
                continue

            report.outcomes.append(self.applicator.apply(staged_resource, strategy))

    def _install(self, staged: StagedBundle, report: RunReport) -> RunReport:
        result = self.installer.install(staged, self.install_root)

        if result == InstallResult.INSTALLED:
            self.stager.discard(staged, keep_backup=self.run_config.retain_bundle_backup)
            # Report the installed state, not the pre-run scan
            report.resources = self.locator.locate(self.install_root).resources
            if self.run_config.retain_bundle_backup:
                report.remediation.append(f"Original bundle backup kept at: {staged.backup_path}")
            self._post_install(report)
            return report.finish(RunState.INSTALLED)

        if result == InstallResult.ROLLED_BACK:
            report.remediation.append(f"Install failed ({self.installer.last_error}); "
                                      f"original application restored")
            report.remediation.append(f"Patched copy preserved at: {staged.app_path}")
            return report.finish(RunState.ROLLED_BACK)

        report.remediation.extend(self.installer.recovery_steps(staged, self.install_root))
        return report.finish(RunState.ROLLBACK_FAILED)

    def _finish_unchanged(self, report: RunReport) -> RunReport:
        self._post_install(report)
        return report.finish(RunState.NOOP)

    def _update_storage_ids(self):
        if self.storage is None or self.run_config.storage_ids != StorageIdMode.RESET:
            return
        try:
            self.storage.backup()
            self.storage.reset_identifiers()
        except FileNotFoundError:
            self.logger.warning("Configuration file does not exist, identifiers not reset")
        except (OSError, ValueError) as e:
            raise PreconditionError(f"Unable to modify configuration file: {e}",
                                    remediation="Restore it with 'idpatch restore-config'")

    def _post_install(self, report: RunReport):
        """Optional remediation steps once the installed bundle is final"""
        if self.run_config.disable_updates == RemediationChoice.RUN:
            blocked = self.update_blocker.disable()
            if not blocked.success:
                report.remediation.append("Auto-update could not be fully disabled, run manually:")
                report.remediation.extend(f"  {cmd}" for cmd in blocked.manual_commands)

        if self.run_config.fix_quarantine == RemediationChoice.RUN:
            if not self.signer.remove_quarantine(self.install_root):
                report.remediation.append(
                    f"Remove quarantine manually: sudo xattr -rd com.apple.quarantine '{self.install_root}'")
