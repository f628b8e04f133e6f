"""
IDPatch Installer Tests
"""

import shutil

import pytest

import idpatch.core.installer as installer_module
from idpatch.core.errors import SigningError
from idpatch.core.installer import Installer
from idpatch.core.models import BundleState, InstallResult, SignatureState, StagedBundle

from conftest import MAIN_PATH, snapshot


@pytest.fixture
def staged(bundle, tmp_path):
    work_dir = tmp_path / "tmp" / "test_stage_1"
    app_path = work_dir / "Test.app"
    backup_path = tmp_path / "tmp" / "Test.app.backup_1"
    shutil.copytree(bundle, app_path)
    shutil.copytree(bundle, backup_path)
    (app_path / MAIN_PATH).write_text("patched", encoding="utf-8")
    return StagedBundle(work_dir=work_dir, app_path=app_path, backup_path=backup_path,
                        timestamp="1", signature_state=SignatureState.SIGNED)


class TestInstaller:
    """Install swap and rollback"""

    def test_install(self, run_config, staged, bundle):
        result = Installer(run_config).install(staged, bundle)

        assert result == InstallResult.INSTALLED
        assert (bundle / MAIN_PATH).read_text(encoding="utf-8") == "patched"
        # Temporaries are the caller's to remove
        assert staged.app_path.exists()
        assert staged.backup_path.exists()
        assert staged.state == BundleState.ORIGINAL

    def test_refuses_unsigned(self, run_config, staged, bundle):
        staged.signature_state = SignatureState.UNSIGNED
        before = snapshot(bundle)

        with pytest.raises(SigningError) as exc_info:
            Installer(run_config).install(staged, bundle)
        assert str(staged.app_path) in exc_info.value.remediation
        assert snapshot(bundle) == before

    def test_copy_failure_rolls_back(self, run_config, staged, bundle, monkeypatch):
        before = snapshot(bundle)
        real_copy = installer_module.copy_bundle

        def failing_install_copy(source, destination):
            if source == staged.app_path:
                (destination / "partial").mkdir(parents=True)
                raise OSError("Operation not permitted")
            real_copy(source, destination)

        monkeypatch.setattr(installer_module, "copy_bundle", failing_install_copy)
        installer = Installer(run_config)

        assert installer.install(staged, bundle) == InstallResult.ROLLED_BACK
        assert snapshot(bundle) == before
        assert "Operation not permitted" in installer.last_error
        assert staged.state == BundleState.BACKUP

    def test_rollback_failure(self, run_config, staged, bundle, monkeypatch):
        def always_fails(source, destination):
            raise OSError("Read-only file system")

        monkeypatch.setattr(installer_module, "copy_bundle", always_fails)
        installer = Installer(run_config)

        assert installer.install(staged, bundle) == InstallResult.ROLLBACK_FAILED
        assert "rollback failed" in installer.last_error
        assert staged.state == BundleState.STAGED
        assert staged.backup_path.exists()
        assert staged.app_path.exists()

        steps = "\n".join(installer.recovery_steps(staged, bundle))
        assert f"sudo cp -R '{staged.backup_path}' '{bundle}'" in steps
