"""
IDPatch Bundle Stager Tests
"""

import pytest

import idpatch.core.bundle_stager as stager_module
from idpatch.core.bundle_stager import BundleStager
from idpatch.core.errors import StagingError
from idpatch.core.models import BundleState, SignatureState

from conftest import HELPER_PATH, snapshot

STAMP = "20240101_120000"


@pytest.fixture
def stager(profile, run_config, signer):
    return BundleStager(profile, run_config, signer=signer, clock=lambda: STAMP)


class TestBundleStager:
    """Working copy, backup and signature stripping"""

    def test_stage_layout(self, stager, bundle, run_config):
        original = snapshot(bundle)
        staged = stager.stage(bundle)

        assert staged.work_dir == run_config.temp_dir / f"test_stage_{STAMP}"
        assert staged.backup_path == run_config.temp_dir / f"Test.app.backup_{STAMP}"
        assert staged.app_path == staged.work_dir / "Test.app"
        assert staged.timestamp == STAMP
        assert staged.state == BundleState.STAGED

        assert snapshot(staged.app_path) == original
        assert snapshot(staged.backup_path) == original
        assert snapshot(bundle) == original

    def test_signatures_stripped(self, stager, bundle, signer):
        staged = stager.stage(bundle)

        stripped = [call.args[0] for call in signer.remove_signature.call_args_list]
        assert stripped == [staged.app_path, staged.app_path / HELPER_PATH]
        assert staged.signature_state == SignatureState.UNSIGNED
        assert staged.component_signatures == {HELPER_PATH: SignatureState.UNSIGNED}

    def test_strip_failure_tolerated(self, stager, bundle, signer):
        signer.remove_signature.return_value = False
        staged = stager.stage(bundle)
        assert staged.app_path.exists()
        assert staged.signature_state == SignatureState.UNSIGNED

    def test_stale_work_dir_replaced(self, stager, bundle, run_config):
        stale = run_config.temp_dir / f"test_stage_{STAMP}" / "leftover"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")

        staged = stager.stage(bundle)
        assert not (staged.work_dir / "leftover").exists()

    def test_copy_failure_is_fatal_and_cleaned(self, stager, bundle, run_config, monkeypatch):
        real_copy = stager_module.copy_bundle
        calls = []

        def failing_second_copy(source, destination):
            calls.append(destination)
            if len(calls) == 2:
                raise OSError("No space left on device")
            real_copy(source, destination)

        monkeypatch.setattr(stager_module, "copy_bundle", failing_second_copy)

        with pytest.raises(StagingError) as exc_info:
            stager.stage(bundle)
        assert exc_info.value.remediation
        assert not (run_config.temp_dir / f"test_stage_{STAMP}").exists()
        assert not (run_config.temp_dir / f"Test.app.backup_{STAMP}").exists()

    def test_existing_backup_preserved(self, stager, bundle, run_config):
        earlier = run_config.temp_dir / f"Test.app.backup_{STAMP}"
        earlier.mkdir(parents=True)
        (earlier / "marker").write_text("earlier run")

        with pytest.raises(StagingError):
            stager.stage(bundle)
        assert (earlier / "marker").read_text() == "earlier run"
        assert not (run_config.temp_dir / f"test_stage_{STAMP}").exists()

    def test_discard(self, stager, bundle):
        staged = stager.stage(bundle)
        stager.discard(staged, keep_backup=True)
        assert not staged.work_dir.exists()
        assert staged.backup_path.exists()

        stager.discard(staged)
        assert not staged.backup_path.exists()
