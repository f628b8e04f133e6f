"""
IDPatch Target Profile Tests
"""

import os
from pathlib import Path

import pytest
import yaml

from idpatch.core.errors import ProfileError
from idpatch.core.models import ResourceKind
from idpatch.core.target_profiles import TargetProfileLoader, load_profile

from conftest import profile_data


class TestBuiltinProfile:
    """The shipped cursor-macos profile"""

    def test_available(self):
        assert "cursor-macos" in TargetProfileLoader().available_profiles()

    def test_contents(self):
        profile = load_profile("cursor-macos")

        assert profile.install_path == Path("/Applications/Cursor.app")
        assert profile.app_name == "Cursor.app"
        assert profile.platform == "darwin"
        assert profile.process_match == "/Applications/Cursor.app"
        assert profile.bundle_mode == 0o755
        assert profile.owner_group == "staff"
        assert [r.kind for r in profile.resources] == [
            ResourceKind.CHECKSUM_HEADER, ResourceKind.IDENTIFIER_LOOKUP, ResourceKind.IDENTIFIER_LOOKUP]
        assert profile.resources[1].relative_path == "Contents/Resources/app/out/main.js"
        assert len(profile.components) == 4
        assert profile.update_config == "Contents/Resources/app-update.yml"
        assert profile.work_prefix == "cursor_reset_"
        assert profile.backup_prefix == "Cursor.app.backup_"

    def test_user_paths_expanded_per_user(self):
        profile = load_profile("cursor-macos")
        assert str(profile.storage_file).startswith("~")

        expanded = profile.for_user("")
        home = os.path.expanduser("~")
        assert str(expanded.storage_file).startswith(home)
        assert expanded.storage_file.name == "storage.json"
        assert str(expanded.updater_cache).endswith("cursor-updater")
        # Original left untouched
        assert str(profile.storage_file).startswith("~")


class TestProfileLoader:
    """Loading and validation"""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump(profile_data(tmp_path / "Custom.app")))

        profile = TargetProfileLoader().load(str(path))
        assert profile.name == "test-app"
        assert profile.install_path == tmp_path / "Custom.app"
        assert len(profile.resources) == 3

    def test_with_install_path(self):
        profile = load_profile("cursor-macos").with_install_path(Path("/tmp/Other.app"))
        assert profile.install_path == Path("/tmp/Other.app")
        assert profile.process_match == "/tmp/Other.app"

    def test_unknown_profile(self):
        with pytest.raises(ProfileError) as exc_info:
            TargetProfileLoader().load("no-such-profile")
        assert "cursor-macos" in exc_info.value.remediation

    @pytest.mark.parametrize("section", ["metadata", "application", "resources"])
    def test_missing_section(self, tmp_path, section):
        data = profile_data(tmp_path)
        del data[section]
        with pytest.raises(ProfileError):
            TargetProfileLoader().parse(data)

    def test_invalid_resource_kind(self, tmp_path):
        data = profile_data(tmp_path)
        data["resources"][0]["kind"] = "binary_blob"
        with pytest.raises(ProfileError):
            TargetProfileLoader().parse(data)

    def test_empty_resources(self, tmp_path):
        data = profile_data(tmp_path, resources=[])
        with pytest.raises(ProfileError):
            TargetProfileLoader().parse(data)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("metadata: [unclosed")
        with pytest.raises(ProfileError):
            TargetProfileLoader().load(str(path))
