"""
IDPatch Resource Locator Tests
"""

import pytest

from idpatch.core.errors import PreconditionError
from idpatch.core.models import ResourceState
from idpatch.core.patch_strategies import CHECKSUM_REWRITTEN, RANDOM_UUID_MARKER
from idpatch.core.resource_locator import ResourceLocator
from idpatch.core.target_profiles import TargetProfileLoader

from conftest import CHECKSUM_PATH, CLI_PATH, MAIN_PATH, profile_data, snapshot


class TestResourceLocator:
    """Classification of the profile's resources"""

    def test_fresh_bundle_needs_patch(self, profile, bundle):
        report = ResourceLocator(profile).locate(bundle)

        assert [r.relative_path for r in report.resources] == [CHECKSUM_PATH, MAIN_PATH, CLI_PATH]
        assert all(r.state == ResourceState.NEEDS_PATCH for r in report.resources)
        assert len(report.needs_patch) == 3
        assert not report.all_patched
        assert report.resources[1].content.startswith("function a$(t)")
        report.raise_for_missing()

    def test_missing_resource(self, profile, bundle):
        (bundle / CLI_PATH).unlink()
        report = ResourceLocator(profile).locate(bundle)

        assert [r.relative_path for r in report.missing] == [CLI_PATH]
        assert report.resources[2].content is None
        with pytest.raises(PreconditionError) as exc_info:
            report.raise_for_missing()
        assert CLI_PATH in exc_info.value.message
        assert exc_info.value.remediation

    def test_already_patched(self, profile, bundle):
        (bundle / CHECKSUM_PATH).write_text(CHECKSUM_REWRITTEN, encoding="utf-8")
        (bundle / MAIN_PATH).write_text(f"function a$(t){{{RANDOM_UUID_MARKER}; switch", encoding="utf-8")

        report = ResourceLocator(profile).locate(bundle)
        states = [r.state for r in report.resources]
        assert states == [ResourceState.ALREADY_PATCHED, ResourceState.ALREADY_PATCHED,
                          ResourceState.NEEDS_PATCH]
        assert not report.all_patched

        (bundle / CLI_PATH).write_text(f"async function v5(t){{{RANDOM_UUID_MARKER}; let e=1}}",
                                       encoding="utf-8")
        assert ResourceLocator(profile).locate(bundle).all_patched

    def test_optional_resource_skipped(self, bundle):
        data = profile_data(bundle)
        data["resources"].append({"path": "Contents/Resources/extra.js",
                                  "kind": "identifier_lookup", "required": False})
        profile = TargetProfileLoader().parse(data)

        report = ResourceLocator(profile).locate(bundle)
        assert len(report.resources) == 3
        assert report.missing == []

    def test_locate_is_read_only(self, profile, bundle):
        before = snapshot(bundle)
        ResourceLocator(profile).locate(bundle)
        assert snapshot(bundle) == before
