"""
IDPatch Resource Locator
Resolves the profile's fixed resource list against a bundle root and
classifies each entry as missing, already patched or needing a patch.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from idpatch.core.errors import PreconditionError
from idpatch.core.models import ResourceState, TargetResource
from idpatch.core.patch_strategies import is_already_patched
from idpatch.core.target_profiles import TargetProfile


@dataclass
class LocatorReport:
    """Per-resource classification of one bundle"""
    bundle_root: Path
    resources: List[TargetResource] = field(default_factory=list)

    def with_state(self, state: ResourceState) -> List[TargetResource]:
        return [r for r in self.resources if r.state == state]

    @property
    def missing(self) -> List[TargetResource]:
        return self.with_state(ResourceState.MISSING)

    @property
    def needs_patch(self) -> List[TargetResource]:
        return self.with_state(ResourceState.NEEDS_PATCH)

    @property
    def all_patched(self) -> bool:
        existing = [r for r in self.resources if r.exists]
        return bool(existing) and all(r.already_patched for r in existing)

    def raise_for_missing(self):
        if self.missing:
            names = ", ".join(r.relative_path for r in self.missing)
            raise PreconditionError(
                f"Some target files do not exist: {names}",
                remediation="Verify the target application installation is complete, "
                            "or reinstall it, then run again"
            )


class ResourceLocator:
    """Read-only scan of the target resources inside a bundle"""

    def __init__(self, profile: TargetProfile, encoding: str = "utf-8"):
        self.logger = logging.getLogger(__name__)
        self.profile = profile
        self.encoding = encoding

    def locate(self, bundle_root: Path) -> LocatorReport:
        bundle_root = Path(bundle_root)
        report = LocatorReport(bundle_root=bundle_root)

        self.logger.debug("Checking target files...")
        for spec in self.profile.resources:
            path = bundle_root / spec.relative_path
            resource = TargetResource(path=path, relative_path=spec.relative_path, kind=spec.kind)

            if not path.is_file():
                if not spec.required:
                    self.logger.info(f"Optional file not present, skipping: {spec.relative_path}")
                    continue
                self.logger.warning(f"File does not exist: {spec.relative_path}")
                report.resources.append(resource)
                continue

            resource.exists = True
            resource.content = path.read_bytes().decode(self.encoding, errors="replace")
            resource.already_patched = is_already_patched(spec.kind, resource.content)
            self.logger.debug(f"[FILE_CHECK] File exists: {path} ({path.stat().st_size} bytes)")

            if resource.already_patched:
                self.logger.info(f"File already modified: {spec.relative_path}")
            else:
                self.logger.info(f"File needs modification: {spec.relative_path}")
            report.resources.append(resource)

        return report
