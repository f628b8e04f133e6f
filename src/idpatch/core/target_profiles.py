"""
IDPatch Target Profile Loader
Loads the filesystem layout of a target application from YAML profiles
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import yaml

from idpatch.core.errors import ProfileError
from idpatch.core.models import ResourceKind, ResourceSpec


BUILTIN_PROFILE_DIR = Path(__file__).resolve().parent.parent / "profiles"


@dataclass
class TargetProfile:
    """Fixed layout of a target application bundle"""
    name: str
    description: str
    platform: str
    install_path: Path
    resources: List[ResourceSpec]
    components: List[str] = field(default_factory=list)
    owner_group: str = "staff"
    bundle_mode: int = 0o755
    process_match: Optional[str] = None
    storage_file: Optional[Path] = None
    storage_backup_dir: Optional[Path] = None
    update_config: Optional[str] = None
    updater_cache: Optional[Path] = None
    work_prefix: str = "idpatch_stage_"
    backup_prefix: str = "bundle.backup_"

    def __post_init__(self):
        if self.process_match is None:
            self.process_match = str(self.install_path)

    @property
    def app_name(self) -> str:
        return self.install_path.name

    def with_install_path(self, install_path: Path) -> "TargetProfile":
        """Copy of this profile pointing at another installation"""
        data = dict(self.__dict__)
        data["install_path"] = Path(install_path)
        data["process_match"] = str(install_path)
        return TargetProfile(**data)

    def for_user(self, user: str = "") -> "TargetProfile":
        """Copy with "~" in user data paths expanded to ``user``'s home"""
        home = f"~{user}" if user else "~"

        def expand(path: Optional[Path]) -> Optional[Path]:
            if path is None or not str(path).startswith("~"):
                return path
            return Path(os.path.expanduser(home + str(path)[1:]))

        data = dict(self.__dict__)
        for key in ("storage_file", "storage_backup_dir", "updater_cache"):
            data[key] = expand(data[key])
        return TargetProfile(**data)


class TargetProfileLoader:
    """Loads and validates target profiles from YAML files"""

    REQUIRED_SECTIONS = ['metadata', 'application', 'resources']

    def __init__(self, profile_dir: Optional[Path] = None):
        self.profile_dir = Path(profile_dir) if profile_dir else BUILTIN_PROFILE_DIR
        self.logger = logging.getLogger(__name__)

    def available_profiles(self) -> List[str]:
        """Names of the profiles shipped in the profile directory"""
        if not self.profile_dir.exists():
            return []
        return sorted(p.stem for p in self.profile_dir.glob("*.yaml"))

    def load(self, name_or_path: str) -> TargetProfile:
        """Load a profile by built-in name or by file path"""
        candidate = Path(name_or_path).expanduser()
        if candidate.suffix in (".yaml", ".yml") or candidate.exists():
            path = candidate
        else:
            path = self.profile_dir / f"{name_or_path}.yaml"

        if not path.exists():
            raise ProfileError(
                f"Target profile not found: {name_or_path}",
                remediation=f"Available profiles: {', '.join(self.available_profiles()) or 'none'}"
            )

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ProfileError(f"Invalid YAML in profile {path}: {e}")

        profile = self.parse(data, source=str(path))
        self.logger.debug(f"Loaded target profile '{profile.name}' from {path}")
        return profile

    def parse(self, data: Any, source: str = "<profile>") -> TargetProfile:
        """Build a TargetProfile from already-parsed YAML data"""
        self._validate_structure(data, source)

        metadata = data['metadata']
        application = data['application']
        user_data = data.get('user_data') or {}
        staging = data.get('staging') or {}

        install_path = Path(application['install_path'])
        mode = str(application.get('bundle_mode', '755'))

        return TargetProfile(
            name=metadata['name'],
            description=metadata.get('description', ''),
            platform=metadata.get('platform', 'darwin'),
            install_path=install_path,
            resources=self._parse_resources(data['resources'], source),
            components=[str(c) for c in data.get('components') or []],
            owner_group=application.get('owner_group', 'staff'),
            bundle_mode=int(mode, 8),
            process_match=application.get('process_match'),
            storage_file=self._user_path(user_data.get('storage_file')),
            storage_backup_dir=self._user_path(user_data.get('backup_dir')),
            update_config=user_data.get('update_config'),
            updater_cache=self._user_path(user_data.get('updater_cache')),
            work_prefix=staging.get('work_prefix', 'idpatch_stage_'),
            backup_prefix=staging.get('backup_prefix', f"{install_path.name}.backup_"),
        )

    def _validate_structure(self, data: Any, source: str):
        """Validate the basic structure of a profile"""
        if not isinstance(data, dict):
            raise ProfileError(f"Profile {source} must be a mapping")

        for section in self.REQUIRED_SECTIONS:
            if section not in data:
                raise ProfileError(f"Missing required section '{section}' in {source}")

        if 'name' not in (data['metadata'] or {}):
            raise ProfileError(f"Missing required metadata field 'name' in {source}")

        if 'install_path' not in (data['application'] or {}):
            raise ProfileError(f"Missing required application field 'install_path' in {source}")

        if not isinstance(data['resources'], list) or not data['resources']:
            raise ProfileError(f"resources must be a non-empty list in {source}")

    def _parse_resources(self, entries: List[Dict[str, Any]], source: str) -> List[ResourceSpec]:
        resources = []
        for entry in entries:
            try:
                kind = ResourceKind(entry['kind'])
            except (KeyError, ValueError, TypeError):
                raise ProfileError(f"Resource entry {entry!r} in {source} has no valid kind")
            if not entry.get('path'):
                raise ProfileError(f"Resource entry {entry!r} in {source} has no path")
            resources.append(ResourceSpec(
                relative_path=entry['path'],
                kind=kind,
                required=entry.get('required', True),
            ))
        return resources

    @staticmethod
    def _user_path(value: Optional[str]) -> Optional[Path]:
        # "~" is expanded later against the invoking user, see TargetProfile.for_user
        if not value:
            return None
        return Path(value)


def load_profile(name_or_path: str) -> TargetProfile:
    """Convenience wrapper around TargetProfileLoader"""
    return TargetProfileLoader().load(name_or_path)
