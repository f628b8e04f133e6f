"""
Shared fixtures: a small fake application bundle, its profile, and a
mocked code signer
"""

import getpass
import platform
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from idpatch.core.codesign import CodeSigner, CommandResult
from idpatch.core.config import RunConfig
from idpatch.core.patch_strategies import CHECKSUM_ORIGINAL
from idpatch.core.target_profiles import TargetProfileLoader


CHECKSUM_PATH = "Contents/Resources/app/out/vs/workbench/api/node/extensionHostProcess.js"
MAIN_PATH = "Contents/Resources/app/out/main.js"
CLI_PATH = "Contents/Resources/app/out/vs/code/node/cliProcessMain.js"
HELPER_PATH = "Contents/Frameworks/Test Helper.app"

CHECKSUM_JS = "function send(i,e,p,t){" + CHECKSUM_ORIGINAL + ";return i}\n"
MAIN_JS = ("function a$(t){switch(t){case 0:return read('IOPlatformUUID');default:return ''}}\n"
           "const machine=a$(t);\n")
CLI_JS = "async function v5(t){let e=await readId(t);return e}\n"


def profile_data(install_path: Path, **overrides):
    data = {
        "metadata": {"name": "test-app", "platform": platform.system().lower()},
        "application": {"install_path": str(install_path), "owner_group": "", "bundle_mode": "755"},
        "resources": [
            {"path": CHECKSUM_PATH, "kind": "checksum_header"},
            {"path": MAIN_PATH, "kind": "identifier_lookup"},
            {"path": CLI_PATH, "kind": "identifier_lookup"},
        ],
        "components": [HELPER_PATH, "Contents/Frameworks/Absent Helper.app"],
        "staging": {"work_prefix": "test_stage_", "backup_prefix": "Test.app.backup_"},
    }
    data.update(overrides)
    return data


def build_bundle(root: Path) -> Path:
    """Create a minimal bundle tree with the three target resources"""
    files = {
        CHECKSUM_PATH: CHECKSUM_JS,
        MAIN_PATH: MAIN_JS,
        CLI_PATH: CLI_JS,
        "Contents/Info.plist": "<plist/>\n",
        HELPER_PATH + "/Contents/Info.plist": "<plist/>\n",
    }
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def snapshot(root: Path):
    """Relative path -> bytes for every file under root"""
    root = Path(root)
    return {str(p.relative_to(root)): p.read_bytes()
            for p in sorted(root.rglob("*")) if p.is_file()}


@pytest.fixture
def bundle(tmp_path):
    return build_bundle(tmp_path / "Applications" / "Test.app")


@pytest.fixture
def profile(bundle):
    return TargetProfileLoader().parse(profile_data(bundle), source="test")


@pytest.fixture
def run_config(bundle, tmp_path):
    return RunConfig(
        install_root=bundle,
        temp_dir=tmp_path / "tmp",
        current_user=getpass.getuser(),
        owner_group="",
        sign_retry_delay=0,
    )


@pytest.fixture
def signer():
    mock_signer = MagicMock(spec=CodeSigner)
    mock_signer.remove_signature.return_value = True
    mock_signer.sign.return_value = CommandResult(["codesign"], 0, "")
    mock_signer.verify.return_value = True
    mock_signer.remove_quarantine.return_value = True
    mock_signer.manual_sign_command.side_effect = (
        lambda path: f"sudo codesign --sign - --force --deep '{path}'")
    return mock_signer
