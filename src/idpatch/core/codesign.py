"""
IDPatch External Tool Wrappers
Code signature strip/sign/verify and quarantine removal via system tools
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from idpatch.core.logger import log_command_output


@dataclass
class CommandResult:
    """Outcome of an external command"""
    command: List[str]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands and records their raw output in the log"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def run(self, command: Sequence[str], description: str = "") -> CommandResult:
        cmd = [str(c) for c in command]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
            output = (result.stdout or "") + (result.stderr or "")
            returncode = result.returncode
        except (FileNotFoundError, PermissionError) as e:
            output = str(e)
            returncode = 127

        log_command_output(self.logger, cmd, output, description)
        if returncode != 0:
            self.logger.debug(f"[CMD] exit status {returncode}")
        return CommandResult(cmd, returncode, output)


class CodeSigner:
    """Thin wrapper over ``codesign`` and ``xattr``"""

    SIGN_METADATA = "entitlements,identifier,flags"
    QUARANTINE_ATTRIBUTE = "com.apple.quarantine"

    def __init__(self, runner: CommandRunner = None, codesign: str = "codesign",
                 xattr: str = "xattr"):
        self.logger = logging.getLogger(__name__)
        self.runner = runner or CommandRunner()
        self.codesign = codesign
        self.xattr = xattr

    def remove_signature(self, bundle: Path) -> bool:
        """Strip the signature from a bundle"""
        result = self.runner.run([self.codesign, "--remove-signature", bundle],
                                 f"Removing signature: {bundle}")
        if not result.ok:
            self.logger.warning(f"Failed to remove signature: {bundle}")
        return result.ok

    def sign(self, bundle: Path, preserve_metadata: bool = True) -> CommandResult:
        """Ad-hoc sign a bundle and everything nested in it"""
        cmd = [self.codesign, "--sign", "-", "--force", "--deep"]
        if preserve_metadata:
            cmd.append(f"--preserve-metadata={self.SIGN_METADATA}")
        cmd.append(bundle)
        return self.runner.run(cmd, f"Signing: {bundle}")

    def verify(self, bundle: Path) -> bool:
        """Verify the signature of a bundle"""
        result = self.runner.run([self.codesign, "--verify", "-vvvv", bundle],
                                 f"Verifying signature: {bundle}")
        return result.ok

    def remove_quarantine(self, bundle: Path) -> bool:
        """Recursively drop the quarantine attribute"""
        result = self.runner.run([self.xattr, "-rd", self.QUARANTINE_ATTRIBUTE, bundle],
                                 f"Removing quarantine attribute: {bundle}")
        return result.ok

    def manual_sign_command(self, bundle: Path) -> str:
        return f"sudo {self.codesign} --sign - --force --deep '{bundle}'"
