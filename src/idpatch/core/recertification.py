"""
IDPatch Re-certification Engine
Regenerates and verifies the code signature of a staged bundle
"""

import time
import logging
from pathlib import Path
from typing import Callable, List, Optional

from idpatch.core.codesign import CodeSigner
from idpatch.core.error_recovery import retry_operation
from idpatch.core.errors import SigningError
from idpatch.core.models import SignatureState, StagedBundle


class RecertificationEngine:
    """Signs staged bundles with a bounded retry loop"""

    def __init__(self, signer: Optional[CodeSigner] = None, attempts: int = 3,
                 delay: float = 1.0, sleep: Callable[[float], None] = time.sleep):
        self.logger = logging.getLogger(__name__)
        self.signer = signer or CodeSigner()
        self.attempts = attempts
        self.delay = delay
        self.sleep = sleep

    def sign(self, staged: StagedBundle) -> SignatureState:
        """
        Sign the staged top-level bundle.

        Only a signature that verifies counts. On exhaustion the stage is
        left in place and the bundle stays UNSIGNED.
        """
        def attempt(number: int) -> bool:
            result = self.signer.sign(staged.app_path)
            if not result.ok:
                self.logger.warning(f"Signature failed, error log:\n{result.output.strip()}")
                return False
            if not self.signer.verify(staged.app_path):
                self.logger.warning("Signature verification failed")
                return False
            return True

        outcome = retry_operation(attempt, attempts=self.attempts, delay=self.delay,
                                  description="signature", sleep=self.sleep)

        if outcome.success:
            self.logger.info("Application signature verification passed")
            staged.signature_state = SignatureState.SIGNED
        else:
            self.logger.error(f"Failed to complete signature after {self.attempts} attempts")
            staged.signature_state = SignatureState.UNSIGNED
        return staged.signature_state

    def certify(self, staged: StagedBundle, install_root: Path):
        """Sign ``staged`` or raise SigningError carrying the manual steps"""
        if self.sign(staged) != SignatureState.SIGNED:
            raise SigningError(
                f"Unable to sign {staged.app_path}",
                remediation="\n".join(self.manual_steps(staged, install_root))
            )

    def manual_steps(self, staged: StagedBundle, install_root: Path) -> List[str]:
        """Commands a human can run to finish a degraded run"""
        return [
            "Please manually execute the following command to complete signature:",
            f"  {self.signer.manual_sign_command(staged.app_path)}",
            "After that, copy the application to its original location:",
            f"  sudo cp -R '{staged.app_path}' '{Path(install_root).parent}/'",
            f"Temporary files preserved at: {staged.work_dir}",
        ]
