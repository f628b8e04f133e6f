"""
IDPatch Error Types
Exception hierarchy shared by the patching pipeline
"""

from typing import Optional


class IDPatchError(Exception):
    """Base class for all pipeline errors"""

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def __str__(self) -> str:
        return self.message


class ProfileError(IDPatchError):
    """Target profile file is missing or malformed"""


class PreconditionError(IDPatchError):
    """Fatal condition detected before anything was mutated"""


class PatchError(IDPatchError):
    """A single resource could not be patched (recovered locally)"""


class StagingError(IDPatchError):
    """Working copy or backup of the bundle could not be produced"""


class SigningError(IDPatchError):
    """Signature could not be regenerated or verified"""


class InstallError(IDPatchError):
    """Staged bundle could not be swapped into place"""


class RollbackError(InstallError):
    """Install failed and the original bundle could not be restored"""
