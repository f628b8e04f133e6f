"""
IDPatch Safety Validation
Precondition checks run before anything on disk is touched
"""

import os
import shutil
import logging
import platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from idpatch.core.errors import PreconditionError


class ValidationResult(Enum):
    """Validation result types"""
    SAFE = "safe"
    WARNING = "warning"
    BLOCKED = "blocked"


@dataclass
class SafetyCheck:
    """Individual safety check result"""
    name: str
    result: ValidationResult
    message: str
    details: Optional[str] = None
    mitigation: Optional[str] = None


class SafetyValidator:
    """Validates platform, privileges and tools before a run"""

    def __init__(self, expected_platform: str = "darwin",
                 required_tools: Optional[List[str]] = None,
                 require_root: bool = True):
        self.logger = logging.getLogger(__name__)
        self.system = platform.system()
        self.expected_platform = expected_platform.lower()
        self.required_tools = required_tools if required_tools is not None else ["codesign", "xattr"]
        self.require_root = require_root

    def validate_prerequisites(self, current_user: str = "") -> List[SafetyCheck]:
        """Validate system prerequisites"""
        checks = [self._check_platform()]

        for tool in self.required_tools:
            if self._is_tool_available(tool):
                checks.append(SafetyCheck(
                    name=f"Tool: {tool}",
                    result=ValidationResult.SAFE,
                    message=f"{tool} is available"
                ))
            else:
                checks.append(SafetyCheck(
                    name=f"Tool: {tool}",
                    result=ValidationResult.BLOCKED,
                    message=f"{tool} is not available",
                    mitigation=f"Install {tool} (Xcode command line tools: xcode-select --install)"
                ))

        checks.append(self._check_privileges())
        checks.append(self._check_user(current_user))
        return checks

    def _check_platform(self) -> SafetyCheck:
        if self.system.lower() == self.expected_platform:
            return SafetyCheck(name="Platform", result=ValidationResult.SAFE,
                               message=f"Running on {self.system}")
        return SafetyCheck(
            name="Platform",
            result=ValidationResult.BLOCKED,
            message=f"This profile only supports {self.expected_platform}, running on {self.system}",
            mitigation="Select a target profile for this platform with --profile"
        )

    def _is_tool_available(self, tool: str) -> bool:
        """Check if required tool is available"""
        return shutil.which(tool) is not None

    def _check_privileges(self) -> SafetyCheck:
        """Check if user has required privileges"""
        if not self.require_root:
            return SafetyCheck(name="Privileges", result=ValidationResult.SAFE,
                               message="Root privileges not required")
        if hasattr(os, "geteuid") and os.geteuid() == 0:
            return SafetyCheck(name="Privileges", result=ValidationResult.SAFE,
                               message="Running with root privileges")
        return SafetyCheck(
            name="Privileges",
            result=ValidationResult.BLOCKED,
            message="Root privileges required",
            mitigation="Run this tool with sudo, for example: sudo idpatch patch"
        )

    def _check_user(self, current_user: str) -> SafetyCheck:
        if current_user:
            return SafetyCheck(name="Invoking user", result=ValidationResult.SAFE,
                               message=f"Current user: {current_user}")
        return SafetyCheck(
            name="Invoking user",
            result=ValidationResult.BLOCKED,
            message="Unable to get username",
            mitigation="Run through sudo from a regular user account so SUDO_USER is set"
        )

    def validate_bundle(self, install_path: Path) -> SafetyCheck:
        """Check the installation directory exists"""
        if Path(install_path).is_dir():
            return SafetyCheck(name="Application", result=ValidationResult.SAFE,
                               message=f"Found {install_path}")
        return SafetyCheck(
            name="Application",
            result=ValidationResult.BLOCKED,
            message=f"Application not found: {install_path}",
            mitigation="Verify the installation path or pass --app-path"
        )

    def enforce(self, checks: List[SafetyCheck]):
        """Raise PreconditionError for the first blocked check"""
        for check in checks:
            if check.result == ValidationResult.BLOCKED:
                self.logger.error(f"{check.name}: {check.message}")
                raise PreconditionError(f"{check.name}: {check.message}", remediation=check.mitigation)
            if check.result == ValidationResult.WARNING:
                self.logger.warning(f"{check.name}: {check.message}")
            else:
                self.logger.debug(f"{check.name}: {check.message}")
