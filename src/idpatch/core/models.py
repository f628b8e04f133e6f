"""
IDPatch Core Data Models
Shared data classes and enums used across the patching pipeline
Separated to prevent circular imports between modules
"""

import time
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from dataclasses import dataclass, field


class ResourceKind(Enum):
    """Kinds of target resources inside the bundle"""
    CHECKSUM_HEADER = "checksum_header"        # Sets the request checksum header
    IDENTIFIER_LOOKUP = "identifier_lookup"    # Reads the machine/device identifier


class ResourceState(Enum):
    """Locator classification of a target resource"""
    MISSING = "missing"
    ALREADY_PATCHED = "already_patched"
    NEEDS_PATCH = "needs_patch"


class StrategyType(Enum):
    """Patch strategy variants, highest precision first"""
    CHECKSUM_REWRITE = "checksum_rewrite"
    FUNCTION_INJECT_PRIMARY = "function_inject_primary"
    FUNCTION_INJECT_ALTERNATE = "function_inject_alternate"
    DEVICE_FUNCTION_OVERRIDE = "device_function_override"
    GENERIC_WRAPPER_INJECT = "generic_wrapper_inject"
    UNIVERSAL_REQUIRE_INTERCEPT = "universal_require_intercept"


class BundleState(Enum):
    """Ownership states of an application bundle"""
    ORIGINAL = "original"      # Owned by the OS installation
    STAGED = "staged"          # Disposable working copy owned by the pipeline
    BACKUP = "backup"          # Immutable snapshot of the original


class SignatureState(Enum):
    """Code signature state of a bundle or component"""
    SIGNED = "signed"
    UNSIGNED = "unsigned"


class RunState(Enum):
    """Pipeline run states"""
    LOCATED = "located"
    RESOLVED = "resolved"
    STAGED = "staged"
    APPLIED = "applied"
    SIGNED = "signed"
    DEGRADED_SIGNED = "degraded_signed"    # Patched but left unsigned for manual completion
    INSTALLED = "installed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"    # Unrecoverable, manual intervention required
    PATCH_FAILED = "patch_failed"          # No resource could be patched
    ABORTED = "aborted"                    # Precondition or staging failure
    NOOP = "noop"                          # Everything already patched

    @property
    def is_success(self) -> bool:
        return self in (RunState.INSTALLED, RunState.NOOP)


class InstallResult(Enum):
    """Outcome of the install swap"""
    INSTALLED = "installed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class StorageIdMode(Enum):
    """Whether the persisted identifier fields get rewritten"""
    KEEP = "keep"
    RESET = "reset"


class RemediationChoice(Enum):
    """Run or skip an optional remediation step"""
    SKIP = "skip"
    RUN = "run"


@dataclass
class ResourceSpec:
    """Fixed entry of a target profile's resource list"""
    relative_path: str
    kind: ResourceKind
    required: bool = True


@dataclass
class TargetResource:
    """A single text/script file inside the bundle targeted for patching"""
    path: Path
    relative_path: str
    kind: ResourceKind
    exists: bool = False
    already_patched: bool = False
    content: Optional[str] = None

    @property
    def state(self) -> ResourceState:
        if not self.exists:
            return ResourceState.MISSING
        if self.already_patched:
            return ResourceState.ALREADY_PATCHED
        return ResourceState.NEEDS_PATCH


@dataclass
class PatchOutcome:
    """Result of applying one strategy to one resource"""
    relative_path: str
    strategy: Optional[StrategyType] = None
    success: bool = False
    skipped: bool = False
    message: str = ""
    call_sites_rewritten: int = 0


@dataclass
class StagedBundle:
    """Handle to a staged working copy and its original-bundle backup"""
    work_dir: Path
    app_path: Path
    backup_path: Path
    timestamp: str
    # STAGED until install; ORIGINAL once installed, BACKUP once rolled back
    state: BundleState = BundleState.STAGED
    signature_state: SignatureState = SignatureState.SIGNED
    component_signatures: Dict[str, SignatureState] = field(default_factory=dict)


@dataclass
class RunReport:
    """Final report of a pipeline run"""
    state: RunState = RunState.LOCATED
    resources: List[TargetResource] = field(default_factory=list)
    outcomes: List[PatchOutcome] = field(default_factory=list)
    staged: Optional[StagedBundle] = None
    remediation: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def patched_count(self) -> int:
        return len([o for o in self.outcomes if o.success])

    @property
    def success(self) -> bool:
        return self.state.is_success

    def finish(self, state: RunState) -> "RunReport":
        self.state = state
        self.finished_at = time.time()
        return self
