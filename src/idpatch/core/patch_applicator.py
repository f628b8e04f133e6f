"""
IDPatch Patch Applicator
Applies a selected strategy to one resource as a scoped transaction:
backup, transform into a temp copy, verify, commit or roll back.
"""

import os
import stat
import shutil
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from idpatch.core.errors import PatchError
from idpatch.core.models import PatchOutcome, TargetResource
from idpatch.core.patch_strategies import PatchStrategy


WRITABLE_MODE = 0o644
RESTRICTED_MODE = 0o444


class ResourceTransaction:
    """Backup/temp bookkeeping for a single resource mutation"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + ".bak")
        self.temp_path = self.path.with_name(self.path.name + ".tmp")
        self.original_mode = stat.S_IMODE(self.path.stat().st_mode)
        self.committed = False

    def begin(self):
        os.chmod(self.path, self.original_mode | stat.S_IWUSR)
        shutil.copy2(self.path, self.backup_path)

    def stage(self, content: bytes):
        with open(self.temp_path, 'wb') as f:
            f.write(content)

    def commit(self):
        os.replace(self.temp_path, self.path)
        self.committed = True

    def rollback(self):
        if self.backup_path.exists():
            shutil.copy2(self.backup_path, self.path)

    def cleanup(self):
        for leftover in (self.temp_path, self.backup_path):
            if leftover.exists():
                leftover.unlink()
        if self.path.exists():
            os.chmod(self.path, self.original_mode)


@contextmanager
def resource_transaction(path: Path) -> Iterator[ResourceTransaction]:
    """
    Guarantee that ``path`` is either committed or restored from backup.

    Any exception inside the block triggers rollback and is re-raised.
    """
    txn = ResourceTransaction(path)
    txn.begin()
    try:
        yield txn
        if not txn.committed:
            raise PatchError(f"Transaction for {path} ended without commit")
    except BaseException:
        txn.rollback()
        raise
    finally:
        txn.cleanup()


class PatchApplicator:
    """Applies patch strategies to resources with backup and verification"""

    def __init__(self, encoding: str = "utf-8"):
        self.logger = logging.getLogger(__name__)
        self.encoding = encoding

    def apply(self, resource: TargetResource, strategy: PatchStrategy) -> PatchOutcome:
        """
        Apply ``strategy`` to ``resource``.

        Failures are reported on the outcome, never raised; the resource is
        byte-identical to its pre-patch content after any failure.
        """
        outcome = PatchOutcome(relative_path=resource.relative_path,
                               strategy=strategy.strategy_type)
        self.logger.debug(f"[PROCESS] Starting to process file: {resource.path}")

        try:
            with resource_transaction(resource.path) as txn:
                original = resource.path.read_bytes()
                self.logger.debug(f"[PROCESS] File size: {len(original)} bytes")

                text = original.decode(self.encoding)
                patched = strategy.apply(text)
                self._verify(patched, strategy)

                encoded = patched.encode(self.encoding)
                txn.stage(encoded)
                if txn.temp_path.stat().st_size == 0:
                    raise PatchError("Generated temporary file is empty")
                txn.commit()

            resource.content = patched
            resource.already_patched = True
            outcome.success = True
            outcome.call_sites_rewritten = strategy.call_sites_rewritten
            outcome.message = f"Patched with {strategy.name}"
            self.logger.info(f"Successfully modified file: {resource.relative_path} ({strategy.name})")
            self._log_markers(resource.path, patched)

        except Exception as e:
            outcome.success = False
            outcome.message = f"{strategy.name} failed: {e}"
            self.logger.error(f"Failed to modify {resource.relative_path}: {e}; original restored")

        return outcome

    def _verify(self, patched: str, strategy: PatchStrategy):
        if not patched.strip():
            raise PatchError("Strategy produced empty output")
        if strategy.post_condition not in patched:
            raise PatchError(f"Post-condition marker missing after {strategy.name}")

    def _log_markers(self, path: Path, content: str):
        """Record where the patch landed, for post-hoc diagnosis"""
        hits = [(n, line) for n, line in enumerate(content.splitlines(), 1)
                if "return crypto.randomUUID()" in line][:3]
        for number, line in hits:
            self.logger.debug(f"[MODIFIED] {path.name}:{number}: {line.strip()[:200]}")
