"""
IDPatch Filesystem Helpers
Bundle copies, ownership normalization and timestamps
"""

import os
import shutil
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional


logger = logging.getLogger(__name__)


def run_timestamp(now: Optional[datetime] = None) -> str:
    """Timestamp used to name staged copies and backups"""
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def copy_bundle(source: Path, destination: Path):
    """Copy a bundle tree, keeping symlinks (frameworks rely on them)"""
    shutil.copytree(source, destination, symlinks=True)


def remove_tree(path: Path) -> bool:
    """Remove a directory or file if present; True when nothing remains"""
    path = Path(path)
    try:
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.exists():
            shutil.rmtree(path)
        return not path.exists()
    except OSError as e:
        logger.error(f"Failed to remove {path}: {e}")
        return False


def normalize_ownership(root: Path, user: str, group: str, mode: int = 0o755) -> List[str]:
    """
    Recursively chown ``user:group`` and chmod ``mode`` under ``root``.

    Returns the list of problems encountered; the caller decides whether
    they matter.
    """
    problems: List[str] = []
    root = Path(root)

    for dirpath, dirnames, filenames in os.walk(root):
        for name in [dirpath] + [os.path.join(dirpath, n) for n in dirnames + filenames]:
            if os.path.islink(name):
                continue
            if user:
                try:
                    shutil.chown(name, user=user, group=group or None)
                except (LookupError, OSError) as e:
                    problems.append(f"chown {name}: {e}")
            try:
                os.chmod(name, mode)
            except OSError as e:
                problems.append(f"chmod {name}: {e}")

    if problems:
        logger.warning(f"Could not normalize ownership of {len(problems)} path(s) under {root}")
        for problem in problems[:10]:
            logger.debug(problem)
    return problems


def find_latest(directory: Path, prefix: str, dirs_only: bool = True) -> Optional[Path]:
    """Newest entry in ``directory`` whose name starts with ``prefix``"""
    directory = Path(directory)
    if not directory.exists():
        return None
    candidates = [p for p in directory.iterdir()
                  if p.name.startswith(prefix) and (p.is_dir() or not dirs_only)]
    if not candidates:
        return None
    return sorted(candidates, key=lambda p: p.name, reverse=True)[0]
