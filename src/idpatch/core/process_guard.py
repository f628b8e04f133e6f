"""
IDPatch Process Guard
Makes sure no instance of the target application runs during a patch
"""

import os
import time
import logging
from typing import Callable, List

import psutil

from idpatch.core.error_recovery import retry_operation
from idpatch.core.errors import PreconditionError


class ProcessGuard:
    """Finds and terminates processes running from the install path"""

    def __init__(self, match: str, attempts: int = 5, wait: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.logger = logging.getLogger(__name__)
        self.match = match.lower()
        self.attempts = max(1, attempts)
        self.wait = wait
        self.sleep = sleep

    def find_processes(self) -> List[psutil.Process]:
        """Processes whose executable or command line lies under the match path"""
        found = []
        own_pids = {os.getpid(), os.getppid()}
        for proc in psutil.process_iter(['pid', 'name', 'exe', 'cmdline']):
            if proc.pid in own_pids:
                continue
            try:
                info = proc.info
                haystack = " ".join(filter(None, [info.get('exe') or ""] + list(info.get('cmdline') or [])))
                if self.match in haystack.lower():
                    found.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return found

    def _describe(self, processes: List[psutil.Process]):
        for proc in processes:
            try:
                self.logger.debug(f"  PID {proc.pid}: {' '.join(proc.cmdline())[:200]}")
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue

    def _signal(self, processes: List[psutil.Process], force: bool):
        if force:
            self.logger.warning("Attempting to force kill process...")
        else:
            self.logger.warning("Attempting to close target process...")

        for proc in processes:
            try:
                if force:
                    proc.kill()
                else:
                    proc.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                self.logger.debug(f"Signal to PID {proc.pid} failed: {e}")

    def ensure_stopped(self) -> bool:
        """
        Terminate running instances, SIGKILL on the last attempt.

        Raises PreconditionError if processes survive every attempt.
        """
        self.logger.info("Checking target application processes...")

        def attempt(number: int) -> bool:
            processes = self.find_processes()
            if not processes:
                if number == 1:
                    self.logger.info("No running target process found")
                else:
                    self.logger.info("Target process successfully closed")
                return True

            self.logger.warning(f"Target application is running ({len(processes)} process(es))")
            self._describe(processes)
            self._signal(processes, force=number == self.attempts)
            return False

        outcome = retry_operation(attempt, attempts=self.attempts, delay=self.wait,
                                  description="process termination", sleep=self.sleep)
        if outcome.success:
            return True

        # Give the last signal time to land before the final check
        self.sleep(self.wait)
        remaining = self.find_processes()
        if not remaining:
            self.logger.info("Target process successfully closed")
            return True

        self._describe(remaining)
        raise PreconditionError(
            f"Unable to close target process after {self.attempts} attempts",
            remediation="Please close the application manually and try again"
        )
