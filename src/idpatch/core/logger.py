"""
IDPatch Logging System
Console output plus an append-only per-run log file
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional, Sequence

from colorama import Fore, Style, just_fix_windows_console

just_fix_windows_console()


LEVEL_COLORS = {
    "DEBUG": Fore.BLUE,
    "INFO": Fore.GREEN,
    "WARNING": Fore.YELLOW,
    "ERROR": Fore.RED,
    "CRITICAL": Fore.RED + Style.BRIGHT,
}


class ColorLevelFormatter(logging.Formatter):
    """Console formatter printing a colored [LEVEL] prefix"""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelname, "")
        return f"{color}[{record.levelname}]{Style.RESET_ALL} {record.getMessage()}"


class IDPatchLogger:
    """Logging setup for IDPatch runs"""

    def __init__(self, log_file: Optional[Path] = None, level: str = "INFO",
                 console: bool = True):
        self.log_file = Path(log_file) if log_file else Path("/tmp/idpatch.log")
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

        self.level = getattr(logging, level.upper(), logging.INFO)
        self.console = console
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging system"""
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)

        # Clear existing handlers
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

        if self.console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.level)
            console_handler.setFormatter(ColorLevelFormatter())
            root_logger.addHandler(console_handler)

        # File handler keeps everything, appended across runs
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_file,
            mode='a',
            maxBytes=10*1024*1024,  # 10MB
            backupCount=3
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '[%(levelname)s] %(asctime)s %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    def start_run(self, title: str = "IDPatch"):
        """Write the run start banner"""
        logging.getLogger("idpatch").debug(
            f"========== {title} log start {datetime.now():%Y-%m-%d %H:%M:%S} =========="
        )

    def end_run(self, title: str = "IDPatch"):
        """Write the run end banner"""
        logging.getLogger("idpatch").debug(
            f"========== {title} log end {datetime.now():%Y-%m-%d %H:%M:%S} =========="
        )


def setup_logging(log_file: Optional[Path] = None, level: str = "INFO",
                  console: bool = True) -> IDPatchLogger:
    """Setup IDPatch logging system"""
    return IDPatchLogger(log_file, level, console)


def log_command_output(logger: logging.Logger, command: Sequence[str],
                       output: str, description: str = ""):
    """Record an external command and its raw output at debug level"""
    logger.debug(f"[CMD] Executing command: {' '.join(str(c) for c in command)}")
    if description:
        logger.debug(f"[CMD] {description}:")
    for line in output.splitlines():
        logger.debug(f"[CMD] {line}")
