"""
WSL executor: runs commands inside a WSL distribution from the Windows host.
"""

import logging
import shutil
from typing import List, Optional

from .base import BaseExecutor, CommandResult, execute_command


logger = logging.getLogger(__name__)


class WslExecutor(BaseExecutor):
    """
    Executor for a WSL distribution.

    Commands are passed to ``bash -c`` through ``wsl.exe``; elevation is
    obtained with ``-u root`` rather than sudo inside the distribution.
    """

    def __init__(self, target: str, timeout: int = 120, wsl_path: Optional[str] = None):
        super().__init__(target, timeout)
        self.wsl_path = wsl_path or self._find_wsl()

    def run(self, command: str, as_root: bool = True, input: Optional[str] = None) -> CommandResult:
        args = self.build_args(command, as_root)
        logger.debug("[%s] %s", self.target, command.splitlines()[0] if command else "")
        return execute_command(args, timeout=self.timeout, input=input)

    def build_args(self, command: str, as_root: bool = True) -> List[str]:
        args = [self.wsl_path, "-d", self.target]
        if as_root:
            args += ["-u", "root"]
        return args + ["--", "bash", "-c", command]

    def _find_wsl(self) -> str:
        """Find wsl.exe on PATH or in the system directory."""
        found = shutil.which("wsl.exe") or shutil.which("wsl")
        if found:
            return found
        return r"C:\Windows\System32\wsl.exe"
