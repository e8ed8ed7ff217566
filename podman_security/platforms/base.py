"""
Base executor interface for running commands against the target environment.

Defines the command contract every executor implements and the file
primitives the engines build on top of it.
"""

import base64
import logging
import posixpath
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..core.errors import CommandTimeoutError, ExecutorError


logger = logging.getLogger(__name__)

# Exit status the file primitives use for "path does not exist"
MISSING_STATUS = 3


@dataclass
class CommandResult:
    """Captured output of one external command."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def execute_command(args: Sequence[str], timeout: int, input: Optional[str] = None) -> CommandResult:
    """
    Execute a command with a bounded wait.

    Args:
        args: Program and arguments
        timeout: Timeout in seconds
        input: Optional text fed to stdin

    Returns:
        CommandResult: stdout, stderr and exit code

    Raises:
        CommandTimeoutError: If the command does not finish in time
        ExecutorError: If the program cannot be started
    """
    try:
        result = subprocess.run(
            list(args),
            input=input,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise CommandTimeoutError(f"Command timed out after {timeout} seconds: {args[0]}")
    except OSError as e:
        raise ExecutorError(f"Failed to start {args[0]}: {e}")

    return CommandResult(stdout=result.stdout or "", stderr=result.stderr or "", exit_code=result.returncode)


class BaseExecutor(ABC):
    """
    Abstract Host Command Executor for a target Linux environment.

    Subclasses only implement ``run``; file access is expressed as shell
    commands so every executor shares the same semantics.
    """

    def __init__(self, target: str, timeout: int = 120):
        """
        Initialize executor.

        Args:
            target: Identifier of the target environment
            timeout: Timeout in seconds for each command
        """
        self.target = target
        self.timeout = timeout

    @abstractmethod
    def run(self, command: str, as_root: bool = True, input: Optional[str] = None) -> CommandResult:
        """
        Run a shell command inside the target environment.

        Args:
            command: Command line interpreted by bash
            as_root: Run with elevated privilege
            input: Optional text fed to stdin

        Returns:
            CommandResult: Output and exit status
        """
        pass

    def check(self, command: str, as_root: bool = True, input: Optional[str] = None) -> CommandResult:
        """Run a command and raise if it exits nonzero."""
        result = self.run(command, as_root=as_root, input=input)
        if not result.success:
            raise ExecutorError(
                f"Command failed on {self.target}: {command.splitlines()[0]}",
                exit_code=result.exit_code,
                stderr=result.stderr.strip(),
            )
        return result

    def is_reachable(self) -> bool:
        """Whether the target environment answers a trivial command."""
        try:
            return self.run("true").success
        except ExecutorError as e:
            logger.debug("Target %s unreachable: %s", self.target, e)
            return False


    def read_file(self, path: str) -> Optional[bytes]:
        """
        Read a file byte-for-byte.

        Returns:
            Optional[bytes]: File content, or None if the file does not exist

        Raises:
            ExecutorError: If the file exists but cannot be read
        """
        q = shlex.quote(path)
        result = self.run(f"if [ -f {q} ]; then base64 -w0 {q}; else exit {MISSING_STATUS}; fi")
        if result.exit_code == MISSING_STATUS:
            return None
        if not result.success:
            raise ExecutorError(f"Cannot read {path}", exit_code=result.exit_code, stderr=result.stderr.strip())
        return base64.b64decode(result.stdout.strip())

    def write_file(self, path: str, content: bytes, mode: int = 0o644) -> None:
        """Replace a file atomically with the given content."""
        q = shlex.quote(path)
        tmp = shlex.quote(path + ".podman-security.tmp")
        parent = shlex.quote(posixpath.dirname(path) or "/")
        command = (
            f"mkdir -p {parent} && base64 -d > {tmp} && "
            f"chmod {mode:o} {tmp} && mv -f {tmp} {q}"
        )
        self.check(command, input=base64.b64encode(content).decode("ascii"))

    def remove_path(self, path: str) -> None:
        """Delete a file or directory tree; deleting a missing path succeeds."""
        self.check(f"rm -rf -- {shlex.quote(path)}")

    def list_files(self, directory: str, pattern: str) -> Optional[List[str]]:
        """
        List regular files directly inside a directory.

        Returns:
            Optional[List[str]]: Sorted absolute paths, or None if the directory is missing
        """
        q = shlex.quote(directory)
        result = self.run(
            f"if [ -d {q} ]; then find {q} -maxdepth 1 -type f -name {shlex.quote(pattern)}; "
            f"else exit {MISSING_STATUS}; fi"
        )
        if result.exit_code == MISSING_STATUS:
            return None
        if not result.success:
            raise ExecutorError(f"Cannot list {directory}", exit_code=result.exit_code, stderr=result.stderr.strip())
        return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())

    def set_immutable(self, path: str, immutable: bool) -> bool:
        """Toggle the immutable attribute; filesystems without support are tolerated."""
        flag = "+i" if immutable else "-i"
        result = self.run(f"chattr {flag} {shlex.quote(path)}")
        if not result.success:
            logger.debug("chattr %s %s failed: %s", flag, path, result.stderr.strip())
        return result.success

    def to_target_path(self, host_path: str) -> str:
        """Translate a host path into the target's view of it."""
        result = self.check(f"wslpath -u {shlex.quote(host_path)}", as_root=False)
        return result.stdout.strip()
