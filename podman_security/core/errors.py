"""
Exception hierarchy for the Podman security baseline.
"""

from typing import List, Optional


class PodmanSecurityError(Exception):
    """Base class for all errors raised by the tool."""


class PreconditionError(PodmanSecurityError):
    """One or more preconditions failed; nothing has been changed."""

    def __init__(self, failures: List[str]):
        self.failures = list(failures)
        super().__init__("Precondition check failed: " + "; ".join(self.failures))


class BackupError(PodmanSecurityError):
    """The backup bundle could not be created; apply must not proceed."""


class BundleError(PodmanSecurityError):
    """A backup bundle is missing, unreadable or corrupt."""


class ExecutorError(PodmanSecurityError):
    """An external command could not be run against the target or host."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class CommandTimeoutError(ExecutorError):
    """An external command exceeded the configured timeout."""


class TemplateRenderError(PodmanSecurityError):
    """A template is missing or left placeholders unresolved."""


class StepFailedError(PodmanSecurityError):
    """A mandatory step finished with a nonzero exit status."""

    def __init__(self, step_id: str, message: str, exit_code: Optional[int] = None):
        self.step_id = step_id
        self.exit_code = exit_code
        super().__init__(f"{step_id}: {message}" + (f" (exit code {exit_code})" if exit_code is not None else ""))
