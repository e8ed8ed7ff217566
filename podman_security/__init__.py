"""
Podman Security Baseline

Applies, verifies, backs up and rolls back a hardened Podman configuration
inside a WSL distribution on a Windows host.
"""

__version__ = "1.0.0"

from .core.orchestrator import PodmanSecurityTool
from .core.models import ApplyResult, RollbackResult, RunConfiguration, VerificationReport

__all__ = ["PodmanSecurityTool", "RunConfiguration", "ApplyResult", "RollbackResult", "VerificationReport"]
