"""
Verification Engine.

Evaluates the fixed check battery against live state. Checks are
independent and read-only; the number of failures is the run's result.
"""

import logging
from typing import Iterator, List, Optional

from ..core.artifacts import TOOL_PREFIX, host_firewall_rules
from ..core.checks import build_checks
from ..core.errors import ExecutorError
from ..core.models import CheckResult, RunConfiguration, VerificationReport
from ..platforms.windows import WindowsHost
from ..utils.host_info import is_windows
from .providers import VerifyProvider


logger = logging.getLogger(__name__)


class VerificationEngine:
    """Runs target checks through a provider, plus host checks on Windows."""

    def __init__(self, provider: VerifyProvider, host: Optional[WindowsHost] = None,
                 host_checks: Optional[bool] = None):
        """
        Initialize engine.

        Args:
            provider: Strategy evaluating the target checks
            host: Host handler for host-side checks
            host_checks: Run host checks (defaults to running on Windows)
        """
        self.provider = provider
        self.host = host
        if host_checks is None:
            host_checks = is_windows()
        self.host_checks = host_checks and host is not None

    def iter_checks(self, config: RunConfiguration) -> Iterator[CheckResult]:
        """Yield check results as they are produced."""
        yield from self.provider.run_checks(build_checks(config))
        if self.host_checks:
            yield self._check_host_firewall()
            yield self._check_mirrored_networking(config)

    def verify(self, config: RunConfiguration) -> VerificationReport:
        report = VerificationReport(distro=config.distro)
        for result in self.iter_checks(config):
            if result.passed:
                logger.debug("[PASS] %s", result.name)
            else:
                logger.warning("[FAIL] %s%s", result.name, f": {result.detail}" if result.detail else "")
            report.results.append(result)

        logger.info("Verification: %d passed, %d failed", report.passed, report.failed)
        return report

    def _check_host_firewall(self) -> CheckResult:
        title = "Host firewall rules for the WSL VM present"
        expected = [rule.name for rule in host_firewall_rules()]
        try:
            present = {str(rule.get("Name")) for rule in self.host.list_firewall_rules(TOOL_PREFIX)}
        except (ExecutorError, ValueError) as e:
            return CheckResult(name="host_firewall_rules", title=title, passed=False, detail=str(e))

        missing: List[str] = [name for name in expected if name not in present]
        return CheckResult(name="host_firewall_rules", title=title, passed=not missing,
                           detail=f"missing: {', '.join(missing)}" if missing else None)

    def _check_mirrored_networking(self, config: RunConfiguration) -> CheckResult:
        title = "WSL mirrored networking configured"
        try:
            content = self.host.read_file(config.wslconfig_path)
        except OSError as e:
            return CheckResult(name="wsl_mirrored_networking", title=title, passed=False, detail=str(e))

        if content is None:
            return CheckResult(name="wsl_mirrored_networking", title=title, passed=False,
                               detail=f"{config.wslconfig_path} not found")

        lines = [line.replace(" ", "").lower() for line in content.decode("utf-8", "replace").splitlines()]
        passed = "networkingmode=mirrored" in lines
        return CheckResult(name="wsl_mirrored_networking", title=title, passed=passed,
                           detail=None if passed else "networkingMode is not mirrored")
