"""
Backup and verification providers.

Each concern has a script-based production implementation (one round trip
into the target) and an inline fallback (one executor call per item).
Both consume the same canonical artifact and check lists, so they cover
exactly the same ground. The provider is chosen once, at startup.
"""

import logging
import re
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List

from ..core.artifacts import firewalld_tools
from ..core.checks import Check
from ..core.errors import BackupError, CommandTimeoutError, ExecutorError, PreconditionError
from ..core.models import (
    Artifact, ArtifactCapture, ArtifactKind, CaptureStatus, CheckResult, FirewalldState, ProviderMode, RunConfiguration,
)
from ..platforms.base import BaseExecutor
from ..templates.renderer import TemplateRenderer
from ..utils.checksum import bytes_checksum, file_checksum


logger = logging.getLogger(__name__)

BACKUP_SCRIPT = "scripts/backup-wsl.sh"
VERIFY_SCRIPT = "scripts/verify-configuration.sh"

_RESULT_RE = re.compile(r"^\[(PASS|FAIL)\]\s+(\S+)\s*$")


def _bundle_file(target_dir: Path, live_path: str) -> Path:
    return target_dir / live_path.lstrip("/")


def _zone_capture(artifact: Artifact, detail: str) -> ArtifactCapture:
    """Parse ``zone|active|enabled|sources`` as reported by the capture script."""
    zone, active, enabled, sources = (detail.split("|") + ["", "", ""])[:4]
    state = FirewalldState(default_zone=zone, active=active == "yes", enabled=enabled == "yes",
                           trusted_sources=sources.split())
    return ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT, path=artifact.path,
                           value=zone, firewalld=state)


class BackupProvider(ABC):
    """Captures target artifacts into the target subtree of a bundle."""

    name = "abstract"

    @abstractmethod
    def capture(self, artifacts: List[Artifact], target_dir: Path) -> Dict[str, ArtifactCapture]:
        """
        Capture every artifact.

        Args:
            artifacts: Canonical target artifacts
            target_dir: Bundle subtree mirroring target paths

        Returns:
            Dict[str, ArtifactCapture]: One capture per artifact, never omitted
        """
        pass


class InlineBackupProvider(BackupProvider):
    """Probes and reads each artifact through the executor."""

    name = "inline"

    def __init__(self, executor: BaseExecutor):
        self.executor = executor

    def capture(self, artifacts: List[Artifact], target_dir: Path) -> Dict[str, ArtifactCapture]:
        captures = {}
        for artifact in artifacts:
            try:
                captures[artifact.name] = self._capture_one(artifact, target_dir)
            except CommandTimeoutError:
                raise
            except (ExecutorError, OSError) as e:
                logger.warning("Could not capture %s (%s): %s", artifact.name, artifact.path, e)
                captures[artifact.name] = ArtifactCapture(
                    name=artifact.name, status=CaptureStatus.UNKNOWN, path=artifact.path, error=str(e)
                )
        return captures

    def _capture_one(self, artifact: Artifact, target_dir: Path) -> ArtifactCapture:
        if artifact.kind == ArtifactKind.FIREWALL_ZONE:
            return self._capture_zone(artifact)

        if artifact.kind == ArtifactKind.DIRECTORY:
            paths = self.executor.list_files(artifact.path, artifact.pattern or "*")
            if paths is None:
                return ArtifactCapture(name=artifact.name, status=CaptureStatus.ABSENT, path=artifact.path)
        else:
            paths = [artifact.path]

        files = {}
        for live_path in paths:
            content = self.executor.read_file(live_path)
            if content is None:
                if artifact.kind == ArtifactKind.FILE:
                    return ArtifactCapture(name=artifact.name, status=CaptureStatus.ABSENT, path=artifact.path)
                continue
            destination = _bundle_file(target_dir, live_path)
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(content)
            files[live_path] = bytes_checksum(content)

        return ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT, path=artifact.path, files=files)

    def _capture_zone(self, artifact: Artifact) -> ArtifactCapture:
        if not self.executor.run("command -v firewall-cmd").success:
            return ArtifactCapture(name=artifact.name, status=CaptureStatus.ABSENT, path=artifact.path)

        active = self.executor.run("systemctl is-active --quiet firewalld").success
        enabled = self.executor.run("systemctl is-enabled --quiet firewalld").success
        zone_cmd, permanent_cmd = firewalld_tools(active)
        zone = self.executor.check(f"{zone_cmd} --get-default-zone").stdout.strip()
        sources = self.executor.check(f"{permanent_cmd} --zone=trusted --list-sources").stdout.split()

        state = FirewalldState(default_zone=zone, active=active, enabled=enabled, trusted_sources=sources)
        return ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT, path=artifact.path,
                               value=zone, firewalld=state)


class ScriptBackupProvider(BackupProvider):
    """Runs the rendered capture script once, writing straight into the bundle."""

    name = "script"

    def __init__(self, executor: BaseExecutor, renderer: TemplateRenderer):
        self.executor = executor
        self.renderer = renderer

    def capture(self, artifacts: List[Artifact], target_dir: Path) -> Dict[str, ArtifactCapture]:
        target_dir.mkdir(parents=True, exist_ok=True)
        try:
            target_view = self.executor.to_target_path(str(target_dir.resolve()))
        except ExecutorError as e:
            raise BackupError(f"Bundle directory {target_dir} is not reachable from {self.executor.target}: {e}")

        script = self.renderer.render(BACKUP_SCRIPT, {"BACKUP_DIR": target_view})
        specs = [
            "|".join([artifact.kind.value, artifact.name, artifact.path, artifact.pattern or ""])
            for artifact in artifacts
        ]
        result = self.executor.run("bash -s -- " + " ".join(shlex.quote(s) for s in specs), input=script)
        if not result.success:
            raise BackupError(f"Capture script failed with exit code {result.exit_code}: {result.stderr.strip()}")

        return self._parse(result.stdout, artifacts, target_dir)

    def _parse(self, output: str, artifacts: List[Artifact], target_dir: Path) -> Dict[str, ArtifactCapture]:
        by_name = {a.name: a for a in artifacts}
        captures: Dict[str, ArtifactCapture] = {}

        for line in output.splitlines():
            parts = line.strip().split("|", 2)
            if len(parts) != 3 or parts[1] not in by_name:
                continue
            status, name, detail = parts
            artifact = by_name[name]

            if status == "ABSENT":
                captures[name] = ArtifactCapture(name=name, status=CaptureStatus.ABSENT, path=artifact.path)
            elif status == "DIRECTORY":
                captures.setdefault(name, ArtifactCapture(name=name, status=CaptureStatus.PRESENT, path=artifact.path))
            elif status == "ZONE":
                captures[name] = _zone_capture(artifact, detail)
            elif status == "PRESENT":
                capture = captures.setdefault(
                    name, ArtifactCapture(name=name, status=CaptureStatus.PRESENT, path=artifact.path)
                )
                if capture.status == CaptureStatus.PRESENT:
                    capture.files[detail] = file_checksum(_bundle_file(target_dir, detail))
            else:
                logger.warning("Could not capture %s (%s)", name, detail)
                captures[name] = ArtifactCapture(name=name, status=CaptureStatus.UNKNOWN, path=artifact.path,
                                                 error=f"capture script reported an error for {detail}")

        for artifact in artifacts:
            if artifact.name not in captures:
                logger.warning("Capture script reported nothing for %s", artifact.name)
                captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.UNKNOWN,
                                                          path=artifact.path, error="no capture reported")
        return captures


class VerifyProvider(ABC):
    """Evaluates the check battery against live state."""

    name = "abstract"

    @abstractmethod
    def run_checks(self, checks: List[Check]) -> Iterator[CheckResult]:
        """Yield one result per check, in the given order."""
        pass


class InlineVerifyProvider(VerifyProvider):
    """Runs each predicate as its own executor call."""

    name = "inline"

    def __init__(self, executor: BaseExecutor):
        self.executor = executor

    def run_checks(self, checks: List[Check]) -> Iterator[CheckResult]:
        for check in checks:
            try:
                result = self.executor.run(check.predicate)
            except ExecutorError as e:
                yield CheckResult(name=check.name, title=check.title, passed=False, detail=str(e))
                continue
            detail = None
            if not result.success:
                detail = f"exit code {result.exit_code}"
                if result.stderr.strip():
                    detail += f": {result.stderr.strip().splitlines()[-1]}"
            yield CheckResult(name=check.name, title=check.title, passed=result.success, detail=detail)


class ScriptVerifyProvider(VerifyProvider):
    """Runs the rendered verification script once and parses its report."""

    name = "script"

    def __init__(self, executor: BaseExecutor, renderer: TemplateRenderer):
        self.executor = executor
        self.renderer = renderer

    def run_checks(self, checks: List[Check]) -> Iterator[CheckResult]:
        lines = [f"check {check.name} {shlex.quote(check.predicate)}" for check in checks]
        script = self.renderer.render(VERIFY_SCRIPT, {"CHECKS": "\n".join(lines)})

        try:
            result = self.executor.run("bash -s", input=script)
        except ExecutorError as e:
            for check in checks:
                yield CheckResult(name=check.name, title=check.title, passed=False, detail=str(e))
            return

        outcomes = {}
        for line in result.stdout.splitlines():
            match = _RESULT_RE.match(line.strip())
            if match:
                outcomes[match.group(2)] = match.group(1) == "PASS"

        for check in checks:
            if check.name not in outcomes:
                yield CheckResult(name=check.name, title=check.title, passed=False, detail="no result reported")
            else:
                yield CheckResult(name=check.name, title=check.title, passed=outcomes[check.name])


def select_backup_provider(config: RunConfiguration, executor: BaseExecutor,
                           renderer: TemplateRenderer) -> BackupProvider:
    """Pick the backup provider for this run."""
    available = renderer.exists(BACKUP_SCRIPT)
    if config.backup_provider == ProviderMode.SCRIPT and not available:
        raise PreconditionError([f"Backup script template not found: {BACKUP_SCRIPT}"])
    if config.backup_provider == ProviderMode.INLINE or not available:
        return InlineBackupProvider(executor)
    return ScriptBackupProvider(executor, renderer)


def select_verify_provider(config: RunConfiguration, executor: BaseExecutor,
                           renderer: TemplateRenderer) -> VerifyProvider:
    """Pick the verification provider for this run."""
    available = renderer.exists(VERIFY_SCRIPT)
    if config.verify_provider == ProviderMode.SCRIPT and not available:
        raise PreconditionError([f"Verification script template not found: {VERIFY_SCRIPT}"])
    if config.verify_provider == ProviderMode.INLINE or not available:
        return InlineVerifyProvider(executor)
    return ScriptVerifyProvider(executor, renderer)
