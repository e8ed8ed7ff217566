"""
Rollback Engine.

Restores the state recorded in a backup bundle. Every restore step is
attempted independently; a failure is counted and reported but never stops
the remaining steps.
"""

import logging
import shlex
from pathlib import Path
from typing import Callable, Dict, Optional

from ..core.artifacts import (
    CREATED_USER_MARKER, DISABLED_REPO_DIR, GENERATED_TARGET_PATHS, HOST_ARTIFACTS, TARGET_ARTIFACTS, TOOL_PREFIX,
    TRUSTED_SOURCES, firewalld_tools,
)
from ..core.errors import BundleError, PodmanSecurityError
from ..core.models import (
    Artifact, ArtifactCapture, ArtifactKind, BackupBundle, CaptureStatus, RollbackResult, RollbackScope,
    RunConfiguration, StepOutcome, StepStatus,
)
from ..platforms.base import BaseExecutor
from ..platforms.windows import WindowsHost
from ..utils.checksum import bytes_checksum
from .backup import load_bundle


logger = logging.getLogger(__name__)

UPDATE_TIMER = "podman-security-update.timer"


class RollbackEngine:
    """Restores a target environment and host from a backup bundle."""

    def __init__(self, executor_for: Callable[[str], BaseExecutor], host: WindowsHost):
        """
        Initialize engine.

        Args:
            executor_for: Returns an executor for a distribution name
            host: Host handler for host artifacts, firewall rules and runtime reset
        """
        self.executor_for = executor_for
        self.host = host

    def rollback(self, bundle_path: Path, scope: RollbackScope, config: RunConfiguration) -> RollbackResult:
        """
        Restore the state captured in a bundle.

        Args:
            bundle_path: Bundle directory
            scope: Which side to restore
            config: Run configuration supplying fallbacks when metadata is missing

        Returns:
            RollbackResult: Per-step outcomes; ``exit_code`` counts failures

        Raises:
            BundleError: If the bundle directory is missing or its metadata is corrupt
        """
        bundle = load_bundle(bundle_path)

        if bundle.metadata is None:
            logger.warning(
                "!!! Bundle %s has no metadata; restoring only files found in it and assuming distribution %s",
                bundle.path, config.distro,
            )
            distro = config.distro
            captures = self._infer_captures(bundle, config)
            includes_host = bundle.host_dir.is_dir()
        else:
            distro = bundle.metadata.distro
            captures = bundle.metadata.artifacts
            includes_host = bundle.metadata.includes_host_artifacts

        result = RollbackResult(bundle_path=bundle.path, scope=scope, distro=distro,
                                metadata_missing=bundle.metadata is None)
        restore_target = scope in (RollbackScope.ALL, RollbackScope.TARGET)
        restore_host = scope in (RollbackScope.ALL, RollbackScope.HOST) and includes_host

        if scope == RollbackScope.HOST and not includes_host:
            logger.warning("Bundle %s holds no host artifacts; nothing to restore on the host", bundle.path)

        if restore_target:
            executor = self.executor_for(distro)
            self._attempt(result, "remove_generated", "Remove generated files",
                          lambda: self._remove_generated(executor))
            for artifact in TARGET_ARTIFACTS:
                self._restore_target_artifact(result, executor, bundle, artifact, captures.get(artifact.name), config)

        if restore_host:
            for artifact in HOST_ARTIFACTS:
                self._restore_host_artifact(result, bundle, artifact, captures.get(artifact.name))
            self._attempt(result, "host_firewall", "Remove host firewall rules",
                          lambda: f"Removed {self.host.remove_firewall_rules(TOOL_PREFIX)} rule(s)")

        if restore_target or restore_host:
            self._attempt(result, "runtime_reset", "Reset WSL runtime",
                          lambda: self._reset_runtime(distro, restore_host))

        logger.info("Rollback finished: %d step(s), %d failed", len(result.steps), len(result.failed_steps))
        return result

    def _attempt(self, result: RollbackResult, step_id: str, title: str,
                 action: Callable[[], Optional[str]]) -> bool:
        try:
            message = action()
        except (PodmanSecurityError, OSError) as e:
            logger.error("%s failed: %s", title, e)
            result.steps.append(StepOutcome(step_id=step_id, title=title, status=StepStatus.FAILED,
                                            message=str(e), exit_code=getattr(e, "exit_code", None)))
            return False
        logger.info("%s: %s", title, message or "done")
        result.steps.append(StepOutcome(step_id=step_id, title=title, status=StepStatus.SUCCESS, message=message))
        return True

    def _skip(self, result: RollbackResult, step_id: str, title: str, reason: str) -> None:
        logger.warning("Skipping %s: %s", title, reason)
        result.steps.append(StepOutcome(step_id=step_id, title=title, status=StepStatus.SKIPPED, message=reason))

    def _remove_generated(self, executor: BaseExecutor) -> str:
        created_user = (executor.read_file(CREATED_USER_MARKER) or b"").decode("utf-8").strip()
        if created_user:
            executor.check(f"userdel -r {shlex.quote(created_user)}")
            logger.info("Removed account %s created during setup", created_user)

        executor.run(f"systemctl disable --now {UPDATE_TIMER}")
        for path in GENERATED_TARGET_PATHS + [DISABLED_REPO_DIR]:
            executor.remove_path(path)
        executor.run("systemctl daemon-reload")
        return f"Removed {len(GENERATED_TARGET_PATHS) + 1} generated path(s)"

    def _restore_target_artifact(self, result: RollbackResult, executor: BaseExecutor, bundle: BackupBundle,
                                 artifact: Artifact, capture: Optional[ArtifactCapture],
                                 config: RunConfiguration) -> None:
        step_id = f"restore_{artifact.name}"
        title = f"Restore {artifact.path}"

        if capture is None or capture.status == CaptureStatus.UNKNOWN:
            reason = capture.error if capture and capture.error else "not captured in this bundle"
            self._skip(result, step_id, title, reason)
            return

        if artifact.kind == ArtifactKind.FIREWALL_ZONE:
            self._attempt(result, step_id, "Restore firewalld state",
                          lambda: self._restore_zone(executor, capture, config))
        elif capture.status == CaptureStatus.ABSENT:
            self._attempt(result, step_id, f"Remove {artifact.path}",
                          lambda: self._delete(executor, artifact))
        elif self._attempt(result, step_id, title,
                           lambda: self._restore_files(executor, bundle, artifact, capture)):
            if artifact.restart_command:
                self._restart(result, executor, artifact)

    def _restore_files(self, executor: BaseExecutor, bundle: BackupBundle, artifact: Artifact,
                       capture: ArtifactCapture) -> str:
        contents = {}
        for live_path, checksum in capture.files.items():
            content = _read_bundle_file(bundle.target_dir / live_path.lstrip("/"))
            if checksum and bytes_checksum(content) != checksum:
                raise BundleError(f"Checksum mismatch for {live_path} in {bundle.path}")
            contents[live_path] = content

        if artifact.kind == ArtifactKind.DIRECTORY:
            current = executor.list_files(artifact.path, artifact.pattern or "*") or []
            for stale in current:
                if stale not in contents:
                    executor.remove_path(stale)

        for live_path, content in contents.items():
            if artifact.immutable:
                executor.set_immutable(live_path, False)
            executor.write_file(live_path, content, artifact.mode)
        return f"Restored {len(contents)} file(s)"

    def _restart(self, result: RollbackResult, executor: BaseExecutor, artifact: Artifact) -> None:
        """Reload the service that reads a restored file; failure is only a warning."""
        step_id = f"restart_{artifact.name}"
        title = f"Restart service for {artifact.path}"
        try:
            outcome = executor.run(artifact.restart_command)
            exit_code, detail = outcome.exit_code, outcome.stderr.strip()
        except PodmanSecurityError as e:
            exit_code, detail = getattr(e, "exit_code", None), str(e)

        if exit_code == 0:
            result.steps.append(StepOutcome(step_id=step_id, title=title, status=StepStatus.SUCCESS,
                                            message=artifact.restart_command, exit_code=0))
            return
        logger.warning("%s did not succeed (exit %s): %s", artifact.restart_command, exit_code, detail)
        result.steps.append(StepOutcome(step_id=step_id, title=title, status=StepStatus.WARNING,
                                        message=detail or artifact.restart_command, exit_code=exit_code))

    def _delete(self, executor: BaseExecutor, artifact: Artifact) -> str:
        if artifact.immutable:
            executor.set_immutable(artifact.path, False)
        executor.remove_path(artifact.path)
        return "Removed (absent before setup)"

    def _restore_zone(self, executor: BaseExecutor, capture: ArtifactCapture, config: RunConfiguration) -> str:
        if capture.status == CaptureStatus.ABSENT:
            executor.run("systemctl disable --now firewalld")
            return "firewalld was not installed before setup; service disabled"

        state = capture.firewalld
        active = executor.run("systemctl is-active --quiet firewalld").success
        zone_cmd, permanent_cmd = firewalld_tools(active)

        current = executor.check(f"{permanent_cmd} --zone=trusted --list-sources").stdout.split()
        if state is not None:
            added = [s for s in current if s not in state.trusted_sources]
        else:
            # Older bundles carry only the zone name
            ours = TRUSTED_SOURCES + ([f"{config.dns_server}/32"] if config.dns_server else [])
            added = [s for s in current if s in ours]
        for source in added:
            executor.check(f"{permanent_cmd} --zone=trusted --remove-source={shlex.quote(source)}")

        zone = state.default_zone if state is not None else (capture.value or "public")
        executor.check(f"{zone_cmd} --set-default-zone={shlex.quote(zone)}")
        if active:
            executor.run("firewall-cmd --reload")

        if state is not None and not state.enabled:
            executor.run("systemctl disable firewalld")
        if state is not None and not state.active:
            executor.run("systemctl stop firewalld")
        return f"Default zone restored to {zone}; removed {len(added)} trusted source(s)"

    def _restore_host_artifact(self, result: RollbackResult, bundle: BackupBundle, artifact: Artifact,
                               capture: Optional[ArtifactCapture]) -> None:
        step_id = f"restore_{artifact.name}"
        title = f"Restore host {artifact.path}"

        if capture is None or capture.status == CaptureStatus.UNKNOWN:
            self._skip(result, step_id, title, "not captured in this bundle")
            return

        live_path = Path(capture.path)
        if capture.status == CaptureStatus.ABSENT:
            self._attempt(result, step_id, f"Remove host {artifact.path}",
                          lambda: self._remove_host_file(live_path))
            return

        def restore():
            content = _read_bundle_file(bundle.host_dir / artifact.bundle_relpath)
            checksum = capture.files.get(str(live_path))
            if checksum and bytes_checksum(content) != checksum:
                raise BundleError(f"Checksum mismatch for {artifact.path} in {bundle.path}")
            self.host.write_file(live_path, content)
            return f"Restored {live_path}"

        self._attempt(result, step_id, title, restore)

    def _remove_host_file(self, path: Path) -> str:
        self.host.remove_file(path)
        return f"Removed {path} (absent before setup)"

    def _reset_runtime(self, distro: str, full: bool) -> str:
        if full:
            outcome, label = self.host.shutdown_wsl(), "wsl --shutdown"
        else:
            outcome, label = self.host.terminate_distribution(distro), f"wsl --terminate {distro}"
        if not outcome.success:
            raise PodmanSecurityError(f"{label} exited with {outcome.exit_code}: {outcome.stderr.strip()}")
        return label

    def _infer_captures(self, bundle: BackupBundle, config: RunConfiguration) -> Dict[str, ArtifactCapture]:
        """Rebuild captures from the files present in a bundle without metadata."""
        captures = {}
        for artifact in TARGET_ARTIFACTS:
            location = bundle.target_dir / artifact.bundle_relpath
            if artifact.kind == ArtifactKind.FILE and location.is_file():
                captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT,
                                                          path=artifact.path, files={artifact.path: ""})
            elif artifact.kind == ArtifactKind.DIRECTORY and location.is_dir():
                files = {
                    f"{artifact.path}/{entry.name}": ""
                    for entry in sorted(location.glob(artifact.pattern or "*")) if entry.is_file()
                }
                captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT,
                                                          path=artifact.path, files=files)

        for artifact in HOST_ARTIFACTS:
            if (bundle.host_dir / artifact.bundle_relpath).is_file():
                captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT,
                                                          path=str(config.wslconfig_path))
        return captures


def _read_bundle_file(path: Path) -> bytes:
    if not path.is_file():
        raise BundleError(f"Bundle file missing: {path}")
    return path.read_bytes()
