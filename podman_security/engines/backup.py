"""
Config Backup Engine.

Snapshots every canonical artifact into a timestamped bundle before any
mutation. Bundles are append-once: ``metadata.json`` is written last, so a
bundle without it was interrupted during capture.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..core.artifacts import HOST_ARTIFACTS, TARGET_ARTIFACTS, TOOL_PREFIX
from ..core.errors import BackupError, BundleError, ExecutorError
from ..core.models import ArtifactCapture, BackupBundle, BundleMetadata, CaptureStatus, RunConfiguration
from ..platforms.base import BaseExecutor
from ..platforms.windows import WindowsHost
from ..utils.checksum import bytes_checksum
from ..utils.host_info import current_user, host_identity
from ..version_info import __version__
from .providers import BackupProvider


logger = logging.getLogger(__name__)

BUNDLE_TIMESTAMP = "%Y%m%d_%H%M%S"
FIREWALL_EXPORT = "firewall-rules.json"


class BackupEngine:
    """Creates backup bundles through an injected provider."""

    def __init__(self, executor: BaseExecutor, host: WindowsHost, provider: BackupProvider):
        self.executor = executor
        self.host = host
        self.provider = provider

    def create_backup(self, config: RunConfiguration, include_host: Optional[bool] = None) -> BackupBundle:
        """
        Capture the current state of every managed artifact.

        Args:
            config: Run configuration
            include_host: Capture host artifacts too (defaults to the configured flag)

        Returns:
            BackupBundle: The completed bundle with its metadata

        Raises:
            BackupError: If the target is unreachable or the backup root is not writable
        """
        if include_host is None:
            include_host = config.include_host_artifacts

        if not self.executor.is_reachable():
            raise BackupError(f"Target environment {config.distro} is unreachable")

        bundle = BackupBundle(path=self._allocate_bundle_dir(Path(config.backup_root)))
        logger.info("Creating backup bundle %s", bundle.path)

        captures: Dict[str, ArtifactCapture] = {}
        if include_host:
            captures.update(self._capture_host(config, bundle))

        try:
            bundle.target_dir.mkdir(parents=True, exist_ok=True)
            captures.update(self.provider.capture(TARGET_ARTIFACTS, bundle.target_dir))
        except OSError as e:
            raise BackupError(f"Cannot write backup bundle {bundle.path}: {e}")

        metadata = BundleMetadata(
            bundle_id=bundle.path.name,
            distro=config.distro,
            created_by=current_user(),
            host=host_identity(),
            created_at=datetime.now(),
            includes_host_artifacts=include_host,
            provider=self.provider.name,
            artifacts=captures,
            tool_version=__version__,
        )
        write_metadata(bundle, metadata)

        counts = {status: 0 for status in CaptureStatus}
        for capture in captures.values():
            counts[capture.status] += 1
        logger.info(
            "Backup complete: %d present, %d absent, %d unknown",
            counts[CaptureStatus.PRESENT], counts[CaptureStatus.ABSENT], counts[CaptureStatus.UNKNOWN],
        )
        return BackupBundle(path=bundle.path, metadata=metadata)

    def _allocate_bundle_dir(self, backup_root: Path) -> Path:
        stamp = datetime.now().strftime(BUNDLE_TIMESTAMP)
        try:
            backup_root.mkdir(parents=True, exist_ok=True)
            candidate = backup_root / stamp
            suffix = 1
            while True:
                try:
                    candidate.mkdir()
                    return candidate
                except FileExistsError:
                    candidate = backup_root / f"{stamp}_{suffix}"
                    suffix += 1
        except OSError as e:
            raise BackupError(f"Backup root {backup_root} is not writable: {e}")

    def _capture_host(self, config: RunConfiguration, bundle: BackupBundle) -> Dict[str, ArtifactCapture]:
        captures = {}
        bundle.host_dir.mkdir(parents=True, exist_ok=True)

        for artifact in HOST_ARTIFACTS:
            live_path = Path(config.wslconfig_path)
            try:
                content = self.host.read_file(live_path)
            except OSError as e:
                logger.warning("Could not capture %s (%s): %s", artifact.name, live_path, e)
                captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.UNKNOWN,
                                                          path=str(live_path), error=str(e))
                continue

            if content is None:
                captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.ABSENT,
                                                          path=str(live_path))
                continue

            (bundle.host_dir / artifact.bundle_relpath).write_bytes(content)
            captures[artifact.name] = ArtifactCapture(name=artifact.name, status=CaptureStatus.PRESENT,
                                                      path=str(live_path),
                                                      files={str(live_path): bytes_checksum(content)})

        # Informational only: pre-existing rules are never restored from this
        try:
            rules = [r for r in self.host.export_firewall_rules() if not str(r.get("Name", "")).startswith(TOOL_PREFIX)]
            (bundle.host_dir / FIREWALL_EXPORT).write_text(json.dumps(rules, indent=2))
        except (ExecutorError, ValueError) as e:
            logger.warning("Could not export host firewall rules: %s", e)

        return captures


def write_metadata(bundle: BackupBundle, metadata: BundleMetadata) -> None:
    """Write the metadata record atomically; this completes the bundle."""
    tmp = bundle.metadata_path.with_name(bundle.metadata_path.name + ".tmp")
    try:
        tmp.write_text(metadata.model_dump_json(indent=2))
        os.replace(tmp, bundle.metadata_path)
    except OSError as e:
        raise BackupError(f"Cannot write bundle metadata {bundle.metadata_path}: {e}")


def load_bundle(bundle_path: Path) -> BackupBundle:
    """
    Open a bundle from disk.

    A bundle without metadata is returned with ``metadata=None``.

    Raises:
        BundleError: If the directory is missing or the metadata is corrupt
    """
    path = Path(bundle_path)
    if not path.is_dir():
        raise BundleError(f"Backup bundle not found: {path}")

    bundle = BackupBundle(path=path)
    if not bundle.metadata_path.exists():
        return bundle

    try:
        metadata = BundleMetadata.model_validate_json(bundle.metadata_path.read_text())
    except (OSError, ValidationError) as e:
        raise BundleError(f"Corrupt bundle metadata in {bundle.metadata_path}: {e}")
    return BackupBundle(path=path, metadata=metadata)


def list_bundles(backup_root: Path) -> List[BackupBundle]:
    """Bundles under the backup root, newest first. Unreadable ones are skipped."""
    root = Path(backup_root)
    if not root.is_dir():
        return []

    bundles = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name, reverse=True):
        if not entry.is_dir():
            continue
        try:
            bundles.append(load_bundle(entry))
        except BundleError as e:
            logger.warning("Skipping %s: %s", entry.name, e)
    return bundles


def latest_bundle(backup_root: Path) -> Optional[BackupBundle]:
    """Most recent complete bundle (one with metadata)."""
    for bundle in list_bundles(backup_root):
        if bundle.metadata is not None:
            return bundle
    return None
