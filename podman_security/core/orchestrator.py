"""
Core orchestrator for the Podman Security Baseline tool.

The PodmanSecurityTool class wires the executor, host handler, renderer
and providers once at startup and exposes the apply, verify, backup and
rollback operations.
"""

from pathlib import Path
from typing import List, Optional, Union

from ..core.models import (
    ApplyResult, BackupBundle, RollbackResult, RollbackScope, RunConfiguration, VerificationReport
)
from ..engines.apply import ApplyEngine
from ..engines.backup import BackupEngine, latest_bundle, list_bundles
from ..engines.providers import select_backup_provider, select_verify_provider
from ..engines.rollback import RollbackEngine
from ..engines.verify import VerificationEngine
from ..platforms.base import BaseExecutor
from ..platforms.factory import PlatformFactory
from ..platforms.windows import WindowsHost
from ..reporting.generator import ReportGenerator
from ..steps.loader import StepLoader
from ..templates.renderer import TemplateRenderer
from .errors import BundleError


class PodmanSecurityTool:
    """
    Main orchestrator class for baseline operations.

    Every collaborator can be injected; anything omitted is built from the
    run configuration.
    """

    def __init__(self, config: RunConfiguration,
                 executor: Optional[BaseExecutor] = None,
                 host: Optional[WindowsHost] = None,
                 renderer: Optional[TemplateRenderer] = None,
                 step_loader: Optional[StepLoader] = None,
                 host_checks: Optional[bool] = None):
        """
        Initialize the tool.

        Args:
            config: Immutable run configuration
            executor: Target executor (built by PlatformFactory if None)
            host: Host handler (built by PlatformFactory if None)
            renderer: Template renderer (bundled or configured templates if None)
            step_loader: Step loader (bundled definitions if None)
            host_checks: Include host checks in verification (Windows only if None)
        """
        self.config = config
        self.executor = executor or PlatformFactory.get_executor(config)
        self.host = host or PlatformFactory.get_host(config)
        self.renderer = renderer or TemplateRenderer(config.templates_dir)
        self.step_loader = step_loader or StepLoader()
        self.report_generator = ReportGenerator()

        self.backup_provider = select_backup_provider(config, self.executor, self.renderer)
        self.verify_provider = select_verify_provider(config, self.executor, self.renderer)

        self.backup_engine = BackupEngine(self.executor, self.host, self.backup_provider)
        self.verification_engine = VerificationEngine(self.verify_provider, self.host, host_checks)
        self.apply_engine = ApplyEngine(self.executor, self.host, self.renderer, self.step_loader,
                                        self.backup_engine, self.verification_engine)
        self.rollback_engine = RollbackEngine(self._executor_for, self.host)

    def apply(self) -> ApplyResult:
        return self.apply_engine.apply(self.config)

    def verify(self) -> VerificationReport:
        return self.verification_engine.verify(self.config)

    def backup(self) -> BackupBundle:
        """Standalone backup; host artifacts only when configured."""
        return self.backup_engine.create_backup(self.config)

    def rollback(self, bundle_path: Path, scope: RollbackScope = RollbackScope.ALL) -> RollbackResult:
        return self.rollback_engine.rollback(Path(bundle_path), scope, self.config)

    def get_bundles(self) -> List[BackupBundle]:
        """
        Get list of available backup bundles.

        Returns:
            List[BackupBundle]: Bundles under the backup root, newest first
        """
        return list_bundles(self.config.backup_root)

    def get_latest_bundle(self) -> BackupBundle:
        """
        Get the most recent complete bundle.

        Raises:
            BundleError: If the backup root holds no complete bundle
        """
        bundle = latest_bundle(self.config.backup_root)
        if bundle is None:
            raise BundleError(f"No backup bundles found under {self.config.backup_root}")
        return bundle

    def generate_report(self, report: Union[VerificationReport, ApplyResult], format: str = "json",
                        output_path: Optional[str] = None) -> str:
        """
        Export a verification report or an apply result.

        Args:
            report: Verification results or apply outcome
            format: Report format (json, html)
            output_path: Output file path

        Returns:
            str: Path to generated report
        """
        return self.report_generator.generate_report(report, format=format, output_path=output_path)

    def _executor_for(self, distro: str) -> BaseExecutor:
        if distro == self.executor.target:
            return self.executor
        return PlatformFactory.get_executor(self.config.model_copy(update={"distro": distro}))
