"""
Setup/Apply Engine.

Drives the baseline lifecycle: preconditions, backup, host network policy,
the ordered target steps, verification and finally a runtime reset. Every
creation step overwrites or removes-then-creates, so applying twice
converges to the same state.
"""

import logging
from typing import Dict, List

from ..core.artifacts import TOOL_PREFIX, host_firewall_rules
from ..core.checks import build_checks
from ..core.errors import PodmanSecurityError, PreconditionError, StepFailedError
from ..core.models import ApplyResult, ApplyStep, RunConfiguration, StepOutcome, StepStatus
from ..platforms.base import BaseExecutor
from ..platforms.windows import WindowsHost
from ..steps.loader import StepLoader
from ..templates.renderer import TemplateRenderer
from .backup import BackupEngine
from .verify import VerificationEngine


logger = logging.getLogger(__name__)

WSLCONFIG_TEMPLATE = "host/wslconfig"
STEP_SCRIPT_DIR = "/tmp"


class ApplyEngine:
    """Applies the hardened baseline to one target environment."""

    def __init__(self, executor: BaseExecutor, host: WindowsHost, renderer: TemplateRenderer,
                 step_loader: StepLoader, backup_engine: BackupEngine,
                 verification_engine: VerificationEngine):
        self.executor = executor
        self.host = host
        self.renderer = renderer
        self.step_loader = step_loader
        self.backup_engine = backup_engine
        self.verification_engine = verification_engine

    def check_preconditions(self, config: RunConfiguration) -> List[str]:
        """
        Validate everything apply needs before it touches anything.

        Returns:
            List[str]: Failures downgraded to warnings by ``skip_precondition_check``

        Raises:
            PreconditionError: If any precondition fails and none may be skipped
        """
        failures = []

        for endpoint in config.missing_endpoints():
            failures.append(f"Required setting not provided: {endpoint}")

        required = [WSLCONFIG_TEMPLATE]
        for step in self.step_loader.get_steps():
            required.extend(step.templates)
        for name in required:
            if not self.renderer.exists(name):
                failures.append(f"Template not found: {name}")

        if not self.host.is_elevated():
            failures.append("Administrative privileges are required")

        try:
            installed = self.host.list_distributions()
        except PodmanSecurityError as e:
            logger.debug("Cannot list WSL distributions: %s", e)
            installed = None

        if installed is not None and config.distro not in installed:
            failures.append(f"Distribution {config.distro} is not installed")
        elif not self.executor.is_reachable():
            failures.append(f"Target environment {config.distro} is unreachable")

        if failures and not config.skip_precondition_check:
            raise PreconditionError(failures)

        for failure in failures:
            logger.warning("Precondition check skipped: %s", failure)
        return failures

    def apply(self, config: RunConfiguration) -> ApplyResult:
        """
        Apply the baseline.

        Returns:
            ApplyResult: Bundle path, per-step outcomes and verification report

        Raises:
            PreconditionError: If validation fails
            BackupError: If the pre-change backup cannot be created
        """
        result = ApplyResult(distro=config.distro, dry_run=config.dry_run)
        self.check_preconditions(config)
        steps = self.step_loader.get_steps()

        if config.dry_run:
            self._plan(config, steps, result)
            return result

        bundle = self.backup_engine.create_backup(config, include_host=True)
        result.bundle_path = bundle.path

        if not self._apply_host_policy(config, result):
            self._skip_remaining(steps, result)
            return result

        variables = config.template_variables()
        for index, step in enumerate(steps):
            outcome = self._run_step(step, variables)
            result.steps.append(outcome)
            if outcome.failed:
                logger.error("Halting at %s; bundle %s remains valid for rollback", step.id, bundle.path)
                self._skip_remaining(steps[index + 1:], result)
                return result

        result.verification = self.verification_engine.verify(config)
        result.steps.append(self._reset_runtime())
        return result

    def _apply_host_policy(self, config: RunConfiguration, result: ApplyResult) -> bool:
        try:
            content = self.renderer.render(WSLCONFIG_TEMPLATE, config.template_variables())
            self.host.write_file(config.wslconfig_path, content.encode("utf-8"))
        except (PodmanSecurityError, OSError) as e:
            result.steps.append(self._failed("host_wslconfig", "Host WSL configuration", e))
            return False
        result.steps.append(StepOutcome(step_id="host_wslconfig", title="Host WSL configuration",
                                        status=StepStatus.SUCCESS, message=f"Wrote {config.wslconfig_path}"))
        logger.info("Wrote %s", config.wslconfig_path)

        try:
            removed = self.host.remove_firewall_rules(TOOL_PREFIX)
            rules = host_firewall_rules()
            for rule in rules:
                self.host.add_firewall_rule(rule)
                logger.debug("Created host firewall rule %s", rule.name)
        except PodmanSecurityError as e:
            result.steps.append(self._failed("host_firewall", "Host firewall rules", e))
            return False

        message = f"Replaced {removed} existing rule(s) with {len(rules)} rule(s)"
        result.steps.append(StepOutcome(step_id="host_firewall", title="Host firewall rules",
                                        status=StepStatus.SUCCESS, message=message))
        logger.info("Host firewall: %s", message)
        return True

    def _run_step(self, step: ApplyStep, variables: Dict[str, str]) -> StepOutcome:
        logger.info("Applying %s", step.title)
        try:
            for step_file in step.files:
                content = self.renderer.render(step_file.template, variables).encode("utf-8")
                if step_file.immutable:
                    self.executor.set_immutable(step_file.path, False)
                self.executor.write_file(step_file.path, content, step_file.mode)
                if step_file.immutable and not self.executor.set_immutable(step_file.path, True):
                    logger.warning("Could not mark %s immutable", step_file.path)

            if step.script:
                self._run_script(step, variables)
        except (PodmanSecurityError, OSError) as e:
            return self._failed(step.id, step.title, e)

        return StepOutcome(step_id=step.id, title=step.title, status=StepStatus.SUCCESS, exit_code=0)

    def _run_script(self, step: ApplyStep, variables: Dict[str, str]) -> None:
        script = self.renderer.render(step.script, variables)
        script_path = f"{STEP_SCRIPT_DIR}/podman-security-{step.id}.sh"
        self.executor.write_file(script_path, script.encode("utf-8"), 0o700)
        try:
            result = self.executor.run(f"bash {script_path}")
        finally:
            self.executor.run(f"rm -f {script_path}")

        if not result.success:
            detail = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else "script failed"
            raise StepFailedError(step.id, detail, result.exit_code)

    def _reset_runtime(self) -> StepOutcome:
        title = "Restart WSL runtime"
        try:
            result = self.host.shutdown_wsl()
        except PodmanSecurityError as e:
            logger.warning("WSL shutdown failed: %s", e)
            return StepOutcome(step_id="runtime_reset", title=title, status=StepStatus.WARNING, message=str(e))

        if not result.success:
            logger.warning("WSL shutdown exited with %d", result.exit_code)
            return StepOutcome(step_id="runtime_reset", title=title, status=StepStatus.WARNING,
                               message=result.stderr.strip() or None, exit_code=result.exit_code)
        return StepOutcome(step_id="runtime_reset", title=title, status=StepStatus.SUCCESS,
                           message="wsl --shutdown", exit_code=0)

    def _plan(self, config: RunConfiguration, steps: List[ApplyStep], result: ApplyResult) -> None:
        """Describe every mutation without performing any."""
        variables = config.template_variables()

        def planned(step_id, title, message):
            result.steps.append(StepOutcome(step_id=step_id, title=title, status=StepStatus.PLANNED,
                                            message=message))
            logger.info("[DRY RUN] %s", message)

        planned("backup", "Configuration backup", f"Would create a backup bundle under {config.backup_root}")
        planned("host_wslconfig", "Host WSL configuration", f"Would write {config.wslconfig_path}")

        rules = host_firewall_rules()
        planned("host_firewall", "Host firewall rules",
                f"Would remove rules named {TOOL_PREFIX}* and create {', '.join(r.name for r in rules)}")

        for step in steps:
            try:
                for name in step.templates:
                    self.renderer.render(name, variables)
            except PodmanSecurityError as e:
                result.steps.append(self._failed(step.id, step.title, e))
                continue
            actions = [f"write {f.path}" for f in step.files]
            if step.script:
                actions.append(f"run {step.script}")
            planned(step.id, step.title, "Would " + ", ".join(actions))

        planned("verification", "Verification", f"Would run {len(build_checks(config))} checks")
        planned("runtime_reset", "Restart WSL runtime", "Would run wsl --shutdown")

    def _skip_remaining(self, steps: List[ApplyStep], result: ApplyResult) -> None:
        for step in steps:
            result.steps.append(StepOutcome(step_id=step.id, title=step.title, status=StepStatus.SKIPPED,
                                            message="Not run after an earlier failure"))

    def _failed(self, step_id: str, title: str, error: Exception) -> StepOutcome:
        exit_code = getattr(error, "exit_code", None)
        logger.error("%s failed: %s", title, error)
        return StepOutcome(step_id=step_id, title=title, status=StepStatus.FAILED, message=str(error),
                           exit_code=exit_code)
