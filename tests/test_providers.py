"""
Unit tests for the backup and verification providers.
"""

from unittest.mock import Mock

import pytest

from podman_security.core.artifacts import TARGET_ARTIFACTS
from podman_security.core.checks import Check, build_checks
from podman_security.core.errors import BackupError, ExecutorError
from podman_security.core.models import CaptureStatus, ProviderMode
from podman_security.engines.providers import (
    InlineBackupProvider, InlineVerifyProvider, ScriptBackupProvider, ScriptVerifyProvider,
    select_backup_provider, select_verify_provider
)
from podman_security.platforms.base import BaseExecutor, CommandResult
from podman_security.utils.checksum import bytes_checksum

from conftest import ORIGINAL_REPO, ORIGINAL_SSHD


class TestInlineBackupProvider:
    """Test per-artifact capture through the executor."""

    def test_capture_records_every_artifact(self, fake_executor, tmp_path):
        captures = InlineBackupProvider(fake_executor).capture(TARGET_ARTIFACTS, tmp_path)

        assert set(captures) == {a.name for a in TARGET_ARTIFACTS}
        assert captures["sshd_config"].status == CaptureStatus.PRESENT
        assert captures["sshd_config"].files == {"/etc/ssh/sshd_config": bytes_checksum(ORIGINAL_SSHD)}
        assert (tmp_path / "etc/ssh/sshd_config").read_bytes() == ORIGINAL_SSHD
        assert captures["environment"].status == CaptureStatus.ABSENT
        assert captures["firewalld_zone"].value == "public"

    def test_directory_capture(self, fake_executor, tmp_path):
        captures = InlineBackupProvider(fake_executor).capture(TARGET_ARTIFACTS, tmp_path)

        assert list(captures["yum_repos"].files) == ["/etc/yum.repos.d/fedora.repo"]
        assert (tmp_path / "etc/yum.repos.d/fedora.repo").read_bytes() == ORIGINAL_REPO

    def test_running_firewalld_state(self, fake_executor, tmp_path):
        fake_executor.trusted_sources = ["192.0.2.10/32"]

        capture = InlineBackupProvider(fake_executor).capture(TARGET_ARTIFACTS, tmp_path)["firewalld_zone"]

        assert capture.firewalld.active is True
        assert capture.firewalld.trusted_sources == ["192.0.2.10/32"]
        assert "firewall-cmd --permanent --zone=trusted --list-sources" in fake_executor.commands

    def test_stopped_firewalld_is_read_offline(self, fake_executor, tmp_path):
        fake_executor.firewalld_active = False
        fake_executor.firewalld_enabled = False

        capture = InlineBackupProvider(fake_executor).capture(TARGET_ARTIFACTS, tmp_path)["firewalld_zone"]

        assert capture.status == CaptureStatus.PRESENT
        assert capture.value == "public"
        assert capture.firewalld.active is False
        assert capture.firewalld.enabled is False
        assert "firewall-offline-cmd --get-default-zone" in fake_executor.commands

    def test_firewalld_not_installed(self, fake_executor, tmp_path):
        fake_executor.firewalld_installed = False
        captures = InlineBackupProvider(fake_executor).capture(TARGET_ARTIFACTS, tmp_path)
        assert captures["firewalld_zone"].status == CaptureStatus.ABSENT

    def test_failure_is_unknown_and_capture_continues(self, fake_executor, tmp_path):
        original_read = fake_executor.read_file

        def flaky_read(path):
            if path == "/etc/ssh/sshd_config":
                raise ExecutorError("Cannot read /etc/ssh/sshd_config", exit_code=1)
            return original_read(path)

        fake_executor.read_file = flaky_read
        captures = InlineBackupProvider(fake_executor).capture(TARGET_ARTIFACTS, tmp_path)

        assert captures["sshd_config"].status == CaptureStatus.UNKNOWN
        assert captures["resolv_conf"].status == CaptureStatus.PRESENT


class TestScriptBackupProvider:
    """Test the single-invocation capture script."""

    @pytest.fixture
    def executor(self):
        executor = Mock(spec=BaseExecutor)
        executor.target = "FedoraLinux-42"
        executor.to_target_path.return_value = "/mnt/c/backups/20250101_120000/target"
        return executor

    def test_parses_script_output(self, executor, renderer, tmp_path):
        # The script copies files into the bundle itself
        (tmp_path / "etc/ssh").mkdir(parents=True)
        (tmp_path / "etc/ssh/sshd_config").write_bytes(ORIGINAL_SSHD)
        executor.run.return_value = CommandResult(
            "PRESENT|sshd_config|/etc/ssh/sshd_config\n"
            "DIRECTORY|yum_repos|/etc/yum.repos.d\n"
            "ABSENT|environment|/etc/environment\n"
            "ZONE|firewalld_zone|public|no|yes|192.0.2.10/32 10.0.0.0/8\n"
            "ERROR|subuid|/etc/subuid\n",
            "", 0,
        )

        captures = ScriptBackupProvider(executor, renderer).capture(TARGET_ARTIFACTS, tmp_path)

        assert captures["sshd_config"].files == {"/etc/ssh/sshd_config": bytes_checksum(ORIGINAL_SSHD)}
        assert captures["yum_repos"].status == CaptureStatus.PRESENT
        assert captures["yum_repos"].files == {}
        assert captures["environment"].status == CaptureStatus.ABSENT
        assert captures["firewalld_zone"].value == "public"
        assert captures["firewalld_zone"].firewalld.active is False
        assert captures["firewalld_zone"].firewalld.enabled is True
        assert captures["firewalld_zone"].firewalld.trusted_sources == ["192.0.2.10/32", "10.0.0.0/8"]
        assert captures["subuid"].status == CaptureStatus.UNKNOWN
        assert captures["dnf_conf"].status == CaptureStatus.UNKNOWN
        assert set(captures) == {a.name for a in TARGET_ARTIFACTS}

    def test_script_is_rendered_and_sent_on_stdin(self, executor, renderer, tmp_path):
        executor.run.return_value = CommandResult("", "", 0)

        ScriptBackupProvider(executor, renderer).capture(TARGET_ARTIFACTS, tmp_path)

        command = executor.run.call_args.args[0]
        script = executor.run.call_args.kwargs["input"]
        assert command.startswith("bash -s -- ")
        assert "'file|sshd_config|/etc/ssh/sshd_config|'" in command
        assert 'BACKUP_DIR="/mnt/c/backups/20250101_120000/target"' in script
        assert "{{" not in script

    def test_script_failure_is_fatal(self, executor, renderer, tmp_path):
        executor.run.return_value = CommandResult("", "mkdir: Permission denied", 2)

        with pytest.raises(BackupError, match="exit code 2"):
            ScriptBackupProvider(executor, renderer).capture(TARGET_ARTIFACTS, tmp_path)

    def test_unreachable_bundle_directory(self, executor, renderer, tmp_path):
        executor.to_target_path.side_effect = ExecutorError("wslpath failed")

        with pytest.raises(BackupError, match="not reachable"):
            ScriptBackupProvider(executor, renderer).capture(TARGET_ARTIFACTS, tmp_path)


class TestVerifyProviders:
    """Test that both verification variants report the same checks."""

    CHECKS = [
        Check("first", "First check", "true"),
        Check("second", "Second check", "false"),
        Check("third", "Third check", "grep -q x /etc/file"),
    ]

    def test_inline_provider(self):
        executor = Mock(spec=BaseExecutor)
        executor.run.side_effect = [
            CommandResult("", "", 0),
            CommandResult("", "", 1),
            ExecutorError("timed out"),
        ]

        results = list(InlineVerifyProvider(executor).run_checks(self.CHECKS))

        assert [r.passed for r in results] == [True, False, False]
        assert results[1].detail == "exit code 1"
        assert results[2].detail == "timed out"

    def test_script_provider(self, renderer):
        executor = Mock(spec=BaseExecutor)
        executor.run.return_value = CommandResult(
            "[PASS] first\n[FAIL] second\nResults: 1 passed, 1 failed\n", "", 1
        )

        results = list(ScriptVerifyProvider(executor, renderer).run_checks(self.CHECKS))

        assert [r.name for r in results] == ["first", "second", "third"]
        assert [r.passed for r in results] == [True, False, False]
        assert results[2].detail == "no result reported"

        script = executor.run.call_args.kwargs["input"]
        assert "check third 'grep -q x /etc/file'" in script

    def test_script_provider_covers_full_battery(self, renderer, run_config):
        checks = build_checks(run_config)
        executor = Mock(spec=BaseExecutor)
        executor.run.return_value = CommandResult("".join(f"[PASS] {c.name}\n" for c in checks), "", 0)

        results = list(ScriptVerifyProvider(executor, renderer).run_checks(checks))

        assert len(results) == len(checks)
        assert all(r.passed for r in results)


class TestProviderSelection:
    """Test one-time provider selection."""

    def test_auto_prefers_script(self, run_config, renderer, fake_executor):
        config = run_config.model_copy(update={"backup_provider": ProviderMode.AUTO,
                                               "verify_provider": ProviderMode.AUTO})

        assert isinstance(select_backup_provider(config, fake_executor, renderer), ScriptBackupProvider)
        assert isinstance(select_verify_provider(config, fake_executor, renderer), ScriptVerifyProvider)

    def test_inline_forced(self, run_config, renderer, fake_executor):
        assert isinstance(select_backup_provider(run_config, fake_executor, renderer), InlineBackupProvider)
        assert isinstance(select_verify_provider(run_config, fake_executor, renderer), InlineVerifyProvider)

    def test_auto_falls_back_without_script(self, run_config, fake_executor, tmp_path):
        from podman_security.templates.renderer import TemplateRenderer

        config = run_config.model_copy(update={"backup_provider": ProviderMode.AUTO})
        bare = TemplateRenderer(tmp_path)

        assert isinstance(select_backup_provider(config, fake_executor, bare), InlineBackupProvider)
