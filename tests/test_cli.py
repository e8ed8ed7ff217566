"""
Tests for the command line interface and report export.
"""

import json

import pytest
from click.testing import CliRunner

from podman_security.cli import cli
from podman_security.core.models import ApplyResult, CheckResult, StepOutcome, StepStatus, VerificationReport
from podman_security.reporting.generator import ReportGenerator

from conftest import ORIGINAL_SSHD


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, make_tool, tmp_path):
    """Invoke the CLI with the fakes wired in through the tool factory."""
    def _invoke(*args, input=None):
        base = [
            "--distro", "FedoraLinux-42",
            "--mirror-url", "http://mirror.internal.company.com/fedora",
            "--registry", "reg.example.com",
            "--dns-server", "10.0.0.53",
            "--proxy-url", "http://proxy.internal.company.com:3128",
            "--backup-root", str(tmp_path / "backups"),
        ]
        factory = lambda config: make_tool(config.model_copy(update={
            "wslconfig_path": tmp_path / "home" / ".wslconfig",
            "backup_provider": "inline",
            "verify_provider": "inline",
        }))
        command, rest = args[0], list(args[1:])
        return runner.invoke(cli, [command] + base + rest, obj={"tool_factory": factory}, input=input)
    return _invoke


class TestCli:
    """Test the click commands."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("apply", "verify", "backup", "rollback"):
            assert command in result.output

    def test_verify_compliant(self, invoke):
        result = invoke("verify")
        assert result.exit_code == 0
        assert "0 failed" in result.output

    def test_verify_exit_code_is_failure_count(self, invoke, fake_executor):
        fake_executor.fail_on["PermitRootLogin"] = 1
        fake_executor.fail_on["lsattr"] = 1

        result = invoke("verify")

        assert result.exit_code == 2

    def test_verify_report_export(self, invoke, tmp_path):
        output = tmp_path / "report.json"

        result = invoke("verify", "--output", str(output), "--format", "json")

        assert result.exit_code == 0
        data = json.loads(output.read_text())
        assert data["distro"] == "FedoraLinux-42"
        assert data["failed"] == 0

    def test_apply_dry_run(self, invoke, fake_executor, tmp_path):
        result = invoke("apply", "--dry-run")

        assert result.exit_code == 0
        assert "Dry run complete" in result.output
        assert not (tmp_path / "backups").exists()
        assert fake_executor.files["/etc/ssh/sshd_config"] == ORIGINAL_SSHD

    def test_apply_requires_confirmation(self, invoke, fake_executor):
        result = invoke("apply", input="n\n")

        assert result.exit_code == 0
        assert "cancelled" in result.output
        assert fake_executor.files["/etc/ssh/sshd_config"] == ORIGINAL_SSHD

    def test_apply_and_rollback_latest(self, invoke, fake_executor):
        applied = invoke("apply", "--force")
        assert applied.exit_code == 0, applied.output
        assert b"PermitRootLogin no" in fake_executor.files["/etc/ssh/sshd_config"]

        rolled_back = invoke("rollback", "--latest", "--force")

        assert rolled_back.exit_code == 0, rolled_back.output
        assert fake_executor.files["/etc/ssh/sshd_config"] == ORIGINAL_SSHD

    def test_apply_report_export(self, invoke, tmp_path):
        output = tmp_path / "apply.json"

        result = invoke("apply", "--force", "--output", str(output))

        assert result.exit_code == 0, result.output
        data = json.loads(output.read_text())
        assert data["report_type"] == "apply"
        assert data["bundle_path"]
        assert [s["step_id"] for s in data["steps"]][:2] == ["host_wslconfig", "host_firewall"]
        assert data["failed"] == 0

    def test_apply_precondition_failure(self, invoke, fake_host):
        fake_host.elevated = False

        result = invoke("apply", "--force")

        assert result.exit_code == 1
        assert "Precondition check failed" in result.output

    def test_invalid_option_value(self, invoke):
        result = invoke("verify", "--dns-server", "not-an-ip")

        assert result.exit_code == 1
        assert "dns_server" in result.output

    def test_backup_and_list_bundles(self, invoke):
        backed_up = invoke("backup")
        assert backed_up.exit_code == 0
        assert "sshd_config" in backed_up.output

        listed = invoke("rollback", "--list-bundles")
        assert listed.exit_code == 0
        assert "Backup Bundles" in listed.output

    def test_rollback_without_bundle(self, invoke):
        result = invoke("rollback", "--force")
        assert result.exit_code == 1
        assert "--bundle or --latest" in result.output

    def test_rollback_latest_without_bundles(self, invoke):
        result = invoke("rollback", "--latest", "--force")
        assert result.exit_code == 1
        assert "No backup bundles" in result.output


class TestReportGenerator:
    """Test report export."""

    @pytest.fixture
    def report(self):
        return VerificationReport(distro="FedoraLinux-42", results=[
            CheckResult(name="ssh_root_login_disabled", title="SSH root login disabled", passed=True),
            CheckResult(name="dns_immutable", title="resolv.conf <immutable>", passed=False, detail="exit code 1"),
        ])

    def test_html_report(self, report, tmp_path):
        path = ReportGenerator().generate_report(report, format="html", output_path=str(tmp_path / "r.html"))

        content = open(path).read()
        assert "SSH root login disabled" in content
        assert "resolv.conf &lt;immutable&gt;" in content
        assert "50%" in content

    def test_apply_result_html(self, report, tmp_path):
        result = ApplyResult(distro="FedoraLinux-42", verification=report, steps=[
            StepOutcome(step_id="ssh_hardening", title="SSH hardening", status=StepStatus.SUCCESS, exit_code=0),
            StepOutcome(step_id="target_firewall", title="Target firewall", status=StepStatus.FAILED,
                        message="firewalld failed", exit_code=1),
        ])

        path = ReportGenerator().generate_report(result, format="html", output_path=str(tmp_path / "a.html"))

        content = open(path).read()
        assert "Target firewall" in content
        assert "firewalld failed" in content
        assert "SSH root login disabled" in content

    def test_unsupported_format(self, report, tmp_path):
        with pytest.raises(ValueError, match="Unsupported"):
            ReportGenerator().generate_report(report, format="pdf", output_path=str(tmp_path / "r.pdf"))
