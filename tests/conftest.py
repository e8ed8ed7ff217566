"""
Test fixtures and utilities for the podman-security test suite.

Provides an in-memory target executor, a host handler with an in-memory
firewall, and a run configuration rooted in a temporary directory.
"""

import fnmatch
import posixpath
import re
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from podman_security.core.errors import ExecutorError
from podman_security.core.models import FirewallRule, ProviderMode, RunConfiguration
from podman_security.core.orchestrator import PodmanSecurityTool
from podman_security.platforms.base import BaseExecutor, CommandResult
from podman_security.platforms.windows import WindowsHost
from podman_security.templates.renderer import TemplateRenderer


ORIGINAL_SSHD = b"# stock sshd_config\nPermitRootLogin yes\nPasswordAuthentication yes\n"
ORIGINAL_RESOLV = b"# Generated by WSL\nnameserver 172.28.0.1\n"
ORIGINAL_REPO = b"[fedora]\nname=Fedora\nmetalink=https://mirrors.fedoraproject.org/metalink\n"


class FakeExecutor(BaseExecutor):
    """
    Target executor backed by a dict of path -> bytes.

    Commands are recorded and succeed unless a substring in ``fail_on``
    matches; a few commands the engines depend on are simulated.
    """

    def __init__(self, files: Optional[Dict[str, bytes]] = None, zone: str = "public"):
        super().__init__("FedoraLinux-42", timeout=5)
        self.files: Dict[str, bytes] = dict(files or {})
        self.modes: Dict[str, int] = {}
        self.directories = {"/etc/yum.repos.d"}
        self.immutable = set()
        self.zone = zone
        self.firewalld_installed = True
        self.firewalld_active = True
        self.firewalld_enabled = True
        self.trusted_sources: List[str] = []
        self.reachable = True
        self.commands: List[str] = []
        self.fail_on: Dict[str, int] = {}

    def run(self, command, as_root=True, input=None):
        self.commands.append(command)
        for pattern, exit_code in self.fail_on.items():
            if pattern in command:
                return CommandResult("", f"simulated failure: {pattern}", exit_code)

        if command.startswith("command -v firewall-cmd"):
            return CommandResult("", "", 0 if self.firewalld_installed else 1)
        if command.startswith("firewall-cmd") and not self.firewalld_active:
            return CommandResult("", "FirewallD is not running", 252)
        if command == "systemctl is-active --quiet firewalld":
            return CommandResult("", "", 0 if self.firewalld_active else 3)
        if command == "systemctl is-enabled --quiet firewalld":
            return CommandResult("", "", 0 if self.firewalld_enabled else 1)
        if command.endswith("--get-default-zone"):
            return CommandResult(self.zone + "\n", "", 0)
        if command.endswith("--zone=trusted --list-sources"):
            return CommandResult(" ".join(self.trusted_sources) + "\n", "", 0)

        if "--set-default-zone=" in command:
            self.zone = command.split("=", 1)[1].strip("'")
        elif "--remove-source=" in command:
            source = command.split("=", 2)[2].strip("'")
            if source in self.trusted_sources:
                self.trusted_sources.remove(source)
        elif command == "systemctl stop firewalld":
            self.firewalld_active = False
        elif command == "systemctl disable firewalld":
            self.firewalld_enabled = False
        elif command == "systemctl disable --now firewalld":
            self.firewalld_active = self.firewalld_enabled = False
        elif command.startswith("rm -f "):
            self.files.pop(command[len("rm -f "):], None)
        elif command == "bash /tmp/podman-security-repository_restriction.sh":
            self._disable_repos()
        elif command == "bash /tmp/podman-security-target_firewall.sh":
            self._harden_firewall()
        return CommandResult("", "", 0)

    def is_reachable(self):
        return self.reachable

    def read_file(self, path):
        return self.files.get(path)

    def write_file(self, path, content, mode=0o644):
        if path in self.immutable:
            raise ExecutorError(f"Cannot write {path}: immutable", exit_code=1)
        self.files[path] = bytes(content)
        self.modes[path] = mode

    def remove_path(self, path):
        if path in self.immutable:
            raise ExecutorError(f"Cannot remove {path}: immutable", exit_code=1)
        prefix = path.rstrip("/") + "/"
        for existing in list(self.files):
            if existing == path or existing.startswith(prefix):
                del self.files[existing]
                self.modes.pop(existing, None)
        self.directories.discard(path)

    def list_files(self, directory, pattern):
        prefix = directory.rstrip("/") + "/"
        if directory not in self.directories and not any(p.startswith(prefix) for p in self.files):
            return None
        return sorted(
            p for p in self.files
            if posixpath.dirname(p) == directory.rstrip("/") and fnmatch.fnmatch(posixpath.basename(p), pattern)
        )

    def set_immutable(self, path, immutable):
        if immutable:
            self.immutable.add(path)
        else:
            self.immutable.discard(path)
        return True

    def to_target_path(self, host_path):
        return "/mnt/c/ProgramData/PodmanSecurity/backups/bundle/target"

    def _disable_repos(self):
        for path in self.list_files("/etc/yum.repos.d", "*.repo") or []:
            if posixpath.basename(path) != "internal-mirror.repo":
                self.files["/etc/yum.repos.d/disabled/" + posixpath.basename(path)] = self.files.pop(path)

    def _harden_firewall(self):
        script = self.files["/tmp/podman-security-target_firewall.sh"].decode()
        sources = re.search(r"for source in (.+); do", script).group(1).split()
        self.firewalld_active = self.firewalld_enabled = True
        self.zone = "drop"
        self.trusted_sources += [s for s in sources if s not in self.trusted_sources]


class FakeHost(WindowsHost):
    """Windows host with an in-memory Hyper-V firewall; host files are real."""

    def __init__(self, existing_rules: Optional[List[dict]] = None):
        super().__init__(timeout=5, wsl_path="wsl.exe")
        self.rules: Dict[str, FirewallRule] = {}
        self.existing_rules = list(existing_rules or [])
        self.elevated = True
        self.distributions = ["FedoraLinux-42"]
        self.shutdowns = 0
        self.terminated: List[str] = []

    def is_elevated(self):
        return self.elevated

    def list_distributions(self):
        return list(self.distributions)

    def list_firewall_rules(self, prefix):
        return [{"Name": name, "DisplayName": rule.display_name, "Direction": rule.direction,
                 "Action": rule.action} for name, rule in self.rules.items() if name.startswith(prefix)]

    def export_firewall_rules(self):
        return self.existing_rules + self.list_firewall_rules("")

    def remove_firewall_rules(self, prefix):
        matching = [name for name in self.rules if name.startswith(prefix)]
        for name in matching:
            del self.rules[name]
        return len(matching)

    def add_firewall_rule(self, rule):
        if rule.name in self.rules:
            raise ExecutorError(f"Rule already exists: {rule.name}", exit_code=1)
        self.rules[rule.name] = rule

    def shutdown_wsl(self):
        self.shutdowns += 1
        return CommandResult("", "", 0)

    def terminate_distribution(self, distro):
        self.terminated.append(distro)
        return CommandResult("", "", 0)


@pytest.fixture
def target_files():
    """Initial state of a freshly installed distribution."""
    return {
        "/etc/ssh/sshd_config": ORIGINAL_SSHD,
        "/etc/resolv.conf": ORIGINAL_RESOLV,
        "/etc/yum.repos.d/fedora.repo": ORIGINAL_REPO,
        "/etc/dnf/dnf.conf": b"[main]\ngpgcheck=True\n",
    }


@pytest.fixture
def fake_executor(target_files):
    return FakeExecutor(target_files)


@pytest.fixture
def fake_host():
    return FakeHost(existing_rules=[{"Name": "WSL-Default", "Direction": "Outbound", "Action": "Allow"}])


@pytest.fixture
def run_config(tmp_path):
    """Complete run configuration using the inline providers."""
    return RunConfiguration(
        distro="FedoraLinux-42",
        mirror_url="http://mirror.internal.company.com/fedora/",
        registry="reg.example.com",
        dns_server="10.0.0.53",
        proxy_url="http://proxy.internal.company.com:3128",
        backup_root=tmp_path / "backups",
        wslconfig_path=tmp_path / "home" / ".wslconfig",
        backup_provider=ProviderMode.INLINE,
        verify_provider=ProviderMode.INLINE,
    )


@pytest.fixture
def renderer():
    return TemplateRenderer()


@pytest.fixture
def make_tool(fake_executor, fake_host):
    """Build a tool around the fakes for a given configuration."""
    def _make(config: RunConfiguration) -> PodmanSecurityTool:
        return PodmanSecurityTool(config, executor=fake_executor, host=fake_host, host_checks=False)
    return _make


@pytest.fixture
def tool(make_tool, run_config):
    return make_tool(run_config)


def bundle_file(bundle_path: Path, live_path: str) -> Path:
    return Path(bundle_path) / "target" / live_path.lstrip("/")
