"""
Windows host operations for the WSL baseline.

Handles the host side of the baseline: Hyper-V firewall rules for the WSL
utility VM, WSL shutdown/terminate, elevation checks and host file access.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.artifacts import WSL_VM_CREATOR_ID
from ..core.errors import ExecutorError
from ..core.models import FirewallRule
from ..utils.host_info import is_admin
from .base import CommandResult, execute_command


logger = logging.getLogger(__name__)


def _ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted literal."""
    return "'" + value.replace("'", "''") + "'"


class WindowsHost:
    """
    Host-level operations executed on the Windows machine.

    Firewall management uses the Hyper-V firewall cmdlets so rules apply
    to the WSL VM specifically rather than to host processes.
    """

    def __init__(self, timeout: int = 120, wsl_path: Optional[str] = None):
        """
        Initialize host handler.

        Args:
            timeout: Timeout in seconds for each command
            wsl_path: Explicit path to wsl.exe
        """
        self.timeout = timeout
        self.powershell_path = self._find_powershell()
        self.wsl_path = wsl_path or "wsl.exe"

    def is_elevated(self) -> bool:
        return is_admin()

    def list_distributions(self) -> List[str]:
        """Names of the installed WSL distributions."""
        result = execute_command([self.wsl_path, "--list", "--quiet"], timeout=self.timeout)
        if not result.success:
            raise ExecutorError("Cannot list WSL distributions", exit_code=result.exit_code,
                                stderr=result.stderr.strip())
        # wsl.exe writes UTF-16; decoded as UTF-8 it carries NUL padding
        names = result.stdout.replace("\x00", "").splitlines()
        return [name.strip() for name in names if name.strip()]

    def list_firewall_rules(self, prefix: str) -> List[Dict[str, Any]]:
        """Return the Hyper-V firewall rules whose name starts with the prefix."""
        script = (
            f"$rules = @(Get-NetFirewallHyperVRule -Name {_ps_quote(prefix + '*')} -ErrorAction SilentlyContinue | "
            "Select-Object Name, DisplayName, Direction, Action, RemoteAddresses)\n"
            "ConvertTo-Json -InputObject $rules -Compress -Depth 4"
        )
        result = self._check_powershell(script, "list firewall rules")
        output = result.stdout.strip()
        if not output:
            return []
        data = json.loads(output)
        if isinstance(data, dict):
            data = [data]
        for rule in data:
            for key in ("Direction", "Action"):
                rule[key] = str(rule.get(key, ""))
        return data

    def export_firewall_rules(self) -> List[Dict[str, Any]]:
        """Export every Hyper-V firewall rule attached to the WSL VM."""
        script = (
            f"$rules = @(Get-NetFirewallHyperVRule -VMCreatorId {_ps_quote(WSL_VM_CREATOR_ID)} "
            "-ErrorAction SilentlyContinue | Select-Object Name, DisplayName, Direction, Action, RemoteAddresses)\n"
            "ConvertTo-Json -InputObject $rules -Compress -Depth 4"
        )
        result = self._check_powershell(script, "export firewall rules")
        output = result.stdout.strip()
        if not output:
            return []
        data = json.loads(output)
        return [data] if isinstance(data, dict) else data

    def remove_firewall_rules(self, prefix: str) -> int:
        """
        Remove every rule created under the tool's naming convention.

        Returns:
            int: Number of rules removed (0 when none existed)
        """
        script = (
            f"$rules = @(Get-NetFirewallHyperVRule -Name {_ps_quote(prefix + '*')} -ErrorAction SilentlyContinue)\n"
            "$rules | Remove-NetFirewallHyperVRule -ErrorAction Stop\n"
            "$rules.Count"
        )
        result = self._check_powershell(script, "remove firewall rules")
        try:
            return int(result.stdout.strip() or 0)
        except ValueError:
            return 0

    def add_firewall_rule(self, rule: FirewallRule) -> None:
        """Create one Hyper-V firewall rule for the WSL VM."""
        script = (
            f"New-NetFirewallHyperVRule -Name {_ps_quote(rule.name)} "
            f"-DisplayName {_ps_quote(rule.display_name)} "
            f"-Direction {rule.direction} -Action {rule.action} "
            f"-VMCreatorId {_ps_quote(WSL_VM_CREATOR_ID)}"
        )
        if rule.remote_addresses:
            addresses = ",".join(_ps_quote(a) for a in rule.remote_addresses)
            script += f" -RemoteAddresses {addresses}"
        script += " -ErrorAction Stop | Out-Null"
        self._check_powershell(script, f"create firewall rule {rule.name}")

    def shutdown_wsl(self) -> CommandResult:
        """Stop every distribution and the WSL VM so .wslconfig is re-read."""
        return execute_command([self.wsl_path, "--shutdown"], timeout=self.timeout)

    def terminate_distribution(self, distro: str) -> CommandResult:
        return execute_command([self.wsl_path, "--terminate", distro], timeout=self.timeout)

    def read_file(self, path: Path) -> Optional[bytes]:
        """Read a host file, or None if it does not exist."""
        path = Path(path)
        if not path.exists():
            return None
        return path.read_bytes()

    def write_file(self, path: Path, content: bytes) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".podman-security.tmp")
        tmp.write_bytes(content)
        os.replace(tmp, path)

    def remove_file(self, path: Path) -> None:
        Path(path).unlink(missing_ok=True)

    def _check_powershell(self, script: str, action: str) -> CommandResult:
        result = self._execute_powershell(script)
        if not result.success:
            raise ExecutorError(f"Failed to {action}", exit_code=result.exit_code, stderr=result.stderr.strip())
        return result

    def _execute_powershell(self, script: str) -> CommandResult:
        """Execute a PowerShell script and return results."""
        cmd = [
            self.powershell_path,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", script,
        ]
        return execute_command(cmd, timeout=self.timeout)

    def _find_powershell(self) -> str:
        """Find PowerShell executable path."""
        # Try PowerShell 7+ first, then Windows PowerShell
        possible_paths = [
            r"C:\Program Files\PowerShell\7\pwsh.exe",
            r"C:\Windows\System32\WindowsPowerShell\v1.0\powershell.exe",
        ]

        for path in possible_paths:
            if Path(path).exists():
                return path

        # Fallback to PATH lookup
        return "powershell.exe"
