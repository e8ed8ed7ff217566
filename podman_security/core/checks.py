"""
Canonical verification battery.

Each check is a read-only shell predicate evaluated as root inside the
target; exit status 0 means compliant. Both verification providers run
exactly this list.
"""

import shlex
from dataclasses import dataclass
from typing import List

from .artifacts import INTERNAL_REPO, MAINTENANCE_SCRIPTS, PUBLIC_REGISTRIES, SCRIPTS_DIR
from .models import RunConfiguration


@dataclass(frozen=True)
class Check:
    """A named read-only predicate."""
    name: str
    title: str
    predicate: str


def _registries_predicate(config: RunConfiguration) -> str:
    conf = "/etc/containers/registries.conf"
    parts = []
    for registry in PUBLIC_REGISTRIES:
        location = shlex.quote('location = "%s"' % registry)
        parts.append(f"grep -A2 -F {location} {conf} | grep -q 'blocked = true'")
    if config.registry:
        location = shlex.quote('location = "%s"' % config.registry)
        parts.append(f"grep -qF {location} {conf}")
    return " && ".join(parts)


def _dns_predicate(config: RunConfiguration) -> str:
    if not config.dns_server:
        return "grep -q '^nameserver' /etc/resolv.conf"
    server = config.dns_server.replace(".", "\\.")
    return (
        f"grep -Eq '^nameserver[[:space:]]+{server}[[:space:]]*$' /etc/resolv.conf && "
        "[ \"$(grep -c '^nameserver' /etc/resolv.conf)\" = 1 ]"
    )


def _proxy_predicate(config: RunConfiguration) -> str:
    if not config.proxy_url:
        return "grep -q '^HTTP_PROXY=' /etc/environment"
    return f"grep -qxF {shlex.quote('HTTP_PROXY=' + config.proxy_url)} /etc/environment"


def build_checks(config: RunConfiguration) -> List[Check]:
    """The fixed, ordered check battery for this run."""
    ssh_listeners = "ss -H -tln 'sport = :22' | awk '{print $4}'"
    primary_user = "$(getent passwd 1000 | cut -d: -f1)"
    scripts = " && ".join(f"test -x {SCRIPTS_DIR}/{name}" for name in MAINTENANCE_SCRIPTS)

    return [
        Check("ssh_loopback_only", "SSH bound to loopback only",
              f"{ssh_listeners} | grep -q . && ! {ssh_listeners} | grep -vqE '^(127\\.0\\.0\\.1|\\[::1\\]):22$'"),
        Check("ssh_root_login_disabled", "SSH root login disabled",
              "grep -q '^PermitRootLogin no' /etc/ssh/sshd_config"),
        Check("ssh_password_auth_disabled", "SSH password authentication disabled",
              "grep -q '^PasswordAuthentication no' /etc/ssh/sshd_config"),
        Check("podman_rootless", "Podman runs rootless",
              f"runuser -l \"{primary_user}\" -c 'podman info' 2>/dev/null | grep -qi 'rootless: true'"),
        Check("internal_repo_only", "Only the internal mirror repository is enabled",
              f"test -f {INTERNAL_REPO} && "
              "[ \"$(find /etc/yum.repos.d -maxdepth 1 -name '*.repo' -printf '%f\\n')\" = internal-mirror.repo ]"),
        Check("public_registries_blocked", "Public registries blocked",
              _registries_predicate(config)),
        Check("firewalld_active", "firewalld service active",
              "systemctl is-active --quiet firewalld"),
        Check("firewall_default_drop", "Firewall default zone is drop",
              "[ \"$(firewall-cmd --get-default-zone 2>/dev/null)\" = drop ]"),
        Check("selinux_enforcing", "SELinux enforcing (when available)",
              "! command -v getenforce >/dev/null 2>&1 || [ \"$(getenforce)\" = Enforcing ]"),
        Check("dns_internal_server", "DNS resolver pinned to the internal server",
              _dns_predicate(config)),
        Check("dns_immutable", "resolv.conf protected from being overwritten",
              "lsattr -d /etc/resolv.conf 2>/dev/null | cut -d' ' -f1 | grep -q i"),
        Check("proxy_configured", "System-wide proxy configured",
              _proxy_predicate(config)),
        Check("maintenance_scripts", "Maintenance scripts present and executable",
              scripts),
    ]
