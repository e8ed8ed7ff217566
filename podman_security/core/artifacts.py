"""
Canonical inventory of everything the baseline touches.

Every backup provider, the rollback engine and the verification battery
work from these lists; nothing is discovered dynamically.
"""

from typing import List, Tuple

from .models import Artifact, ArtifactKind, ArtifactScope, FirewallRule


TOOL_PREFIX = "PodmanSecurity"

# VMCreatorId WSL registers its utility VM under with the Hyper-V firewall
WSL_VM_CREATOR_ID = "{40E0AC32-46A5-438A-A0B2-2B479E8F2E90}"

RFC1918_RANGES = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]

PUBLIC_REGISTRIES = [
    "docker.io",
    "quay.io",
    "gcr.io",
    "ghcr.io",
    "registry.k8s.io",
    "mcr.microsoft.com",
]

SCRIPTS_DIR = "/opt/podman-security/scripts"
MAINTENANCE_SCRIPTS = ["update-system.sh", "update-images.sh", "health-check.sh"]
UPDATE_UNITS = [
    "/etc/systemd/system/podman-security-update.service",
    "/etc/systemd/system/podman-security-update.timer",
]
INTERNAL_REPO = "/etc/yum.repos.d/internal-mirror.repo"
DISABLED_REPO_DIR = "/etc/yum.repos.d/disabled"
PROXY_DROPIN = "/etc/containers/containers.conf.d/podman-security-proxy.conf"
UPDATE_LOG_DIR = "/var/log/podman-updates"
STATE_DIR = "/var/lib/podman-security"
# Written by the rootless step when it has to create the account
CREATED_USER_MARKER = STATE_DIR + "/created-user"


TARGET_ARTIFACTS: List[Artifact] = [
    Artifact(name="sshd_config", scope=ArtifactScope.TARGET, path="/etc/ssh/sshd_config", mode=0o600,
             restart_command="systemctl try-restart sshd"),
    Artifact(name="yum_repos", scope=ArtifactScope.TARGET, kind=ArtifactKind.DIRECTORY,
             path="/etc/yum.repos.d", pattern="*.repo"),
    Artifact(name="dnf_conf", scope=ArtifactScope.TARGET, path="/etc/dnf/dnf.conf"),
    Artifact(name="registries_conf", scope=ArtifactScope.TARGET, path="/etc/containers/registries.conf"),
    Artifact(name="policy_json", scope=ArtifactScope.TARGET, path="/etc/containers/policy.json"),
    Artifact(name="containers_conf", scope=ArtifactScope.TARGET, path="/etc/containers/containers.conf"),
    Artifact(name="resolv_conf", scope=ArtifactScope.TARGET, path="/etc/resolv.conf", immutable=True),
    Artifact(name="subuid", scope=ArtifactScope.TARGET, path="/etc/subuid"),
    Artifact(name="subgid", scope=ArtifactScope.TARGET, path="/etc/subgid"),
    Artifact(name="environment", scope=ArtifactScope.TARGET, path="/etc/environment"),
    Artifact(name="selinux_config", scope=ArtifactScope.TARGET, path="/etc/selinux/config"),
    Artifact(name="firewalld_zone", scope=ArtifactScope.TARGET, kind=ArtifactKind.FIREWALL_ZONE,
             path="firewalld/default-zone"),
]

HOST_ARTIFACTS: List[Artifact] = [
    Artifact(name="wslconfig", scope=ArtifactScope.HOST, path=".wslconfig"),
]

# Created by apply with no prior counterpart; rollback always deletes them.
GENERATED_TARGET_PATHS: List[str] = [
    INTERNAL_REPO,
    PROXY_DROPIN,
    "/opt/podman-security",
    UPDATE_LOG_DIR,
    STATE_DIR,
    *UPDATE_UNITS,
]

# Trusted sources the target firewall step adds; removed on rollback.
TRUSTED_SOURCES = ["127.0.0.0/8", *RFC1918_RANGES]


def host_firewall_rules() -> List[FirewallRule]:
    """The ordered rule-set created on the host for the WSL VM.

    Deny-by-default comes first so the narrower allows never exist alone.
    """
    rules = [
        FirewallRule(name=f"{TOOL_PREFIX}-BlockAllOutbound",
                     display_name=f"{TOOL_PREFIX} - Block all outbound",
                     direction="Outbound", action="Block"),
    ]
    for index, cidr in enumerate(RFC1918_RANGES, 1):
        rules.append(FirewallRule(name=f"{TOOL_PREFIX}-AllowInternal{index}",
                                  display_name=f"{TOOL_PREFIX} - Allow internal {cidr}",
                                  direction="Outbound", action="Allow",
                                  remote_addresses=[cidr]))
    rules.append(FirewallRule(name=f"{TOOL_PREFIX}-AllowLoopback",
                              display_name=f"{TOOL_PREFIX} - Allow loopback",
                              direction="Outbound", action="Allow",
                              remote_addresses=["127.0.0.0/8"]))
    rules.append(FirewallRule(name=f"{TOOL_PREFIX}-BlockAllInbound",
                              display_name=f"{TOOL_PREFIX} - Block all inbound",
                              direction="Inbound", action="Block"))
    return rules


def firewalld_tools(active: bool) -> Tuple[str, str]:
    """Commands for the default zone and the permanent configuration.

    ``firewall-cmd`` needs the daemon; ``firewall-offline-cmd`` edits the
    permanent configuration while it is stopped.
    """
    if active:
        return "firewall-cmd", "firewall-cmd --permanent"
    return "firewall-offline-cmd", "firewall-offline-cmd"
