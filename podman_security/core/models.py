"""
Data models for the Podman security baseline using Pydantic for validation.
"""

import ipaddress
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ArtifactKind(str, Enum):
    """How a configuration artifact is captured and restored."""
    FILE = "file"
    DIRECTORY = "directory"
    FIREWALL_ZONE = "firewall_zone"


class ArtifactScope(str, Enum):
    """Where an artifact lives."""
    HOST = "host"
    TARGET = "target"


class CaptureStatus(str, Enum):
    """Outcome of capturing one artifact into a backup bundle."""
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"  # probe or copy failed


class StepStatus(str, Enum):
    """Execution status of an apply or rollback step."""
    SUCCESS = "success"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"
    PLANNED = "planned"


class RollbackScope(str, Enum):
    """Which side of the system a rollback restores."""
    ALL = "all"
    HOST = "host-only"
    TARGET = "target-only"


class ProviderMode(str, Enum):
    """Backup/verify provider selection."""
    AUTO = "auto"
    SCRIPT = "script"
    INLINE = "inline"


_REGISTRY_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?(:\d{1,5})?$")


def _check_http_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"not an http(s) URL: {value!r}")
    return value.rstrip("/")


class RunConfiguration(BaseModel):
    """Immutable, validated inputs for one invocation."""

    model_config = ConfigDict(frozen=True)

    distro: str = Field(..., min_length=1, description="Target WSL distribution name")
    mirror_url: Optional[str] = Field(None, description="Internal package mirror URL")
    registry: Optional[str] = Field(None, description="Internal container registry host[:port]")
    dns_server: Optional[str] = Field(None, description="Internal DNS server address")
    dns_search_domain: str = "internal.company.com"
    proxy_url: Optional[str] = Field(None, description="Internal HTTP(S) proxy URL")
    no_proxy: Optional[str] = None
    backup_root: Path
    wslconfig_path: Path = Field(default_factory=lambda: Path.home() / ".wslconfig")
    templates_dir: Optional[Path] = None

    dry_run: bool = False
    skip_precondition_check: bool = False
    include_host_artifacts: bool = False
    command_timeout: int = Field(120, gt=0, description="Seconds per external command")

    backup_provider: ProviderMode = ProviderMode.AUTO
    verify_provider: ProviderMode = ProviderMode.AUTO

    @field_validator("mirror_url", "proxy_url")
    @classmethod
    def validate_url(cls, v):
        """Endpoints must be http(s) URLs."""
        return _check_http_url(v)

    @field_validator("registry")
    @classmethod
    def validate_registry(cls, v):
        """Registry is a bare host with an optional port."""
        if v is not None and not _REGISTRY_RE.match(v):
            raise ValueError(f"registry must be host[:port] without scheme: {v!r}")
        return v

    @field_validator("dns_server")
    @classmethod
    def validate_dns_server(cls, v):
        """DNS server must be an IP address."""
        if v is not None:
            ipaddress.ip_address(v)
        return v

    @property
    def effective_no_proxy(self) -> str:
        if self.no_proxy:
            return self.no_proxy
        return ",".join([
            "localhost", "127.0.0.1", f".{self.dns_search_domain}",
            "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16",
        ])

    def missing_endpoints(self) -> List[str]:
        """Names of the endpoints apply needs but were not provided."""
        required = ("mirror_url", "registry", "dns_server", "proxy_url")
        return [name for name in required if getattr(self, name) is None]

    def template_variables(self) -> Dict[str, str]:
        """Substitution values offered to every template."""
        variables = {
            "DISTRO": self.distro,
            "MIRROR_URL": self.mirror_url,
            "INTERNAL_REGISTRY": self.registry,
            "DNS_SERVER": self.dns_server,
            "DNS_SEARCH_DOMAIN": self.dns_search_domain,
            "PROXY_URL": self.proxy_url,
            "NO_PROXY": self.effective_no_proxy,
        }
        return {k: v for k, v in variables.items() if v is not None}


class Artifact(BaseModel):
    """A configuration file, directory or rule-set under management."""

    model_config = ConfigDict(frozen=True)

    name: str
    scope: ArtifactScope
    kind: ArtifactKind = ArtifactKind.FILE
    path: str = Field(..., description="Canonical path on the target, or relative to the user profile on the host")
    pattern: Optional[str] = Field(None, description="Glob for directory artifacts")
    mode: int = Field(0o644, description="Permissions a restored file is written with")
    immutable: bool = False
    restart_command: Optional[str] = Field(None, description="Command re-triggering the dependent service")

    @property
    def bundle_relpath(self) -> str:
        """Path of this artifact inside the bundle subtree."""
        return self.path.lstrip("/")


class FirewalldState(BaseModel):
    """firewalld service and zone state at capture time."""
    default_zone: str
    active: bool
    enabled: bool
    trusted_sources: List[str] = Field(default_factory=list)


class ArtifactCapture(BaseModel):
    """What a bundle knows about one artifact."""
    name: str
    status: CaptureStatus
    path: str
    files: Dict[str, str] = Field(default_factory=dict, description="Live path -> SHA-256 of the captured copy")
    value: Optional[str] = Field(None, description="Captured state for non-file artifacts")
    firewalld: Optional[FirewalldState] = None
    error: Optional[str] = None


class BundleMetadata(BaseModel):
    """Self-describing record written last into every bundle."""
    bundle_id: str
    distro: str
    created_by: str
    host: str
    created_at: datetime
    includes_host_artifacts: bool = False
    provider: str = "inline"
    artifacts: Dict[str, ArtifactCapture] = Field(default_factory=dict)
    tool_version: str = "1.0.0"


class BackupBundle(BaseModel):
    """A backup bundle on disk."""
    path: Path
    metadata: Optional[BundleMetadata] = None

    @property
    def bundle_id(self) -> str:
        return self.metadata.bundle_id if self.metadata else self.path.name

    @property
    def host_dir(self) -> Path:
        return self.path / "host"

    @property
    def target_dir(self) -> Path:
        return self.path / "target"

    @property
    def metadata_path(self) -> Path:
        return self.path / "metadata.json"


class FirewallRule(BaseModel):
    """A host-level Hyper-V firewall rule for the WSL VM."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    direction: str = Field(..., pattern="^(Inbound|Outbound)$")
    action: str = Field(..., pattern="^(Allow|Block)$")
    remote_addresses: List[str] = Field(default_factory=list)


class StepFile(BaseModel):
    """A file an apply step renders and writes."""

    model_config = ConfigDict(frozen=True)

    template: str
    path: str
    mode: int = 0o644
    immutable: bool = False

    @field_validator("mode", mode="before")
    @classmethod
    def parse_mode(cls, v):
        """Accept octal strings such as "0755"."""
        if isinstance(v, str):
            return int(v, 8)
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v):
        if not v.startswith("/"):
            raise ValueError(f"target path must be absolute: {v}")
        return v


class ApplyStep(BaseModel):
    """Definition of one target configuration step."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique step identifier")
    title: str = Field(..., description="Human-readable step title")
    description: str = ""
    files: List[StepFile] = Field(default_factory=list)
    script: Optional[str] = Field(None, description="Template of the command script run after the files are written")

    @property
    def templates(self) -> List[str]:
        names = [f.template for f in self.files]
        if self.script:
            names.append(self.script)
        return names


class StepOutcome(BaseModel):
    """Result of one apply or rollback step."""
    step_id: str
    title: str
    status: StepStatus
    message: Optional[str] = None
    exit_code: Optional[int] = None
    executed_at: datetime = Field(default_factory=datetime.now)

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED


class CheckResult(BaseModel):
    """Outcome of a single read-only verification check."""
    name: str
    title: str
    passed: bool
    detail: Optional[str] = None


class VerificationReport(BaseModel):
    """Aggregated verification run."""
    distro: str
    checked_at: datetime = Field(default_factory=datetime.now)
    results: List[CheckResult] = Field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def compliant(self) -> bool:
        return self.failed == 0


class ApplyResult(BaseModel):
    """Outcome of an apply run."""
    distro: str
    dry_run: bool = False
    bundle_path: Optional[Path] = None
    steps: List[StepOutcome] = Field(default_factory=list)
    verification: Optional[VerificationReport] = None

    @property
    def failed_steps(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.failed]

    @property
    def success(self) -> bool:
        return not self.failed_steps

    @property
    def exit_code(self) -> int:
        failed_checks = self.verification.failed if self.verification else 0
        return len(self.failed_steps) + failed_checks


class RollbackResult(BaseModel):
    """Outcome of a rollback run."""
    bundle_path: Path
    scope: RollbackScope
    distro: str
    metadata_missing: bool = False
    steps: List[StepOutcome] = Field(default_factory=list)

    @property
    def failed_steps(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.failed]

    @property
    def success(self) -> bool:
        return not self.failed_steps

    @property
    def exit_code(self) -> int:
        return len(self.failed_steps)
