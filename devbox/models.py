"""Data models for devbox."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from devbox.constants import (
    DESCRIPTOR_NAME,
    KUBECONFIG_DIR,
    LOCAL_CONFIG_NAME,
    LOGS_DIR_NAME,
    METADATA_DIR_NAME,
    OUTPUT_TAIL_LINES,
)


class PortForward(NamedTuple):
    guest_port: int
    host_port: int
    description: str = ""
    auto_correct: bool = True


@dataclass(frozen=True)
class Credentials:
    github_token: Optional[str] = None
    dockerhub_user: Optional[str] = None
    dockerhub_token: Optional[str] = None

    def any(self) -> bool:
        return any((self.github_token, self.dockerhub_user, self.dockerhub_token))


@dataclass(frozen=True)
class ToolVersionPins:
    k3s_version: Optional[str] = None
    node_version: Optional[str] = None


@dataclass(frozen=True)
class ResolvedConfig:
    vm_name: str
    box: str
    cpus: int
    memory_mb: int
    disk_gb: int
    private_ip: str
    workspace: Path
    kubernetes: str
    boot_timeout: int
    connect_timeout: int
    port_forwards: Tuple[PortForward, ...] = ()
    credentials: Credentials = field(default_factory=Credentials)
    pins: ToolVersionPins = field(default_factory=ToolVersionPins)


@dataclass(frozen=True)
class RunContext:
    """Everything an operation needs; nothing is read from ambient process state."""

    config: ResolvedConfig
    project_dir: Path
    env: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
    assume_yes: bool = False
    interactive: bool = False
    confirm: Optional[Callable[[str, bool], bool]] = None

    @property
    def descriptor_path(self) -> Path:
        return self.project_dir / DESCRIPTOR_NAME

    @property
    def metadata_dir(self) -> Path:
        return self.project_dir / METADATA_DIR_NAME

    @property
    def logs_dir(self) -> Path:
        return self.project_dir / LOGS_DIR_NAME

    @property
    def override_path(self) -> Path:
        return self.project_dir / LOCAL_CONFIG_NAME

    @property
    def kubeconfig_path(self) -> Path:
        return KUBECONFIG_DIR / f"{self.config.vm_name}.yaml"

    def ask(self, question: str, default: bool = False) -> bool:
        """Confirm an action; --yes accepts, non-interactive runs take the default."""
        if self.assume_yes:
            return True
        if not self.interactive or self.confirm is None:
            return default
        return self.confirm(question, default)


@dataclass
class CommandResult:
    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def stderr_tail(self, lines: int = OUTPUT_TAIL_LINES) -> str:
        return "\n".join(self.stderr.splitlines()[-lines:])


@dataclass(frozen=True)
class Stage:
    name: str
    script: str


@dataclass
class StageResult:
    name: str
    exit_code: int
    tail: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class ToolStatus:
    name: str
    present: bool
    version: Optional[str] = None
    install: str = "package"


@dataclass
class HealthSnapshot:
    vm_state: str
    services: Dict[str, bool] = field(default_factory=dict)
    nodes_ready: Optional[bool] = None
    tools: Dict[str, ToolStatus] = field(default_factory=dict)
    disk_percent: Optional[int] = None
    kubeconfig_valid: bool = False

    def issues(self, disk_threshold: int) -> List[str]:
        found: List[str] = []
        if self.vm_state != "running":
            found.append(f"VM is {self.vm_state}; run Setup or Repair")
            return found
        for name, active in self.services.items():
            if not active:
                found.append(f"service {name} is inactive")
        if self.nodes_ready is False:
            found.append("Kubernetes node is not Ready")
        for status in self.tools.values():
            if not status.present:
                found.append(f"tool {status.name} is missing")
        if self.disk_percent is None:
            found.append("disk usage unknown")
        elif self.disk_percent > disk_threshold:
            found.append(f"disk usage {self.disk_percent}% exceeds {disk_threshold}%")
        if not self.kubeconfig_valid:
            found.append("host kubeconfig missing or unreachable")
        return found


@dataclass
class PhaseResult:
    name: str
    healthy: bool
    actions: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    recommendation: Optional[str] = None


@dataclass
class RepairReport:
    phases: List[PhaseResult] = field(default_factory=list)

    @property
    def all_healthy(self) -> bool:
        return all(phase.healthy for phase in self.phases)

    @property
    def recommendations(self) -> List[str]:
        seen: List[str] = []
        for phase in self.phases:
            if phase.recommendation and phase.recommendation not in seen:
                seen.append(phase.recommendation)
        return seen


@dataclass
class ReleaseAsset:
    tool: str
    version: str
    name: str
    url: str
    sha256: Optional[str] = None


@dataclass
class CleanupReport:
    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def removed_anything(self) -> bool:
        return bool(self.removed)
