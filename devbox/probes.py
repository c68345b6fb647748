"""Read-only guest queries shared by the reconciler and the health reporter."""

from __future__ import annotations

from typing import List, Optional

from devbox.constants import CONTAINER_SERVICE, TOOLS
from devbox.kubeconfig import distribution_commands, probe as probe_kubeconfig
from devbox.models import RunContext, ToolStatus
from devbox.vagrant import VagrantDriver


def parse_nodes_ready(output: str) -> bool:
    """True when every ``kubectl get nodes --no-headers`` row reports Ready."""
    rows = [line.split() for line in output.splitlines() if line.strip()]
    if not rows:
        return False
    return all(len(row) >= 2 and row[1].split(",")[0] == "Ready" for row in rows)


def parse_disk_percent(output: str) -> Optional[int]:
    for line in reversed(output.splitlines()):
        value = line.strip().rstrip("%").strip()
        if value.isdigit():
            return int(value)
    return None


class GuestProbe:
    def __init__(self, ctx: RunContext, driver: VagrantDriver) -> None:
        self.ctx = ctx
        self.driver = driver
        self._commands = distribution_commands(ctx)

    @property
    def kubernetes_service(self) -> Optional[str]:
        return self._commands["service"]

    def monitored_services(self) -> List[str]:
        services = [CONTAINER_SERVICE]
        if self.kubernetes_service:
            services.append(self.kubernetes_service)
        return services

    def service_active(self, service: str) -> bool:
        return self.driver.ssh(f"systemctl is-active --quiet {service}").ok

    def nodes_ready(self) -> bool:
        result = self.driver.ssh(self._commands["nodes_cmd"])
        return result.ok and parse_nodes_ready(result.stdout)

    def tool_status(self, tool: str) -> ToolStatus:
        spec = TOOLS[tool]
        result = self.driver.ssh(f"command -v {tool} >/dev/null 2>&1 && {spec['version_cmd']}")
        version = None
        if result.ok:
            lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
            version = lines[0] if lines else None
        return ToolStatus(name=tool, present=result.ok, version=version, install=spec["install"])

    def disk_percent(self) -> Optional[int]:
        result = self.driver.ssh("df --output=pcent / | tail -n 1")
        if not result.ok:
            return None
        return parse_disk_percent(result.stdout)

    def kubeconfig_valid(self) -> bool:
        return probe_kubeconfig(self.ctx.kubeconfig_path)
