"""Read-only health reporting for devbox."""

from __future__ import annotations

from typing import List, Optional

from devbox.constants import DISK_CRITICAL_PERCENT, TOOLS
from devbox.models import HealthSnapshot, RunContext
from devbox.probes import GuestProbe
from devbox.vagrant import VagrantDriver


class HealthReporter:
    """Runs the reconciler's inspection queries without correcting anything."""

    def __init__(self, ctx: RunContext, driver: VagrantDriver, probe: Optional[GuestProbe] = None) -> None:
        self.ctx = ctx
        self.driver = driver
        self.probe = probe or GuestProbe(ctx, driver)

    def snapshot(self) -> HealthSnapshot:
        state = self.driver.status()
        snap = HealthSnapshot(vm_state=state)
        if state != "running":
            return snap
        for service in self.probe.monitored_services():
            snap.services[service] = self.probe.service_active(service)
        snap.nodes_ready = self.probe.nodes_ready()
        for tool in TOOLS:
            snap.tools[tool] = self.probe.tool_status(tool)
        snap.disk_percent = self.probe.disk_percent()
        snap.kubeconfig_valid = self.probe.kubeconfig_valid()
        return snap


def _mark(ok: bool) -> str:
    return "ok" if ok else "FAIL"


def render(snap: HealthSnapshot, vm_name: str) -> List[tuple]:
    """Return ``(title, lines)`` blocks describing ``snap``."""
    blocks: List[tuple] = [("VM", [f"  {vm_name}: {snap.vm_state}"])]
    if snap.vm_state != "running":
        return blocks
    services = [f"  {name:<12} {_mark(active)}" for name, active in snap.services.items()]
    if snap.nodes_ready is not None:
        services.append(f"  {'nodes':<12} {'Ready' if snap.nodes_ready else 'NotReady'}")
    blocks.append(("Services", services))
    tools = []
    for status in snap.tools.values():
        detail = status.version or "missing"
        tools.append(f"  {status.name:<12} {detail} ({status.install})")
    blocks.append(("Tools", tools))
    disk = "unknown" if snap.disk_percent is None else f"{snap.disk_percent}%"
    blocks.append(
        (
            "Host",
            [
                f"  Root filesystem: {disk} (critical above {DISK_CRITICAL_PERCENT}%)",
                f"  Kubeconfig:      {_mark(snap.kubeconfig_valid)}",
            ],
        )
    )
    return blocks
