"""Repair engine: detect and correct drift between the desired and live VM."""

from __future__ import annotations

from typing import Callable, List, Optional

from devbox import kubeconfig, releases
from devbox.constants import (
    BASELINE_SNAPSHOT,
    CONTAINER_SERVICE,
    DISK_CRITICAL_PERCENT,
    DISK_RECLAIM_COMMANDS,
    NODE_READY_ATTEMPTS,
    NODE_READY_INTERVAL,
    TOOLS,
)
from devbox.exceptions import BootTimeout, ExternalToolMissing, ManagerError, RateLimited
from devbox.lifecycle import LifecycleOrchestrator
from devbox.models import PhaseResult, RepairReport, RunContext
from devbox.probes import GuestProbe
from devbox.utils import log, wait_until
from devbox.vagrant import VagrantDriver

PHASE_VM = "vm-state"
PHASE_SERVICES = "services"
PHASE_KUBECONFIG = "kubeconfig"
PHASE_TOOLS = "tools"
PHASE_DISK = "disk"

RECLAIM_TIMEOUT = 600.0

REPROVISION_HINT = "Run Provision to reinstall package-managed tools and restart stages"
RESTORE_HINT = f"Restore the baseline snapshot: vagrant snapshot restore {BASELINE_SNAPSHOT}"


class Reconciler:
    """Runs the repair phases in order; VM state always comes first.

    Lifecycle errors raised while bringing the VM up (boot timeout, missing
    Vagrant) are fatal and propagate. Any other failure is contained in the
    phase that hit it. When the VM phase ends unhealthy and
    ``halt_on_vm_failure`` is set, the remaining phases are reported as
    skipped instead of being run against a VM that cannot answer.
    """

    def __init__(
        self,
        ctx: RunContext,
        driver: VagrantDriver,
        lifecycle: Optional[LifecycleOrchestrator] = None,
        probe: Optional[GuestProbe] = None,
        halt_on_vm_failure: bool = True,
    ) -> None:
        self.ctx = ctx
        self.driver = driver
        self.lifecycle = lifecycle or LifecycleOrchestrator(ctx, driver)
        self.probe = probe or GuestProbe(ctx, driver)
        self.halt_on_vm_failure = halt_on_vm_failure

    def run(self) -> RepairReport:
        report = RepairReport()
        vm_phase = self.vm_state_phase()
        report.phases.append(vm_phase)

        phases: List[tuple] = [
            (PHASE_SERVICES, self.service_phase),
            (PHASE_KUBECONFIG, self.kubeconfig_phase),
            (PHASE_TOOLS, self.tool_phase),
            (PHASE_DISK, self.disk_phase),
        ]
        if not vm_phase.healthy and self.halt_on_vm_failure:
            for name, _ in phases:
                report.phases.append(PhaseResult(name=name, healthy=False, issues=["skipped: VM is not running"]))
            self._summarise(report)
            return report

        for name, phase in phases:
            report.phases.append(self._isolated(name, phase))
        self._summarise(report)
        return report

    def _isolated(self, name: str, phase: Callable[[], PhaseResult]) -> PhaseResult:
        try:
            return phase()
        except (BootTimeout, ExternalToolMissing):
            raise
        except ManagerError as exc:
            log("ERROR", f"{name} phase failed: {exc}")
            return PhaseResult(name=name, healthy=False, issues=[str(exc)], recommendation=RESTORE_HINT)

    def vm_state_phase(self) -> PhaseResult:
        phase = PhaseResult(name=PHASE_VM, healthy=True)
        state = self.driver.status()
        if state == "not_created":
            raise ManagerError(f"VM {self.ctx.config.vm_name} does not exist. Run Setup first")
        if state == "running":
            log("SUCCESS", "VM is running")
            return phase
        phase.actions.append(f"start from {state}")
        try:
            self.lifecycle.ensure_running(state)
        except (BootTimeout, ExternalToolMissing):
            raise
        except ManagerError as exc:
            log("ERROR", str(exc))
            phase.healthy = False
            phase.issues.append(str(exc))
            phase.recommendation = RESTORE_HINT
        return phase

    def service_phase(self) -> PhaseResult:
        phase = PhaseResult(name=PHASE_SERVICES, healthy=True)
        active = {}
        for service in self.probe.monitored_services():
            if self.probe.service_active(service):
                log("SUCCESS", f"{service} is active")
                active[service] = True
                continue
            log("WARN", f"{service} is inactive; restarting")
            phase.actions.append(f"restart {service}")
            self.driver.ssh(f"sudo systemctl restart {service}", mutating=True)
            active[service] = self.ctx.dry_run or self.probe.service_active(service)
            if active[service]:
                log("SUCCESS", f"{service} is active after restart")
            else:
                log("ERROR", f"{service} is still inactive after restart")
                phase.healthy = False
                phase.issues.append(f"{service} inactive after restart")

        # kind nodes run as containers, so readiness hangs off the container engine
        gate = self.probe.kubernetes_service or CONTAINER_SERVICE
        if active.get(gate) and not self.ctx.dry_run:
            ready = wait_until(
                self.probe.nodes_ready,
                attempts=NODE_READY_ATTEMPTS,
                interval=NODE_READY_INTERVAL,
                label="Kubernetes node readiness",
            )
            if ready:
                log("SUCCESS", "Kubernetes nodes are Ready")
            else:
                log("ERROR", "Kubernetes nodes did not become Ready")
                phase.healthy = False
                phase.issues.append("Kubernetes node not Ready")
        if not phase.healthy:
            phase.recommendation = REPROVISION_HINT
        return phase

    def kubeconfig_phase(self) -> PhaseResult:
        phase = PhaseResult(name=PHASE_KUBECONFIG, healthy=True)
        path = self.ctx.kubeconfig_path
        if path.exists() and self.probe.kubeconfig_valid():
            log("SUCCESS", f"Kubeconfig {path} reaches the API server")
            return phase
        reason = "unreachable" if path.exists() else "missing"
        log("WARN", f"Kubeconfig {path} is {reason}; extracting it again")
        phase.actions.append("re-extract kubeconfig")
        kubeconfig.extract(self.ctx, self.driver)
        if self.ctx.dry_run:
            return phase
        if not self.probe.kubeconfig_valid():
            phase.healthy = False
            phase.issues.append(f"API server in {path} is not reachable")
            phase.recommendation = REPROVISION_HINT
        return phase

    def tool_phase(self) -> PhaseResult:
        phase = PhaseResult(name=PHASE_TOOLS, healthy=True)
        arch: Optional[str] = None
        token = self.ctx.config.credentials.github_token
        for tool, spec in TOOLS.items():
            if self.probe.tool_status(tool).present:
                log("DEBUG", f"{tool} present")
                continue
            if spec["install"] != "binary":
                log("WARN", f"{tool} is missing and is package-managed; not reinstalling")
                phase.healthy = False
                phase.issues.append(f"{tool} missing")
                phase.recommendation = REPROVISION_HINT
                continue

            log("WARN", f"{tool} is missing; reinstalling from its latest release")
            phase.actions.append(f"reinstall {tool}")
            try:
                if arch is None:
                    arch = releases.guest_arch(self.driver)
                asset = releases.lookup(tool, arch, token)
                releases.install(self.driver, asset)
            except RateLimited as exc:
                log("WARN", str(exc))
                phase.healthy = False
                phase.issues.append(f"{tool}: {exc}")
                continue
            except (BootTimeout, ExternalToolMissing):
                raise
            except ManagerError as exc:
                log("ERROR", str(exc))
                phase.healthy = False
                phase.issues.append(f"{tool}: {exc}")
                continue
            if not self.ctx.dry_run and not self.probe.tool_status(tool).present:
                phase.healthy = False
                phase.issues.append(f"{tool} still missing after reinstall")
        return phase

    def disk_phase(self) -> PhaseResult:
        phase = PhaseResult(name=PHASE_DISK, healthy=True)
        usage = self.probe.disk_percent()
        if usage is None:
            phase.healthy = False
            phase.issues.append("could not read root filesystem usage")
            return phase
        if usage <= DISK_CRITICAL_PERCENT:
            log("SUCCESS", f"Root filesystem at {usage}%")
            return phase

        log("WARN", f"Root filesystem at {usage}% (critical above {DISK_CRITICAL_PERCENT}%); reclaiming space")
        for command in DISK_RECLAIM_COMMANDS:
            phase.actions.append(command)
            result = self.driver.ssh(command, timeout=RECLAIM_TIMEOUT, mutating=True)
            if not result.ok:
                log("WARN", f"'{command}' exited {result.exit_code}")
        if self.ctx.dry_run:
            return phase
        after = self.probe.disk_percent()
        log("INFO", f"Root filesystem at {after}% after reclamation")
        if after is None or after > DISK_CRITICAL_PERCENT:
            phase.healthy = False
            phase.issues.append(f"disk usage still {after}% after reclamation")
            phase.recommendation = "Free space inside the guest or raise vm.disk_gb and recreate the VM"
        return phase

    def _summarise(self, report: RepairReport) -> None:
        if report.all_healthy:
            log("SUCCESS", "All healthy")
            return
        log("WARN", "PartialHealth: issues remain")
        for phase in report.phases:
            for issue in phase.issues:
                log("WARN", f"  {phase.name}: {issue}")
        for hint in report.recommendations:
            log("INFO", f"Recommendation: {hint}")
