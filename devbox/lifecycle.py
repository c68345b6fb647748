"""VM lifecycle orchestration for devbox."""

from __future__ import annotations

from typing import List, Optional

from devbox.constants import STOPPED_STATES, SUSPENDED_STATES
from devbox.exceptions import BootTimeout, ManagerError
from devbox.models import RunContext, StageResult
from devbox.stages import StageRunner
from devbox.utils import log
from devbox.vagrant import VagrantDriver, error_for, failed_provisioner

ACTION_NONE = "none"
ACTION_UP = "up"
ACTION_BOOT = "up-no-provision"
ACTION_RESUME = "resume"


def plan_action(state: str) -> str:
    """Cheapest transition that brings a VM in ``state`` to running."""
    if state == "running":
        return ACTION_NONE
    if state in SUSPENDED_STATES:
        return ACTION_RESUME
    if state in STOPPED_STATES:
        return ACTION_BOOT
    if state == "not_created":
        return ACTION_UP
    raise ManagerError(f"VM is in an unrecognised state '{state}'; inspect it with 'vagrant status'")


class LifecycleOrchestrator:
    def __init__(self, ctx: RunContext, driver: VagrantDriver, runner: Optional[StageRunner] = None) -> None:
        self.ctx = ctx
        self.driver = driver
        self.runner = runner or StageRunner(ctx, driver)
        self.last_action = ACTION_NONE

    def ensure_running(self, state: Optional[str] = None) -> str:
        """Bring the VM to running with the cheapest transition; returns the new state."""
        if state is None:
            state = self.driver.status()
        action = plan_action(state)
        self.last_action = action
        name = self.ctx.config.vm_name
        if action == ACTION_NONE:
            log("INFO", f"VM {name} already running")
            return state

        if action == ACTION_RESUME:
            log("INFO", f"Resuming VM {name} ({state})")
            result = self.driver.resume()
        elif action == ACTION_BOOT:
            log("INFO", f"Booting VM {name} without provisioning ({state})")
            result = self.driver.up(provision=False)
        else:
            log("INFO", f"Creating VM {name} (full boot and all stages)")
            result = self.driver.up(provision=True)

        error = error_for(result, f"vagrant {action}", boot=True)
        if error is not None:
            if action != ACTION_UP or isinstance(error, BootTimeout):
                raise error
            self._retry_provisioning(result, error)

        if self.ctx.dry_run:
            return "running"
        new_state = self.driver.status()
        if new_state != "running":
            raise ManagerError(f"VM {name} is {new_state} after {action}; expected running")
        log("SUCCESS", f"VM {name} is running")
        return new_state

    def _retry_provisioning(self, result, error: ManagerError) -> List[StageResult]:
        stage = failed_provisioner(result)
        if stage:
            log("ERROR", f"Provisioning failed in stage '{stage}'")
        log("ERROR", str(error))
        if self.driver.status() != "running":
            raise error
        if not self.ctx.ask("Retry provisioning once (stages only, no recreate)?", True):
            raise error
        log("INFO", "Retrying provisioning")
        return self.runner.run_stages()

    def provision(self) -> List[StageResult]:
        """Re-run every stage on a running VM."""
        return self.runner.run_stages()

    def reload(self) -> None:
        error = error_for(self.driver.reload(), "vagrant reload", boot=True)
        if error is not None:
            raise error

    def destroy(self) -> None:
        error = error_for(self.driver.destroy(), "vagrant destroy")
        if error is not None:
            raise error
        log("SUCCESS", f"VM {self.ctx.config.vm_name} destroyed")
