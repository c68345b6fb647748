"""Teardown of the VM and everything devbox generated for it."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import List

from devbox import prereqs
from devbox.config import override_has_credentials
from devbox.constants import HOST_TOOLS
from devbox.exceptions import ExternalToolMissing
from devbox.models import CleanupReport, RunContext
from devbox.utils import log
from devbox.vagrant import VagrantDriver, error_for


class CleanupController:
    """Ordered removal steps, each confirmed on its own.

    A declined or failed step is recorded as skipped and the next step still
    runs; partial cleanup is a normal outcome.
    """

    def __init__(self, ctx: RunContext, driver: VagrantDriver, uninstall_host_tools: bool = False) -> None:
        self.ctx = ctx
        self.driver = driver
        self.uninstall_host_tools = uninstall_host_tools
        self.report = CleanupReport()

    def run(self) -> CleanupReport:
        state = self._vm_state()
        if state not in ("unavailable", "not_created"):
            self.delete_snapshots()
            self.destroy_vm()
        else:
            log("INFO", "No VM to destroy")
        self.remove_artifacts()
        self.remove_override()
        self.remove_workspace()
        self.remove_kubeconfig()
        if self.uninstall_host_tools:
            self.remove_host_tools()
        self._summarise()
        return self.report

    def _vm_state(self) -> str:
        if not self.ctx.descriptor_path.exists() and not self.ctx.metadata_dir.exists():
            return "not_created"
        try:
            return self.driver.status()
        except ExternalToolMissing as exc:
            log("WARN", f"{exc}; skipping VM teardown")
            self.report.skipped.append("vm")
            return "unavailable"

    def _skip(self, item: str) -> None:
        log("INFO", f"Skipped {item}")
        self.report.skipped.append(item)

    def _remove_path(self, path: Path) -> None:
        if not path.exists():
            return
        if self.ctx.dry_run:
            log("INFO", f"[dry-run] Would remove {path}")
            self.report.skipped.append(str(path))
            return
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as exc:
            log("WARN", f"Failed to remove {path}: {exc}")
            self.report.skipped.append(str(path))
            return
        log("SUCCESS", f"Removed {path}")
        self.report.removed.append(str(path))

    def delete_snapshots(self) -> None:
        names = self.driver.snapshot_list()
        if not names:
            return
        log("INFO", f"Snapshots: {', '.join(names)}")
        if not self.ctx.ask(f"Delete {len(names)} snapshot(s)?", False):
            self._skip("snapshots")
            return
        for name in names:
            error = error_for(self.driver.snapshot_delete(name), f"snapshot delete {name}")
            if error is not None:
                log("WARN", str(error))
                self.report.skipped.append(f"snapshot {name}")
            elif not self.ctx.dry_run:
                self.report.removed.append(f"snapshot {name}")

    def destroy_vm(self) -> None:
        name = self.ctx.config.vm_name
        if not self.ctx.ask(f"Destroy VM {name}? All guest data will be lost", False):
            self._skip("vm")
            return
        error = error_for(self.driver.destroy(), "vagrant destroy")
        if error is not None:
            log("ERROR", str(error))
            self.report.skipped.append("vm")
            return
        if not self.ctx.dry_run:
            log("SUCCESS", f"VM {name} destroyed")
            self.report.removed.append("vm")

    def remove_artifacts(self) -> None:
        paths: List[Path] = [
            path
            for path in (self.ctx.descriptor_path, self.ctx.metadata_dir, self.ctx.logs_dir)
            if path.exists()
        ]
        if not paths:
            return
        if not self.ctx.ask(f"Remove generated files ({', '.join(p.name for p in paths)})?", False):
            self._skip("generated files")
            return
        for path in paths:
            self._remove_path(path)

    def remove_override(self) -> None:
        path = self.ctx.override_path
        if not path.exists():
            return
        if override_has_credentials(path):
            # --yes never deletes saved credentials; only an explicit answer does
            question = f"{path.name} contains saved credentials. Delete it anyway?"
            if not (self.ctx.interactive and self.ctx.confirm and self.ctx.confirm(question, False)):
                self._skip(str(path))
                return
        elif not self.ctx.ask(f"Remove local override {path.name}?", False):
            self._skip(str(path))
            return
        self._remove_path(path)

    def remove_workspace(self) -> None:
        path = self.ctx.config.workspace
        if not path.exists():
            return
        if not self.ctx.ask(f"Remove workspace directory {path}? Its files are not recoverable", False):
            self._skip("workspace")
            return
        self._remove_path(path)

    def remove_kubeconfig(self) -> None:
        path = self.ctx.kubeconfig_path
        if not path.exists():
            return
        if not self.ctx.ask(f"Remove host kubeconfig {path}?", False):
            self._skip("kubeconfig")
            return
        self._remove_path(path)

    def remove_host_tools(self) -> None:
        for tool in HOST_TOOLS:
            if shutil.which(tool) is None:
                continue
            if not self.ctx.ask(f"Uninstall {tool} from this host?", False):
                self._skip(tool)
                continue
            if prereqs.uninstall(self.ctx, tool):
                self.report.removed.append(tool)
            else:
                self.report.skipped.append(tool)

    def _summarise(self) -> None:
        if self.report.removed_anything:
            log("SUCCESS", f"Cleanup removed: {', '.join(self.report.removed)}")
        else:
            log("INFO", "Cleanup removed nothing")
        if self.report.skipped:
            log("INFO", f"Kept: {', '.join(self.report.skipped)}")
