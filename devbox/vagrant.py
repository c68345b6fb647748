"""Vagrant CLI adapter for devbox.

Every call returns a CommandResult; ``error_for`` is the single place where an
external result is mapped onto the devbox error taxonomy.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from devbox.constants import (
    BOOT_TIMEOUT_MARKERS,
    EXIT_CHECKSUM_MISMATCH,
    EXIT_NOT_FOUND,
    GUEST_COMMAND_TIMEOUT,
    OUTPUT_TAIL_LINES,
    PROVISIONER_RE,
    STATUS_TIMEOUT,
    VM_STATES,
)
from devbox.exceptions import BootTimeout, ChecksumMismatch, ExternalToolMissing, ManagerError
from devbox.models import CommandResult, ReleaseAsset, RunContext
from devbox.utils import log, run, tail


def parse_status(output: str) -> str:
    """Extract the machine state from ``vagrant status --machine-readable``."""
    for line in output.splitlines():
        parts = line.strip().split(",")
        if len(parts) >= 4 and parts[2] == "state":
            state = parts[3].strip().lower()
            return state if state in VM_STATES else "unknown"
    return "unknown"


def failed_provisioner(result: CommandResult) -> Optional[str]:
    """Name of the last provisioner Vagrant started, i.e. the one that failed."""
    matches = PROVISIONER_RE.findall(result.stdout)
    return matches[-1] if matches else None


def error_for(
    result: CommandResult, action: str, asset: Optional[ReleaseAsset] = None, boot: bool = False
) -> Optional[ManagerError]:
    """Map a failed result onto the error taxonomy; ``boot`` marks up/resume/reload calls."""
    if result.ok:
        return None
    output = result.output
    if boot and (result.timed_out or any(marker in output for marker in BOOT_TIMEOUT_MARKERS)):
        return BootTimeout(
            f"{action} did not complete within the configured timeout.\n"
            "  Inspect the VirtualBox VM log and rerun with VAGRANT_LOG=info for details.",
            exit_code=result.exit_code or 1,
        )
    if result.exit_code == EXIT_NOT_FOUND:
        return ExternalToolMissing(f"{result.args[0]} not found while running {action}", exit_code=EXIT_NOT_FOUND)
    if result.timed_out:
        return ManagerError(f"{action} timed out", exit_code=result.exit_code or 1)
    if asset is not None and result.exit_code == EXIT_CHECKSUM_MISMATCH:
        return ChecksumMismatch(asset.tool, asset.name)
    detail = tail(output, OUTPUT_TAIL_LINES)
    message = f"{action} failed (exit {result.exit_code})"
    if detail:
        message += f"\n{detail}"
    return ManagerError(message, exit_code=result.exit_code)


class VagrantDriver:
    """Thin wrapper around the ``vagrant`` executable for one project directory."""

    def __init__(self, ctx: RunContext, binary: str = "vagrant") -> None:
        self.ctx = ctx
        self.binary = binary

    def _run(self, args: List[str], timeout: Optional[float] = None, mutating: bool = True) -> CommandResult:
        cmd = [self.binary] + args
        if mutating and self.ctx.dry_run:
            log("INFO", f"[dry-run] Would run: {' '.join(cmd)}")
            return CommandResult(args=cmd, exit_code=0)
        return run(cmd, cwd=self.ctx.project_dir, env=self.ctx.env, timeout=timeout)

    @property
    def _boot_timeout(self) -> float:
        cfg = self.ctx.config
        return float(cfg.boot_timeout + cfg.connect_timeout)

    def status(self) -> str:
        result = self._run(["status", "--machine-readable"], timeout=STATUS_TIMEOUT, mutating=False)
        if result.exit_code == EXIT_NOT_FOUND:
            raise ExternalToolMissing(f"{self.binary} is not installed or not on PATH")
        if not result.ok:
            log("WARN", f"vagrant status failed (exit {result.exit_code})")
            return "unknown"
        return parse_status(result.stdout)

    def up(self, provision: bool = True) -> CommandResult:
        if provision:
            return self._run(["up", "--provision"])
        return self._run(["up", "--no-provision"], timeout=self._boot_timeout)

    def resume(self) -> CommandResult:
        return self._run(["resume"], timeout=self._boot_timeout)

    def reload(self) -> CommandResult:
        return self._run(["reload", "--no-provision"], timeout=self._boot_timeout)

    def destroy(self) -> CommandResult:
        return self._run(["destroy", "--force"])

    def provision(self, only: Optional[Sequence[str]] = None) -> CommandResult:
        args = ["provision"]
        if only:
            args.extend(["--provision-with", ",".join(only)])
        return self._run(args)

    def ssh(self, command: str, timeout: float = GUEST_COMMAND_TIMEOUT, mutating: bool = False) -> CommandResult:
        """Run ``command`` inside the guest; its exit status is returned unchanged."""
        return self._run(["ssh", "--command", command, "--", "-q"], timeout=timeout, mutating=mutating)

    def snapshot_list(self) -> List[str]:
        result = self._run(["snapshot", "list"], timeout=STATUS_TIMEOUT, mutating=False)
        if not result.ok:
            return []
        # "==> default:" headers and the "No snapshots" notice are not names
        return [
            line.strip()
            for line in result.stdout.splitlines()
            if line.strip() and not line.strip().startswith("==>") and "No snapshots" not in line
        ]

    def snapshot_save(self, name: str) -> CommandResult:
        return self._run(["snapshot", "save", "--force", name])

    def snapshot_delete(self, name: str) -> CommandResult:
        return self._run(["snapshot", "delete", name])
