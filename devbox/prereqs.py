"""Host prerequisite detection and installation."""

from __future__ import annotations

import shutil
from typing import Dict, List, Optional

from devbox.constants import HOST_PACKAGE_MANAGERS, HOST_TOOLS, HOST_UNINSTALL
from devbox.exceptions import ExternalToolMissing
from devbox.models import RunContext
from devbox.utils import log, run


def detect_package_manager() -> Optional[str]:
    for manager in HOST_PACKAGE_MANAGERS:
        if shutil.which(manager):
            return manager
    return None


def missing_tools() -> List[str]:
    return [tool for tool in HOST_TOOLS if shutil.which(tool) is None]


def _install(ctx: RunContext, tool: str, manager: str) -> bool:
    cmd = HOST_TOOLS[tool][manager]
    if ctx.dry_run:
        log("INFO", f"[dry-run] Would run: {' '.join(cmd)}")
        return True
    log("INFO", f"Installing {tool} with {manager}")
    result = run(cmd)
    if not result.ok:
        log("ERROR", f"{manager} could not install {tool} (exit {result.exit_code})\n{result.stderr_tail()}")
    return result.ok


def ensure_prerequisites(ctx: RunContext) -> Dict[str, str]:
    """Make sure vagrant and VBoxManage are on PATH, installing them on confirmation.

    Returns a mapping of tool name to resolved path. Raises ExternalToolMissing
    when a tool is still absent afterwards.
    """
    missing = missing_tools()
    if missing:
        manager = detect_package_manager()
        if manager is None:
            raise ExternalToolMissing(
                f"Missing {', '.join(missing)} and no supported package manager "
                f"({', '.join(HOST_PACKAGE_MANAGERS)}) was found; install them manually"
            )
        for tool in missing:
            log("WARN", f"{tool} is not installed")
            if not ctx.ask(f"Install {tool} with {manager}?", True):
                raise ExternalToolMissing(f"{tool} is required; install it and rerun")
            _install(ctx, tool, manager)
        if ctx.dry_run:
            return {tool: shutil.which(tool) or tool for tool in HOST_TOOLS}

    found: Dict[str, str] = {}
    for tool in HOST_TOOLS:
        path = shutil.which(tool)
        if path is None:
            raise ExternalToolMissing(f"{tool} is still not available after installation; check your PATH")
        found[tool] = path
        log("DEBUG", f"{tool}: {path}")
    return found


def uninstall(ctx: RunContext, tool: str) -> bool:
    """Remove a host tool through the detected package manager."""
    manager = detect_package_manager()
    if manager is None:
        log("WARN", f"No supported package manager found; uninstall {tool} manually")
        return False
    package = HOST_TOOLS[tool][manager][-1]
    cmd = HOST_UNINSTALL[manager] + [package]
    if ctx.dry_run:
        log("INFO", f"[dry-run] Would run: {' '.join(cmd)}")
        return False
    result = run(cmd)
    if not result.ok:
        log("WARN", f"Uninstalling {tool} failed (exit {result.exit_code})")
        return False
    log("SUCCESS", f"{tool} uninstalled")
    return True
