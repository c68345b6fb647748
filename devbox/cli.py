"""CLI entry points for devbox."""

from __future__ import annotations

import argparse
import dataclasses
import getpass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from devbox import descriptor, kubeconfig, prereqs, releases
from devbox.cleanup import CleanupController
from devbox.config import CLI_FIELDS, persist_credentials, resolve
from devbox.constants import (
    _SENSITIVE_FIELDS,
    BASE_CONFIG_NAME,
    BASELINE_SNAPSHOT,
    DEFAULT_PROJECT_DIR,
    DISK_CRITICAL_PERCENT,
    KNOWN_SECTIONS,
    LOCAL_CONFIG_NAME,
    SYSTEM_UPDATE_COMMAND,
    TOOLS,
    VAGRANT_EXPERIMENTAL_FEATURES,
)
from devbox.exceptions import ManagerError, RateLimited
from devbox.health import HealthReporter, render as render_health
from devbox.lifecycle import ACTION_UP, LifecycleOrchestrator
from devbox.models import RepairReport, ResolvedConfig, RunContext
from devbox.probes import GuestProbe
from devbox.reconciler import Reconciler
from devbox.utils import has_controlling_tty, log
from devbox.vagrant import VagrantDriver, error_for

ACTIONS = ("Setup", "Cleanup", "Health", "Update", "Provision", "Repair")
SYSTEM_UPDATE_TIMEOUT = 1800.0


class InteractivePrompter:
    """Prompt callback for the config loader; remembers credentials typed in."""

    def __init__(self, input_fn: Callable[[str], str] = input, secret_fn: Callable[[str], str] = getpass.getpass):
        self.input_fn = input_fn
        self.secret_fn = secret_fn
        self.entered: Dict[str, str] = {}

    def __call__(self, field: str, default: Optional[str], secret: bool) -> str:
        label = field.replace("_", " ")
        suffix = f" [{default}]" if default else " (leave empty to skip)"
        try:
            if secret:
                answer = self.secret_fn(f"{label}{suffix}: ")
            else:
                answer = self.input_fn(f"{label}{suffix}: ")
        except EOFError:
            answer = ""
        if field in KNOWN_SECTIONS["credentials"] and answer.strip():
            self.entered[field] = answer.strip()
        return answer


def confirm(question: str, default: bool) -> bool:
    hint = "Y/n" if default else "y/N"
    try:
        answer = input(f"{question} [{hint}] ").strip().lower()
    except EOFError:
        return default
    if not answer:
        return default
    return answer in ("y", "yes")


def _offer(ctx: RunContext, question: str) -> bool:
    """Ask only a person at the terminal; --yes never accepts an offer."""
    return bool(ctx.interactive and ctx.confirm and ctx.confirm(question, False))


def _print_block(title: str, lines: List[str]) -> None:
    body = [f"  {title}"] + lines
    width = max(len(line) for line in body) + 2
    colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{colour}{'=' * width}{reset}", flush=True)
    for line in body:
        print(f"{colour}{line}{reset}", flush=True)
    print(f"{colour}{'=' * width}{reset}", flush=True)


def show_config(cfg: ResolvedConfig) -> None:
    """Print the resolved configuration with credentials masked."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if field.name == "port_forwards":
            print(f"  {field.name}:")
            for i, port in enumerate(value):
                print(f"    [{i}]: {port.host_port} -> {port.guest_port} {port.description}".rstrip())
        elif dataclasses.is_dataclass(value):
            print(f"  {field.name}:")
            for sub_field in dataclasses.fields(value):
                sub_value = getattr(value, sub_field.name)
                if sub_field.name in _SENSITIVE_FIELDS and sub_value:
                    sub_value = "********"
                print(f"    {sub_field.name}: {sub_value}")
        else:
            print(f"  {field.name}: {value}")


def print_repair_report(report: RepairReport) -> None:
    lines = []
    for phase in report.phases:
        lines.append(f"  {phase.name:<12} {'healthy' if phase.healthy else 'UNHEALTHY'}")
        for action in phase.actions:
            lines.append(f"    did: {action}")
        for issue in phase.issues:
            lines.append(f"    issue: {issue}")
    lines.append("")
    lines.append("  All healthy" if report.all_healthy else "  PartialHealth: issues remain")
    for hint in report.recommendations:
        lines.append(f"  -> {hint}")
    _print_block("Repair", lines)


def write_descriptor(ctx: RunContext) -> bool:
    text = descriptor.render(ctx.config)
    return descriptor.write_if_changed(
        ctx.descriptor_path, text, dry_run=ctx.dry_run, secret=ctx.config.credentials.any()
    )


def run_health(ctx: RunContext, driver: VagrantDriver, args: argparse.Namespace) -> int:
    snap = HealthReporter(ctx, driver).snapshot()
    for title, lines in render_health(snap, ctx.config.vm_name):
        _print_block(title, lines)
    issues = snap.issues(DISK_CRITICAL_PERCENT)
    if not issues:
        log("SUCCESS", "All healthy")
        return 0
    for issue in issues:
        log("WARN", issue)
    if _offer(ctx, "Run Repair now?"):
        return run_repair(ctx, driver, args)
    return 1 if snap.vm_state != "running" else 0


def run_repair(ctx: RunContext, driver: VagrantDriver, args: argparse.Namespace) -> int:
    reconciler = Reconciler(ctx, driver, halt_on_vm_failure=not getattr(args, "keep_going", False))
    report = reconciler.run()
    print_repair_report(report)
    return 0


def run_setup(
    ctx: RunContext,
    driver: VagrantDriver,
    args: argparse.Namespace,
    prompter: Optional[InteractivePrompter] = None,
) -> int:
    prereqs.ensure_prerequisites(ctx)
    if prompter is not None and prompter.entered and not ctx.dry_run:
        if ctx.ask(f"Save the credentials you entered to {LOCAL_CONFIG_NAME}?", False):
            persist_credentials(ctx.override_path, prompter.entered)

    state = driver.status()
    changed = write_descriptor(ctx)
    lifecycle = LifecycleOrchestrator(ctx, driver)
    lifecycle.ensure_running(state)
    if changed and state == "running":
        log("WARN", "The descriptor changed while the VM was running; settings apply after a reload")
        if ctx.ask("Reload the VM now?", False):
            lifecycle.reload()
        else:
            log("INFO", "Recommendation: run 'vagrant reload' when convenient")

    kubeconfig.extract(ctx, driver)

    if BASELINE_SNAPSHOT not in driver.snapshot_list() and ctx.ask("Save a baseline snapshot?", True):
        error = error_for(driver.snapshot_save(BASELINE_SNAPSHOT), "snapshot save")
        if error is not None:
            log("WARN", str(error))
        elif not ctx.dry_run:
            log("SUCCESS", f"Snapshot '{BASELINE_SNAPSHOT}' saved")

    if ctx.dry_run:
        log("INFO", "=== Dry-run complete (no VM changes made) ===")
        return 0
    snap = HealthReporter(ctx, driver).snapshot()
    for title, lines in render_health(snap, ctx.config.vm_name):
        _print_block(title, lines)
    _print_block(
        "Access",
        [
            f"  SSH:        vagrant ssh (in {ctx.project_dir})",
            f"  Kubeconfig: export KUBECONFIG={ctx.kubeconfig_path}",
            f"  Workspace:  {ctx.config.workspace}",
        ],
    )
    return 0


def update_tools(ctx: RunContext, driver: VagrantDriver) -> List[str]:
    """Bring binary-download tools to their latest release; returns per-tool problems."""
    probe = GuestProbe(ctx, driver)
    token = ctx.config.credentials.github_token
    problems: List[str] = []
    arch = releases.guest_arch(driver)
    for tool, spec in TOOLS.items():
        if spec["install"] != "binary":
            continue
        status = probe.tool_status(tool)
        try:
            asset = releases.lookup(tool, arch, token)
        except RateLimited as exc:
            log("WARN", str(exc))
            problems.append(tool)
            continue
        except ManagerError as exc:
            log("ERROR", str(exc))
            problems.append(tool)
            continue
        if status.present and releases.installed_matches(status.version or "", asset):
            log("INFO", f"{tool} is up to date ({asset.version})")
            continue
        try:
            releases.install(driver, asset)
        except ManagerError as exc:
            log("ERROR", str(exc))
            problems.append(tool)
    return problems


def run_update(ctx: RunContext, driver: VagrantDriver, args: argparse.Namespace) -> int:
    write_descriptor(ctx)
    state = driver.status()
    if state == "not_created":
        raise ManagerError(f"VM {ctx.config.vm_name} does not exist. Run Setup first")
    LifecycleOrchestrator(ctx, driver).ensure_running(state)

    log("INFO", "Updating guest packages")
    result = driver.ssh(SYSTEM_UPDATE_COMMAND, timeout=SYSTEM_UPDATE_TIMEOUT, mutating=True)
    error = error_for(result, "system update")
    if error is not None:
        raise error

    problems = update_tools(ctx, driver)
    if problems:
        log("WARN", f"Not updated: {', '.join(problems)}")
    else:
        log("SUCCESS", "Guest packages and tools are up to date")
    return 0


def run_provision(ctx: RunContext, driver: VagrantDriver, args: argparse.Namespace) -> int:
    write_descriptor(ctx)
    lifecycle = LifecycleOrchestrator(ctx, driver)
    lifecycle.ensure_running()
    if lifecycle.last_action == ACTION_UP:
        log("INFO", "Stages already ran while creating the VM")
        return 0
    lifecycle.provision()
    log("SUCCESS", "All stages completed")
    return 0


def run_cleanup(ctx: RunContext, driver: VagrantDriver, args: argparse.Namespace) -> int:
    CleanupController(ctx, driver, uninstall_host_tools=getattr(args, "uninstall_host_tools", False)).run()
    return 0


def choose_action(input_fn: Callable[[str], str] = input) -> Optional[str]:
    """Numbered menu offering every action; None when the user quits."""
    for index, action in enumerate(ACTIONS, start=1):
        print(f"  {index}) {action}")
    print("  q) Quit")
    while True:
        try:
            answer = input_fn("Select an action: ").strip().lower()
        except EOFError:
            return None
        if answer in ("q", "quit", ""):
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(ACTIONS):
            return ACTIONS[int(answer) - 1].lower()
        if answer in (a.lower() for a in ACTIONS):
            return answer
        print(f"  Enter 1-{len(ACTIONS)} or q")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="devbox: VirtualBox development VM manager")
    parser.add_argument(
        "--action", type=str.lower, choices=[a.lower() for a in ACTIONS], help="Action to run (menu if omitted)"
    )
    parser.add_argument("--project-dir", type=Path, default=None, help="Directory holding config.yaml")
    parser.add_argument("--name", help="VM name")
    parser.add_argument("--cpus", help="CPU count")
    parser.add_argument("--memory", help="Memory in MB")
    parser.add_argument("--disk-gb", dest="disk_gb", help="Disk size in GB")
    parser.add_argument("--private-ip", dest="private_ip", help="Host-only network address")
    parser.add_argument("--github-token", dest="github_token", help="GitHub token")
    parser.add_argument("--dockerhub-user", dest="dockerhub_user", help="Docker Hub user")
    parser.add_argument("--dockerhub-token", dest="dockerhub_token", help="Docker Hub token")
    parser.add_argument("--k3s-version", dest="k3s_version", help="k3s version pin")
    parser.add_argument("--node-version", dest="node_version", help="Node.js version pin")
    parser.add_argument("--dry-run", action="store_true", help="Run no mutating command and write no file")
    parser.add_argument("--yes", "-y", action="store_true", help="Accept every confirmation")
    parser.add_argument(
        "--keep-going", action="store_true", help="Repair: run later phases even when the VM cannot be started"
    )
    parser.add_argument(
        "--uninstall-host-tools", action="store_true", help="Cleanup: also offer to uninstall vagrant and VirtualBox"
    )
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    return parser


ACTION_HANDLERS = {
    "health": run_health,
    "repair": run_repair,
    "update": run_update,
    "provision": run_provision,
    "cleanup": run_cleanup,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    project_dir = (args.project_dir or DEFAULT_PROJECT_DIR).resolve()
    interactive = has_controlling_tty()
    cli_params = {name: getattr(args, name) for name in CLI_FIELDS}

    action = args.action
    if action is None and not args.show_config:
        if not interactive:
            log("ERROR", "No --action given and no terminal attached for the menu")
            return 2
        action = choose_action()
        if action is None:
            return 0

    prompter = InteractivePrompter() if interactive and action == "setup" else None
    try:
        cfg = resolve(project_dir / BASE_CONFIG_NAME, project_dir / LOCAL_CONFIG_NAME, cli_params, prompter)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    ctx = RunContext(
        config=cfg,
        project_dir=project_dir,
        env={"VAGRANT_CWD": str(project_dir), "VAGRANT_EXPERIMENTAL": VAGRANT_EXPERIMENTAL_FEATURES},
        dry_run=args.dry_run,
        assume_yes=args.yes,
        interactive=interactive,
        confirm=confirm,
    )
    driver = VagrantDriver(ctx)
    if args.dry_run:
        log("INFO", "Dry-run: no mutating command will run and no file will be written")

    try:
        if action == "setup":
            return run_setup(ctx, driver, args, prompter)
        return ACTION_HANDLERS[action](ctx, driver, args)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return exc.exit_code or 1
    except KeyboardInterrupt:
        log("WARN", "Interrupted; run Repair to reconcile the VM state")
        return 130
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
