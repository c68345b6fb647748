"""Vagrantfile rendering for devbox.

The descriptor is rendered from a fixed template through an allow-listed
``@@TOKEN@@`` substitution and written only when its normalised text changes,
so an unchanged configuration never alters the file Vagrant hashes.
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Dict, Optional, Sequence

from devbox.constants import TOKEN_RE
from devbox.exceptions import ManagerError
from devbox.models import ResolvedConfig, Stage
from devbox.stages import STAGES
from devbox.utils import log, normalize_newlines, ruby_single_quote, shell_single_quote

STAGE_TERMINATOR = "DEVBOX_STAGE"

TEMPLATE = textwrap.dedent(
    """\
    # -*- mode: ruby -*-
    # vi: set ft=ruby :
    # Generated by devbox; edits are overwritten on the next Setup or Provision.

    Vagrant.configure("2") do |config|
      config.vm.box = '@@BOX@@'
      config.vm.hostname = '@@VM_NAME@@'
      config.vm.boot_timeout = @@BOOT_TIMEOUT@@
      config.ssh.connect_timeout = @@CONNECT_TIMEOUT@@
      config.vm.disk :disk, size: "@@DISK_GB@@GB", primary: true
      config.vm.network "private_network", ip: '@@PRIVATE_IP@@'
    @@PORT_FORWARDS@@
      config.vm.synced_folder '@@WORKSPACE_PATH@@', '/home/vagrant/workspace', create: true

      config.vm.provider "virtualbox" do |vb|
        vb.name = '@@VM_NAME@@'
        vb.cpus = @@CPUS@@
        vb.memory = @@MEMORY_MB@@
      end

    @@STAGES@@
    end
    """
)

ALLOWED_TOKENS = {
    "BOX",
    "VM_NAME",
    "BOOT_TIMEOUT",
    "CONNECT_TIMEOUT",
    "DISK_GB",
    "PRIVATE_IP",
    "PORT_FORWARDS",
    "WORKSPACE_PATH",
    "CPUS",
    "MEMORY_MB",
    "STAGES",
    "KUBERNETES",
    "K3S_VERSION",
    "NODE_VERSION",
    "GITHUB_TOKEN",
    "DOCKERHUB_USER",
    "DOCKERHUB_TOKEN",
}


def render_tokens(text: str, values: Dict[str, str]) -> str:
    """Replace every ``@@NAME@@`` in ``text``; unknown names are an error.

    Replacement text is never rescanned, so values may safely contain ``@@``.
    """

    def _replace(match) -> str:
        name = match.group(1)
        if name not in ALLOWED_TOKENS:
            raise ManagerError(f"Unknown descriptor token '@@{name}@@'")
        if name not in values:
            raise ManagerError(f"No value for descriptor token '@@{name}@@'")
        return values[name]

    return TOKEN_RE.sub(_replace, text)


def format_workspace_path(path: Path) -> str:
    return str(path).replace("\\", "/")


def render_port_forwards(config: ResolvedConfig) -> str:
    lines = []
    for pf in config.port_forwards:
        line = (
            f'  config.vm.network "forwarded_port", guest: {pf.guest_port}, host: {pf.host_port}, '
            f"auto_correct: {'true' if pf.auto_correct else 'false'}"
        )
        if pf.description:
            line += f"  # {pf.description}"
        lines.append(line)
    return "\n".join(lines)


def token_values(config: ResolvedConfig) -> Dict[str, str]:
    creds = config.credentials
    return {
        "BOX": ruby_single_quote(config.box),
        "VM_NAME": config.vm_name,
        "BOOT_TIMEOUT": str(config.boot_timeout),
        "CONNECT_TIMEOUT": str(config.connect_timeout),
        "DISK_GB": str(config.disk_gb),
        "PRIVATE_IP": config.private_ip,
        "WORKSPACE_PATH": ruby_single_quote(format_workspace_path(config.workspace)),
        "CPUS": str(config.cpus),
        "MEMORY_MB": str(config.memory_mb),
        "KUBERNETES": config.kubernetes,
        "K3S_VERSION": shell_single_quote(config.pins.k3s_version or ""),
        "NODE_VERSION": shell_single_quote(config.pins.node_version or ""),
        "GITHUB_TOKEN": shell_single_quote(creds.github_token or ""),
        "DOCKERHUB_USER": shell_single_quote(creds.dockerhub_user or ""),
        "DOCKERHUB_TOKEN": shell_single_quote(creds.dockerhub_token or ""),
    }


def render_stage(stage: Stage, values: Dict[str, str]) -> str:
    body = render_tokens(stage.script, values).rstrip("\n")
    return (
        f'  config.vm.provision "{stage.name}", type: "shell", inline: <<-\'{STAGE_TERMINATOR}\'\n'
        f"{body}\n"
        f"  {STAGE_TERMINATOR}"
    )


def render(config: ResolvedConfig, template: str = TEMPLATE, stages: Optional[Sequence[Stage]] = None) -> str:
    """Render the descriptor text for ``config``; pure, never touches the VM."""
    values = token_values(config)
    stage_list = STAGES if stages is None else stages
    blocks = [render_stage(stage, values) for stage in stage_list]
    values = dict(values)
    values["PORT_FORWARDS"] = render_port_forwards(config)
    values["STAGES"] = "\n\n".join(blocks)
    return render_tokens(template, values)


def write_if_changed(path: Path, text: str, dry_run: bool = False, secret: bool = False) -> bool:
    """Write ``text`` to ``path`` unless the normalised contents already match.

    Returns True when the file was (or, in dry-run, would be) written.
    """
    new_text = normalize_newlines(text)
    if path.exists():
        current = normalize_newlines(path.read_text())
        if current == new_text:
            log("INFO", f"Descriptor unchanged: {path}")
            return False
    if dry_run:
        log("INFO", f"[dry-run] Would write descriptor {path}")
        return True
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="\n") as handle:
        handle.write(new_text)
    if secret:
        try:
            path.chmod(0o600)
        except OSError:
            log("WARN", f"Could not restrict permissions on {path}")
    log("SUCCESS", f"Descriptor written: {path}")
    return True
