"""Host-side kubeconfig handling for devbox."""

from __future__ import annotations

import socket
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from devbox.constants import (
    KUBE_API_PORT,
    KUBECONFIG_PROBE_TIMEOUT,
    KUBECONFIG_WAIT_ATTEMPTS,
    KUBECONFIG_WAIT_INTERVAL,
    KUBERNETES_DISTRIBUTIONS,
    LOOPBACK_HOSTS,
)
from devbox.exceptions import ManagerError
from devbox.models import RunContext
from devbox.utils import ensure_directory, log, wait_until
from devbox.vagrant import VagrantDriver, error_for


def distribution_commands(ctx: RunContext) -> Dict[str, Any]:
    info = KUBERNETES_DISTRIBUTIONS[ctx.config.kubernetes]
    name = ctx.config.vm_name
    return {key: value.format(name=name) if isinstance(value, str) else value for key, value in info.items()}


def _load(text: str) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManagerError(f"kubeconfig is not valid YAML: {exc}")
    if not isinstance(data, dict) or not isinstance(data.get("clusters"), list):
        raise ManagerError("kubeconfig has no clusters section")
    return data


def rewrite_server(text: str, private_ip: str) -> str:
    """Point every loopback API server address at ``private_ip``, keeping the port."""
    data = _load(text)
    for entry in data["clusters"]:
        cluster = (entry or {}).get("cluster") or {}
        server = cluster.get("server")
        if not server:
            continue
        parsed = urlparse(server)
        if parsed.hostname in LOOPBACK_HOSTS:
            port = parsed.port or KUBE_API_PORT
            cluster["server"] = parsed._replace(netloc=f"{private_ip}:{port}").geturl()
    return yaml.safe_dump(data, sort_keys=False)


def server_endpoint(path: Path) -> Optional[Tuple[str, int]]:
    try:
        data = _load(path.read_text())
    except (OSError, ManagerError):
        return None
    for entry in data["clusters"]:
        server = ((entry or {}).get("cluster") or {}).get("server")
        if server:
            parsed = urlparse(server)
            if parsed.hostname:
                return parsed.hostname, parsed.port or KUBE_API_PORT
    return None


def probe(path: Path, timeout: float = KUBECONFIG_PROBE_TIMEOUT) -> bool:
    """True when the kubeconfig exists and its API server accepts a TCP connection."""
    if not path.exists():
        return False
    endpoint = server_endpoint(path)
    if endpoint is None:
        return False
    host, port = endpoint
    if host in LOOPBACK_HOSTS:
        return False
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as exc:
        log("DEBUG", f"kubeconfig probe {host}:{port} failed: {exc}")
        return False


def wait_for_guest_kubeconfig(ctx: RunContext, driver: VagrantDriver) -> bool:
    command = distribution_commands(ctx)["kubeconfig_ready_cmd"]
    return wait_until(
        lambda: driver.ssh(command).ok,
        attempts=KUBECONFIG_WAIT_ATTEMPTS,
        interval=KUBECONFIG_WAIT_INTERVAL,
        label="guest kubeconfig",
    )


def extract(ctx: RunContext, driver: VagrantDriver) -> Path:
    """Copy the guest kubeconfig to the host, rewritten to the VM's private IP."""
    target = ctx.kubeconfig_path
    if ctx.dry_run:
        log("INFO", f"[dry-run] Would extract kubeconfig to {target}")
        return target
    if not wait_for_guest_kubeconfig(ctx, driver):
        raise ManagerError("Kubeconfig did not appear in the guest; is the Kubernetes stage complete?")
    result = driver.ssh(distribution_commands(ctx)["kubeconfig_cmd"])
    error = error_for(result, "kubeconfig extraction")
    if error is not None:
        raise error
    rewritten = rewrite_server(result.stdout, ctx.config.private_ip)
    ensure_directory(target.parent)
    target.write_text(rewritten)
    try:
        target.chmod(0o600)
    except OSError:
        log("WARN", f"Could not restrict permissions on {target}")
    log("SUCCESS", f"Kubeconfig written to {target} (server {ctx.config.private_ip})")
    return target
