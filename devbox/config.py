"""Layered configuration loading for devbox.

Resolution order per field: CLI parameter, local override file, base defaults
file, interactive prompt (falling back to the built-in default).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from devbox.constants import (
    BOOT_TIMEOUT_RANGE,
    CONNECT_TIMEOUT_RANGE,
    CPU_RANGE,
    DISK_RANGE,
    FIELD_DEFAULTS,
    IPV4_RE,
    KNOWN_PORT_KEYS,
    KNOWN_SECTIONS,
    KUBERNETES_DISTRIBUTIONS,
    MEMORY_RANGE,
    PORT_RANGE,
    VM_NAME_RE,
)
from devbox.exceptions import ConfigMissing, InvalidConfig
from devbox.models import Credentials, PortForward, ResolvedConfig, ToolVersionPins
from devbox.utils import log

# prompt(field, default, secret) -> raw answer ("" means "use the default")
Prompt = Callable[[str, Optional[str], bool], str]

MAX_PROMPT_ATTEMPTS = 3

INT_RANGES = {
    "cpus": CPU_RANGE,
    "memory": MEMORY_RANGE,
    "disk_gb": DISK_RANGE,
    "boot_timeout": BOOT_TIMEOUT_RANGE,
    "connect_timeout": CONNECT_TIMEOUT_RANGE,
}

# CLI parameter name -> (section, key)
CLI_FIELDS = {
    "name": ("vm", "name"),
    "cpus": ("vm", "cpus"),
    "memory": ("vm", "memory"),
    "disk_gb": ("vm", "disk_gb"),
    "private_ip": ("vm", "private_ip"),
    "github_token": ("credentials", "github_token"),
    "dockerhub_user": ("credentials", "dockerhub_user"),
    "dockerhub_token": ("credentials", "dockerhub_token"),
    "k3s_version": ("versions", "k3s"),
    "node_version": ("versions", "node"),
}

# Fields offered to the interactive prompt when no layer supplies them.
PROMPTED_VM_FIELDS = ("name", "cpus", "memory", "disk_gb", "private_ip")
SECRET_FIELDS = {"github_token", "dockerhub_token"}


def load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise InvalidConfig(f"{path} contains invalid YAML: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfig(f"{path} must contain a YAML mapping, got {type(data).__name__}")
    _check_keys(data, path)
    return data


def _check_keys(data: Dict[str, Any], source: Path) -> None:
    for section, value in data.items():
        if section == "ports":
            if value is None:
                continue
            if not isinstance(value, list):
                raise InvalidConfig(f"{source}: 'ports' must be a list")
            for entry in value:
                if not isinstance(entry, dict):
                    raise InvalidConfig(f"{source}: each port entry must be a mapping")
                unknown = set(entry) - KNOWN_PORT_KEYS
                if unknown:
                    raise InvalidConfig(f"{source}: unknown port key(s): {', '.join(sorted(unknown))}")
            continue
        if section not in KNOWN_SECTIONS:
            raise InvalidConfig(f"{source}: unknown section '{section}'")
        if value is None:
            continue
        if not isinstance(value, dict):
            raise InvalidConfig(f"{source}: section '{section}' must be a mapping")
        unknown = set(value) - KNOWN_SECTIONS[section]
        if unknown:
            raise InvalidConfig(f"{source}: unknown key(s) in '{section}': {', '.join(sorted(unknown))}")


def merge_layers(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge the override layer over base defaults.

    Scalar sections merge key by key; ``ports`` is replaced wholesale when the
    override defines it.
    """
    merged: Dict[str, Any] = {section: dict(base.get(section) or {}) for section in KNOWN_SECTIONS}
    merged["ports"] = list(base.get("ports") or [])
    if not override:
        return merged
    for section in KNOWN_SECTIONS:
        for key, value in (override.get(section) or {}).items():
            if value is not None:
                merged[section][key] = value
    if override.get("ports") is not None:
        merged["ports"] = list(override["ports"])
    return merged


def _parse_int(field: str, raw: Any) -> int:
    lo, hi = INT_RANGES[field]
    if isinstance(raw, bool):
        raise InvalidConfig(f"{field} must be an integer (got '{raw}')")
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise InvalidConfig(f"{field} must be an integer (got '{raw}')")
    if value < lo or value > hi:
        raise InvalidConfig(f"{field} must be between {lo} and {hi} (got {value})")
    return value


def validate_field(field: str, raw: Any) -> Any:
    """Return the coerced value for ``field`` or raise InvalidConfig."""
    if field in INT_RANGES:
        return _parse_int(field, raw)
    value = str(raw).strip()
    if field == "name":
        if not VM_NAME_RE.match(value):
            raise InvalidConfig(f"Invalid VM name '{value}'. Use letters, digits, '.', '_' or '-'")
    elif field == "private_ip":
        if not IPV4_RE.match(value):
            raise InvalidConfig(f"Invalid private_ip '{value}'. Expected a dotted-quad IPv4 address")
    elif field == "kubernetes":
        value = value.lower()
        if value not in KUBERNETES_DISTRIBUTIONS:
            supported = ", ".join(sorted(KUBERNETES_DISTRIBUTIONS))
            raise InvalidConfig(f"Unsupported kubernetes '{value}'. Supported: {supported}")
    elif not value:
        raise InvalidConfig(f"{field} must not be empty")
    return value


def _validate_secret(field: str, raw: Any) -> Optional[str]:
    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if "\n" in value or "\r" in value:
        raise InvalidConfig(f"{field} must be a single line")
    return value


def _parse_ports(entries: List[Dict[str, Any]]) -> Tuple[PortForward, ...]:
    ports: List[PortForward] = []
    lo, hi = PORT_RANGE
    for entry in entries:
        try:
            guest = int(entry["guest"])
            host = int(entry["host"])
        except KeyError as exc:
            raise InvalidConfig(f"Port entry {entry} is missing '{exc.args[0]}'")
        except (TypeError, ValueError):
            raise InvalidConfig(f"Port entry {entry}: ports must be integers")
        for label, port in (("guest", guest), ("host", host)):
            if not (lo <= port <= hi):
                raise InvalidConfig(f"Port entry {entry}: {label} port {port} out of range ({lo}-{hi})")
        description = " ".join(str(entry.get("description") or "").split())
        auto_correct = entry.get("auto_correct", True)
        ports.append(PortForward(guest, host, description, bool(auto_correct)))
    return tuple(ports)


def _resolve_vm_field(
    field: str,
    cli_value: Any,
    file_value: Any,
    prompt: Optional[Prompt],
) -> Any:
    candidate = cli_value if cli_value is not None else file_value
    if candidate is None:
        default = FIELD_DEFAULTS[field]
        if prompt is None or field not in PROMPTED_VM_FIELDS:
            candidate = default
        else:
            answer = prompt(field, str(default), False).strip()
            candidate = answer or default

    for _ in range(MAX_PROMPT_ATTEMPTS):
        try:
            return validate_field(field, candidate)
        except InvalidConfig as exc:
            if prompt is None:
                raise
            log("WARN", str(exc))
            answer = prompt(field, str(FIELD_DEFAULTS[field]), False).strip()
            candidate = answer or FIELD_DEFAULTS[field]
    return validate_field(field, candidate)


def resolve(
    base_path: Path,
    override_path: Optional[Path] = None,
    cli_params: Optional[Dict[str, Any]] = None,
    prompt: Optional[Prompt] = None,
) -> ResolvedConfig:
    """Resolve one immutable configuration snapshot from all layers.

    ``prompt`` is None for non-interactive callers; invalid values then raise
    InvalidConfig instead of being asked for again.
    """
    if not base_path.exists():
        raise ConfigMissing(f"Base configuration missing: {base_path}")
    base = load_yaml(base_path)

    override = None
    if override_path is not None and override_path.exists():
        log("DEBUG", f"Applying local overrides from {override_path}")
        override = load_yaml(override_path)

    merged = merge_layers(base, override)
    cli: Dict[str, Dict[str, Any]] = {section: {} for section in KNOWN_SECTIONS}
    for name, value in (cli_params or {}).items():
        if value is None:
            continue
        if name not in CLI_FIELDS:
            raise InvalidConfig(f"Unknown parameter '{name}'")
        section, key = CLI_FIELDS[name]
        cli[section][key] = value

    vm: Dict[str, Any] = {}
    for field in FIELD_DEFAULTS:
        vm[field] = _resolve_vm_field(field, cli["vm"].get(field), merged["vm"].get(field), prompt)

    credentials: Dict[str, Optional[str]] = {}
    for key in sorted(KNOWN_SECTIONS["credentials"]):
        raw = cli["credentials"].get(key, merged["credentials"].get(key))
        if raw is None and prompt is not None:
            raw = prompt(key, None, key in SECRET_FIELDS)
        credentials[key] = _validate_secret(key, raw)

    versions = {key: cli["versions"].get(key, merged["versions"].get(key)) for key in KNOWN_SECTIONS["versions"]}

    workspace = Path(os.path.expanduser(str(vm["workspace"])))
    if not workspace.is_absolute():
        workspace = base_path.parent / workspace

    return ResolvedConfig(
        vm_name=vm["name"],
        box=vm["box"],
        cpus=vm["cpus"],
        memory_mb=vm["memory"],
        disk_gb=vm["disk_gb"],
        private_ip=vm["private_ip"],
        workspace=workspace,
        kubernetes=vm["kubernetes"],
        boot_timeout=vm["boot_timeout"],
        connect_timeout=vm["connect_timeout"],
        port_forwards=_parse_ports(merged["ports"]),
        credentials=Credentials(**credentials),
        pins=ToolVersionPins(
            k3s_version=str(versions["k3s"]).strip() if versions["k3s"] else None,
            node_version=str(versions["node"]).strip() if versions["node"] else None,
        ),
    )


def persist_credentials(override_path: Path, entered: Dict[str, str]) -> bool:
    """Write newly entered credentials into the override file (mode 0600)."""
    values = {key: value for key, value in entered.items() if key in KNOWN_SECTIONS["credentials"] and value}
    if not values:
        return False
    data: Dict[str, Any] = {}
    if override_path.exists():
        data = load_yaml(override_path)
    section = dict(data.get("credentials") or {})
    section.update(values)
    data["credentials"] = section
    override_path.write_text(yaml.safe_dump(data, sort_keys=False))
    try:
        override_path.chmod(0o600)
    except OSError:
        log("WARN", f"Could not restrict permissions on {override_path}")
    log("SUCCESS", f"Saved {len(values)} credential(s) to {override_path}")
    return True


def override_has_credentials(override_path: Path) -> bool:
    if not override_path.exists():
        return False
    try:
        data = load_yaml(override_path)
    except InvalidConfig:
        return False
    return any((data.get("credentials") or {}).values())
