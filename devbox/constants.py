"""Global constants and path configuration for devbox."""

from __future__ import annotations

import os
import re
from pathlib import Path

# Project layout (relative to the project directory)
BASE_CONFIG_NAME = "config.yaml"
LOCAL_CONFIG_NAME = "config.local.yaml"
DESCRIPTOR_NAME = "Vagrantfile"
METADATA_DIR_NAME = ".vagrant"
# config.vm.disk (primary disk resize) is gated behind this Vagrant feature flag
VAGRANT_EXPERIMENTAL_FEATURES = "disks"
LOGS_DIR_NAME = "logs"

DEFAULT_PROJECT_DIR = Path(os.environ.get("DEVBOX_HOME") or Path.cwd())
KUBECONFIG_DIR = Path.home() / ".kube"

TRUTHY = {"1", "true", "yes", "on"}
_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

VM_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,62}$")
_OCTET = r"(25[0-5]|2[0-4][0-9]|1[0-9]{2}|[1-9]?[0-9])"
IPV4_RE = re.compile(rf"^{_OCTET}(\.{_OCTET}){{3}}$")
TOKEN_RE = re.compile(r"@@([A-Z][A-Z0-9_]*)@@")

# (min, max) inclusive
CPU_RANGE = (1, 32)
MEMORY_RANGE = (1024, 65536)
DISK_RANGE = (10, 500)
PORT_RANGE = (1, 65535)
BOOT_TIMEOUT_RANGE = (60, 3600)
CONNECT_TIMEOUT_RANGE = (5, 600)

FIELD_DEFAULTS = {
    "name": "devbox",
    "box": "bento/ubuntu-24.04",
    "cpus": 4,
    "memory": 8192,
    "disk_gb": 80,
    "private_ip": "192.168.56.10",
    "workspace": "workspace",
    "kubernetes": "k3s",
    "boot_timeout": 600,
    "connect_timeout": 60,
}

KNOWN_SECTIONS = {
    "vm": set(FIELD_DEFAULTS),
    "credentials": {"github_token", "dockerhub_user", "dockerhub_token"},
    "versions": {"k3s", "node"},
}
KNOWN_PORT_KEYS = {"guest", "host", "description", "auto_correct"}

_SENSITIVE_FIELDS = {"github_token", "dockerhub_token"}

VM_STATES = {
    "not_created",
    "running",
    "poweroff",
    "aborted",
    "gurumeditation",
    "saved",
    "suspended",
    "unknown",
}
STOPPED_STATES = {"poweroff", "aborted", "gurumeditation"}
SUSPENDED_STATES = {"saved", "suspended"}

KUBERNETES_DISTRIBUTIONS = {
    "k3s": {
        "service": "k3s",
        "kubeconfig_ready_cmd": "sudo test -s /etc/rancher/k3s/k3s.yaml",
        "kubeconfig_cmd": "sudo cat /etc/rancher/k3s/k3s.yaml",
        "nodes_cmd": "sudo k3s kubectl get nodes --no-headers",
    },
    "kind": {
        "service": None,
        "kubeconfig_ready_cmd": "kind get clusters 2>/dev/null | grep -qx {name}",
        "kubeconfig_cmd": "kind get kubeconfig --name {name}",
        "nodes_cmd": "kubectl --context kind-{name} get nodes --no-headers",
    },
}
CONTAINER_SERVICE = "docker"
LOOPBACK_HOSTS = ("127.0.0.1", "0.0.0.0", "localhost")
KUBE_API_PORT = 6443

# Bounded polling
NODE_READY_ATTEMPTS = 12
NODE_READY_INTERVAL = 5.0
KUBECONFIG_WAIT_ATTEMPTS = 30
KUBECONFIG_WAIT_INTERVAL = 2.0
KUBECONFIG_PROBE_TIMEOUT = 5.0

DISK_CRITICAL_PERCENT = 90
JOURNAL_MAX_SIZE = "100M"
DISK_RECLAIM_COMMANDS = [
    "sudo docker image prune -af",
    "sudo docker builder prune -af",
    "sudo apt-get clean",
    f"sudo journalctl --vacuum-size={JOURNAL_MAX_SIZE}",
]
SYSTEM_UPDATE_COMMAND = (
    "sudo DEBIAN_FRONTEND=noninteractive apt-get update -q && "
    "sudo DEBIAN_FRONTEND=noninteractive apt-get upgrade -yq"
)

GUEST_COMMAND_TIMEOUT = 120.0
STATUS_TIMEOUT = 60.0
OUTPUT_TAIL_LINES = 20

BOOT_TIMEOUT_MARKERS = (
    "Timed out while waiting for the machine to boot",
    "timed out while waiting for the machine",
)
PROVISIONER_RE = re.compile(r"Running provisioner: ([A-Za-z0-9_-]+)")

EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127
EXIT_CHECKSUM_MISMATCH = 3

GITHUB_API = "https://api.github.com"
RELEASE_TIMEOUT = 15
USER_AGENT = "devbox/1.0"

GUEST_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}

# install: "package" tools come from the guest package manager and are only
# restored by a full re-provision; "binary" tools are fetched from GitHub releases.
TOOLS = {
    "git": {"install": "package", "version_cmd": "git --version"},
    "docker": {"install": "package", "version_cmd": "docker --version"},
    "kubectl": {"install": "package", "version_cmd": "kubectl version --client"},
    "helm": {"install": "package", "version_cmd": "helm version --short"},
    "node": {"install": "package", "version_cmd": "node --version"},
    "k9s": {
        "install": "binary",
        "version_cmd": "k9s version --short",
        "repo": "derailed/k9s",
        "assets": {
            "x86_64": r"^k9s_Linux_amd64\.tar\.gz$",
            "aarch64": r"^k9s_Linux_arm64\.tar\.gz$",
        },
        "checksums": r"^checksums\.sha256$",
    },
    "kind": {
        "install": "binary",
        "version_cmd": "kind version",
        "repo": "kubernetes-sigs/kind",
        "assets": {
            "x86_64": r"^kind-linux-amd64$",
            "aarch64": r"^kind-linux-arm64$",
        },
        "checksums": r"^kind-linux-(amd64|arm64)\.sha256sum$",
    },
    "lazydocker": {
        "install": "binary",
        "version_cmd": "lazydocker --version",
        "repo": "jesseduffield/lazydocker",
        "assets": {
            "x86_64": r"^lazydocker_[0-9.]+_Linux_x86_64\.tar\.gz$",
            "aarch64": r"^lazydocker_[0-9.]+_Linux_arm64\.tar\.gz$",
        },
        "checksums": r"^checksums\.txt$",
    },
}

HOST_TOOLS = {
    "vagrant": {
        "apt-get": ["sudo", "apt-get", "install", "-y", "vagrant"],
        "dnf": ["sudo", "dnf", "install", "-y", "vagrant"],
        "brew": ["brew", "install", "--cask", "vagrant"],
        "winget": ["winget", "install", "--exact", "--id", "Hashicorp.Vagrant"],
        "choco": ["choco", "install", "-y", "vagrant"],
    },
    "VBoxManage": {
        "apt-get": ["sudo", "apt-get", "install", "-y", "virtualbox"],
        "dnf": ["sudo", "dnf", "install", "-y", "VirtualBox"],
        "brew": ["brew", "install", "--cask", "virtualbox"],
        "winget": ["winget", "install", "--exact", "--id", "Oracle.VirtualBox"],
        "choco": ["choco", "install", "-y", "virtualbox"],
    },
}
HOST_UNINSTALL = {
    "apt-get": ["sudo", "apt-get", "remove", "-y"],
    "dnf": ["sudo", "dnf", "remove", "-y"],
    "brew": ["brew", "uninstall", "--cask"],
    "winget": ["winget", "uninstall", "--exact", "--id"],
    "choco": ["choco", "uninstall", "-y"],
}
HOST_PACKAGE_MANAGERS = ("apt-get", "dnf", "brew", "winget", "choco")

BASELINE_SNAPSHOT = "baseline"
