"""devbox package."""

__all__ = [
    "cleanup",
    "cli",
    "config",
    "constants",
    "descriptor",
    "exceptions",
    "health",
    "kubeconfig",
    "lifecycle",
    "models",
    "prereqs",
    "probes",
    "reconciler",
    "releases",
    "stages",
    "utils",
    "vagrant",
]
