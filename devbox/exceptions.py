"""Custom exceptions for devbox."""

from __future__ import annotations

from typing import List, Optional


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ConfigMissing(ManagerError):
    """The base defaults file does not exist."""


class InvalidConfig(ManagerError):
    """A configuration field failed validation."""


class ExternalToolMissing(ManagerError):
    """A host dependency (vagrant, VBoxManage) is absent."""


class BootTimeout(ManagerError):
    """The VM did not reach the running state within the configured bound."""


class StageFailure(ManagerError):
    """A provisioning stage exited non-zero; remaining stages were skipped."""

    def __init__(self, stage: str, exit_code: int, tail: str, results: Optional[List] = None) -> None:
        message = f"Stage '{stage}' failed (exit {exit_code})"
        if tail:
            message += f"\n{tail}"
        super().__init__(message, exit_code=exit_code or 1)
        self.stage = stage
        self.tail = tail
        self.results = results or []


class RateLimited(ManagerError):
    """Release metadata could not be fetched (usually the anonymous API limit)."""

    def __init__(self, tool: str, detail: str) -> None:
        super().__init__(f"No release data for {tool}: {detail}")
        self.tool = tool


class ChecksumMismatch(ManagerError):
    """A downloaded artifact failed sha256 verification."""

    def __init__(self, tool: str, asset: str) -> None:
        super().__init__(f"Checksum verification failed for {tool} ({asset})", exit_code=3)
        self.tool = tool
        self.asset = asset
