"""Shared test fixtures for devbox."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from devbox.models import CommandResult, PortForward, ResolvedConfig, RunContext


def make_result(exit_code: int = 0, stdout: str = "", stderr: str = "", timed_out: bool = False) -> CommandResult:
    return CommandResult(args=["vagrant"], exit_code=exit_code, stdout=stdout, stderr=stderr, timed_out=timed_out)


@pytest.fixture(autouse=True)
def isolated_kube_dir(tmp_path, monkeypatch):
    """Keep host kubeconfig writes inside the test's tmp_path."""
    kube_dir = tmp_path / "kube"
    monkeypatch.setattr("devbox.models.KUBECONFIG_DIR", kube_dir)
    return kube_dir


@pytest.fixture
def default_config(tmp_path) -> ResolvedConfig:
    """Return a ResolvedConfig carrying the built-in defaults."""
    return ResolvedConfig(
        vm_name="devbox",
        box="bento/ubuntu-24.04",
        cpus=4,
        memory_mb=8192,
        disk_gb=80,
        private_ip="192.168.56.10",
        workspace=tmp_path / "workspace",
        kubernetes="k3s",
        boot_timeout=600,
        connect_timeout=60,
        port_forwards=(PortForward(80, 8080, "HTTP ingress"),),
    )


@pytest.fixture
def make_ctx(tmp_path, default_config):
    """Build a RunContext rooted at tmp_path; keyword arguments override fields."""

    def _make(**kwargs) -> RunContext:
        fields = {"config": default_config, "project_dir": tmp_path}
        fields.update(kwargs)
        return RunContext(**fields)

    return _make


@pytest.fixture
def ctx(make_ctx) -> RunContext:
    return make_ctx()


@pytest.fixture
def driver():
    """A VagrantDriver stand-in whose calls all succeed with empty output."""
    mock = MagicMock()
    mock.status.return_value = "running"
    mock.ssh.return_value = make_result()
    for name in ("up", "resume", "reload", "halt", "destroy", "provision", "snapshot_save", "snapshot_delete"):
        getattr(mock, name).return_value = make_result()
    mock.snapshot_list.return_value = []
    return mock


@pytest.fixture
def cmd_result():
    """Factory for CommandResult values returned by the mocked driver."""
    return make_result
