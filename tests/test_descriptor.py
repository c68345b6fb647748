"""Tests for devbox.descriptor module."""

from __future__ import annotations

import dataclasses
import shlex
import stat
from pathlib import PureWindowsPath

import pytest

from devbox import descriptor
from devbox.exceptions import ManagerError
from devbox.models import Credentials, PortForward


def _token_line(text: str, variable: str) -> str:
    for line in text.splitlines():
        if line.strip().startswith(f"{variable}="):
            return line.strip()
    raise AssertionError(f"{variable} not found in descriptor")


class TestRender:
    def test_render_is_idempotent(self, default_config):
        assert descriptor.render(default_config) == descriptor.render(default_config)

    def test_contains_vm_settings(self, default_config):
        text = descriptor.render(default_config)
        assert "config.vm.box = 'bento/ubuntu-24.04'" in text
        assert "vb.cpus = 4" in text
        assert "vb.memory = 8192" in text
        assert "ip: '192.168.56.10'" in text
        assert "@@" not in text

    def test_port_forward_lines(self, default_config):
        cfg = dataclasses.replace(
            default_config,
            port_forwards=(PortForward(80, 8080, "HTTP ingress"), PortForward(3000, 3000, auto_correct=False)),
        )
        text = descriptor.render(cfg)
        assert 'guest: 80, host: 8080, auto_correct: true  # HTTP ingress' in text
        assert "guest: 3000, host: 3000, auto_correct: false" in text

    def test_stages_embedded_in_order(self, default_config):
        text = descriptor.render(default_config)
        positions = [text.index(f'config.vm.provision "{name}"') for name in ("base", "docker", "credentials")]
        assert positions == sorted(positions)
        assert "inline: <<-'DEVBOX_STAGE'" in text

    def test_credential_with_quote_round_trips_through_shell(self, default_config):
        secret = "ab'c'd"
        cfg = dataclasses.replace(default_config, credentials=Credentials(github_token=secret))
        line = _token_line(descriptor.render(cfg), "GITHUB_TOKEN")
        assert shlex.split(line) == [f"GITHUB_TOKEN={secret}"]

    def test_token_like_value_is_not_expanded(self, default_config):
        cfg = dataclasses.replace(default_config, credentials=Credentials(dockerhub_user="@@VM_NAME@@"))
        line = _token_line(descriptor.render(cfg), "DOCKERHUB_USER")
        assert line == "DOCKERHUB_USER='@@VM_NAME@@'"

    def test_windows_workspace_path_uses_forward_slashes(self):
        assert descriptor.format_workspace_path(PureWindowsPath("C:\\dev\\work")) == "C:/dev/work"


class TestRenderTokens:
    def test_unknown_token_raises(self):
        with pytest.raises(ManagerError, match="Unknown descriptor token"):
            descriptor.render_tokens("value: @@NOT_A_TOKEN@@", {})

    def test_missing_value_raises(self):
        with pytest.raises(ManagerError, match="No value"):
            descriptor.render_tokens("@@CPUS@@", {})

    def test_plain_text_passes_through(self):
        assert descriptor.render_tokens("user@@host", {}) == "user@@host"


class TestWriteIfChanged:
    def test_writes_new_file(self, tmp_path, default_config):
        path = tmp_path / "Vagrantfile"
        text = descriptor.render(default_config)
        assert descriptor.write_if_changed(path, text) is True
        assert path.read_text() == text

    def test_unchanged_text_is_not_rewritten(self, tmp_path):
        path = tmp_path / "Vagrantfile"
        descriptor.write_if_changed(path, "a\nb\n")
        mtime = path.stat().st_mtime_ns
        assert descriptor.write_if_changed(path, "a\r\nb\r\n") is False
        assert path.stat().st_mtime_ns == mtime

    def test_dry_run_writes_nothing(self, tmp_path):
        path = tmp_path / "Vagrantfile"
        assert descriptor.write_if_changed(path, "x\n", dry_run=True) is True
        assert not path.exists()

    def test_secret_descriptor_is_private(self, tmp_path):
        path = tmp_path / "Vagrantfile"
        descriptor.write_if_changed(path, "token\n", secret=True)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
