"""Tests for devbox.probes module."""

from __future__ import annotations

import dataclasses

import pytest

from devbox.probes import GuestProbe, parse_disk_percent, parse_nodes_ready


class TestParsers:
    def test_all_nodes_ready(self):
        out = "devbox   Ready    control-plane,master   3d   v1.30.4+k3s1\n"
        assert parse_nodes_ready(out) is True

    def test_one_node_not_ready(self):
        out = "a   Ready    control-plane   3d   v1\nb   NotReady   <none>   3d   v1\n"
        assert parse_nodes_ready(out) is False

    def test_scheduling_disabled_still_ready(self):
        assert parse_nodes_ready("a   Ready,SchedulingDisabled   <none>   1d   v1\n") is True

    def test_no_nodes(self):
        assert parse_nodes_ready("") is False

    @pytest.mark.parametrize("output,expected", [("Use%\n 42%\n", 42), (" 95%", 95), ("garbage", None)])
    def test_disk_percent(self, output, expected):
        assert parse_disk_percent(output) == expected


class TestGuestProbe:
    def test_k3s_monitors_two_services(self, ctx, driver):
        assert GuestProbe(ctx, driver).monitored_services() == ["docker", "k3s"]

    def test_kind_monitors_docker_only(self, make_ctx, default_config, driver):
        ctx = make_ctx(config=dataclasses.replace(default_config, kubernetes="kind"))
        assert GuestProbe(ctx, driver).monitored_services() == ["docker"]

    def test_service_active_uses_exit_status(self, ctx, driver, cmd_result):
        driver.ssh.return_value = cmd_result(3)
        assert GuestProbe(ctx, driver).service_active("docker") is False
        driver.ssh.assert_called_once_with("systemctl is-active --quiet docker")

    def test_tool_status_reads_first_version_line(self, ctx, driver, cmd_result):
        driver.ssh.return_value = cmd_result(stdout="v0.32.5\nextra\n")
        status = GuestProbe(ctx, driver).tool_status("k9s")
        assert status.present
        assert status.version == "v0.32.5"
        assert status.install == "binary"

    def test_missing_tool(self, ctx, driver, cmd_result):
        driver.ssh.return_value = cmd_result(1)
        status = GuestProbe(ctx, driver).tool_status("helm")
        assert not status.present
        assert status.version is None

    def test_disk_percent_failure(self, ctx, driver, cmd_result):
        driver.ssh.return_value = cmd_result(255)
        assert GuestProbe(ctx, driver).disk_percent() is None
