"""Tests for devbox.health module."""

from __future__ import annotations

from unittest.mock import MagicMock

from devbox.constants import DISK_CRITICAL_PERCENT
from devbox.health import HealthReporter, render
from devbox.models import HealthSnapshot, ToolStatus


class TestHealthReporter:
    def test_stopped_vm_reports_only_state(self, ctx, driver):
        driver.status.return_value = "poweroff"
        probe = MagicMock()
        snap = HealthReporter(ctx, driver, probe).snapshot()
        assert snap.vm_state == "poweroff"
        probe.service_active.assert_not_called()
        issues = snap.issues(DISK_CRITICAL_PERCENT)
        assert issues == ["VM is poweroff; run Setup or Repair"]

    def test_running_vm_collects_every_query(self, ctx, driver):
        probe = MagicMock()
        probe.monitored_services.return_value = ["docker", "k3s"]
        probe.service_active.side_effect = [True, False]
        probe.nodes_ready.return_value = True
        probe.tool_status.side_effect = lambda tool: ToolStatus(name=tool, present=True, version="1")
        probe.disk_percent.return_value = 93
        probe.kubeconfig_valid.return_value = True
        snap = HealthReporter(ctx, driver, probe).snapshot()
        assert snap.services == {"docker": True, "k3s": False}
        issues = snap.issues(DISK_CRITICAL_PERCENT)
        assert "service k3s is inactive" in issues
        assert "disk usage 93% exceeds 90%" in issues

    def test_reporter_takes_no_corrective_action(self, ctx, driver):
        probe = MagicMock()
        probe.monitored_services.return_value = ["docker"]
        probe.service_active.return_value = False
        HealthReporter(ctx, driver, probe).snapshot()
        driver.ssh.assert_not_called()
        driver.up.assert_not_called()
        driver.resume.assert_not_called()


class TestRender:
    def test_stopped_vm_has_single_block(self):
        blocks = render(HealthSnapshot(vm_state="poweroff"), "devbox")
        assert blocks == [("VM", ["  devbox: poweroff"])]

    def test_running_vm_blocks(self):
        snap = HealthSnapshot(
            vm_state="running",
            services={"docker": True},
            nodes_ready=False,
            tools={"k9s": ToolStatus(name="k9s", present=False, install="binary")},
            disk_percent=None,
        )
        titles = [title for title, _ in render(snap, "devbox")]
        assert titles == ["VM", "Services", "Tools", "Host"]
        lines = dict(render(snap, "devbox"))
        assert any("NotReady" in line for line in lines["Services"])
        assert any("missing" in line for line in lines["Tools"])
        assert any("unknown" in line for line in lines["Host"])
