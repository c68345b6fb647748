"""Tests for devbox.lifecycle module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from devbox.exceptions import BootTimeout, ManagerError
from devbox.lifecycle import (
    ACTION_BOOT,
    ACTION_NONE,
    ACTION_RESUME,
    ACTION_UP,
    LifecycleOrchestrator,
    plan_action,
)


class TestPlanAction:
    @pytest.mark.parametrize(
        "state,expected",
        [
            ("running", ACTION_NONE),
            ("saved", ACTION_RESUME),
            ("suspended", ACTION_RESUME),
            ("poweroff", ACTION_BOOT),
            ("aborted", ACTION_BOOT),
            ("not_created", ACTION_UP),
        ],
    )
    def test_cheapest_transition(self, state, expected):
        assert plan_action(state) == expected

    def test_unknown_state_raises(self):
        with pytest.raises(ManagerError, match="unrecognised state"):
            plan_action("unknown")


class TestEnsureRunning:
    def test_suspended_resumes_never_boots(self, ctx, driver):
        driver.status.return_value = "running"
        lifecycle = LifecycleOrchestrator(ctx, driver)
        assert lifecycle.ensure_running("saved") == "running"
        driver.resume.assert_called_once()
        driver.up.assert_not_called()
        assert lifecycle.last_action == ACTION_RESUME

    def test_not_created_boots_with_all_stages(self, ctx, driver):
        lifecycle = LifecycleOrchestrator(ctx, driver)
        lifecycle.ensure_running("not_created")
        driver.up.assert_called_once_with(provision=True)
        assert lifecycle.last_action == ACTION_UP

    def test_poweroff_boots_without_provisioning(self, ctx, driver):
        LifecycleOrchestrator(ctx, driver).ensure_running("poweroff")
        driver.up.assert_called_once_with(provision=False)

    def test_running_is_a_no_op(self, ctx, driver):
        LifecycleOrchestrator(ctx, driver).ensure_running("running")
        driver.up.assert_not_called()
        driver.resume.assert_not_called()

    def test_queries_state_when_not_given(self, ctx, driver):
        driver.status.side_effect = ["poweroff", "running"]
        LifecycleOrchestrator(ctx, driver).ensure_running()
        driver.up.assert_called_once_with(provision=False)

    def test_still_stopped_after_boot_raises(self, ctx, driver):
        driver.status.return_value = "poweroff"
        with pytest.raises(ManagerError, match="expected running"):
            LifecycleOrchestrator(ctx, driver).ensure_running("poweroff")

    def test_boot_timeout_is_not_retried(self, ctx, driver, cmd_result):
        driver.up.return_value = cmd_result(1, stderr="Timed out while waiting for the machine to boot")
        runner = MagicMock()
        with pytest.raises(BootTimeout):
            LifecycleOrchestrator(ctx, driver, runner).ensure_running("not_created")
        runner.run_stages.assert_not_called()

    def test_boot_command_timeout_is_boot_timeout(self, ctx, driver, cmd_result):
        driver.up.return_value = cmd_result(124, timed_out=True)
        with pytest.raises(BootTimeout):
            LifecycleOrchestrator(ctx, driver).ensure_running("poweroff")

    def test_failed_provisioning_retried_once_on_confirmation(self, make_ctx, driver, cmd_result):
        ctx = make_ctx(assume_yes=True)
        driver.up.return_value = cmd_result(1, stdout="Running provisioner: docker (shell)...")
        runner = MagicMock()
        LifecycleOrchestrator(ctx, driver, runner).ensure_running("not_created")
        runner.run_stages.assert_called_once_with()
        driver.up.assert_called_once()

    def test_failed_provisioning_not_retried_when_declined(self, make_ctx, driver, cmd_result):
        ctx = make_ctx(interactive=True, confirm=MagicMock(return_value=False))
        driver.up.return_value = cmd_result(1)
        runner = MagicMock()
        with pytest.raises(ManagerError):
            LifecycleOrchestrator(ctx, driver, runner).ensure_running("not_created")
        runner.run_stages.assert_not_called()

    def test_dry_run_skips_state_recheck(self, make_ctx, driver):
        ctx = make_ctx(dry_run=True)
        assert LifecycleOrchestrator(ctx, driver).ensure_running("poweroff") == "running"
        driver.status.assert_not_called()
