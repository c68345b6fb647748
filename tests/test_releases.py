"""Tests for devbox.releases module."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from devbox import releases
from devbox.exceptions import ChecksumMismatch, ManagerError, RateLimited
from devbox.models import ReleaseAsset

SHA = "a" * 64


def _response(status=200, json_data=None, text="", headers=None):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


K9S_RELEASE = {
    "tag_name": "v0.32.5",
    "assets": [
        {"name": "checksums.sha256", "browser_download_url": "https://example.com/checksums.sha256"},
        {"name": "k9s_Linux_amd64.tar.gz", "browser_download_url": "https://example.com/k9s_Linux_amd64.tar.gz"},
        {"name": "k9s_Linux_arm64.tar.gz", "browser_download_url": "https://example.com/k9s_Linux_arm64.tar.gz"},
    ],
}


class TestLatestRelease:
    def test_sends_token_when_present(self):
        with patch("devbox.releases.requests.get", return_value=_response(json_data=K9S_RELEASE)) as mock_get:
            releases.latest_release("k9s", token="ghp_abc")
        url = mock_get.call_args[0][0]
        assert url == "https://api.github.com/repos/derailed/k9s/releases/latest"
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer ghp_abc"

    def test_anonymous_request_has_no_auth_header(self):
        with patch("devbox.releases.requests.get", return_value=_response(json_data=K9S_RELEASE)) as mock_get:
            releases.latest_release("k9s")
        assert "Authorization" not in mock_get.call_args.kwargs["headers"]

    def test_rate_limit_raises(self):
        response = _response(status=403, headers={"X-RateLimit-Remaining": "0"})
        with patch("devbox.releases.requests.get", return_value=response):
            with pytest.raises(RateLimited, match="rate limit") as exc:
                releases.latest_release("k9s")
        assert exc.value.tool == "k9s"

    def test_network_error_raises_rate_limited(self):
        with patch("devbox.releases.requests.get", side_effect=requests.ConnectionError("offline")):
            with pytest.raises(RateLimited):
                releases.latest_release("kind")

    def test_release_without_assets(self):
        with patch("devbox.releases.requests.get", return_value=_response(json_data={"tag_name": "v1"})):
            with pytest.raises(RateLimited, match="no tag or assets"):
                releases.latest_release("kind")


class TestParseChecksums:
    def test_finds_named_entry(self):
        text = f"{'b' * 64}  k9s_Linux_arm64.tar.gz\n{SHA}  k9s_Linux_amd64.tar.gz\n"
        assert releases.parse_checksums(text, "k9s_Linux_amd64.tar.gz") == SHA

    def test_single_digest_file(self):
        assert releases.parse_checksums(f"{SHA.upper()}\n", "kind-linux-amd64") == SHA

    def test_missing_entry(self):
        assert releases.parse_checksums(f"{SHA}  other\n{SHA}  another\n", "k9s") is None


class TestLookup:
    def test_picks_arch_asset_with_checksum(self):
        checksums = _response(text=f"{SHA}  k9s_Linux_amd64.tar.gz\n")
        with patch("devbox.releases.requests.get", side_effect=[_response(json_data=K9S_RELEASE), checksums]):
            asset = releases.lookup("k9s", "amd64")
        assert asset.name == "k9s_Linux_amd64.tar.gz"
        assert asset.version == "v0.32.5"
        assert asset.sha256 == SHA

    def test_package_tool_rejected(self):
        with pytest.raises(ManagerError, match="not installed from a release"):
            releases.lookup("git", "x86_64")

    def test_unsupported_arch(self):
        with pytest.raises(ManagerError, match="architecture"):
            releases.lookup("k9s", "riscv64")


class TestInstall:
    def _asset(self, sha=SHA):
        return ReleaseAsset(
            tool="k9s", version="v0.32.5", name="k9s_Linux_amd64.tar.gz", url="https://example.com/k9s.tgz", sha256=sha
        )

    def test_script_verifies_and_extracts(self):
        script = releases.install_script(self._asset())
        assert "sha256sum -c --status || exit 3" in script
        assert "tar -xzf" in script
        assert "/usr/local/bin/k9s" in script

    def test_script_without_checksum_skips_verification(self):
        assert "sha256sum" not in releases.install_script(self._asset(sha=None))

    def test_install_runs_mutating_ssh(self, driver):
        releases.install(driver, self._asset())
        assert driver.ssh.call_args.kwargs["mutating"] is True

    def test_checksum_failure_maps_to_mismatch(self, driver, cmd_result):
        driver.ssh.return_value = cmd_result(3)
        with pytest.raises(ChecksumMismatch):
            releases.install(driver, self._asset())

    def test_guest_arch_normalised(self, driver, cmd_result):
        driver.ssh.return_value = cmd_result(stdout="arm64\n")
        assert releases.guest_arch(driver) == "aarch64"

    def test_installed_matches_ignores_v_prefix(self):
        assert releases.installed_matches("Version: 0.32.5", self._asset())
        assert not releases.installed_matches("Version: 0.31.0", self._asset())
