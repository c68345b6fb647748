"""GitHub release lookup and guest installation for binary-download tools."""

from __future__ import annotations

import re
import shlex
from typing import Any, Dict, Optional

import requests

from devbox.constants import (
    GITHUB_API,
    GUEST_ARCH_ALIASES,
    RELEASE_TIMEOUT,
    TOOLS,
    USER_AGENT,
)
from devbox.exceptions import ManagerError, RateLimited
from devbox.models import ReleaseAsset
from devbox.utils import log
from devbox.vagrant import VagrantDriver, error_for

INSTALL_TIMEOUT = 300.0
SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def _headers(token: Optional[str]) -> Dict[str, str]:
    headers = {"Accept": "application/vnd.github+json", "User-Agent": USER_AGENT}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def latest_release(tool: str, token: Optional[str] = None) -> Dict[str, Any]:
    repo = TOOLS[tool]["repo"]
    url = f"{GITHUB_API}/repos/{repo}/releases/latest"
    try:
        response = requests.get(url, headers=_headers(token), timeout=RELEASE_TIMEOUT)
    except requests.RequestException as exc:
        raise RateLimited(tool, str(exc))
    if response.status_code != 200:
        remaining = response.headers.get("X-RateLimit-Remaining")
        detail = f"HTTP {response.status_code}"
        if remaining == "0":
            detail += " (API rate limit exhausted; set credentials.github_token)"
        raise RateLimited(tool, detail)
    try:
        data = response.json()
    except ValueError:
        raise RateLimited(tool, "response was not JSON")
    if not isinstance(data, dict) or not data.get("tag_name") or not data.get("assets"):
        raise RateLimited(tool, "release has no tag or assets")
    return data


def parse_checksums(text: str, asset_name: str) -> Optional[str]:
    """Find ``asset_name``'s sha256 in a ``sha256sum``-style listing."""
    lines = [line.split() for line in text.splitlines() if line.strip()]
    for parts in lines:
        if len(parts) >= 2 and SHA256_RE.match(parts[0]):
            name = parts[-1].lstrip("*").rsplit("/", 1)[-1]
            if name == asset_name:
                return parts[0].lower()
    if len(lines) == 1 and SHA256_RE.match(lines[0][0]):
        return lines[0][0].lower()
    return None


def _fetch_checksum(tool: str, release: Dict[str, Any], asset_name: str) -> Optional[str]:
    pattern = re.compile(TOOLS[tool]["checksums"])
    candidates = [asset for asset in release["assets"] if pattern.match(asset.get("name", ""))]
    candidates.sort(key=lambda asset: not asset["name"].startswith(asset_name))
    for candidate in candidates:
        try:
            response = requests.get(
                candidate["browser_download_url"], headers={"User-Agent": USER_AGENT}, timeout=RELEASE_TIMEOUT
            )
        except requests.RequestException as exc:
            log("WARN", f"{tool}: could not fetch {candidate['name']}: {exc}")
            continue
        if response.status_code != 200:
            continue
        digest = parse_checksums(response.text, asset_name)
        if digest:
            return digest
    return None


def lookup(tool: str, arch: str, token: Optional[str] = None) -> ReleaseAsset:
    """Resolve the latest release asset of ``tool`` for guest architecture ``arch``."""
    spec = TOOLS[tool]
    if spec.get("install") != "binary":
        raise ManagerError(f"{tool} is not installed from a release download")
    arch_key = GUEST_ARCH_ALIASES.get(arch, arch)
    if arch_key not in spec["assets"]:
        raise ManagerError(f"{tool}: no release asset for architecture '{arch}'")
    release = latest_release(tool, token)
    pattern = re.compile(spec["assets"][arch_key])
    for asset in release["assets"]:
        name = asset.get("name", "")
        if pattern.match(name):
            sha = _fetch_checksum(tool, release, name)
            if sha is None:
                log("WARN", f"{tool}: no checksum published for {name}; installing unverified")
            return ReleaseAsset(
                tool=tool,
                version=str(release["tag_name"]),
                name=name,
                url=asset["browser_download_url"],
                sha256=sha,
            )
    raise RateLimited(tool, f"no asset matching {spec['assets'][arch_key]} in {release['tag_name']}")


def install_script(asset: ReleaseAsset) -> str:
    """Guest script: download, verify (exit 3 on mismatch), install to /usr/local/bin."""
    download = f'"$tmp"/{shlex.quote(asset.name)}'
    lines = [
        "set -eu",
        'tmp="$(mktemp -d)"',
        "trap 'rm -rf \"$tmp\"' EXIT",
        f"curl -fsSLo {download} {shlex.quote(asset.url)}",
    ]
    if asset.sha256:
        lines.append(f'echo {shlex.quote(asset.sha256)}"  "{download} | sha256sum -c --status || exit 3')
    if asset.name.endswith((".tar.gz", ".tgz")):
        lines.append(f'tar -xzf {download} -C "$tmp" {shlex.quote(asset.tool)}')
        source = f'"$tmp"/{shlex.quote(asset.tool)}'
    else:
        source = download
    lines.append(f"sudo install -m 0755 {source} /usr/local/bin/{shlex.quote(asset.tool)}")
    return "\n".join(lines)


def guest_arch(driver: VagrantDriver) -> str:
    result = driver.ssh("uname -m")
    if not result.ok:
        raise ManagerError("Could not determine guest architecture")
    raw = result.stdout.strip().lower()
    return GUEST_ARCH_ALIASES.get(raw, raw)


def install(driver: VagrantDriver, asset: ReleaseAsset) -> None:
    log("INFO", f"Installing {asset.tool} {asset.version} ({asset.name})")
    result = driver.ssh(install_script(asset), timeout=INSTALL_TIMEOUT, mutating=True)
    error = error_for(result, f"{asset.tool} install", asset=asset)
    if error is not None:
        raise error
    log("SUCCESS", f"{asset.tool} {asset.version} installed")


def installed_matches(version_output: str, asset: ReleaseAsset) -> bool:
    return asset.version.lstrip("v") in version_output
