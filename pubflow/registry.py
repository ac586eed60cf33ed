"""Package registry adapters.

- PypiRegistry: builds and uploads with uv, looks up published versions
  through the PyPI JSON API.
- NpmRegistry: drives the npm CLI.

Both implement the RegistryAdapter protocol from `pubflow.adapters`.
"""

from __future__ import annotations

import glob
import json
import os
import ssl
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from .config import PublishConfig
from .errors import ExternalCommandError, ValidationError
from .models import DependencyUpdate, PackageInfo
from .shell import run

PYPI_INDEX_URL = "https://pypi.org/pypi"
DEFAULT_TOKEN_ENV = "UV_PUBLISH_TOKEN"


class PypiRegistry:
    """RegistryAdapter for PyPI-compatible indexes.

    Args:
        root: Workspace root; distributions are built into `<root>/dist/<name>`.
        index_url: Base of the JSON API used for version lookups.
        timeout: HTTP timeout in seconds.
    """

    def __init__(self, root: Path, index_url: str = PYPI_INDEX_URL, timeout: float = 30.0) -> None:
        self.root = root
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout
        self._ssl_context = ssl.create_default_context()

    def _token_env(self, config: PublishConfig) -> str:
        return config.token_env or DEFAULT_TOKEN_ENV

    def validate_auth(self, config: PublishConfig) -> None:
        name = self._token_env(config)
        if not os.environ.get(name):
            raise ValidationError(
                f"No publish token found in ${name}",
                remediation=(
                    f"Export an API token before releasing:\n\n  export {name}=pypi-...\n\n"
                    "or set [tool.pubflow.publish].token-env to the variable that holds it."
                ),
            )

    def _get_json(self, url: str) -> dict[str, Any] | None:
        """GET a JSON document; None on 404."""
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout, context=self._ssl_context) as response:
                return json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            if e.code == 404:
                return None
            raise ExternalCommandError(f"HTTP {e.code}: {e.reason} ({url})") from e
        except urllib.error.URLError as e:
            raise ExternalCommandError(f"{e.reason} ({url})") from e
        except json.JSONDecodeError as e:
            raise ExternalCommandError(f"Invalid JSON from {url}: {e}") from e

    def get_latest_version(self, name: str, config: PublishConfig) -> str | None:
        data = self._get_json(f"{self.index_url}/{name}/json")
        if data is None:
            return None
        return data.get("info", {}).get("version")

    def _out_dir(self, package: PackageInfo) -> Path:
        return self.root / "dist" / package.name

    def pack(self, package: PackageInfo) -> str:
        out_dir = self._out_dir(package)
        run("uv", "build", package.path, "--out-dir", str(out_dir), cwd=self.root)
        wheels = sorted(glob.glob(str(out_dir / f"*-{package.version}-*.whl")))
        return wheels[-1] if wheels else str(out_dir)

    def publish(self, package: PackageInfo, config: PublishConfig) -> None:
        self.pack(package)
        files = sorted(glob.glob(str(self._out_dir(package) / f"*{package.version}*")))
        if not files:
            raise ExternalCommandError(f"No distributions built for {package.name} {package.version}")
        cmd = ["uv", "publish"]
        if config.registry_url:
            cmd += ["--publish-url", config.registry_url]
        env = dict(os.environ)
        token = env.get(self._token_env(config))
        if token:
            env[DEFAULT_TOKEN_ENV] = token
        run(*cmd, *files, cwd=self.root, env=env)

    def get_dependency_updates(self) -> list[DependencyUpdate]:
        result = run("uv", "pip", "list", "--outdated", "--format=json", cwd=self.root)
        try:
            rows = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ExternalCommandError(f"Unexpected output from uv pip list: {e}") from e
        return [
            DependencyUpdate(
                name=row["name"],
                current_version=row["version"],
                latest_version=row["latest_version"],
            )
            for row in rows
        ]


class NpmRegistry:
    """RegistryAdapter backed by the npm CLI."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _registry_args(self, config: PublishConfig) -> list[str]:
        return ["--registry", config.registry_url] if config.registry_url else []

    def validate_auth(self, config: PublishConfig) -> None:
        try:
            run("npm", "whoami", *self._registry_args(config), cwd=self.root)
        except ExternalCommandError as exc:
            raise ValidationError(
                "Not authenticated with the npm registry",
                remediation="Run `npm login` or set NPM_TOKEN in your .npmrc.",
            ) from exc

    def get_latest_version(self, name: str, config: PublishConfig) -> str | None:
        result = run(
            "npm", "view", name, "version", "--json", *self._registry_args(config),
            cwd=self.root, check=False,
        )
        if result.returncode != 0:
            if "E404" in result.stderr:
                return None
            raise ExternalCommandError(
                f"npm view {name} failed",
                command=["npm", "view", name],
                returncode=result.returncode,
                stderr=result.stderr,
            )
        output = result.stdout.strip()
        return json.loads(output) if output else None

    def pack(self, package: PackageInfo) -> str:
        dest = self.root / "dist"
        dest.mkdir(exist_ok=True)
        result = run("npm", "pack", package.path, "--json", "--pack-destination", str(dest), cwd=self.root)
        try:
            packed = json.loads(result.stdout)
            return str(dest / packed[0]["filename"])
        except (json.JSONDecodeError, IndexError, KeyError) as e:
            raise ExternalCommandError(f"Unexpected output from npm pack: {e}") from e

    def publish(self, package: PackageInfo, config: PublishConfig) -> None:
        cmd = ["npm", "publish", package.path, "--access", config.access, "--tag", config.dist_tag]
        if config.otp:
            cmd += ["--otp", config.otp]
        run(*cmd, *self._registry_args(config), cwd=self.root)

    def get_dependency_updates(self) -> list[DependencyUpdate]:
        # npm outdated exits 1 when anything is outdated
        result = run("npm", "outdated", "--json", cwd=self.root, check=False)
        data = json.loads(result.stdout or "{}")
        return [
            DependencyUpdate(name=name, current_version=info.get("current", ""), latest_version=info.get("latest", ""))
            for name, info in sorted(data.items())
        ]


def create_registry(kind: str, root: Path) -> PypiRegistry | NpmRegistry:
    if kind == "npm":
        return NpmRegistry(root)
    return PypiRegistry(root)
