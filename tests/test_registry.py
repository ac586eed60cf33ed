"""Tests for pubflow.registry."""

from __future__ import annotations

import io
import json
import subprocess
import urllib.error
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from pubflow.config import PublishConfig
from pubflow.errors import ExternalCommandError, ValidationError
from pubflow.models import PackageInfo
from pubflow.registry import NpmRegistry, PypiRegistry, create_registry


def completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def json_response(data: dict) -> MagicMock:
    response = MagicMock()
    response.read.return_value = json.dumps(data).encode("utf-8")
    response.__enter__.return_value = response
    return response


PKG = PackageInfo(name="pkg-a", path="packages/pkg-a", version="1.2.0")


class TestPypiRegistry:
    def test_auth_requires_token(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("UV_PUBLISH_TOKEN", raising=False)
        with pytest.raises(ValidationError) as exc_info:
            PypiRegistry(tmp_path).validate_auth(PublishConfig())
        assert "UV_PUBLISH_TOKEN" in str(exc_info.value)

    def test_auth_custom_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PYPI_TOKEN", "pypi-abc")
        PypiRegistry(tmp_path).validate_auth(PublishConfig(token_env="PYPI_TOKEN"))

    @patch("pubflow.registry.urllib.request.urlopen")
    def test_latest_version(self, mock_urlopen: MagicMock, tmp_path: Path) -> None:
        mock_urlopen.return_value = json_response({"info": {"version": "1.1.0"}})
        assert PypiRegistry(tmp_path).get_latest_version("pkg-a", PublishConfig()) == "1.1.0"
        request = mock_urlopen.call_args[0][0]
        assert request.full_url == "https://pypi.org/pypi/pkg-a/json"

    @patch("pubflow.registry.urllib.request.urlopen")
    def test_never_published(self, mock_urlopen: MagicMock, tmp_path: Path) -> None:
        mock_urlopen.side_effect = urllib.error.HTTPError("url", 404, "Not Found", {}, io.BytesIO())
        assert PypiRegistry(tmp_path).get_latest_version("pkg-a", PublishConfig()) is None

    @patch("pubflow.registry.urllib.request.urlopen")
    def test_server_error(self, mock_urlopen: MagicMock, tmp_path: Path) -> None:
        mock_urlopen.side_effect = urllib.error.HTTPError("url", 503, "Unavailable", {}, io.BytesIO())
        with pytest.raises(ExternalCommandError, match="503"):
            PypiRegistry(tmp_path).get_latest_version("pkg-a", PublishConfig())

    @patch("pubflow.registry.run")
    def test_publish_uploads_built_files(
        self, mock_run: MagicMock, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PYPI_TOKEN", "pypi-abc")
        out_dir = tmp_path / "dist" / "pkg-a"
        out_dir.mkdir(parents=True)
        (out_dir / "pkg_a-1.2.0-py3-none-any.whl").touch()
        (out_dir / "pkg_a-1.2.0.tar.gz").touch()
        mock_run.return_value = completed()

        PypiRegistry(tmp_path).publish(PKG, PublishConfig(token_env="PYPI_TOKEN"))

        build, upload = mock_run.call_args_list
        assert build.args[:3] == ("uv", "build", "packages/pkg-a")
        assert upload.args[:2] == ("uv", "publish")
        assert len(upload.args) == 4
        assert upload.kwargs["env"]["UV_PUBLISH_TOKEN"] == "pypi-abc"

    @patch("pubflow.registry.run")
    def test_publish_without_distributions(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed()
        with pytest.raises(ExternalCommandError, match="No distributions"):
            PypiRegistry(tmp_path).publish(PKG, PublishConfig())

    @patch("pubflow.registry.run")
    def test_dependency_updates(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed(
            stdout=json.dumps([{"name": "requests", "version": "2.0.0", "latest_version": "2.32.0"}])
        )
        [update] = PypiRegistry(tmp_path).get_dependency_updates()
        assert (update.name, update.current_version, update.latest_version) == ("requests", "2.0.0", "2.32.0")


class TestNpmRegistry:
    @patch("pubflow.registry.run")
    def test_auth_failure(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.side_effect = ExternalCommandError("npm whoami failed", returncode=1)
        with pytest.raises(ValidationError, match="npm"):
            NpmRegistry(tmp_path).validate_auth(PublishConfig())

    @patch("pubflow.registry.run")
    def test_latest_version(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed(stdout='"1.1.0"\n')
        assert NpmRegistry(tmp_path).get_latest_version("a", PublishConfig()) == "1.1.0"

    @patch("pubflow.registry.run")
    def test_not_found(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed(stderr="npm ERR! code E404", returncode=1)
        assert NpmRegistry(tmp_path).get_latest_version("a", PublishConfig()) is None

    @patch("pubflow.registry.run")
    def test_view_failure(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed(stderr="npm ERR! code ETIMEDOUT", returncode=1)
        with pytest.raises(ExternalCommandError):
            NpmRegistry(tmp_path).get_latest_version("a", PublishConfig())

    @patch("pubflow.registry.run")
    def test_publish_args(self, mock_run: MagicMock, tmp_path: Path) -> None:
        config = PublishConfig(access="restricted", dist_tag="next", otp="123456")
        NpmRegistry(tmp_path).publish(PKG, config)
        mock_run.assert_called_once_with(
            "npm", "publish", "packages/pkg-a", "--access", "restricted", "--tag", "next",
            "--otp", "123456", cwd=tmp_path,
        )

    @patch("pubflow.registry.run")
    def test_pack(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed(stdout=json.dumps([{"filename": "pkg-a-1.2.0.tgz"}]))
        assert NpmRegistry(tmp_path).pack(PKG) == str(tmp_path / "dist" / "pkg-a-1.2.0.tgz")

    @patch("pubflow.registry.run")
    def test_pack_unexpected_output(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = completed(stdout="npm notice")
        with pytest.raises(ExternalCommandError, match="npm pack"):
            NpmRegistry(tmp_path).pack(PKG)


def test_create_registry(tmp_path: Path) -> None:
    assert isinstance(create_registry("npm", tmp_path), NpmRegistry)
    assert isinstance(create_registry("pypi", tmp_path), PypiRegistry)
