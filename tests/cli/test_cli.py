"""Tests for the wprecords command line."""

import json
import zipfile
from unittest.mock import patch

import pytest
import yaml

from wprecords.cli import main


@pytest.fixture
def workspace(tmp_path):
    """A config file, a records file and two manual uploads."""
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    for slug in ("studio", "secret"):
        with zipfile.ZipFile(uploads / f"{slug}-1.0.0.zip", "w") as archive:
            archive.writestr(
                f"{slug}/{slug}.php",
                f"<?php\n/**\n * Plugin Name: {slug.title()}\n * Version: 1.0.0\n * Description: CLI test\n */\n",
            )

    records = tmp_path / "records.yaml"
    records.write_text(yaml.safe_dump({"packages": [
        {"id": 1, "name": "Studio", "slug": "studio", "type": "plugin", "source_type": "local.manual",
         "manual_releases": [{"version": "1.0.0", "file": "uploads/studio-1.0.0.zip"}]},
        {"id": 2, "name": "Secret", "slug": "secret", "type": "plugin", "source_type": "local.manual",
         "visibility": "private",
         "manual_releases": [{"version": "1.0.0", "file": "uploads/secret-1.0.0.zip"}]},
    ]}))

    config = tmp_path / "config.yaml"
    config.write_text(yaml.safe_dump({"settings": {
        "storage_root": str(tmp_path / "storage"),
        "temp_dir": str(tmp_path / "tmp"),
        "state_dir": str(tmp_path / "state"),
        "records_file": str(records),
        "home_url": "https://example.com",
        "vendor": "acme",
    }}))
    return tmp_path


def run_cli(*argv):
    with patch("sys.argv", ["wprecords", *argv]):
        main()


class TestBuildCommand:
    """Test the build subcommand."""

    def test_writes_public_packages(self, workspace, capsys):
        """Test the repository JSON lists public packages only."""
        output = workspace / "public" / "packages.json"

        run_cli("build", "--config", str(workspace / "config.yaml"), "--output", str(output))

        document = json.loads(output.read_text())
        assert list(document["packages"]) == ["acme/studio"]
        assert document["packages"]["acme/studio"]["1.0.0"]["description"] == "CLI test"
        assert "Wrote 1 packages (1 releases)" in capsys.readouterr().out

    def test_private_packages_are_still_stored(self, workspace):
        """Test hidden packages keep their artifacts in storage."""
        run_cli("build", "--config", str(workspace / "config.yaml"), "--output", str(workspace / "out.json"))
        assert (workspace / "storage" / "plugin" / "secret" / "secret-1.0.0.zip").is_file()


class TestOtherCommands:
    """Test the status, purge and refresh subcommands."""

    def test_status(self, workspace, capsys):
        config = str(workspace / "config.yaml")
        run_cli("build", "--config", config, "--output", str(workspace / "out.json"))
        capsys.readouterr()

        run_cli("status", "--config", config)

        out = capsys.readouterr().out
        assert "acme/studio (local.manual): 1.0.0" in out
        assert "acme/secret (local.manual): 1.0.0" in out

    def test_purge(self, workspace, capsys):
        """Test purge deletes every stored artifact of a package."""
        config = str(workspace / "config.yaml")
        run_cli("build", "--config", config, "--output", str(workspace / "out.json"))

        run_cli("purge", "--config", config, "--package", "1")

        assert "Deleted 1 stored releases of acme/studio" in capsys.readouterr().out
        assert not (workspace / "storage" / "plugin" / "studio").exists()

    def test_purge_unknown_package(self, workspace, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run_cli("purge", "--config", str(workspace / "config.yaml"), "--package", "42")
        assert exc_info.value.code == 1
        assert "no managed package with id 42" in capsys.readouterr().err

    def test_refresh_skips_manual_packages(self, workspace, capsys):
        run_cli("refresh", "--config", str(workspace / "config.yaml"), "--package", "1")
        assert "Package     1:     0 releases" in capsys.readouterr().out

    def test_missing_config(self, workspace, capsys):
        """Test a missing config file exits with an error."""
        with pytest.raises(SystemExit) as exc_info:
            run_cli("status", "--config", str(workspace / "missing.yaml"))
        assert exc_info.value.code == 1
        assert "Config file not found" in capsys.readouterr().err
