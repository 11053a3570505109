"""Shared fixtures for the package records tests."""

from pathlib import Path

import pytest

from wprecords.config import Settings
from wprecords.packages.archiver import Archiver
from wprecords.packages.factory import PackageFactory
from wprecords.packages.host import HostEnvironment
from wprecords.packages.manager import PackageManager, load_records
from wprecords.packages.release_manager import ReleaseManager
from wprecords.packages.storage import LocalStorage
from wprecords.packages.versioning import VersionService

from .helpers import write_records


@pytest.fixture
def settings(tmp_path):
    """Settings with every directory under tmp_path."""
    (tmp_path / "plugins").mkdir()
    (tmp_path / "themes").mkdir()
    (tmp_path / "public").mkdir()
    return Settings(
        storage_root=tmp_path / "storage",
        temp_dir=tmp_path / "tmp",
        state_dir=tmp_path / "state",
        records_file=tmp_path / "records.yaml",
        home_url="https://example.com",
        document_root=str(tmp_path / "public"),
        plugins_dir=str(tmp_path / "plugins"),
        themes_dir=str(tmp_path / "themes"),
        vendor="acme",
        id_hash_salt="test-salt",
    )


@pytest.fixture
def host(settings):
    return HostEnvironment.from_settings(settings)


@pytest.fixture
def version_service():
    return VersionService()


@pytest.fixture
def storage(settings):
    return LocalStorage(settings.storage_root)


@pytest.fixture
def archiver(settings, host):
    return Archiver(settings.temp_dir, host=host)


@pytest.fixture
def records():
    """Package records written to the records file; override per module."""
    return []


@pytest.fixture
def package_manager(settings, host, version_service, records):
    write_records(Path(settings.records_file), records)
    return PackageManager(
        load_records(Path(settings.records_file)),
        settings,
        host,
        version_service=version_service,
        records_base=Path(settings.records_file).parent,
    )


@pytest.fixture
def release_manager(storage, archiver, version_service, package_manager):
    return ReleaseManager(storage, archiver, version_service, package_manager)


@pytest.fixture
def factory(package_manager, release_manager, archiver, version_service, host):
    return PackageFactory(package_manager, release_manager, archiver, version_service, host)
