"""Release manager.

Stores release artifacts (picking the right way to acquire each one),
annotates stored releases with their ``dist`` block, and deletes stale
artifacts. ``store`` is idempotent: an already stored release is only
re-described, never re-archived, and its checksum is recomputed only when
the artifact's mtime changed.
"""

import json
import logging
from pathlib import Path
from typing import Any

from wprecords.packages.archiver import Archiver
from wprecords.packages.exceptions import (
    FileOperationFailed,
    InvalidReleaseSource,
    RecordsError,
)
from wprecords.packages.index_client import PackageIndexClient, is_index_url
from wprecords.packages.manager import PackageManager
from wprecords.packages.models import Package, Release, SourceTypes
from wprecords.packages.storage import LocalStorage
from wprecords.packages.versioning import VersionService

logger = logging.getLogger(__name__)


class ReleaseManager:
    """Stores, describes and deletes release artifacts.

    Args:
        storage: Artifact storage
        archiver: Archiver producing artifacts in its temp directory
        version_service: Version service used to validate stored versions
        package_manager: Record store (download URLs, cached upstream listings)
        index_client: Client for downloading releases from upstream indexes
    """

    def __init__(
        self,
        storage: LocalStorage,
        archiver: Archiver,
        version_service: VersionService,
        package_manager: PackageManager,
        index_client: PackageIndexClient | None = None,
    ):
        self.storage = storage
        self.archiver = archiver
        self.version_service = version_service
        self.package_manager = package_manager
        self.index_client = index_client

    def all_stored_releases(self, package: Package) -> dict[str, Release]:
        """Find every stored release of a package.

        Artifacts named ``<slug>-<version>.zip`` with a valid version are
        returned; a sibling ``.json`` meta file takes precedence over the
        meta derived from the package.

        Returns:
            Stored releases keyed by version
        """
        releases: dict[str, Release] = {}
        prefix = f"{package.slug}-"
        for filename in self.storage.list_files(package.store_dir):
            name = Path(filename).name
            if not name.startswith(prefix) or not name.endswith(".zip"):
                continue
            version = name[len(prefix) : -len(".zip")].strip()
            if not version or not self.version_service.check(version).ok:
                logger.debug(f"Ignoring stored artifact {filename} with invalid version")
                continue

            try:
                release = Release(package, version)
                releases[version] = Release(package, version, self.read_meta(release))
            except (RecordsError, OSError) as e:
                logger.error(f'Could not read stored release "{package.name}" version {version}: {e}')
        return releases

    def is_stored(self, release: Release) -> bool:
        return self.storage.exists(release.file_path)

    def store(self, release: Release) -> Release:
        """Make sure a release's artifact is in storage.

        Acquisition strategies, in order: upstream index download (external
        packages with an index source URL), plain URL download, archiving the
        installed copy.

        Returns:
            The release with its ``dist`` block filled in

        Raises:
            InvalidReleaseSource: If no strategy applies
            FileDownloadFailed: If the download fails
            InvalidPackageArtifact: If the downloaded file is rejected
            FileOperationFailed: If the artifact cannot be moved into storage
        """
        if self.is_stored(release):
            return self.transform_into_stored(release)

        package = release.package
        source_url = release.source_url

        if source_url and package.source_type in SourceTypes.EXTERNAL and is_index_url(source_url):
            filename = self._archive_from_index(release)
        elif source_url:
            filename = self.archiver.archive_from_url(release)
        elif package.is_installed and package.is_installed_release(release):
            filename = self.archiver.archive_from_source(package, release.version)
        else:
            raise InvalidReleaseSource.for_release(release)

        try:
            self.storage.move(filename, release.file_path)
        except OSError as e:
            raise FileOperationFailed.unable_to_move_release_artifact(
                filename, release.file_path
            ) from e

        return self.transform_into_stored(release)

    def _archive_from_index(self, release: Release) -> Path:
        package = release.package
        cached = self.package_manager.get_cached_release_packages(package.managed_id)
        release_package = cached.get(release.version)
        if not release_package or self.index_client is None:
            raise InvalidReleaseSource.missing_source_cached_package(release)

        download = self.archiver.new_tempfile(release.file)
        self.index_client.download_dist(release_package, download)
        return self.archiver.archive_from_url(release, download=download)

    def transform_into_stored(self, release: Release) -> Release:
        """Describe a stored release with its canonical ``dist`` block.

        The checksum is reused from the release's current ``dist`` (or from
        its dumped meta file) when both the URL and the artifact mtime still
        match; otherwise it is recomputed.
        """
        canonical_url = self.package_manager.download_url(release)
        mtime = self.storage.mtime(release.file_path)

        dumped_dist = self.read_meta(release).get("dist") or {}
        for prior in (release.dist, dumped_dist):
            if (
                prior.get("url") == canonical_url
                and prior.get("artifact_mtime") == mtime
                and prior.get("shasum")
            ):
                dist = {
                    "type": "zip",
                    "url": canonical_url,
                    "shasum": prior["shasum"],
                    "artifact_mtime": mtime,
                }
                break
        else:
            dist = {
                "type": "zip",
                "url": canonical_url,
                "shasum": self.checksum("sha1", release),
                "artifact_mtime": mtime,
            }

        return release.with_meta({"dist": dist})

    def dump_meta(self, release: Release) -> bool:
        """Write a release's meta next to its artifact, if it changed.

        Returns:
            True if the file was written

        Raises:
            FileOperationFailed: If the file cannot be written
        """
        content = json.dumps(release.meta, indent=2, sort_keys=True, default=str)
        path = release.meta_file_path
        try:
            if self.storage.exists(path) and self.storage.read(path) == content:
                return False
            self.storage.write(path, content)
        except OSError as e:
            raise FileOperationFailed.unable_to_write_release_meta(path) from e
        return True

    def read_meta(self, release: Release) -> dict[str, Any]:
        path = release.meta_file_path
        if not self.storage.exists(path):
            return {}
        try:
            meta = json.loads(self.storage.read(path))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable release meta {path}: {e}")
            return {}
        return meta if isinstance(meta, dict) else {}

    def delete(self, release: Release) -> Release:
        """Delete a release's artifact and meta file.

        Returns:
            The release without a ``dist`` block (unchanged if it was not stored)

        Raises:
            FileOperationFailed: If either file cannot be deleted
        """
        if not self.is_stored(release):
            return release

        try:
            self.storage.delete(release.file_path)
        except OSError as e:
            raise FileOperationFailed.unable_to_delete_release_artifact(release.file_path) from e

        try:
            self.storage.delete(release.meta_file_path)
        except OSError as e:
            raise FileOperationFailed.unable_to_delete_release_meta(release.meta_file_path) from e

        logger.info(f'Deleted stored release "{release.package.name}" version {release.version}.')
        meta = {key: value for key, value in release.meta.items() if key != "dist"}
        return Release(release.package, release.version, meta)

    def delete_all(self, package: Package) -> int:
        """Delete every stored release of a package, then its storage directory.

        Returns:
            Number of releases deleted
        """
        releases = self.all_stored_releases(package)
        for release in releases.values():
            self.delete(release)

        try:
            self.storage.delete_directory(package.store_dir)
        except OSError as e:
            raise FileOperationFailed.unable_to_delete_package_directory(package.store_dir) from e
        return len(releases)

    def checksum(self, algorithm: str, release: Release) -> str:
        return self.storage.checksum(algorithm, release.file_path)

    def get_absolute_path(self, release: Release) -> Path | None:
        if not self.is_stored(release):
            return None
        return self.storage.get_absolute_path(release.file_path)
