"""Composer repository JSON rendering.

Turns built packages into the ``packages.json`` document Composer reads::

    {"packages": {"<vendor>/<slug>": {"<version>": {...entry...}}}}

Only stored releases are listed; their ``dist`` points at the canonical
download URL and carries the artifact's sha1.
"""

import logging
from collections.abc import Iterable
from typing import Any

from wprecords.packages.exceptions import RecordsError
from wprecords.packages.manager import PackageManager
from wprecords.packages.models import Package, Release
from wprecords.packages.release_manager import ReleaseManager
from wprecords.packages.versioning import VersionService

logger = logging.getLogger(__name__)

INSTALLERS_PACKAGE = "composer/installers"
INSTALLERS_CONSTRAINT = "^1.0"


class ComposerRepositoryTransformer:
    """Renders packages as a Composer repository.

    Args:
        package_manager: Record store (vendor name, download URLs)
        release_manager: Release storage (stored state, checksums)
        version_service: Version normalizer
    """

    def __init__(
        self,
        package_manager: PackageManager,
        release_manager: ReleaseManager,
        version_service: VersionService,
    ):
        self.package_manager = package_manager
        self.release_manager = release_manager
        self.version_service = version_service

    def transform(self, packages: Iterable[Package]) -> dict[str, Any]:
        """Render every package; packages without stored releases are left out."""
        result: dict[str, dict[str, Any]] = {}
        for package in packages:
            versions = self.transform_package(package)
            if versions:
                result[self.package_manager.composer_package_name(package.slug)] = versions
        return {"packages": result}

    def transform_package(self, package: Package) -> dict[str, dict[str, Any]]:
        versions = {}
        for version, release in package.releases.items():
            entry = self.transform_release(release)
            if entry is not None:
                versions[version] = entry
        return versions

    def transform_release(self, release: Release) -> dict[str, Any] | None:
        """Render one release, or None when it is not stored."""
        package = release.package
        if not self.release_manager.is_stored(release):
            logger.warning(f'Skipping "{package.name}" version {release.version}: release is not stored')
            return None

        try:
            shasum = release.dist.get("shasum") or self.release_manager.checksum("sha1", release)
        except (RecordsError, OSError) as e:
            logger.error(f'Skipping "{package.name}" version {release.version}: {e}')
            return None

        meta = release.meta
        entry: dict[str, Any] = {
            "name": self.package_manager.composer_package_name(package.slug),
            "version": release.version,
            "version_normalized": self.version_service.normalize(release.version),
            "dist": {
                "type": "zip",
                "url": self.package_manager.download_url(release),
                "shasum": shasum,
            },
            "require": self.get_require(meta),
            "type": package.composer_type,
            "authors": meta.get("authors") or [],
            "description": meta.get("description") or "",
            "keywords": meta.get("keywords") or [],
            "homepage": meta.get("homepage") or "",
        }

        replace = self.get_replace(meta)
        if replace:
            entry["replace"] = replace
        if meta.get("license"):
            entry["license"] = meta["license"]
        if meta.get("time"):
            entry["time"] = meta["time"]
        return entry

    def get_require(self, meta: dict[str, Any]) -> dict[str, str]:
        require = {INSTALLERS_PACKAGE: INSTALLERS_CONSTRAINT}
        require.update(meta.get("require") or {})
        for dependency in (meta.get("required_packages") or {}).values():
            require[dependency["composer_package_name"]] = _dependency_constraint(dependency)

        requires_runtime = meta.get("requires_runtime")
        if requires_runtime and "php" not in require:
            require["php"] = f">={requires_runtime}"
        return require

    def get_replace(self, meta: dict[str, Any]) -> dict[str, str]:
        return {
            dependency["composer_package_name"]: _dependency_constraint(dependency)
            for dependency in (meta.get("replaced_packages") or {}).values()
        }


def _dependency_constraint(dependency: dict[str, Any]) -> str:
    constraint = dependency.get("version_range") or "*"
    stability = dependency.get("stability") or "stable"
    if stability != "stable":
        constraint += f"@{stability}"
    return constraint
