"""Package and release data models.

A Package is built fresh by PackageBuilder on every read and is immutable
once built. Releases hold a non-owning reference back to their Package and a
``meta`` mapping seeded from it, so that a stored release keeps describing
itself the same way even after the package record changes.
"""

from __future__ import annotations

import copy
import fnmatch
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from wprecords.packages.exceptions import InvalidReleaseVersion, PackageNotInstalled
from wprecords.packages.versioning import Constraint, compare_versions, normalize_version

PSEUDO_ID_DELIMITER = "#"


class PackageTypes:
    """Package types understood by the records pipeline."""

    PLUGIN = "plugin"
    THEME = "theme"
    MUPLUGIN = "muplugin"
    DROPIN = "dropin"
    CORE = "core"
    PART = "part"

    ALL = (PLUGIN, THEME, MUPLUGIN, DROPIN, CORE, PART)

    # Composer "type" values used in the repository JSON
    COMPOSER_TYPES = {
        PLUGIN: "wordpress-plugin",
        THEME: "wordpress-theme",
        MUPLUGIN: "wordpress-muplugin",
        DROPIN: "wordpress-dropin",
        CORE: "wordpress-core",
        PART: "wordpress-plugin",
    }


class SourceTypes:
    """Where a package's releases come from."""

    PACKAGIST = "packagist.org"
    WPACKAGIST = "wpackagist.org"
    VCS = "vcs"
    LOCAL_PLUGIN = "local.plugin"
    LOCAL_THEME = "local.theme"
    LOCAL_MANUAL = "local.manual"

    EXTERNAL = (PACKAGIST, WPACKAGIST, VCS)
    LOCAL = (LOCAL_PLUGIN, LOCAL_THEME)
    ALL = (PACKAGIST, WPACKAGIST, VCS, LOCAL_PLUGIN, LOCAL_THEME, LOCAL_MANUAL)


class Visibility:
    PUBLIC = "public"
    DRAFT = "draft"
    PRIVATE = "private"

    ALL = (PUBLIC, DRAFT, PRIVATE)


def make_pseudo_id(source_name: str, managed_id: int | str) -> str:
    """Build a dependency pseudo-id such as ``local-plugin/akismet#12``."""
    return f"{source_name}{PSEUDO_ID_DELIMITER}{managed_id}"


def split_pseudo_id(pseudo_id: str) -> tuple[str, int]:
    """Split a pseudo-id into its source name and managed id.

    Raises:
        ValueError: If the pseudo-id is malformed
    """
    source_name, sep, managed_id = pseudo_id.rpartition(PSEUDO_ID_DELIMITER)
    if not sep or not source_name or not managed_id.isdigit():
        raise ValueError(f"Invalid package pseudo-id: {pseudo_id!r}")
    return source_name, int(managed_id)


# Package attribute -> release meta key
PACKAGE_TO_META = {
    "source_type": "source_type",
    "source_name": "source_name",
    "authors": "authors",
    "description": "description",
    "homepage": "homepage",
    "license": "license",
    "keywords": "keywords",
    "requires_at_least": "requires_at_least",
    "tested_up_to": "tested_up_to",
    "requires_runtime": "requires_runtime",
    "required_packages": "required_packages",
    "replaced_packages": "replaced_packages",
    "composer_require": "require",
}


@dataclass(frozen=True)
class Package:
    """An immutable, fully built package.

    Attributes:
        name: Display name (e.g., "Akismet Anti-Spam")
        slug: Package slug (e.g., "akismet")
        type: One of PackageTypes
        source_type: One of SourceTypes
        source_name: Vendor/project form (e.g., "wpackagist-plugin/akismet")
        releases: Releases keyed by version, newest first
        source_constraint: Version range bounding upstream releases (external sources)
        directory: Install directory for local packages
        basename: Plugin file relative to the plugins directory ("akismet/akismet.php")
    """

    name: str = ""
    slug: str = ""
    type: str = ""
    source_type: str = ""
    source_name: str = ""
    authors: list[dict[str, str]] = field(default_factory=list)
    description: str = ""
    homepage: str = ""
    license: str = ""
    keywords: list[str] = field(default_factory=list)
    requires_at_least: str = ""
    tested_up_to: str = ""
    requires_runtime: str = ""
    is_managed: bool = False
    managed_id: int = 0
    managed_id_hash: str = ""
    visibility: str = Visibility.PUBLIC
    required_packages: dict[str, dict[str, Any]] = field(default_factory=dict)
    replaced_packages: dict[str, dict[str, Any]] = field(default_factory=dict)
    composer_require: dict[str, str] = field(default_factory=dict)
    vcs_url: str = ""
    source_constraint: Constraint | None = field(default=None, compare=False)
    directory: Path | None = None
    basename: str = ""
    is_installed: bool = False
    installed_version: str = ""
    releases: dict[str, Release] = field(default_factory=dict, compare=False, repr=False)

    def _commit_releases(self, releases: dict[str, Release]) -> None:
        """Attach the final release set; only PackageBuilder.build() calls this."""
        object.__setattr__(self, "releases", dict(releases))

    @property
    def store_dir(self) -> str:
        """Storage-relative directory for this package's artifacts (``<type>/<slug>``).

        Raises:
            ValueError: If type or slug is still empty
        """
        if not self.type or not self.slug:
            raise ValueError(
                f"Package store directory needs both a type and a slug (got {self.type!r}, {self.slug!r})"
            )
        return f"{self.type}/{self.slug}"

    @property
    def composer_type(self) -> str:
        return PackageTypes.COMPOSER_TYPES.get(self.type, self.type)

    @property
    def pseudo_id(self) -> str:
        return make_pseudo_id(self.source_name, self.managed_id)

    def has_releases(self) -> bool:
        return bool(self.releases)

    def has_release(self, version: str) -> bool:
        return version in self.releases

    def get_release(self, version: str) -> Release:
        """Return the release for a version.

        Raises:
            InvalidReleaseVersion: If the package has no such release
        """
        if version not in self.releases:
            raise InvalidReleaseVersion.from_version(version, self.name)
        return self.releases[version]

    @property
    def latest_release(self) -> Release:
        if not self.releases:
            raise InvalidReleaseVersion.has_no_releases(self.name)
        return next(iter(self.releases.values()))

    @property
    def latest_version(self) -> str:
        return self.latest_release.version

    @property
    def is_single_file(self) -> bool:
        """Whether this is a plugin made of a single PHP file in the plugins directory."""
        return self.type == PackageTypes.PLUGIN and bool(self.basename) and "/" not in self.basename

    def is_installed_release(self, release: Release) -> bool:
        if not self.is_installed or not self.installed_version:
            return False
        return compare_versions(
            normalize_version(self.installed_version), release.normalized_version
        ) == 0

    def get_files(self, excludes: list[str] | None = None) -> list[Path]:
        """List the installed files of a local package.

        Args:
            excludes: Glob patterns matched against paths relative to the
                package directory (a pattern also excludes whole directories)

        Returns:
            Sorted absolute paths of the included files

        Raises:
            PackageNotInstalled: If the package is not installed locally
        """
        if not self.is_installed or self.directory is None:
            raise PackageNotInstalled.for_invalid_method_call("get_files", self)

        if self.is_single_file:
            return [self.directory / self.basename]

        excludes = excludes or []
        files = []
        for path in sorted(self.directory.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(self.directory).as_posix()
            if not _is_excluded(relative, excludes):
                files.append(path)
        return files


def _is_excluded(relative: str, patterns: list[str]) -> bool:
    parts = relative.split("/")
    for pattern in patterns:
        pattern = pattern.strip().strip("/")
        if not pattern:
            continue
        if fnmatch.fnmatch(relative, pattern) or relative.startswith(pattern + "/"):
            return True
        if "/" not in pattern and any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


@dataclass(frozen=True)
class Release:
    """One version of a package's distributable artifact.

    Attributes:
        package: Parent package (not part of equality)
        version: Raw version string as published upstream
        meta: Per-release metadata, seeded from the package; ``meta["dist"]``
            holds ``{type, url, shasum, artifact_mtime}`` once stored
    """

    package: Package = field(repr=False, compare=False)
    version: str
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "meta", self._fill_meta(self.meta))

    def _fill_meta(self, meta: dict[str, Any]) -> dict[str, Any]:
        meta = copy.deepcopy(dict(meta))
        for package_attr, meta_key in PACKAGE_TO_META.items():
            if meta_key not in meta:
                value = getattr(self.package, package_attr)
                meta[meta_key] = copy.deepcopy(value)

        # The dist entry is always present, even before the release is stored
        if not meta.get("dist"):
            meta["dist"] = {"url": ""}
        return meta

    def with_meta(self, meta: dict[str, Any]) -> Release:
        """Return a copy of this release with meta merged over the current one."""
        return Release(self.package, self.version, {**self.meta, **meta})

    @property
    def normalized_version(self) -> str:
        return normalize_version(self.version)

    @property
    def file(self) -> str:
        return f"{self.package.slug}-{self.version}.zip"

    @property
    def meta_file(self) -> str:
        return f"{self.package.slug}-{self.version}.json"

    @property
    def file_path(self) -> str:
        return f"{self.package.store_dir}/{self.file}"

    @property
    def meta_file_path(self) -> str:
        return f"{self.package.store_dir}/{self.meta_file}"

    @property
    def dist(self) -> dict[str, Any]:
        return self.meta.get("dist") or {}

    @property
    def source_url(self) -> str:
        """Where the artifact can be fetched from (the dist URL until stored)."""
        return self.dist.get("url", "") or ""
