"""Exception types raised by the package-construction and archiving pipeline.

Every error derives from RecordsError so callers that process many releases
can catch a single type, log it, and move on to the next release.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wprecords.packages.models import Package, Release


class RecordsError(Exception):
    """Base class for all package records errors."""


class InvalidVersion(RecordsError, ValueError):
    """A version string could not be normalized."""

    @classmethod
    def from_version(cls, version: str, reason: str = "") -> InvalidVersion:
        message = f"Invalid version string {version!r}"
        if reason:
            message += f": {reason}"
        return cls(message)


class InvalidConstraint(RecordsError, ValueError):
    """A version range string could not be parsed."""

    @classmethod
    def from_range(cls, constraint: str, reason: str = "") -> InvalidConstraint:
        message = f"Could not parse version constraint {constraint!r}"
        if reason:
            message += f": {reason}"
        return cls(message)


class InvalidComposerVendor(RecordsError, ValueError):
    """The configured Composer vendor name is not usable."""

    @classmethod
    def from_vendor(cls, vendor: str) -> InvalidComposerVendor:
        return cls(
            f"Invalid Composer vendor {vendor!r}; use lowercase letters, digits, '_', '-' or '.'."
        )


class PackageNotInstalled(RecordsError, RuntimeError):
    """An operation needs a locally installed package."""

    @classmethod
    def for_invalid_method_call(cls, method: str, package: Package) -> PackageNotInstalled:
        return cls(f"Cannot call {method}() for non-installed package {package.name!r}.")

    @classmethod
    def unable_to_archive_from_source(cls, package: Package) -> PackageNotInstalled:
        return cls(f"Unable to archive {package.name!r} from source; the package is not installed.")


class InvalidReleaseVersion(RecordsError, LookupError):
    """A package was asked for a release it does not have."""

    @classmethod
    def from_version(cls, version: str, package_name: str) -> InvalidReleaseVersion:
        return cls(f"Invalid release version {version!r} for package {package_name!r}.")

    @classmethod
    def has_no_releases(cls, package_name: str) -> InvalidReleaseVersion:
        return cls(f"Package {package_name!r} has no releases.")


class InvalidReleaseSource(RecordsError):
    """No acquisition strategy applies to a release."""

    @classmethod
    def for_release(cls, release: Release) -> InvalidReleaseSource:
        return cls(
            f"Unable to create release artifact for {release.package.name!r} "
            f"version {release.version}; source could not be determined."
        )

    @classmethod
    def missing_source_cached_package(cls, release: Release) -> InvalidReleaseSource:
        return cls(
            f"Unable to create release artifact for {release.package.name!r} "
            f"version {release.version}; no cached upstream package data is available."
        )


class FileDownloadFailed(RecordsError):
    """Downloading (or copying) a release source failed."""

    @classmethod
    def for_url(cls, url: str, reason: str = "") -> FileDownloadFailed:
        message = f"Unable to download file from {url}"
        if reason:
            message += f": {reason}"
        return cls(message)


class InvalidPackageArtifact(RecordsError):
    """A downloaded artifact was rejected by a validator."""

    @classmethod
    def unreadable_zip(cls, filename: str | Path) -> InvalidPackageArtifact:
        return cls(f"Unable to parse {filename} as a valid zip file.")

    @classmethod
    def contains_macosx_directory(cls, filename: str | Path) -> InvalidPackageArtifact:
        return cls(f"Package artifact {filename} contains a top-level __MACOSX directory.")

    @classmethod
    def rejected(cls, filename: str | Path, validator: str) -> InvalidPackageArtifact:
        return cls(f"Package artifact {filename} was rejected by {validator}.")


class FileOperationFailed(RecordsError):
    """A filesystem operation on an artifact failed."""

    @classmethod
    def unable_to_move_release_artifact(
        cls, filename: str | Path, destination: str | Path
    ) -> FileOperationFailed:
        return cls(f"Unable to move release artifact {filename} to storage: {destination}.")

    @classmethod
    def unable_to_delete_release_artifact(cls, path: str | Path) -> FileOperationFailed:
        return cls(f"Unable to delete release artifact {path} from storage.")

    @classmethod
    def unable_to_write_release_meta(cls, path: str | Path) -> FileOperationFailed:
        return cls(f"Unable to write release meta JSON file to storage: {path}.")

    @classmethod
    def unable_to_delete_release_meta(cls, path: str | Path) -> FileOperationFailed:
        return cls(f"Unable to delete release meta file {path} from storage.")

    @classmethod
    def unable_to_delete_package_directory(cls, path: str | Path) -> FileOperationFailed:
        return cls(f"Unable to delete package directory {path} from storage.")

    @classmethod
    def unable_to_create_temporary_directory(cls, filename: str | Path) -> FileOperationFailed:
        return cls(f"Unable to create temporary directory: {Path(filename).parent}.")

    @classmethod
    def unable_to_create_zip_file(cls, filename: str | Path) -> FileOperationFailed:
        return cls(f"Unable to create zip file for {filename}.")

    @classmethod
    def unable_to_rename_temporary_artifact(
        cls, filename: str | Path, tmpfname: str | Path
    ) -> FileOperationFailed:
        return cls(f"Unable to rename temporary artifact {tmpfname} to {filename}.")
