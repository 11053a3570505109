"""Artifact validation.

Validators run in order over every downloaded artifact before it is accepted
into storage. A validator either returns True or raises
InvalidPackageArtifact; returning False rejects the artifact without a
specific reason.
"""

import zipfile
from pathlib import Path
from typing import Protocol

from wprecords.packages.exceptions import InvalidPackageArtifact
from wprecords.packages.models import Release


class ArtifactValidator(Protocol):
    def validate(self, path: Path, release: Release) -> bool: ...


class ZipValidator:
    """Rejects files that are not readable zip archives."""

    def validate(self, path: Path, release: Release) -> bool:
        try:
            with zipfile.ZipFile(path) as archive:
                if archive.testzip() is not None:
                    raise InvalidPackageArtifact.unreadable_zip(path)
        except (zipfile.BadZipFile, OSError) as e:
            raise InvalidPackageArtifact.unreadable_zip(path) from e
        return True


class HiddenDirectoryValidator:
    """Rejects archives with a top-level ``__MACOSX`` directory."""

    def validate(self, path: Path, release: Release) -> bool:
        with zipfile.ZipFile(path) as archive:
            if any(name.startswith("__MACOSX/") for name in archive.namelist()):
                raise InvalidPackageArtifact.contains_macosx_directory(path)
        return True


def default_validators() -> list[ArtifactValidator]:
    return [ZipValidator(), HiddenDirectoryValidator()]


def validate_artifact(path: Path, release: Release, validators: list[ArtifactValidator]) -> None:
    """Run an artifact through a validator chain.

    Raises:
        InvalidPackageArtifact: If any validator rejects the artifact
    """
    for validator in validators:
        if not validator.validate(path, release):
            raise InvalidPackageArtifact.rejected(path, type(validator).__name__)
