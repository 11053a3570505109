"""Package record store.

Package configuration lives in a YAML records file (``packages:`` list); this
module turns those records into the flat package data consumed by
``PackageBuilder.from_package_data``, resolves manual uploads and dependency
references, keeps the cached upstream release listings, and produces the
opaque id hashes used in download URLs.

Example records file::

    packages:
      - id: 1
        name: Akismet
        slug: akismet
        type: plugin
        source_type: wpackagist.org
        source_project_name: akismet
        source_version_range: ">=5.0"
      - id: 2
        slug: my-theme
        type: theme
        source_type: local.manual
        manual_releases:
          - {version: 1.0.0, file: uploads/my-theme-1.0.0.zip}
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from wprecords.packages.host import HostEnvironment
from wprecords.packages.models import SourceTypes, Visibility, split_pseudo_id
from wprecords.packages.normalizers import normalize_package_name
from wprecords.packages.versioning import VersionService

if TYPE_CHECKING:
    from wprecords.config import Settings
    from wprecords.packages.models import Package, Release

logger = logging.getLogger(__name__)

LISTINGS_DIRNAME = "listings"
ID_HASH_LENGTH = 12


class ManualReleaseRecord(BaseModel):
    """An operator-uploaded release zip."""

    version: str = Field(..., description="Release version")
    file: str = Field(..., description="Zip path (relative to the records file) or URL")

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_string(cls, value: Any) -> str:
        return str(value)


class PackageRecord(BaseModel):
    """A managed package record, as written in the records file."""

    model_config = ConfigDict(extra="allow")

    id: int = Field(..., gt=0, description="Unique record id")
    name: str = Field("", description="Display name")
    slug: str = Field("", description="Package slug")
    type: str = Field("", description="Package type")
    source_type: str = Field("", description="Where releases come from")
    visibility: str = Field("public", description="public, draft or private")
    source_version_range: str = Field("*", description="Upstream version constraint")
    source_stability: str = Field("stable", description="Minimum upstream stability")
    manual_releases: list[ManualReleaseRecord] = Field(
        default_factory=list, description="Uploaded releases (local.manual)"
    )

    @field_validator("source_version_range", mode="before")
    @classmethod
    def _range_as_string(cls, value: Any) -> str:
        return str(value)


def load_records(records_file: Path) -> list[dict[str, Any]]:
    """Load package records from a YAML file.

    Returns:
        The ``packages:`` list; an empty list when the file does not exist

    Raises:
        ValueError: If a record is malformed (``pydantic.ValidationError``)
            or ids repeat
    """
    records_file = Path(records_file)
    if not records_file.exists():
        logger.warning(f"Records file not found: {records_file}")
        return []

    with open(records_file) as f:
        content = yaml.safe_load(f) or {}

    records = []
    seen = set()
    for raw in content.get("packages", []) or []:
        record = PackageRecord.model_validate(raw)
        if record.id in seen:
            raise ValueError(f"Duplicate package record id: {record.id}")
        seen.add(record.id)
        records.append(record.model_dump())
    return records


class PackageManager:
    """Access to managed package records.

    Args:
        records: Package records (dicts with an integer ``id``)
        settings: Application settings
        host: Host environment for install state and local URLs
        version_service: Version service for manual release keys
        records_base: Directory relative manual-release paths resolve against
    """

    def __init__(
        self,
        records: list[dict[str, Any]],
        settings: Settings,
        host: HostEnvironment,
        version_service: VersionService | None = None,
        records_base: Path | None = None,
    ):
        self._records = {record["id"]: record for record in records}
        self.settings = settings
        self.host = host
        self.version_service = version_service or VersionService()
        self.records_base = records_base or Path(settings.records_file).parent

    @classmethod
    def from_settings(cls, settings: Settings, host: HostEnvironment) -> PackageManager:
        records_file = Path(settings.records_file)
        return cls(load_records(records_file), settings, host, records_base=records_file.parent)

    @property
    def vendor(self) -> str:
        return self.settings.vendor

    # Records

    def get_record(self, package_id: int) -> dict[str, Any] | None:
        return self._records.get(package_id)

    def get_package_ids(
        self, types: list[str] | None = None, source_types: list[str] | None = None
    ) -> list[int]:
        """Return managed package ids, optionally filtered by type and source type."""
        ids = []
        for package_id, record in self._records.items():
            if types and record.get("type") not in types:
                continue
            if source_types and record.get("source_type") not in source_types:
                continue
            ids.append(package_id)
        return sorted(ids)

    def find_package_ids(self, **criteria: Any) -> list[int]:
        """Return ids whose package data matches every given field."""
        return [
            package_id
            for package_id in sorted(self._records)
            if all(self.get_package_data(package_id).get(k) == v for k, v in criteria.items())
        ]

    def find_package_id_by(self, **criteria: Any) -> int | None:
        ids = self.find_package_ids(**criteria)
        return ids[0] if ids else None

    def get_package_data(self, package_id: int) -> dict[str, Any]:
        """Build the flat package data of a record.

        Returns:
            Package data (empty dict for unknown ids)
        """
        record = self.get_record(package_id)
        if not record:
            return {}

        data: dict[str, Any] = {
            "id": package_id,
            "name": record.get("name", ""),
            "type": record.get("type", ""),
            "slug": record.get("slug", ""),
            "source_type": record.get("source_type", ""),
            "keywords": record.get("keywords", []),
            "visibility": self.get_package_visibility(record),
            "required_packages": record.get("required_packages", []) or [],
            "replaced_packages": record.get("replaced_packages", []) or [],
            "composer_require": record.get("composer_require", {}) or {},
        }
        for key in ("required_parts", "replaced_parts"):
            if key in record:
                data[key] = record.get(key) or []

        source_type = data["source_type"]
        if source_type == SourceTypes.PACKAGIST:
            data["source_name"] = record.get("source_name", "")
        elif source_type == SourceTypes.WPACKAGIST:
            vendor = "wpackagist-theme" if data["type"] == "theme" else "wpackagist-plugin"
            data["source_name"] = f"{vendor}/{record.get('source_project_name', data['slug'])}"
        elif source_type == SourceTypes.VCS:
            data["source_name"] = f"vcs/{data['slug']}"
            data["vcs_url"] = record.get("vcs_url", "")
        elif source_type == SourceTypes.LOCAL_PLUGIN:
            data["source_name"] = f"local-plugin/{data['slug']}"
            data["local_plugin_file"] = record.get("local_plugin_file", "")
            data["local_installed"] = self.host.is_plugin_installed(data["local_plugin_file"])
        elif source_type == SourceTypes.LOCAL_THEME:
            data["source_name"] = f"local-theme/{data['slug']}"
            data["local_theme_slug"] = record.get("local_theme_slug", data["slug"])
            data["local_installed"] = self.host.is_theme_installed(data["local_theme_slug"])
        elif source_type == SourceTypes.LOCAL_MANUAL:
            data["source_name"] = f"local-manual/{data['slug']}"
        else:
            data["source_name"] = record.get("source_name", "")

        if source_type in SourceTypes.EXTERNAL:
            data["source_version_range"] = str(record.get("source_version_range", "*")).strip()
            data["source_stability"] = str(record.get("source_stability", "stable")).strip()
            data["source_cached_release_packages"] = self.get_cached_release_packages(package_id)

        if source_type in SourceTypes.LOCAL or source_type == SourceTypes.LOCAL_MANUAL:
            details = record.get("details", {}) or {}
            data["details"] = {
                "description": details.get("description", ""),
                "homepage": details.get("homepage", ""),
                "license": details.get("license", ""),
                "authors": details.get("authors", []),
            }

        return data

    def get_package_visibility(self, record: dict[str, Any]) -> str:
        visibility = record.get("visibility", Visibility.PUBLIC)
        if visibility not in Visibility.ALL:
            logger.warning(f"Unknown visibility {visibility!r} for package {record.get('id')}; using private")
            return Visibility.PRIVATE
        return visibility

    def is_package_public(self, package: Package) -> bool:
        return package.visibility == Visibility.PUBLIC

    # Manual releases

    def get_manual_releases(self, package_id: int) -> dict[str, dict[str, str]]:
        """Resolve the manual uploads of a record.

        Returns:
            ``{normalized_version: {"version", "source_url"}}``; uploads with an
            invalid version or an unresolvable file are logged and left out
        """
        record = self.get_record(package_id) or {}
        releases: dict[str, dict[str, str]] = {}
        for upload in record.get("manual_releases", []) or []:
            version = str(upload.get("version", "")).strip()
            check = self.version_service.check(version)
            if not check.ok:
                logger.warning(f"Skipping manual release of package {package_id} with invalid version {version!r}")
                continue

            source_url = self.resolve_manual_file(upload.get("file", ""))
            if not source_url:
                logger.error(
                    f"Manual release file {upload.get('file')!r} for package {package_id} "
                    f"version {version} could not be resolved; the release is omitted."
                )
                continue
            releases[check.normalized] = {"version": version, "source_url": source_url}
        return releases

    def resolve_manual_file(self, file: str) -> str:
        """Turn a manual upload reference into a fetchable URL ("" if unresolvable)."""
        file = str(file or "").strip()
        if not file:
            return ""
        if file.startswith(("http://", "https://")):
            return file

        path = Path(file[len("file://") :] if file.startswith("file://") else file)
        if not path.is_absolute():
            path = self.records_base / path
        path = path.resolve()
        if not path.is_file():
            return ""

        document_root = self.host.document_root
        if document_root is not None:
            root = Path(document_root).resolve()
            if root in path.parents:
                return f"{self.host.home_url.rstrip('/')}/{path.relative_to(root).as_posix()}"
        return path.as_uri()

    # Cached upstream listings

    def _listing_path(self, package_id: int) -> Path:
        return Path(self.settings.state_dir) / LISTINGS_DIRNAME / f"{package_id}.json"

    def get_cached_release_packages(self, package_id: int) -> dict[str, dict[str, Any]]:
        path = self._listing_path(package_id)
        if not path.is_file():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable release listing {path}: {e}")
            return {}

    def set_cached_release_packages(self, package_id: int, listing: dict[str, dict[str, Any]]) -> None:
        path = self._listing_path(package_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(listing, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(path)

    # Names, ids and URLs

    def composer_package_name(self, slug: str) -> str:
        return f"{self.vendor}/{normalize_package_name(slug)}"

    def hash_encode_id(self, package_id: int) -> str:
        """Opaque, stable hash of a record id for use in public URLs."""
        digest = hashlib.sha256(f"{self.settings.id_hash_salt}:{package_id}".encode()).hexdigest()
        return digest[:ID_HASH_LENGTH]

    def hash_decode_id(self, id_hash: str) -> int | None:
        for package_id in self._records:
            if self.hash_encode_id(package_id) == id_hash:
                return package_id
        return None

    def download_url(self, release: Release) -> str:
        """Canonical download URL: ``<home>/<namespace>/<id hash>/<slug>/<version>``."""
        package = release.package
        id_hash = package.managed_id_hash or self.hash_encode_id(package.managed_id)
        return (
            f"{self.settings.home_url.rstrip('/')}/{self.settings.download_namespace}/"
            f"{id_hash}/{package.slug}/{release.version}"
        )

    def normalize_dependency(self, entry: dict[str, Any]) -> dict[str, Any] | None:
        """Resolve a ``{pseudo_id, version_range, stability}`` dependency reference.

        Returns:
            The normalized dependency, or None when the pseudo-id does not point
            at a managed record
        """
        pseudo_id = str(entry.get("pseudo_id", ""))
        try:
            source_name, managed_id = split_pseudo_id(pseudo_id)
        except ValueError:
            logger.warning(f"Dropping dependency with invalid pseudo-id {pseudo_id!r}")
            return None

        data = self.get_package_data(managed_id)
        if not data or data.get("source_name") != source_name:
            logger.warning(f"Dropping dependency {pseudo_id!r}: no matching managed package")
            return None

        return {
            "composer_package_name": self.composer_package_name(data["slug"]),
            "version_range": entry.get("version_range") or "*",
            "stability": entry.get("stability") or "stable",
            "source_name": source_name,
            "managed_id": managed_id,
            "pseudo_id": pseudo_id,
        }
