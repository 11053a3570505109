"""Package builder.

A PackageBuilder accumulates the fields of one package from several sources
(explicit setters, managed record data, plugin/theme headers, readme files,
upstream release listings, manual uploads), then ``build()`` copies them
into an immutable Package in one step.

Fillers (``from_*``) only write a field that is still empty, so the call
order decides precedence: explicit setters, then record data, then header
data, then readme data.
"""

from __future__ import annotations

import logging
import tempfile
import zipfile
from dataclasses import fields
from functools import cmp_to_key
from pathlib import Path
from typing import Any

from wprecords.packages.archiver import Archiver
from wprecords.packages.exceptions import RecordsError
from wprecords.packages.headers import (
    find_plugin_file,
    find_readme,
    get_plugin_data,
    get_theme_data,
    parse_readme,
)
from wprecords.packages.host import HostEnvironment
from wprecords.packages.manager import PackageManager
from wprecords.packages.models import Package, PackageTypes, Release, SourceTypes
from wprecords.packages.normalizers import (
    merge_dependencies,
    normalize_authors,
    normalize_keywords,
    normalize_license,
)
from wprecords.packages.release_manager import ReleaseManager
from wprecords.packages.variants import BuilderVariant, strategy_for
from wprecords.packages.versioning import Constraint, VersionService

logger = logging.getLogger(__name__)

# Fields backfilled from a release's own artifact when still empty
DESCRIPTIVE_FIELDS = ("description", "homepage", "authors", "license")

DEFAULT_DESCRIPTION = "Just another package"
DEFAULT_LICENSE = "GPL-2.0-or-later"

_PACKAGE_FIELDS = tuple(f.name for f in fields(Package) if f.name != "releases")
_DEFAULTS = Package()


class PackageBuilder:
    """Builds one Package.

    Args:
        variant: Source kind, selects the prune/fill/cache strategy
        package_manager: Record store
        release_manager: Release storage
        archiver: Archiver, used to fetch release files for introspection
        version_service: Version service
        host: Host environment (installed plugins/themes, pending updates)
        parts: Also merge ``required_parts``/``replaced_parts`` record data
    """

    def __init__(
        self,
        variant: BuilderVariant,
        package_manager: PackageManager,
        release_manager: ReleaseManager,
        archiver: Archiver,
        version_service: VersionService,
        host: HostEnvironment | None = None,
        parts: bool = False,
    ):
        self.variant = variant
        self.strategy = strategy_for(variant)
        self.package_manager = package_manager
        self.release_manager = release_manager
        self.archiver = archiver
        self.version_service = version_service
        self.host = host
        self.parts = parts

        self._fields: dict[str, Any] = {}
        # Working release set: version -> meta
        self.releases: dict[str, dict[str, Any]] = {}

    # Field access

    def get(self, name: str) -> Any:
        if name in self._fields:
            return self._fields[name]
        return getattr(_DEFAULTS, name)

    def _set(self, name: str, value: Any) -> PackageBuilder:
        self._fields[name] = value
        return self

    def _can_fill(self, name: str) -> bool:
        if name not in self._fields:
            return True
        value = self._fields[name]
        return value is None or value == "" or value == [] or value == {}

    @property
    def package(self) -> Package:
        """Snapshot of the package as built so far, without releases."""
        return Package(**self._fields)

    def release(self, version: str) -> Release:
        return Release(self.package, version, self.releases.get(version, {}))

    # Setters

    def set_name(self, name: str) -> PackageBuilder:
        return self._set("name", str(name).strip())

    def set_slug(self, slug: str) -> PackageBuilder:
        return self._set("slug", str(slug).strip())

    def set_type(self, package_type: str) -> PackageBuilder:
        return self._set("type", package_type)

    def set_source_type(self, source_type: str) -> PackageBuilder:
        return self._set("source_type", source_type)

    def set_source_name(self, source_name: str) -> PackageBuilder:
        return self._set("source_name", source_name)

    def set_authors(self, authors: list[Any]) -> PackageBuilder:
        return self._set("authors", normalize_authors(authors))

    def set_description(self, description: str) -> PackageBuilder:
        return self._set("description", str(description).strip())

    def set_homepage(self, homepage: str) -> PackageBuilder:
        return self._set("homepage", str(homepage).strip())

    def set_license(self, license: str) -> PackageBuilder:
        return self._set("license", normalize_license(license))

    def set_keywords(self, keywords: str | list[Any]) -> PackageBuilder:
        return self._set("keywords", normalize_keywords(keywords))

    def _set_version_field(self, name: str, version: str) -> PackageBuilder:
        version = str(version).strip()
        if not self.version_service.check(version).ok:
            logger.debug(f"Ignoring invalid {name} version {version!r}")
            return self
        return self._set(name, version)

    def set_requires_at_least(self, version: str) -> PackageBuilder:
        return self._set_version_field("requires_at_least", version)

    def set_tested_up_to(self, version: str) -> PackageBuilder:
        return self._set_version_field("tested_up_to", version)

    def set_requires_runtime(self, version: str) -> PackageBuilder:
        return self._set_version_field("requires_runtime", version)

    def set_is_managed(self, is_managed: bool) -> PackageBuilder:
        return self._set("is_managed", bool(is_managed))

    def set_managed_id(self, managed_id: int) -> PackageBuilder:
        return self._set("managed_id", int(managed_id))

    def set_managed_id_hash(self, id_hash: str) -> PackageBuilder:
        return self._set("managed_id_hash", id_hash)

    def set_visibility(self, visibility: str) -> PackageBuilder:
        return self._set("visibility", visibility)

    def set_required_packages(self, entries: list[Any] | dict[str, Any]) -> PackageBuilder:
        return self._set("required_packages", self._normalize_dependencies(entries))

    def set_replaced_packages(self, entries: list[Any] | dict[str, Any]) -> PackageBuilder:
        return self._set("replaced_packages", self._normalize_dependencies(entries))

    def set_composer_require(self, require: dict[str, str]) -> PackageBuilder:
        return self._set("composer_require", dict(require))

    def set_vcs_url(self, url: str) -> PackageBuilder:
        return self._set("vcs_url", url)

    def set_source_constraint(self, constraint: Constraint | None) -> PackageBuilder:
        return self._set("source_constraint", constraint)

    def set_directory(self, directory: Path | str | None) -> PackageBuilder:
        return self._set("directory", Path(directory) if directory is not None else None)

    def set_basename(self, basename: str) -> PackageBuilder:
        return self._set("basename", basename)

    def set_installed(self, installed: bool) -> PackageBuilder:
        return self._set("is_installed", bool(installed))

    def set_installed_version(self, version: str) -> PackageBuilder:
        return self._set_version_field("installed_version", version)

    def _normalize_dependencies(self, entries: list[Any] | dict[str, Any] | None) -> dict[str, dict[str, Any]]:
        if isinstance(entries, dict):
            entries = list(entries.values())

        normalized: dict[str, dict[str, Any]] = {}
        for entry in entries or []:
            if not isinstance(entry, dict):
                continue
            if all(entry.get(key) for key in ("pseudo_id", "composer_package_name", "source_name", "managed_id")):
                dependency = {
                    "version_range": "*",
                    "stability": "stable",
                    **entry,
                }
            else:
                dependency = self.package_manager.normalize_dependency(entry)
            if dependency:
                normalized[dependency["pseudo_id"]] = dependency
        return normalized

    # Fillers

    def _fill(self, name: str, value: Any, setter) -> None:
        if value and self._can_fill(name):
            setter(value)

    def from_manager(self, package_id: int = 0, **criteria: Any) -> PackageBuilder:
        """Fill the package from its managed record.

        Args:
            package_id: Record id; when 0, the first record matching
                ``criteria`` (package data fields) is used

        A package without a record is marked unmanaged.
        """
        if not package_id and criteria:
            package_id = self.package_manager.find_package_id_by(**criteria) or 0

        package_data = self.package_manager.get_package_data(package_id) if package_id else {}
        if not package_data:
            return self.set_is_managed(False)

        self.set_managed_id(package_id)
        self.set_managed_id_hash(self.package_manager.hash_encode_id(package_id))
        self.set_is_managed(True)
        self.strategy.from_manager_data(self, package_data)
        return self

    def from_package_data(self, data: dict[str, Any]) -> PackageBuilder:
        """Fill empty fields from flat package data (managed record or index entry)."""
        self._fill("name", data.get("name"), self.set_name)
        self._fill("slug", data.get("slug"), self.set_slug)
        self._fill("type", data.get("type"), self.set_type)
        self._fill("source_type", data.get("source_type"), self.set_source_type)
        self._fill("source_name", data.get("source_name"), self.set_source_name)
        self._fill("vcs_url", data.get("vcs_url"), self.set_vcs_url)

        license = data.get("license")
        if isinstance(license, list):
            license = license[0] if license else ""

        details = data.get("details") or {}
        for name, value, setter in (
            ("authors", data.get("authors"), self.set_authors),
            ("description", data.get("description"), self.set_description),
            ("homepage", data.get("homepage"), self.set_homepage),
            ("license", license, self.set_license),
            ("authors", details.get("authors"), self.set_authors),
            ("description", details.get("description"), self.set_description),
            ("homepage", details.get("homepage"), self.set_homepage),
            ("license", details.get("license"), self.set_license),
        ):
            self._fill(name, value, setter)

        self._fill("keywords", data.get("keywords"), self.set_keywords)
        self._fill("requires_at_least", data.get("requires_at_least"), self.set_requires_at_least)
        self._fill("tested_up_to", data.get("tested_up_to"), self.set_tested_up_to)
        self._fill(
            "requires_runtime",
            data.get("requires_runtime") or data.get("requires_php"),
            self.set_requires_runtime,
        )

        if "is_managed" in data:
            self.set_is_managed(data["is_managed"])
        if data.get("managed_id") and self._can_fill("managed_id"):
            self.set_managed_id(data["managed_id"])
            self.set_managed_id_hash(self.package_manager.hash_encode_id(data["managed_id"]))
        if data.get("visibility") and "visibility" not in self._fields:
            self.set_visibility(data["visibility"])

        self._merge_dependencies("required_packages", data.get("required_packages"))
        self._merge_dependencies("replaced_packages", data.get("replaced_packages"))
        if self.parts:
            self._merge_dependencies("required_packages", data.get("required_parts"))
            self._merge_dependencies("replaced_packages", data.get("replaced_parts"))

        self._fill("composer_require", data.get("composer_require"), self.set_composer_require)
        return self

    def _merge_dependencies(self, name: str, entries: Any) -> None:
        if not entries:
            return
        self._set(name, merge_dependencies(self.get(name), self._normalize_dependencies(entries)))

    def from_header_data(self, data: dict[str, str]) -> PackageBuilder:
        """Fill empty fields from plugin/theme header data."""
        self._fill("name", data.get("Name"), self.set_name)
        self._fill("homepage", data.get("PluginURI") or data.get("ThemeURI"), self.set_homepage)
        if data.get("Author"):
            author = {"name": data["Author"], "homepage": data.get("AuthorURI", "")}
            self._fill("authors", [author], self.set_authors)
        self._fill("description", data.get("Description"), self.set_description)
        self._fill("license", data.get("License"), self.set_license)
        self._fill("keywords", data.get("Tags"), self.set_keywords)
        self._fill("requires_at_least", data.get("Requires at least"), self.set_requires_at_least)
        self._fill("tested_up_to", data.get("Tested up to"), self.set_tested_up_to)
        self._fill("requires_runtime", data.get("Requires PHP"), self.set_requires_runtime)
        return self

    def from_readme_data(self, data: dict[str, Any]) -> PackageBuilder:
        """Fill empty fields from parsed readme data."""
        self._fill("name", data.get("name"), self.set_name)
        self._fill("authors", data.get("contributors"), self.set_authors)
        self._fill("description", data.get("short_description"), self.set_description)
        self._fill("license", data.get("license"), self.set_license)
        self._fill("keywords", data.get("tags"), self.set_keywords)
        self._fill("requires_at_least", data.get("requires_at_least"), self.set_requires_at_least)
        self._fill("tested_up_to", data.get("tested_up_to"), self.set_tested_up_to)
        self._fill("requires_runtime", data.get("requires_php"), self.set_requires_runtime)
        return self

    def from_readme(self, directory: Path | str | None = None) -> PackageBuilder:
        """Fill empty fields from the readme in a directory (default: the install directory)."""
        if directory is None:
            if self.package.is_single_file:
                return self
            directory = self.get("directory")
        if directory is None:
            return self

        readme = find_readme(Path(directory))
        if readme is None:
            return self
        try:
            return self.from_readme_data(parse_readme(readme))
        except OSError as e:
            logger.warning(f"Could not read readme {readme}: {e}")
            return self

    def from_release_file(self, version: str) -> PackageBuilder:
        """Fill empty fields from the headers and readme inside a release's artifact.

        The stored artifact is used when present; otherwise the release's
        source URL is downloaded to a temporary file.
        """
        release = self.release(version)
        source = self.release_manager.get_absolute_path(release)
        downloaded = False
        if source is None:
            try:
                source = self.archiver.download_url(release.source_url)
            except RecordsError as e:
                logger.warning(f'Could not fetch "{self.get("name")}" version {version} for introspection: {e}')
                return self
            downloaded = True

        try:
            with tempfile.TemporaryDirectory(prefix="wprecords-") as tmp:
                with zipfile.ZipFile(source) as archive:
                    archive.extractall(tmp)

                package_dir = Path(tmp)
                entries = list(package_dir.iterdir())
                if len(entries) == 1 and entries[0].is_dir():
                    package_dir = entries[0]

                if self.get("type") == PackageTypes.THEME:
                    data = get_theme_data(package_dir / "style.css")
                else:
                    plugin_file = find_plugin_file(package_dir)
                    data = get_plugin_data(plugin_file) if plugin_file else {}

                if data.get("Name"):
                    data = {
                        **data,
                        "Description": data.get("Description") or DEFAULT_DESCRIPTION,
                        "License": data.get("License") or DEFAULT_LICENSE,
                    }
                    self.from_header_data(data)
                self.from_readme(package_dir)
        except (zipfile.BadZipFile, OSError) as e:
            logger.warning(f'Could not read "{self.get("name")}" version {version} artifact: {e}')
        finally:
            if downloaded:
                Path(source).unlink(missing_ok=True)
        return self

    def _needs_descriptive_fields(self) -> bool:
        return any(self._can_fill(name) for name in DESCRIPTIVE_FIELDS)

    def _latest(self, versions: list[str]) -> str:
        return max(versions, key=cmp_to_key(self.version_service.compare))

    def from_cached_release_packages(
        self, listing: dict[str, dict[str, Any]] | list[dict[str, Any]]
    ) -> PackageBuilder:
        """Add a release per entry of a cached upstream listing.

        The newest entry also fills empty package fields; when descriptive
        fields are still missing afterwards, its artifact is opened.
        """
        entries = listing.values() if isinstance(listing, dict) else listing
        records = {
            str(entry["version"]): entry
            for entry in entries
            if entry.get("version") and (entry.get("dist") or {}).get("url")
        }
        if not records:
            return self

        latest = self._latest(list(records))
        self.from_package_data(records[latest])

        for version, entry in records.items():
            meta = {key: entry[key] for key in ("source", "require", "time") if key in entry}
            meta["dist"] = dict(entry["dist"])
            self.add_release(version, meta)

        if self._needs_descriptive_fields() and latest in self.releases:
            self.from_release_file(latest)
        return self

    def from_manual_releases(self, manual_releases: dict[str, dict[str, str]]) -> PackageBuilder:
        """Add a release per manual upload (``{normalized: {version, source_url}}``)."""
        versions = []
        for upload in manual_releases.values():
            if self.add_release(upload["version"], {"dist": {"url": upload["source_url"]}}):
                versions.append(upload["version"])

        if versions and self._needs_descriptive_fields():
            self.from_release_file(self._latest(versions))
        return self

    def from_basename(self, plugin_file: str) -> PackageBuilder:
        """Fill an installed plugin's identity from its basename ("akismet/akismet.php")."""
        if "/" in plugin_file:
            slug = plugin_file.split("/", 1)[0]
        else:
            slug = Path(plugin_file).stem

        self._fill("type", PackageTypes.PLUGIN, self.set_type)
        self._fill("slug", slug, self.set_slug)
        self._fill("source_type", SourceTypes.LOCAL_PLUGIN, self.set_source_type)
        self._fill("source_name", f"local-plugin/{slug}", self.set_source_name)
        self.set_basename(plugin_file)
        if self.host is not None:
            self.set_directory(self.host.plugin_directory(plugin_file))
            self.set_installed(self.host.is_plugin_installed(plugin_file))
        return self

    def from_theme_slug(self, theme_slug: str) -> PackageBuilder:
        self._fill("type", PackageTypes.THEME, self.set_type)
        self._fill("slug", theme_slug, self.set_slug)
        self._fill("source_type", SourceTypes.LOCAL_THEME, self.set_source_type)
        self._fill("source_name", f"local-theme/{theme_slug}", self.set_source_name)
        if self.host is not None:
            self.set_directory(self.host.theme_directory(theme_slug))
            self.set_installed(self.host.is_theme_installed(theme_slug))
        return self

    def from_source(self, header_data: dict[str, str] | None = None) -> PackageBuilder:
        """Fill an installed package from its own headers, including the installed version."""
        if header_data is None:
            header_data = {}
            if self.host is not None and self.get("type") == PackageTypes.THEME:
                directory = self.get("directory")
                header_data = self.host.get_theme_data(directory.name if directory else self.get("slug"))
            elif self.host is not None:
                header_data = self.host.get_plugin_data(self.get("basename"))

        self._fill("installed_version", header_data.get("Version"), self.set_installed_version)
        return self.from_header_data(header_data)

    def with_package(self, package: Package) -> PackageBuilder:
        """Re-seed the builder from an existing package, releases included."""
        for name in _PACKAGE_FIELDS:
            self._set(name, getattr(package, name))
        for version, release in package.releases.items():
            self.releases[version] = dict(release.meta)
        return self

    # Releases

    def add_release(self, version: str, meta: dict[str, Any] | None = None) -> bool:
        """Add or replace a release in the working set.

        Returns:
            False when the version is invalid (the release is skipped)
        """
        version = str(version).strip()
        if not self.version_service.check(version).ok:
            logger.warning(f'Skipping "{self.get("name")}" release with invalid version {version!r}')
            return False
        self.releases[version] = dict(meta or {})
        return True

    def remove_release(self, version: str) -> PackageBuilder:
        self.releases.pop(version, None)
        return self

    def add_cached_releases(self) -> PackageBuilder:
        self.strategy.add_cached_releases(self)
        return self

    def prune_releases(self) -> PackageBuilder:
        self.strategy.prune_releases(self)
        return self

    # Build

    def build(self) -> Package:
        """Prune, sort and commit the releases, then store them for managed packages."""
        self.prune_releases()

        package = Package(**self._fields)
        releases = {
            version: Release(package, version, self.releases[version])
            for version in self.version_service.sort_desc(self.releases)
        }
        package._commit_releases(releases)

        if package.is_managed:
            self.cache_releases(package)
        return package

    def cache_releases(self, package: Package) -> None:
        """Store every release of a built package and drop stale stored artifacts.

        A release that fails to store is logged and stays unstored; the other
        releases are unaffected. A stored release whose meta file cannot be
        written is kept.
        """
        releases = dict(package.releases)
        stored_versions = set()
        for version, release in package.releases.items():
            try:
                release = self.release_manager.store(release)
            except (RecordsError, OSError) as e:
                logger.error(f'Error storing package "{package.name}" version {version}: {e}')
                continue
            releases[version] = release
            stored_versions.add(version)

            try:
                self.release_manager.dump_meta(release)
            except (RecordsError, OSError) as e:
                logger.error(f'Error writing meta of package "{package.name}" version {version}: {e}')
        package._commit_releases(releases)

        if not stored_versions:
            return

        for version, stored in self.release_manager.all_stored_releases(package).items():
            if version in stored_versions:
                continue
            try:
                self.release_manager.delete(stored)
            except RecordsError as e:
                logger.error(f'Error deleting stale package "{package.name}" version {version}: {e}')
