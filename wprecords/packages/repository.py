"""Package repositories.

A repository is a read-only collection of built packages. Managed
repositories build every matching record (storing their releases on the
way); installed repositories build whatever is present in the host's
plugins/themes directories. Packages are built once per repository instance;
call ``reset()`` to rebuild.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

from wprecords.packages.factory import PackageFactory
from wprecords.packages.models import Package, PackageTypes, SourceTypes

logger = logging.getLogger(__name__)

PackagePredicate = Callable[[Package], bool]


class PackageRepository:
    """Base repository; subclasses implement ``_load``."""

    def __init__(self):
        self._packages: list[Package] | None = None

    def _load(self) -> list[Package]:
        raise NotImplementedError

    def all(self) -> list[Package]:
        if self._packages is None:
            self._packages = self._load()
        return list(self._packages)

    def reset(self) -> None:
        self._packages = None

    def __iter__(self) -> Iterator[Package]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self.all())

    def where(self, **criteria: Any) -> list[Package]:
        """Packages whose attributes equal every given value."""
        return [
            package
            for package in self.all()
            if all(getattr(package, key, None) == value for key, value in criteria.items())
        ]

    def first_where(self, **criteria: Any) -> Package | None:
        found = self.where(**criteria)
        return found[0] if found else None

    def contains(self, **criteria: Any) -> bool:
        return self.first_where(**criteria) is not None

    def with_filter(self, predicate: PackagePredicate) -> FilteredRepository:
        return FilteredRepository(self, predicate)


class ManagedPackages(PackageRepository):
    """Packages built from managed records.

    Args:
        factory: Builder factory
        types: Only records of these package types
        source_types: Only records of these source types
    """

    def __init__(
        self,
        factory: PackageFactory,
        types: list[str] | None = None,
        source_types: list[str] | None = None,
    ):
        super().__init__()
        self.factory = factory
        self.types = types
        self.source_types = source_types

    def _load(self) -> list[Package]:
        manager = self.factory.package_manager
        packages = []
        for package_id in manager.get_package_ids(self.types, self.source_types):
            data = manager.get_package_data(package_id)
            builder = self.factory.create(data["type"], data["source_type"]).from_manager(package_id)
            if data["source_type"] in SourceTypes.LOCAL:
                builder.from_source().from_readme()
            try:
                packages.append(builder.add_cached_releases().build())
            except ValueError as e:
                logger.error(f"Could not build managed package {package_id}: {e}")
        return packages


class InstalledPlugins(PackageRepository):
    """Plugins installed on the host, managed or not."""

    def __init__(self, factory: PackageFactory):
        super().__init__()
        self.factory = factory

    def _load(self) -> list[Package]:
        host = self.factory.host
        if host is None:
            return []

        packages = []
        for basename, header_data in host.installed_plugins().items():
            builder = (
                self.factory.create(PackageTypes.PLUGIN, SourceTypes.LOCAL_PLUGIN)
                .from_manager(source_type=SourceTypes.LOCAL_PLUGIN, local_plugin_file=basename)
                .from_basename(basename)
                .from_source(header_data)
                .from_readme()
            )
            packages.append(builder.add_cached_releases().build())
        return packages


class InstalledThemes(PackageRepository):
    """Themes installed on the host, managed or not."""

    def __init__(self, factory: PackageFactory):
        super().__init__()
        self.factory = factory

    def _load(self) -> list[Package]:
        host = self.factory.host
        if host is None:
            return []

        packages = []
        for slug, header_data in host.installed_themes().items():
            builder = (
                self.factory.create(PackageTypes.THEME, SourceTypes.LOCAL_THEME)
                .from_manager(source_type=SourceTypes.LOCAL_THEME, local_theme_slug=slug)
                .from_theme_slug(slug)
                .from_source(header_data)
                .from_readme()
            )
            packages.append(builder.add_cached_releases().build())
        return packages


class MultiRepository(PackageRepository):
    """Concatenation of several repositories."""

    def __init__(self, repositories: list[PackageRepository]):
        super().__init__()
        self.repositories = repositories

    def _load(self) -> list[Package]:
        return [package for repository in self.repositories for package in repository.all()]

    def reset(self) -> None:
        super().reset()
        for repository in self.repositories:
            repository.reset()


class FilteredRepository(PackageRepository):
    """Packages of another repository accepted by a predicate."""

    def __init__(self, repository: PackageRepository, predicate: PackagePredicate):
        super().__init__()
        self.repository = repository
        self.predicate = predicate

    def _load(self) -> list[Package]:
        return [package for package in self.repository.all() if self.predicate(package)]

    def reset(self) -> None:
        super().reset()
        self.repository.reset()
