"""Builder variants.

A PackageBuilder is parameterized by a BuilderVariant; the variant's strategy
supplies the steps that differ between source kinds: how managed record data
is applied, how releases are pruned before building, and which stored
releases are added back.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Any

from wprecords.packages.exceptions import InvalidConstraint
from wprecords.packages.models import SourceTypes

if TYPE_CHECKING:
    from wprecords.packages.builder import PackageBuilder

logger = logging.getLogger(__name__)


class BuilderVariant(enum.Enum):
    """Kinds of package sources a builder can handle."""

    BASE = "base"
    LOCAL = "local"
    EXTERNAL = "external"
    MANUAL = "manual"


class BaseStrategy:
    """Generic packages: record data only, no pruning."""

    def from_manager_data(self, builder: PackageBuilder, package_data: dict[str, Any]) -> None:
        builder.from_package_data(package_data)

    def prune_releases(self, builder: PackageBuilder) -> None:
        pass

    def add_cached_releases(self, builder: PackageBuilder) -> None:
        for release in builder.release_manager.all_stored_releases(builder.package).values():
            builder.add_release(release.version, release.meta)


class LocalStrategy(BaseStrategy):
    """Installed plugins and themes."""

    def from_manager_data(self, builder: PackageBuilder, package_data: dict[str, Any]) -> None:
        # The record's slug takes precedence over the install directory name
        builder.from_package_data(package_data)
        if package_data.get("local_installed"):
            builder.set_installed(True)

        source_type = package_data.get("source_type")
        if source_type == SourceTypes.LOCAL_PLUGIN and package_data.get("local_plugin_file"):
            if not builder.get("basename"):
                builder.from_basename(package_data["local_plugin_file"])
        elif source_type == SourceTypes.LOCAL_THEME and package_data.get("local_theme_slug"):
            if builder.get("directory") is None:
                builder.from_theme_slug(package_data["local_theme_slug"])

    def add_cached_releases(self, builder: PackageBuilder) -> None:
        releases = {
            version: release.meta
            for version, release in builder.release_manager.all_stored_releases(builder.package).items()
        }

        if builder.get("is_installed"):
            # The installed version may not be stored yet
            installed_version = builder.get("installed_version")
            if installed_version and installed_version not in releases:
                releases[installed_version] = {}

            update = builder.host.get_pending_update_for(builder.package) if builder.host else None
            if update:
                releases[str(update["new_version"])] = {"dist": {"url": str(update["package"])}}

        for version, meta in releases.items():
            builder.add_release(version, meta)


class ExternalStrategy(BaseStrategy):
    """Packages pulled from an upstream index or VCS, bounded by a version constraint."""

    def from_manager_data(self, builder: PackageBuilder, package_data: dict[str, Any]) -> None:
        version_range = str(package_data.get("source_version_range") or "").strip()
        if builder.get("source_constraint") is None and version_range and version_range != "*":
            stability = str(package_data.get("source_stability") or "").strip()
            if stability and stability != "stable":
                version_range += f"@{stability}"
            try:
                builder.set_source_constraint(builder.version_service.parse_constraint(version_range))
            except InvalidConstraint as e:
                logger.error(f'Error parsing source constraint for "{package_data.get("name")}": {e}')

        builder.from_package_data(package_data)

        if package_data.get("source_cached_release_packages"):
            builder.from_cached_release_packages(package_data["source_cached_release_packages"])

    def prune_releases(self, builder: PackageBuilder) -> None:
        constraint = builder.get("source_constraint")
        if constraint is None:
            return
        for version in list(builder.releases):
            check = builder.version_service.check(version)
            if not check.ok or not constraint.matches(check.normalized):
                builder.remove_release(version)


class ManualStrategy(BaseStrategy):
    """Packages made of operator-uploaded zip files."""

    def from_manager_data(self, builder: PackageBuilder, package_data: dict[str, Any]) -> None:
        builder.from_package_data(package_data)

        manual_releases = builder.package_manager.get_manual_releases(package_data["id"])
        if manual_releases:
            builder.from_manual_releases(manual_releases)

    def prune_releases(self, builder: PackageBuilder) -> None:
        if not builder.get("is_managed"):
            return
        manual_releases = builder.package_manager.get_manual_releases(builder.get("managed_id"))
        for version in list(builder.releases):
            check = builder.version_service.check(version)
            if not check.ok or check.normalized not in manual_releases:
                builder.remove_release(version)


STRATEGIES = {
    BuilderVariant.BASE: BaseStrategy(),
    BuilderVariant.LOCAL: LocalStrategy(),
    BuilderVariant.EXTERNAL: ExternalStrategy(),
    BuilderVariant.MANUAL: ManualStrategy(),
}


def strategy_for(variant: BuilderVariant) -> BaseStrategy:
    return STRATEGIES[variant]
