"""Package builder factory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from wprecords.packages.archiver import Archiver
from wprecords.packages.builder import PackageBuilder
from wprecords.packages.host import HostEnvironment
from wprecords.packages.index_client import PackageIndexClient
from wprecords.packages.manager import PackageManager, load_records
from wprecords.packages.models import PackageTypes, SourceTypes
from wprecords.packages.release_manager import ReleaseManager
from wprecords.packages.storage import LocalStorage
from wprecords.packages.variants import BuilderVariant
from wprecords.packages.versioning import VersionService

if TYPE_CHECKING:
    from wprecords.config import Settings

logger = logging.getLogger(__name__)


def variant_for(source_type: str) -> BuilderVariant:
    if source_type in SourceTypes.LOCAL:
        return BuilderVariant.LOCAL
    if source_type in SourceTypes.EXTERNAL:
        return BuilderVariant.EXTERNAL
    if source_type == SourceTypes.LOCAL_MANUAL:
        return BuilderVariant.MANUAL
    return BuilderVariant.BASE


class PackageFactory:
    """Creates package builders wired to the shared services."""

    def __init__(
        self,
        package_manager: PackageManager,
        release_manager: ReleaseManager,
        archiver: Archiver,
        version_service: VersionService,
        host: HostEnvironment | None = None,
    ):
        self.package_manager = package_manager
        self.release_manager = release_manager
        self.archiver = archiver
        self.version_service = version_service
        self.host = host

    @classmethod
    def from_settings(cls, settings: Settings) -> PackageFactory:
        """Wire up storage, archiver, record store and release manager from settings."""
        host = HostEnvironment.from_settings(settings)
        version_service = VersionService()
        package_manager = PackageManager(
            load_records(Path(settings.records_file)),
            settings,
            host,
            version_service=version_service,
            records_base=Path(settings.records_file).parent,
        )
        archiver = Archiver(
            settings.temp_dir,
            host=host,
            timeout=settings.download_timeout,
            verify_tls=settings.verify_tls,
            allow_private_hosts=settings.allow_private_hosts,
        )
        index_client = PackageIndexClient(
            github_token=settings.github_token or None,
            download_timeout=settings.download_timeout,
            verify_tls=settings.verify_tls,
            allow_private_hosts=settings.allow_private_hosts,
        )
        release_manager = ReleaseManager(
            LocalStorage(settings.storage_root),
            archiver,
            version_service,
            package_manager,
            index_client=index_client,
        )
        return cls(package_manager, release_manager, archiver, version_service, host)

    def create(self, package_type: str, source_type: str = "") -> PackageBuilder:
        """Create a builder for a package type and source type.

        Args:
            package_type: One of PackageTypes
            source_type: One of SourceTypes (empty for a generic builder)
        """
        variant = variant_for(source_type)
        logger.debug(f"Creating {variant.value} builder for {package_type} package from {source_type or 'nowhere'}")
        builder = PackageBuilder(
            variant,
            self.package_manager,
            self.release_manager,
            self.archiver,
            self.version_service,
            host=self.host,
            parts=package_type == PackageTypes.PART,
        )
        if package_type:
            builder.set_type(package_type)
        return builder
