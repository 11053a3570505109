"""Package records core.

Builds WordPress packages from managed records, upstream indexes, manual
uploads and installed plugins/themes, stores their release artifacts, and
renders them as a Composer repository.
"""

from wprecords.packages.archiver import Archiver
from wprecords.packages.builder import PackageBuilder
from wprecords.packages.exceptions import (
    FileDownloadFailed,
    FileOperationFailed,
    InvalidComposerVendor,
    InvalidConstraint,
    InvalidPackageArtifact,
    InvalidReleaseSource,
    InvalidReleaseVersion,
    InvalidVersion,
    PackageNotInstalled,
    RecordsError,
)
from wprecords.packages.factory import PackageFactory
from wprecords.packages.host import HostEnvironment
from wprecords.packages.index_client import PackageIndexClient, PackageIndexError
from wprecords.packages.manager import PackageManager, load_records
from wprecords.packages.models import (
    Package,
    PackageTypes,
    Release,
    SourceTypes,
    Visibility,
    make_pseudo_id,
    split_pseudo_id,
)
from wprecords.packages.release_manager import ReleaseManager
from wprecords.packages.repository import (
    FilteredRepository,
    InstalledPlugins,
    InstalledThemes,
    ManagedPackages,
    MultiRepository,
    PackageRepository,
)
from wprecords.packages.scheduler import APSchedulerScheduler, ListingRefresher, Scheduler
from wprecords.packages.storage import LocalStorage
from wprecords.packages.transformer import ComposerRepositoryTransformer
from wprecords.packages.variants import BuilderVariant
from wprecords.packages.versioning import (
    Constraint,
    VersionCheck,
    VersionService,
    compare_versions,
    normalize_version,
    parse_constraint,
)

__all__ = [
    # Models
    "Package",
    "Release",
    "PackageTypes",
    "SourceTypes",
    "Visibility",
    "make_pseudo_id",
    "split_pseudo_id",
    # Versions
    "VersionService",
    "VersionCheck",
    "Constraint",
    "compare_versions",
    "normalize_version",
    "parse_constraint",
    # Building
    "PackageBuilder",
    "BuilderVariant",
    "PackageFactory",
    "HostEnvironment",
    "PackageManager",
    "load_records",
    # Storage and archiving
    "LocalStorage",
    "Archiver",
    "ReleaseManager",
    "PackageIndexClient",
    "PackageIndexError",
    # Repositories
    "PackageRepository",
    "ManagedPackages",
    "InstalledPlugins",
    "InstalledThemes",
    "MultiRepository",
    "FilteredRepository",
    "ComposerRepositoryTransformer",
    # Scheduling
    "Scheduler",
    "APSchedulerScheduler",
    "ListingRefresher",
    # Errors
    "RecordsError",
    "InvalidVersion",
    "InvalidConstraint",
    "InvalidComposerVendor",
    "PackageNotInstalled",
    "InvalidReleaseVersion",
    "InvalidReleaseSource",
    "FileDownloadFailed",
    "InvalidPackageArtifact",
    "FileOperationFailed",
]
