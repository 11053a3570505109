"""
wprecords CLI - Build a Composer repository of WordPress packages.

Usage:
    wprecords build [--config config.yaml] [--output packages.json]
        Builds every public managed package (storing its releases) and writes
        the Composer repository JSON.

    wprecords refresh [--config config.yaml] [--package 12]
        Refreshes the cached upstream release listings of external packages.

    wprecords refresh --watch [--interval 43200]
        Keeps refreshing the listings on a schedule until interrupted.

    wprecords status [--config config.yaml]
        Lists the stored release artifacts of every managed package.

    wprecords purge --package 12 [--config config.yaml]
        Deletes every stored artifact of one managed package.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler

from wprecords.config import Settings, get_settings
from wprecords.packages.exceptions import RecordsError
from wprecords.packages.factory import PackageFactory
from wprecords.packages.repository import ManagedPackages
from wprecords.packages.scheduler import (
    DEFAULT_REFRESH_INTERVAL,
    APSchedulerScheduler,
    ListingRefresher,
)
from wprecords.packages.transformer import ComposerRepositoryTransformer

logger = logging.getLogger(__name__)


def _load_settings(args: argparse.Namespace) -> Settings:
    try:
        settings = get_settings(args.config)
    except (FileNotFoundError, RecordsError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Apply the configured logging unless --verbose was given
    root = logging.getLogger()
    if not getattr(args, "verbose", False):
        root.setLevel(settings.log_level.upper())
    for handler in root.handlers:
        handler.setFormatter(logging.Formatter(settings.log_format))
    return settings


def _load_factory(args: argparse.Namespace) -> PackageFactory:
    settings = _load_settings(args)
    try:
        return PackageFactory.from_settings(settings)
    except ValueError as e:
        print(f"Error: invalid records file {settings.records_file}: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_build(args: argparse.Namespace) -> None:
    """Execute the 'build' subcommand: write the Composer repository JSON."""
    factory = _load_factory(args)
    manager = factory.package_manager

    repository = ManagedPackages(factory).with_filter(manager.is_package_public)
    transformer = ComposerRepositoryTransformer(
        manager, factory.release_manager, factory.version_service
    )
    document = transformer.transform(repository)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(document, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    versions = sum(len(releases) for releases in document["packages"].values())
    print(f"Wrote {len(document['packages'])} packages ({versions} releases) to {output}")


def cmd_refresh(args: argparse.Namespace) -> None:
    """Execute the 'refresh' subcommand: refresh upstream release listings."""
    factory = _load_factory(args)
    refresher = ListingRefresher(factory.package_manager, factory.release_manager.index_client)

    if args.watch:
        scheduler = BlockingScheduler()
        refresher.schedule(APSchedulerScheduler(scheduler), interval=args.interval)
        refresher.refresh_all()
        logger.info(f"Refreshing upstream listings every {args.interval} seconds")
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Stopped refreshing")
        return

    if args.package:
        counts = {args.package: refresher.refresh(args.package)}
    else:
        counts = refresher.refresh_all()

    for package_id, count in counts.items():
        print(f"  Package {package_id:>5}: {count:>5} releases")


def cmd_status(args: argparse.Namespace) -> None:
    """Execute the 'status' subcommand: list stored artifacts per package."""
    factory = _load_factory(args)
    manager = factory.package_manager

    print(f"Storage: {factory.release_manager.storage.root}")
    print(f"{'=' * 50}")
    for package_id in manager.get_package_ids():
        data = manager.get_package_data(package_id)
        package = factory.create(data["type"], data["source_type"]).from_manager(package_id).package
        try:
            stored = factory.release_manager.all_stored_releases(package)
        except ValueError as e:
            print(f"  {package_id:>5} {data.get('slug') or '?'}: {e}")
            continue
        versions = ", ".join(factory.version_service.sort_desc(stored)) or "-"
        print(f"  {package_id:>5} {manager.composer_package_name(package.slug)} ({data['source_type']}): {versions}")


def cmd_purge(args: argparse.Namespace) -> None:
    """Execute the 'purge' subcommand: delete one package's stored artifacts."""
    factory = _load_factory(args)
    manager = factory.package_manager

    data = manager.get_package_data(args.package)
    if not data:
        print(f"Error: no managed package with id {args.package}", file=sys.stderr)
        sys.exit(1)

    package = factory.create(data["type"], data["source_type"]).from_manager(args.package).package
    try:
        deleted = factory.release_manager.delete_all(package)
    except RecordsError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Deleted {deleted} stored releases of {manager.composer_package_name(package.slug)}")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="wprecords",
        description="wprecords - Composer repository for WordPress packages",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # 'build' subcommand
    build_parser = subparsers.add_parser("build", help="Write the Composer repository JSON")
    build_parser.add_argument(
        "--output", type=str, default="packages.json", help="Output file for the repository JSON"
    )
    _add_common_arguments(build_parser)
    build_parser.set_defaults(func=cmd_build)

    # 'refresh' subcommand
    refresh_parser = subparsers.add_parser("refresh", help="Refresh upstream release listings")
    refresh_parser.add_argument("--package", type=int, default=None, help="Only refresh this package id")
    refresh_parser.add_argument(
        "--watch", action="store_true", help="Keep refreshing on a schedule until interrupted"
    )
    refresh_parser.add_argument(
        "--interval",
        type=int,
        default=DEFAULT_REFRESH_INTERVAL,
        help="Seconds between refreshes with --watch",
    )
    _add_common_arguments(refresh_parser)
    refresh_parser.set_defaults(func=cmd_refresh)

    # 'status' subcommand
    status_parser = subparsers.add_parser("status", help="List stored release artifacts")
    _add_common_arguments(status_parser)
    status_parser.set_defaults(func=cmd_status)

    # 'purge' subcommand
    purge_parser = subparsers.add_parser("purge", help="Delete the stored artifacts of a package")
    purge_parser.add_argument("--package", type=int, required=True, help="Managed package id")
    _add_common_arguments(purge_parser)
    purge_parser.set_defaults(func=cmd_purge)

    args = parser.parse_args()

    # Configure logging
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    args.func(args)


if __name__ == "__main__":
    main()
