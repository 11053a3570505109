"""Scheduling of upstream listing refreshes.

Refreshing a package's upstream release listing is network-bound, so it is
never done while building packages. A ``ListingRefresher`` fetches listings
and stores them in the record store; a ``Scheduler`` decides when that runs.
``APSchedulerScheduler`` adapts an APScheduler scheduler to that interface.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from wprecords.packages.index_client import PackageIndexClient, PackageIndexError
from wprecords.packages.manager import PackageManager
from wprecords.packages.models import SourceTypes

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 12 * 60 * 60


class Scheduler(Protocol):
    def schedule_once(self, delay: float, func: Callable[..., Any], *args: Any) -> None:
        """Run ``func(*args)`` once, ``delay`` seconds from now."""

    def schedule_recurring(self, interval: float, func: Callable[..., Any], *args: Any) -> None:
        """Run ``func(*args)`` every ``interval`` seconds."""


class APSchedulerScheduler:
    """Scheduler backed by an APScheduler scheduler.

    Jobs are identified by function name and arguments, so scheduling the
    same work twice replaces the pending job instead of duplicating it.
    """

    def __init__(self, scheduler: BaseScheduler):
        self.scheduler = scheduler

    @staticmethod
    def _job_id(func: Callable[..., Any], args: tuple) -> str:
        name = getattr(func, "__qualname__", repr(func))
        return ":".join([name, *(str(arg) for arg in args)])

    def schedule_once(self, delay: float, func: Callable[..., Any], *args: Any) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_date),
            args=list(args),
            id=f"once:{self._job_id(func, args)}",
            replace_existing=True,
        )

    def schedule_recurring(self, interval: float, func: Callable[..., Any], *args: Any) -> None:
        self.scheduler.add_job(
            func,
            IntervalTrigger(seconds=interval),
            args=list(args),
            id=f"every:{self._job_id(func, args)}",
            replace_existing=True,
        )


class ListingRefresher:
    """Refreshes the cached upstream release listings of external packages.

    Args:
        package_manager: Record store holding the cached listings
        index_client: Upstream index client
    """

    def __init__(self, package_manager: PackageManager, index_client: PackageIndexClient):
        self.package_manager = package_manager
        self.index_client = index_client

    def refresh(self, package_id: int) -> int:
        """Fetch and store one package's listing.

        A failed fetch is logged and the previous listing is kept.

        Returns:
            Number of releases in the stored listing (0 on failure or for
            non-external packages)
        """
        data = self.package_manager.get_package_data(package_id)
        if not data or data["source_type"] not in SourceTypes.EXTERNAL:
            logger.debug(f"Package {package_id} has no upstream listing to refresh")
            return 0

        try:
            listing = self.index_client.fetch_release_packages(
                data["source_type"], data["source_name"], vcs_url=data.get("vcs_url", "")
            )
        except PackageIndexError as e:
            logger.error(f'Could not refresh releases of "{data["source_name"]}": {e}')
            return 0

        self.package_manager.set_cached_release_packages(package_id, listing)
        return len(listing)

    def refresh_all(self) -> dict[int, int]:
        """Refresh every external package; returns release counts keyed by package id."""
        counts = {}
        for package_id in self.package_manager.get_package_ids(source_types=list(SourceTypes.EXTERNAL)):
            counts[package_id] = self.refresh(package_id)
        return counts

    def schedule(self, scheduler: Scheduler, interval: float = DEFAULT_REFRESH_INTERVAL) -> None:
        scheduler.schedule_recurring(interval, self.refresh_all)

    def schedule_refresh(self, scheduler: Scheduler, package_id: int, delay: float = 0) -> None:
        """Queue a one-off refresh of a package, e.g. after its record changed."""
        scheduler.schedule_once(delay, self.refresh, package_id)
