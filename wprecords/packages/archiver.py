"""Release artifact archiver.

Produces release zip files in a private temporary directory, either by
zipping an installed plugin/theme or by downloading a source URL. The
ReleaseManager then moves the finished artifact into storage.
"""

import logging
import os
import shutil
import tempfile
import zipfile
from collections.abc import Callable
from pathlib import Path

import requests

from wprecords.packages._url_validation import validate_download_url
from wprecords.packages.exceptions import (
    FileDownloadFailed,
    FileOperationFailed,
    PackageNotInstalled,
)
from wprecords.packages.host import HostEnvironment
from wprecords.packages.models import Package, Release
from wprecords.packages.validator import ArtifactValidator, default_validators, validate_artifact

logger = logging.getLogger(__name__)

# Transforms an exclude list for a release; applied in registration order
ExcludeFilter = Callable[[list[str], Release], list[str]]
# Rewrites a download URL before it is fetched; applied in registration order
UrlFilter = Callable[[str], str]

DEFAULT_EXCLUDES = [".DS_Store", ".git", "node_modules"]
DISTIGNORE_FILENAME = ".distignore"
DOWNLOAD_CHUNK_SIZE = 65536


class Archiver:
    """Creates release zip artifacts.

    Args:
        temp_dir: Private directory where artifacts are produced
        host: Host environment, used to short-circuit same-host downloads
        validators: Artifact validator chain (default: zip + hidden directory)
        exclude_filters: Callables adjusting the exclude list per release
        url_filters: Callables rewriting download URLs
        session: requests session used for downloads
        timeout: Download timeout in seconds
        verify_tls: Verify TLS certificates on download
        allow_private_hosts: Permit downloads from private/loopback hosts
    """

    USER_AGENT = "wprecords/1.0"

    def __init__(
        self,
        temp_dir: Path | str,
        host: HostEnvironment | None = None,
        validators: list[ArtifactValidator] | None = None,
        exclude_filters: list[ExcludeFilter] | None = None,
        url_filters: list[UrlFilter] | None = None,
        session: requests.Session | None = None,
        timeout: int = 300,
        verify_tls: bool = True,
        allow_private_hosts: bool = False,
    ):
        self.temp_dir = Path(temp_dir)
        self.host = host
        self.validators = default_validators() if validators is None else validators
        self.exclude_filters = exclude_filters or []
        self.url_filters = url_filters or []
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": self.USER_AGENT})
        self.session = session
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.allow_private_hosts = allow_private_hosts

    def get_absolute_path_to_tmpdir(self, filename: str = "") -> Path:
        return self.temp_dir / filename.lstrip("/")

    def archive_from_source(self, package: Package, version: str) -> Path:
        """Zip an installed package.

        Args:
            package: Installed package
            version: Release version to name the artifact after

        Returns:
            Absolute path to the created zip in the temp directory

        Raises:
            PackageNotInstalled: If the package is not installed
            FileOperationFailed: If the temp directory or zip cannot be created
        """
        if not package.is_installed or package.directory is None:
            raise PackageNotInstalled.unable_to_archive_from_source(package)

        release = package.get_release(version)
        excludes = self.get_excluded_files(package, release)
        files = package.get_files(excludes)

        remove_path = package.directory if package.is_single_file else package.directory.parent

        filename = self.get_absolute_path_to_tmpdir(release.file)
        try:
            filename.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationFailed.unable_to_create_temporary_directory(filename) from e

        # Concurrent runs for the same version each write their own file
        tmpfname = self.new_tempfile(release.file)
        try:
            with zipfile.ZipFile(tmpfname, "w", zipfile.ZIP_DEFLATED) as archive:
                for file in files:
                    archive.write(file, file.relative_to(remove_path).as_posix())
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            tmpfname.unlink(missing_ok=True)
            raise FileOperationFailed.unable_to_create_zip_file(filename) from e

        if not files or tmpfname.stat().st_size == 0:
            tmpfname.unlink(missing_ok=True)
            raise FileOperationFailed.unable_to_create_zip_file(filename)

        try:
            os.replace(tmpfname, filename)
        except OSError as e:
            tmpfname.unlink(missing_ok=True)
            raise FileOperationFailed.unable_to_rename_temporary_artifact(filename, tmpfname) from e

        logger.info(f'Archived "{package.name}" version {version} from source.')
        return filename

    def get_excluded_files(self, package: Package, release: Release) -> list[str]:
        """Compute the exclude patterns for archiving an installed package.

        Uses the package's ``.distignore`` when present (not for single-file
        plugins), else the default excludes; exclude filters run last.
        """
        distignore = package.directory / DISTIGNORE_FILENAME if package.directory else None
        if distignore is not None and not package.is_single_file and distignore.is_file():
            excludes = self._read_distignore(distignore)
        else:
            excludes = list(DEFAULT_EXCLUDES)

        for exclude_filter in self.exclude_filters:
            excludes = exclude_filter(excludes, release)
        return excludes

    @staticmethod
    def _read_distignore(path: Path) -> list[str]:
        ignored = []
        for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                ignored.append(line)
        return ignored

    def archive_from_url(self, release: Release, download: Path | None = None) -> Path:
        """Download a release's source URL and validate it as an artifact.

        Args:
            release: Release whose ``source_url`` is fetched
            download: Already downloaded file to use instead of fetching

        Returns:
            Absolute path to the validated zip in the temp directory

        Raises:
            FileDownloadFailed: If the download or local copy fails
            InvalidPackageArtifact: If a validator rejects the file
            FileOperationFailed: If the file cannot be put in place
        """
        filename = self.get_absolute_path_to_tmpdir(release.file)
        tmpfname = download if download is not None else self.download_url(release.source_url)

        try:
            filename.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            Path(tmpfname).unlink(missing_ok=True)
            raise FileOperationFailed.unable_to_create_temporary_directory(filename) from e

        try:
            validate_artifact(tmpfname, release, self.validators)
        except Exception:
            Path(tmpfname).unlink(missing_ok=True)
            raise

        try:
            os.replace(tmpfname, filename)
        except OSError as e:
            Path(tmpfname).unlink(missing_ok=True)
            raise FileOperationFailed.unable_to_rename_temporary_artifact(filename, tmpfname) from e

        logger.info(f'Archived "{release.package.name}" version {release.version} from URL.')
        return filename

    def download_url(self, url: str) -> Path:
        """Fetch a URL into a new temporary file.

        File URLs and URLs on the host itself are copied from disk instead of
        going over the network.

        Returns:
            Path of the temporary file (the caller owns it)

        Raises:
            FileDownloadFailed: If the URL cannot be fetched or copied
        """
        for url_filter in self.url_filters:
            url = url_filter(url)
        if not url:
            raise FileDownloadFailed.for_url(url, "empty URL")

        if self.host is not None and self.host.is_local_url(url):
            path = self.host.local_url_to_path(url)
            if path is not None and path.is_file():
                return self._copy_local(path, url)
            if url.startswith("file://"):
                raise FileDownloadFailed.for_url(url, "file not found")
        elif url.startswith("file://"):
            raise FileDownloadFailed.for_url(url, "local files are not allowed without a host")

        try:
            validate_download_url(url, allow_private=self.allow_private_hosts)
        except ValueError as e:
            raise FileDownloadFailed.for_url(url, str(e)) from e

        tmpfname = self.new_tempfile(Path(url.split("?", 1)[0]).name)
        logger.debug(f"Downloading {url}")
        try:
            with self.session.get(
                url, stream=True, timeout=self.timeout, verify=self.verify_tls
            ) as response:
                response.raise_for_status()
                with open(tmpfname, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            tmpfname.unlink(missing_ok=True)
            logger.error(f"Download failed for {url}: {e}")
            raise FileDownloadFailed.for_url(url, str(e)) from e

        return tmpfname

    def _copy_local(self, path: Path, url: str) -> Path:
        tmpfname = self.new_tempfile(path.name)
        try:
            shutil.copyfile(path, tmpfname)
        except OSError as e:
            tmpfname.unlink(missing_ok=True)
            logger.error(f"Could not copy file {path} to the temporary file {tmpfname}: {e}")
            raise FileDownloadFailed.for_url(url, str(e)) from e
        return tmpfname

    def new_tempfile(self, basename: str) -> Path:
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(dir=self.temp_dir, prefix=".download-", suffix=f"-{basename}")
        except OSError as e:
            raise FileOperationFailed.unable_to_create_temporary_directory(
                self.temp_dir / basename
            ) from e
        os.close(fd)
        return Path(name)
