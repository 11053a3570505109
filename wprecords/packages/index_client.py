"""Client for upstream package indexes.

Fetches release listings (one Composer package record per version) from
packagist.org and wpackagist.org Composer v2 metadata, and from GitHub tags
for VCS packages. The listings are cached per package by the record store and
later turned into releases by the external builder variant.

Example:
    >>> client = PackageIndexClient()
    >>> listing = client.fetch_release_packages("wpackagist.org", "wpackagist-plugin/akismet")
    >>> sorted(listing)[:2]
    ['4.0', '4.0.1']
"""

import logging
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import requests

from wprecords.packages._url_validation import validate_download_url
from wprecords.packages.exceptions import FileDownloadFailed, RecordsError
from wprecords.packages.models import SourceTypes

logger = logging.getLogger(__name__)

# Source URLs on these hosts (or their subdomains) are downloaded through the index client
INDEX_HOSTS = ("github.com", "packagist.org", "bitbucket.org")


class PackageIndexError(RecordsError):
    """An upstream index could not be queried."""

    pass


def _host_matches(url: str, domain: str) -> bool:
    hostname = (urlparse(url).hostname or "").lower()
    return hostname == domain or hostname.endswith(f".{domain}")


def is_index_url(url: str) -> bool:
    """Whether a source URL belongs to an upstream package index or VCS host."""
    return any(_host_matches(url, host) for host in INDEX_HOSTS)


def expand_minified(versions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Expand Composer v2 minified metadata.

    Each entry only lists keys that changed from the previous entry; the
    value ``"__unset"`` removes a key.
    """
    expanded: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    for version_data in versions:
        if current is None:
            current = dict(version_data)
        else:
            current = dict(current)
            for key, value in version_data.items():
                if value == "__unset":
                    current.pop(key, None)
                else:
                    current[key] = value
        expanded.append(current)
    return expanded


class PackageIndexClient:
    """Fetches release listings from upstream indexes.

    Args:
        session: requests session (a new one is created by default)
        timeout: Timeout in seconds for listing requests
        github_token: Token for GitHub API and archive requests
        download_timeout: Timeout in seconds for dist downloads
        verify_tls: Verify TLS certificates on dist downloads
        allow_private_hosts: Permit dist downloads from private/loopback hosts
    """

    PACKAGIST_URL = "https://repo.packagist.org"
    WPACKAGIST_URL = "https://wpackagist.org"
    GITHUB_API_URL = "https://api.github.com"
    USER_AGENT = "wprecords/1.0"

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: int = 30,
        github_token: str | None = None,
        download_timeout: int = 300,
        verify_tls: bool = True,
        allow_private_hosts: bool = False,
    ):
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": self.USER_AGENT})
        self.session = session
        self.timeout = timeout
        self.github_token = github_token
        self.download_timeout = download_timeout
        self.verify_tls = verify_tls
        self.allow_private_hosts = allow_private_hosts

    def fetch_release_packages(
        self, source_type: str, source_name: str, vcs_url: str = ""
    ) -> dict[str, dict[str, Any]]:
        """Fetch the upstream release listing of a package.

        Args:
            source_type: One of the external SourceTypes
            source_name: Composer package name (e.g., "wpackagist-plugin/akismet")
            vcs_url: Repository URL for VCS packages

        Returns:
            Release package records keyed by version, in upstream order;
            records without a version or dist URL are dropped

        Raises:
            PackageIndexError: If the index cannot be queried
        """
        if source_type == SourceTypes.PACKAGIST:
            records = self.fetch_composer_metadata(self.PACKAGIST_URL, source_name)
        elif source_type == SourceTypes.WPACKAGIST:
            records = self.fetch_composer_metadata(self.WPACKAGIST_URL, source_name)
        elif source_type == SourceTypes.VCS:
            records = self.fetch_github_tags(vcs_url, source_name)
        else:
            raise PackageIndexError(f"Source type {source_type!r} has no upstream index")

        listing = {}
        for record in records:
            version = record.get("version")
            if not version or not (record.get("dist") or {}).get("url"):
                continue
            listing[version] = record
        logger.info(f"Fetched {len(listing)} releases for {source_name} from {source_type}")
        return listing

    def fetch_composer_metadata(self, repository_url: str, package_name: str) -> list[dict[str, Any]]:
        """Fetch ``/p2/<vendor>/<name>.json`` from a Composer v2 repository."""
        url = f"{repository_url.rstrip('/')}/p2/{package_name}.json"
        data = self._get_json(url)

        versions = (data.get("packages") or {}).get(package_name, [])
        if data.get("minified") == "composer/2.0":
            versions = expand_minified(versions)
        return versions

    def fetch_github_tags(self, vcs_url: str, package_name: str = "") -> list[dict[str, Any]]:
        """Turn the tags of a GitHub repository into release package records."""
        parsed = urlparse(vcs_url)
        match = re.match(r"^/([^/]+)/([^/]+?)(?:\.git)?/?$", parsed.path or "")
        if parsed.hostname != "github.com" or not match:
            raise PackageIndexError(f"Only GitHub repository URLs are supported, got: {vcs_url!r}")

        owner, repo = match.groups()
        tags = self._get_json(
            f"{self.GITHUB_API_URL}/repos/{owner}/{repo}/tags", params={"per_page": 100}
        )

        records = []
        for tag in tags:
            records.append(
                {
                    "name": package_name or f"{owner}/{repo}",
                    "version": tag["name"],
                    "dist": {"type": "zip", "url": tag["zipball_url"]},
                    "source": {
                        "type": "git",
                        "url": vcs_url,
                        "reference": (tag.get("commit") or {}).get("sha", ""),
                    },
                }
            )
        return records

    def download_dist(self, release_package: dict[str, Any], destination: Path) -> Path:
        """Download a release package's dist archive.

        Raises:
            FileDownloadFailed: If the record has no dist URL, the URL is not
                allowed, or the download fails
        """
        url = (release_package.get("dist") or {}).get("url", "")
        if not url:
            raise FileDownloadFailed.for_url(url, "release package has no dist URL")

        try:
            validate_download_url(url, allow_private=self.allow_private_hosts)
        except ValueError as e:
            raise FileDownloadFailed.for_url(url, str(e)) from e

        headers = {}
        if self.github_token and _host_matches(url, "github.com"):
            headers["Authorization"] = f"token {self.github_token}"

        logger.debug(f"Downloading {url}")
        try:
            with self.session.get(
                url,
                headers=headers,
                stream=True,
                timeout=self.download_timeout,
                verify=self.verify_tls,
            ) as response:
                response.raise_for_status()
                with open(destination, "wb") as f:
                    for chunk in response.iter_content(chunk_size=65536):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            Path(destination).unlink(missing_ok=True)
            raise FileDownloadFailed.for_url(url, str(e)) from e
        return Path(destination)

    def _get_json(self, url: str, params: dict | None = None) -> Any:
        headers = {"Accept": "application/json"}
        if self.github_token and url.startswith(self.GITHUB_API_URL):
            headers["Authorization"] = f"token {self.github_token}"
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            if response.status_code == 404:
                raise PackageIndexError(f"Package not found: {url}")
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise PackageIndexError(f"Request to {url} failed: {e}") from e
