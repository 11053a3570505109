"""Tests for the upstream package index client."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from wprecords.packages.exceptions import FileDownloadFailed
from wprecords.packages.factory import PackageFactory
from wprecords.packages.index_client import (
    PackageIndexClient,
    PackageIndexError,
    expand_minified,
    is_index_url,
)

from .helpers import write_records


def json_response(data, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = data
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return PackageIndexClient(session=session, github_token="secret")


class TestExpandMinified:
    def test_expands_changed_keys(self):
        """Test each entry inherits from the previous one and __unset removes keys."""
        versions = expand_minified([
            {"name": "a/b", "version": "2.0", "description": "Thing", "homepage": "https://x"},
            {"version": "1.0"},
            {"version": "0.9", "homepage": "__unset"},
        ])

        assert versions[1] == {"name": "a/b", "version": "1.0", "description": "Thing", "homepage": "https://x"}
        assert versions[2] == {"name": "a/b", "version": "0.9", "description": "Thing"}
        assert versions[0]["version"] == "2.0"


class TestFetchReleasePackages:
    """Test release listing retrieval."""

    def test_wpackagist_listing(self, client, session):
        """Test Composer v2 metadata is fetched and expanded."""
        session.get.return_value = json_response({
            "minified": "composer/2.0",
            "packages": {
                "wpackagist-plugin/akismet": [
                    {"name": "wpackagist-plugin/akismet", "version": "5.3",
                     "dist": {"type": "zip", "url": "https://downloads.wordpress.org/plugin/akismet.5.3.zip"}},
                    {"version": "5.2",
                     "dist": {"type": "zip", "url": "https://downloads.wordpress.org/plugin/akismet.5.2.zip"}},
                    {"version": "dev-trunk", "dist": "__unset"},
                ],
            },
        })

        listing = client.fetch_release_packages("wpackagist.org", "wpackagist-plugin/akismet")

        assert list(listing) == ["5.3", "5.2"]
        assert listing["5.2"]["name"] == "wpackagist-plugin/akismet"
        url = session.get.call_args.args[0]
        assert url == "https://wpackagist.org/p2/wpackagist-plugin/akismet.json"
        assert "Authorization" not in session.get.call_args.kwargs["headers"]

    def test_packagist_listing(self, client, session):
        session.get.return_value = json_response({
            "packages": {"acme/lib": [{"version": "1.0", "dist": {"url": "https://x/1.0.zip"}}]},
        })
        listing = client.fetch_release_packages("packagist.org", "acme/lib")

        assert list(listing) == ["1.0"]
        assert session.get.call_args.args[0] == "https://repo.packagist.org/p2/acme/lib.json"

    def test_github_tags(self, client, session):
        """Test VCS tags become release records with an authorized API call."""
        session.get.return_value = json_response([
            {"name": "v1.1.0", "zipball_url": "https://api.github.com/repos/acme/widget/zipball/v1.1.0",
             "commit": {"sha": "abc123"}},
        ])

        listing = client.fetch_release_packages("vcs", "acme/widget", "https://github.com/acme/widget.git")

        assert listing["v1.1.0"]["dist"]["url"].endswith("/zipball/v1.1.0")
        assert listing["v1.1.0"]["source"]["reference"] == "abc123"
        assert session.get.call_args.args[0] == "https://api.github.com/repos/acme/widget/tags"
        assert session.get.call_args.kwargs["headers"]["Authorization"] == "token secret"

    def test_non_github_vcs(self, client):
        with pytest.raises(PackageIndexError, match="GitHub"):
            client.fetch_release_packages("vcs", "acme/widget", "https://gitlab.com/acme/widget")

    def test_not_found(self, client, session):
        """Test a 404 becomes PackageIndexError."""
        session.get.return_value = json_response({}, status_code=404)
        with pytest.raises(PackageIndexError, match="not found"):
            client.fetch_release_packages("packagist.org", "acme/missing")

    def test_network_error(self, client, session):
        session.get.side_effect = requests.ConnectionError("boom")
        with pytest.raises(PackageIndexError, match="boom"):
            client.fetch_release_packages("packagist.org", "acme/lib")

    def test_local_source_has_no_index(self, client):
        with pytest.raises(PackageIndexError):
            client.fetch_release_packages("local.plugin", "local-plugin/akismet")


class TestDownloadDist:
    """Test dist downloads through the client."""

    @pytest.fixture(autouse=True)
    def public_dns(self):
        with patch(
            "wprecords.packages._url_validation.socket.gethostbyname", return_value="140.82.112.3"
        ):
            yield

    @staticmethod
    def streamed(session, *chunks):
        response = MagicMock()
        response.__enter__.return_value = response
        response.iter_content.return_value = list(chunks)
        session.get.return_value = response
        return response

    def test_downloads_with_token(self, client, session, tmp_path):
        """Test GitHub downloads carry the token."""
        self.streamed(session, b"zip", b"bytes")

        path = client.download_dist(
            {"dist": {"url": "https://github.com/acme/widget/archive/v1.zip"}}, tmp_path / "out.zip"
        )

        assert path.read_bytes() == b"zipbytes"
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "token secret"}

    def test_token_not_sent_to_lookalike_host(self, client, session, tmp_path):
        """Test the token is only sent to github.com hosts."""
        self.streamed(session, b"zip")

        client.download_dist(
            {"dist": {"url": "https://example.org/github.com/widget.zip"}}, tmp_path / "out.zip"
        )

        assert session.get.call_args.kwargs["headers"] == {}

    def test_uses_download_timeout_and_tls_setting(self, session, tmp_path):
        """Test dist downloads use the download timeout and TLS flag, not the listing timeout."""
        client = PackageIndexClient(session=session, timeout=30, download_timeout=900, verify_tls=False)
        self.streamed(session, b"zip")

        client.download_dist({"dist": {"url": "https://packagist.org/a.zip"}}, tmp_path / "out.zip")

        kwargs = session.get.call_args.kwargs
        assert kwargs["timeout"] == 900
        assert kwargs["verify"] is False
        assert kwargs["stream"] is True

    def test_listing_requests_keep_listing_timeout(self, session):
        """Test JSON listing calls still use the short timeout."""
        client = PackageIndexClient(session=session, timeout=30, download_timeout=900)
        session.get.return_value = json_response({"packages": {}})

        client.fetch_composer_metadata(PackageIndexClient.PACKAGIST_URL, "acme/widget")

        assert session.get.call_args.kwargs["timeout"] == 30

    def test_private_host_is_blocked(self, client, session, tmp_path):
        """Test dist URLs resolving to private addresses are refused."""
        destination = tmp_path / "out.zip"
        with patch(
            "wprecords.packages._url_validation.socket.gethostbyname", return_value="10.0.0.5"
        ):
            with pytest.raises(FileDownloadFailed):
                client.download_dist({"dist": {"url": "https://packagist.org/a.zip"}}, destination)

        session.get.assert_not_called()
        assert not destination.exists()

    def test_private_host_allowed_in_development(self, session, tmp_path):
        """Test private hosts are reachable when explicitly allowed."""
        client = PackageIndexClient(session=session, allow_private_hosts=True)
        self.streamed(session, b"zip")

        with patch(
            "wprecords.packages._url_validation.socket.gethostbyname", return_value="10.0.0.5"
        ):
            client.download_dist({"dist": {"url": "https://packagist.org/a.zip"}}, tmp_path / "out.zip")

        session.get.assert_called_once()

    def test_non_http_dist_url_is_refused(self, client, session, tmp_path):
        with pytest.raises(FileDownloadFailed):
            client.download_dist({"dist": {"url": "ftp://packagist.org/a.zip"}}, tmp_path / "out.zip")
        session.get.assert_not_called()

    def test_missing_dist_url(self, client, tmp_path):
        with pytest.raises(FileDownloadFailed):
            client.download_dist({"version": "1.0"}, tmp_path / "out.zip")

    def test_failure_removes_partial_file(self, client, session, tmp_path):
        session.get.side_effect = requests.Timeout("slow")
        destination = tmp_path / "out.zip"
        with pytest.raises(FileDownloadFailed):
            client.download_dist({"dist": {"url": "https://packagist.org/a.zip"}}, destination)
        assert not destination.exists()


class TestFactoryWiring:
    """Test the factory passes network settings to the index client."""

    def test_download_settings_reach_index_client(self, settings):
        settings.environment = "local"
        settings.download_timeout = 900
        write_records(Path(settings.records_file), [])

        client = PackageFactory.from_settings(settings).release_manager.index_client

        assert client.download_timeout == 900
        assert client.verify_tls is False
        assert client.allow_private_hosts is True

    def test_production_verifies_tls(self, settings):
        write_records(Path(settings.records_file), [])

        client = PackageFactory.from_settings(settings).release_manager.index_client

        assert client.verify_tls is True
        assert client.allow_private_hosts is False


class TestIsIndexUrl:
    """Test index URL detection by hostname."""

    def test_index_hosts(self):
        assert is_index_url("https://github.com/acme/widget/archive/v1.zip")
        assert is_index_url("https://codeload.github.com/acme/widget/zip/v1")
        assert is_index_url("https://repo.packagist.org/a.zip")
        assert not is_index_url("https://downloads.wordpress.org/plugin/akismet.zip")

    def test_query_string_does_not_match(self):
        """Test an index host named only in the query string is not an index URL."""
        assert not is_index_url("https://example.org/widget.zip?mirror=github.com")
        assert not is_index_url("https://notgithub.com/widget.zip")

    def test_local_paths_are_not_index_urls(self):
        assert not is_index_url("file:///var/uploads/github.com/widget.zip")
