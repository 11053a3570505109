"""Tests for PackageBuilder and its variants."""

from pathlib import Path
from unittest.mock import patch

import pytest

from wprecords.packages.builder import PackageBuilder
from wprecords.packages.exceptions import FileDownloadFailed, FileOperationFailed
from wprecords.packages.variants import BuilderVariant

from .helpers import install_plugin, install_theme, plugin_zip


@pytest.fixture
def records():
    return [
        {"id": 1, "name": "Akismet", "slug": "akismet", "type": "plugin",
         "source_type": "wpackagist.org", "source_version_range": ">=1.2 <2.0"},
        {"id": 2, "name": "Widget", "slug": "widget", "type": "plugin", "source_type": "wpackagist.org"},
        {"id": 3, "name": "Hello", "slug": "hello", "type": "plugin",
         "source_type": "local.plugin", "local_plugin_file": "hello/hello.php"},
        {"id": 4, "name": "Greeting", "slug": "greeting", "type": "plugin",
         "source_type": "local.plugin", "local_plugin_file": "hello/hello.php"},
        {"id": 5, "name": "Twenty", "slug": "twenty", "type": "theme",
         "source_type": "local.theme", "local_theme_slug": "twenty"},
    ]


def listing_entry(path: Path, version: str, **fields) -> dict:
    return {"version": version, "dist": {"type": "zip", "url": path.as_uri()}, **fields}


def make_listing(tmp_path: Path, slug: str, versions, **fields) -> dict:
    return {
        version: listing_entry(plugin_zip(tmp_path / "upstream" / f"{slug}-{version}.zip", slug, version), version, **fields)
        for version in versions
    }


DESCRIBED = {
    "description": "Upstream description",
    "homepage": "https://example.org/upstream",
    "authors": [{"name": "Upstream"}],
    "license": ["GPL-2.0-or-later"],
}


class TestFields:
    """Test field setters and fill precedence."""

    def test_first_writer_wins(self, factory):
        """Test later sources only fill fields that are still empty."""
        builder = (
            factory.create("plugin")
            .set_name("Explicit")
            .set_description("")
            .from_package_data({"name": "Record", "description": "From record"})
            .from_header_data({"Name": "Header", "Description": "Header desc", "License": "GPLv2 or later"})
            .from_readme_data({"name": "Readme", "license": "MIT", "tags": ["b", "a"]})
        )
        package = builder.package

        assert package.name == "Explicit"
        assert package.description == "From record"
        assert package.license == "GPL-2.0-or-later"
        assert package.keywords == ["a", "b"]

    def test_invalid_version_fields_are_ignored(self, factory):
        builder = factory.create("plugin").set_requires_at_least("banana").set_tested_up_to("6.4")
        assert builder.get("requires_at_least") == ""
        assert builder.get("tested_up_to") == "6.4"

    def test_requires_php_fallback(self, factory):
        """Test requires_php fills the runtime requirement."""
        builder = factory.create("plugin").from_package_data({"requires_php": "8.1"})
        assert builder.get("requires_runtime") == "8.1"

    def test_dependencies_merge_by_pseudo_id(self, factory):
        """Test dependency entries are normalized and merged by pseudo-id."""
        builder = factory.create("plugin").from_package_data({
            "required_packages": [{"pseudo_id": "local-plugin/hello#3", "version_range": "*"}],
        })
        builder.from_package_data({
            "required_packages": [
                {"pseudo_id": "local-plugin/hello#3", "version_range": "^1.0"},
                {"pseudo_id": "local-theme/twenty#5"},
                {"pseudo_id": "local-plugin/nobody#99"},
            ],
        })
        required = builder.get("required_packages")

        assert sorted(required) == ["local-plugin/hello#3", "local-theme/twenty#5"]
        assert required["local-plugin/hello#3"]["version_range"] == "^1.0"
        assert required["local-theme/twenty#5"]["composer_package_name"] == "acme/twenty"

    def test_parts_are_merged_only_for_part_builders(self, factory):
        data = {"required_parts": [{"pseudo_id": "local-plugin/hello#3"}]}
        assert factory.create("plugin").from_package_data(data).get("required_packages") == {}
        assert list(factory.create("part").from_package_data(data).get("required_packages")) == [
            "local-plugin/hello#3"
        ]

    def test_with_package(self, factory):
        """Test a package can be rebuilt from an existing one."""
        original = factory.create("plugin").set_name("Akismet").set_slug("akismet")
        original.add_release("1.0")
        package = original.build()

        rebuilt = factory.create("").with_package(package).build()

        assert rebuilt == package
        assert list(rebuilt.releases) == ["1.0"]

    def test_add_release_rejects_invalid_version(self, factory):
        builder = factory.create("plugin")
        assert builder.add_release("not a version") is False
        assert builder.add_release("1.0") is True
        assert list(builder.releases) == ["1.0"]


class TestFromManager:
    """Test filling builders from managed records."""

    def test_unknown_record_is_unmanaged(self, factory, release_manager):
        """Test unmanaged packages are never stored."""
        builder = factory.create("plugin", "wpackagist.org").from_manager(99)
        builder.add_release("1.0", {"dist": {"url": "https://downloads.example.org/a.zip"}})

        with patch.object(release_manager, "store") as store:
            package = builder.build()

        assert package.is_managed is False
        store.assert_not_called()

    def test_lookup_by_criteria(self, factory):
        builder = factory.create("plugin", "local.plugin").from_manager(slug="hello")
        assert builder.get("managed_id") == 3
        assert builder.get("managed_id_hash") == factory.package_manager.hash_encode_id(3)
        assert builder.get("is_managed") is True


class TestExternalVariant:
    """Test packages built from upstream release listings."""

    def test_constraint_prunes_releases(self, factory, package_manager, storage, tmp_path):
        """Test only releases within the source range are kept and stored."""
        listing = make_listing(tmp_path, "akismet", ["1.0", "1.5", "2.0"], **DESCRIBED)
        package_manager.set_cached_release_packages(1, listing)

        package = factory.create("plugin", "wpackagist.org").from_manager(1).add_cached_releases().build()

        assert list(package.releases) == ["1.5"]
        assert package.source_constraint is not None
        assert package.description == "Upstream description"
        assert package.license == "GPL-2.0-or-later"
        assert storage.list_files("plugin/akismet") == [
            "plugin/akismet/akismet-1.5.json",
            "plugin/akismet/akismet-1.5.zip",
        ]

    def test_stale_artifacts_are_deleted_on_rebuild(self, factory, package_manager, storage, tmp_path):
        """Test artifacts falling out of the range are deleted by the next build."""
        package_manager.get_record(1)["source_version_range"] = "*"
        package_manager.set_cached_release_packages(1, make_listing(tmp_path, "akismet", ["1.0", "2.0"], **DESCRIBED))
        first = factory.create("plugin", "wpackagist.org").from_manager(1).add_cached_releases().build()
        assert list(first.releases) == ["2.0", "1.0"]

        package_manager.get_record(1)["source_version_range"] = ">=2.0"
        second = factory.create("plugin", "wpackagist.org").from_manager(1).add_cached_releases().build()

        assert list(second.releases) == ["2.0"]
        assert not storage.exists("plugin/akismet/akismet-1.0.zip")
        assert storage.exists("plugin/akismet/akismet-2.0.zip")

    def test_failed_storage_keeps_existing_artifacts(self, factory, package_manager, release_manager, storage, tmp_path):
        """Test nothing is deleted when no release could be stored."""
        package_manager.set_cached_release_packages(2, make_listing(tmp_path, "widget", ["1.0"], **DESCRIBED))
        factory.create("plugin", "wpackagist.org").from_manager(2).add_cached_releases().build()
        storage.write("plugin/widget/widget-0.9.zip", "old artifact")

        with patch.object(release_manager, "store", side_effect=FileDownloadFailed("offline")):
            package = factory.create("plugin", "wpackagist.org").from_manager(2).add_cached_releases().build()

        assert sorted(package.releases) == ["0.9", "1.0"]
        assert storage.exists("plugin/widget/widget-0.9.zip")
        assert storage.exists("plugin/widget/widget-1.0.zip")

    def test_meta_write_failure_keeps_stored_artifact(self, factory, package_manager, release_manager, storage, tmp_path, caplog):
        """Test a release whose meta file cannot be written is not pruned as stale."""
        package_manager.set_cached_release_packages(2, make_listing(tmp_path, "widget", ["1.0", "1.1"], **DESCRIBED))
        dump_meta = release_manager.dump_meta

        def failing_dump_meta(release):
            if release.version == "1.0":
                raise FileOperationFailed("read-only")
            return dump_meta(release)

        with patch.object(release_manager, "dump_meta", side_effect=failing_dump_meta):
            package = factory.create("plugin", "wpackagist.org").from_manager(2).add_cached_releases().build()

        assert storage.exists("plugin/widget/widget-1.0.zip")
        assert storage.exists("plugin/widget/widget-1.1.zip")
        assert not storage.exists("plugin/widget/widget-1.0.json")
        assert package.get_release("1.0").dist["shasum"]
        assert "Error writing meta" in caplog.text

    def test_invalid_range_is_logged(self, factory, package_manager, caplog):
        package_manager.get_record(2)["source_version_range"] = "~>1.0"
        builder = factory.create("plugin", "wpackagist.org").from_manager(2)

        assert builder.get("source_constraint") is None
        assert "Error parsing source constraint" in caplog.text

    def test_stability_suffix(self, factory, package_manager):
        """Test non-stable stabilities extend the range."""
        package_manager.get_record(2)["source_version_range"] = ">=1.0"
        package_manager.get_record(2)["source_stability"] = "beta"
        constraint = factory.create("plugin", "wpackagist.org").from_manager(2).get("source_constraint")
        assert constraint.matches("1.1")


class TestFromReleaseFile:
    """Test introspecting release artifacts."""

    def test_fills_descriptive_fields(self, factory, archiver, tmp_path):
        """Test headers inside the newest artifact fill missing fields."""
        listing = make_listing(tmp_path, "akismet", ["1.0", "1.1"])
        builder = factory.create("plugin", "wpackagist.org").set_name("Akismet").set_slug("akismet")

        builder.from_cached_release_packages(listing)

        assert builder.get("description") == "Does things"
        assert builder.get("homepage") == "https://example.org/akismet"
        assert builder.get("authors") == [{"name": "Jane Doe", "homepage": "https://example.org/jane"}]
        assert builder.get("license") == "GPL-2.0-or-later"
        assert builder.get("requires_runtime") == "7.4"
        assert list(Path(archiver.temp_dir).glob(".download-*")) == []

    def test_unreadable_artifact(self, factory, tmp_path, caplog):
        """Test a broken artifact is logged and leaves fields empty."""
        broken = tmp_path / "broken.zip"
        broken.write_text("not a zip")
        builder = factory.create("plugin").set_slug("broken")
        builder.add_release("1.0", {"dist": {"url": broken.as_uri()}})

        builder.from_release_file("1.0")

        assert builder.get("description") == ""
        assert "Could not read" in caplog.text

    def test_unfetchable_artifact(self, factory, tmp_path):
        builder = factory.create("plugin").set_slug("gone")
        builder.add_release("1.0", {"dist": {"url": (tmp_path / "gone.zip").as_uri()}})
        assert builder.from_release_file("1.0") is builder
        assert builder.get("description") == ""


class TestLocalVariant:
    """Test installed plugins and themes."""

    def test_installed_plugin(self, factory, storage, settings):
        """Test an installed plugin is described from its headers and archived from disk."""
        install_plugin(Path(settings.plugins_dir), "hello", "1.2")

        package = (
            factory.create("plugin", "local.plugin")
            .from_manager(3)
            .from_source()
            .from_readme()
            .add_cached_releases()
            .build()
        )

        assert package.is_installed
        assert package.installed_version == "1.2"
        assert package.directory == Path(settings.plugins_dir) / "hello"
        assert package.basename == "hello/hello.php"
        assert package.description == "Installed"
        assert list(package.releases) == ["1.2"]
        assert package.releases["1.2"].dist["url"].endswith("/hello/1.2")
        assert storage.exists("plugin/hello/hello-1.2.zip")

    def test_record_slug_wins(self, factory, settings):
        """Test the record slug is kept when the install directory differs."""
        install_plugin(Path(settings.plugins_dir), "hello", "1.2")
        builder = factory.create("plugin", "local.plugin").from_manager(4)

        assert builder.get("slug") == "greeting"
        assert builder.get("directory") == Path(settings.plugins_dir) / "hello"

    def test_pending_update(self, factory, host, settings, tmp_path):
        """Test a pending update becomes an extra release."""
        install_plugin(Path(settings.plugins_dir), "hello", "1.2")
        update = plugin_zip(tmp_path / "updates" / "hello-1.3.zip", "hello", "1.3")
        host.plugin_updates["hello/hello.php"] = {"new_version": "1.3", "package": update.as_uri()}

        package = (
            factory.create("plugin", "local.plugin").from_manager(3).from_source().add_cached_releases().build()
        )

        assert list(package.releases) == ["1.3", "1.2"]
        assert all(release.dist.get("shasum") for release in package.releases.values())

    def test_not_installed(self, factory):
        """Test a missing plugin has no releases to offer."""
        package = factory.create("plugin", "local.plugin").from_manager(3).add_cached_releases().build()
        assert package.is_installed is False
        assert package.releases == {}

    def test_installed_theme(self, factory, settings):
        install_theme(Path(settings.themes_dir), "twenty", "2.0")

        package = factory.create("theme", "local.theme").from_manager(5).from_source().add_cached_releases().build()

        assert package.is_installed
        assert package.installed_version == "2.0"
        assert package.license == "GPL-3.0-or-later"
        assert package.keywords == ["blog", "one-column"]
        assert list(package.releases) == ["2.0"]

    def test_unmanaged_basename(self, factory, settings):
        """Test an unmanaged plugin's identity comes from its basename."""
        install_plugin(Path(settings.plugins_dir), "hello", "1.2")
        builder = factory.create("plugin", "local.plugin").from_basename("hello/hello.php")

        assert builder.get("slug") == "hello"
        assert builder.get("source_name") == "local-plugin/hello"
        assert builder.get("is_installed") is True


def test_variants_are_selected_by_source_type(factory):
    assert factory.create("plugin", "local.theme").variant is BuilderVariant.LOCAL
    assert factory.create("plugin", "vcs").variant is BuilderVariant.EXTERNAL
    assert factory.create("plugin", "local.manual").variant is BuilderVariant.MANUAL
    assert isinstance(factory.create("plugin"), PackageBuilder)
    assert factory.create("plugin").variant is BuilderVariant.BASE
