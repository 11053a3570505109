"""Archive, install and record helpers shared by the package records tests."""

import zipfile
from pathlib import Path

import yaml

PLUGIN_HEADER = """<?php
/**
 * Plugin Name: {name}
 * Plugin URI: https://example.org/{slug}
 * Version: {version}
 * Description: {description}
 * Author: Jane Doe
 * Author URI: https://example.org/jane
 * License: GPLv2 or later
 * Requires PHP: 7.4
 */
"""

THEME_STYLE = """/*
Theme Name: {name}
Theme URI: https://example.org/{slug}
Version: {version}
Description: A clean theme
Author: Theme Studio
License: GNU General Public License v3 or later
Tags: blog, one-column
*/
"""


def make_zip(path: Path, files: dict[str, str]) -> Path:
    """Write a zip archive with the given name -> content entries."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return path


def plugin_zip(path: Path, slug: str, version: str, name: str = "", description: str = "Does things") -> Path:
    header = PLUGIN_HEADER.format(
        name=name or slug.title(), slug=slug, version=version, description=description
    )
    return make_zip(path, {f"{slug}/{slug}.php": header, f"{slug}/readme.txt": f"=== {slug} ===\n"})


def install_plugin(plugins_dir: Path, slug: str, version: str, files: dict[str, str] | None = None) -> Path:
    directory = plugins_dir / slug
    directory.mkdir(parents=True, exist_ok=True)
    header = PLUGIN_HEADER.format(name=slug.title(), slug=slug, version=version, description="Installed")
    (directory / f"{slug}.php").write_text(header)
    for name, content in (files or {}).items():
        target = directory / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    return directory


def install_theme(themes_dir: Path, slug: str, version: str) -> Path:
    directory = themes_dir / slug
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "style.css").write_text(THEME_STYLE.format(name=slug.title(), slug=slug, version=version))
    (directory / "index.php").write_text("<?php\n")
    return directory


def write_records(path: Path, records: list[dict]) -> Path:
    path.write_text(yaml.safe_dump({"packages": records}))
    return path

