"""Plugin/theme header and readme parsing.

WordPress packages describe themselves in two places: a comment header at the
top of the main plugin PHP file (or the theme's ``style.css``), and a
``readme.txt``/``readme.md`` in the WordPress.org readme format. Both are
parsed into plain dicts consumed by ``PackageBuilder.from_header_data`` and
``PackageBuilder.from_readme_data``.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# Only the start of a file is searched for headers
HEADER_READ_BYTES = 8192

PLUGIN_HEADERS = {
    "Name": "Plugin Name",
    "PluginURI": "Plugin URI",
    "Version": "Version",
    "Description": "Description",
    "Author": "Author",
    "AuthorURI": "Author URI",
    "TextDomain": "Text Domain",
    "License": "License",
    "Tags": "Tags",
    "Requires at least": "Requires at least",
    "Tested up to": "Tested up to",
    "Requires PHP": "Requires PHP",
}

THEME_HEADERS = {
    "Name": "Theme Name",
    "ThemeURI": "Theme URI",
    "Version": "Version",
    "Description": "Description",
    "Author": "Author",
    "AuthorURI": "Author URI",
    "License": "License",
    "Tags": "Tags",
    "Requires at least": "Requires at least",
    "Tested up to": "Tested up to",
    "Requires PHP": "Requires PHP",
    "Stable tag": "Stable tag",
}

README_FIELDS = {
    "contributors": "contributors",
    "tags": "tags",
    "requires at least": "requires_at_least",
    "tested up to": "tested_up_to",
    "requires php": "requires_php",
    "stable tag": "stable_tag",
    "license": "license",
    "license uri": "license_uri",
    "donate link": "donate_link",
}

README_LIST_FIELDS = ("contributors", "tags")

README_FILENAMES = ("readme.txt", "readme.md", "README.txt", "README.md")


def _clean_header_value(value: str) -> str:
    return re.sub(r"\s*(?:\*/|\?>).*$", "", value).strip()


def get_file_data(path: Path, headers: dict[str, str]) -> dict[str, str]:
    """Read comment-header fields from the start of a file.

    Args:
        path: File to read (PHP plugin file or theme style.css)
        headers: Mapping of result key -> header label (e.g. {"Name": "Plugin Name"})

    Returns:
        Dict with every key of ``headers``; missing headers map to ""
    """
    try:
        with open(path, "rb") as f:
            raw = f.read(HEADER_READ_BYTES)
    except OSError as e:
        logger.debug(f"Could not read headers from {path}: {e}")
        return {key: "" for key in headers}

    content = raw.decode("utf-8", errors="replace").replace("\r\n", "\n").replace("\r", "\n")
    data = {}
    for key, label in headers.items():
        match = re.search(
            r"^(?:[ \t]*<\?php)?[ \t/*#@]*" + re.escape(label) + r":(.*)$",
            content,
            re.IGNORECASE | re.MULTILINE,
        )
        data[key] = _clean_header_value(match.group(1)) if match else ""
    return data


def get_plugin_data(path: Path) -> dict[str, str]:
    return get_file_data(path, PLUGIN_HEADERS)


def get_theme_data(path: Path) -> dict[str, str]:
    """Read theme headers; ``path`` may be the theme directory or its style.css."""
    path = Path(path)
    if path.is_dir():
        path = path / "style.css"
    return get_file_data(path, THEME_HEADERS)


def find_plugin_file(directory: Path) -> Path | None:
    """Return the first PHP file directly inside a directory that has a Plugin Name header."""
    for candidate in sorted(Path(directory).glob("*.php")):
        if get_plugin_data(candidate)["Name"]:
            return candidate
    return None


def find_readme(directory: Path) -> Path | None:
    for filename in README_FILENAMES:
        candidate = Path(directory) / filename
        if candidate.is_file():
            return candidate
    return None


def parse_readme_text(text: str) -> dict:
    """Parse WordPress.org readme content.

    Both the ``=== Name ===`` (readme.txt) and ``# Name #`` (readme.md)
    heading styles are understood.

    Returns:
        Dict with ``name``, ``short_description``, ``sections`` and any header
        fields present (``contributors`` and ``tags`` as lists)
    """
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    data: dict = {"name": "", "short_description": "", "sections": {}}

    index = 0
    while index < len(lines) and not lines[index].strip():
        index += 1
    if index < len(lines):
        heading = re.match(r"^\s*[#=]+\s*(.+?)\s*[#=]*\s*$", lines[index])
        if heading:
            data["name"] = heading.group(1)
            index += 1

    # Header fields, up to the first blank line after at least one field
    seen_field = False
    while index < len(lines):
        line = lines[index].strip()
        if not line:
            index += 1
            if seen_field:
                break
            continue
        field = re.match(r"^[*\-\s]*([A-Za-z ]+):\s*(.*)$", line)
        if not field or field.group(1).strip().lower() not in README_FIELDS:
            break
        key = README_FIELDS[field.group(1).strip().lower()]
        value = field.group(2).strip()
        if key in README_LIST_FIELDS:
            data[key] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            data[key] = value
        seen_field = True
        index += 1

    # Short description: the paragraph before the first section
    short = []
    while index < len(lines):
        line = lines[index].strip()
        if re.match(r"^[#=]{2}", line):
            break
        if not line and short:
            break
        if line:
            short.append(line)
        index += 1
    data["short_description"] = " ".join(short)

    # Sections
    current = None
    for line in lines[index:]:
        section = re.match(r"^\s*[#=]{2,}\s*(.+?)\s*[#=]*\s*$", line)
        if section:
            current = section.group(1).strip().lower()
            data["sections"][current] = ""
            continue
        if current is not None:
            data["sections"][current] += line + "\n"
    data["sections"] = {k: v.strip() for k, v in data["sections"].items()}
    return data


def parse_readme(path: Path) -> dict:
    return parse_readme_text(Path(path).read_text(encoding="utf-8", errors="replace"))
