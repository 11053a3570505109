"""Normalization helpers for package descriptive data.

These are pure functions used by PackageBuilder setters; they never raise on
odd input, they return the best normalized value they can.
"""

import re
from typing import Any

AUTHOR_FIELDS = ("name", "email", "homepage", "role")

_LICENSE_PATTERNS = [
    (
        r"(GNU\s*-?)?(General Public License|GPL)(\s*[-_v]*\s*)(2[.-]?0?\s*-?)(or\s*-?later|\+)",
        "GPL-2.0-or-later",
    ),
    (r"(GNU\s*-?)?(General Public License|GPL)(\s*[-_v]*\s*)(2[.-]?0?\s*-?)(only)?", "GPL-2.0-only"),
    (
        r"(GNU\s*-?)?(General Public License|GPL)(\s*[-_v]*\s*)(3[.-]?0?\s*-?)(or\s*-?later|\+)",
        "GPL-3.0-or-later",
    ),
    (r"(GNU\s*-?)?(General Public License|GPL)(\s*[-_v]*\s*)(3[.-]?0?\s*-?)(only)?", "GPL-3.0-only"),
    (r"(The\s*)?\b(MIT\b\s*)(License)?", "MIT"),
]

DEFAULT_LICENSE = "GPL-2.0-or-later"


def _sanitize_text(value: str) -> str:
    value = re.sub(r"<[^>]*>", "", value)
    return re.sub(r"\s+", " ", value).strip()


def normalize_keywords(keywords: str | list[Any] | None, delimiter: str = ",") -> list[str]:
    """Normalize keywords given as a delimited string or a list.

    Entries are trimmed, empty ones dropped, duplicates removed and the
    result sorted alphabetically.

    Examples:
        >>> normalize_keywords("b, a , , a")
        ['a', 'b']
    """
    if keywords is None:
        return []
    if isinstance(keywords, (list, tuple, set)):
        items = [_sanitize_text(k) for k in keywords if isinstance(k, str)]
    else:
        items = [_sanitize_text(k) for k in str(keywords).split(delimiter)]
    return sorted({k for k in items if k})


def normalize_license(license: str | None) -> str:
    """Normalize a license to its SPDX identifier where recognizable.

    Handles the common GPL-2.0/GPL-3.0 (only and or-later) and MIT phrasings.
    Unrecognized licenses are returned unchanged (trimmed); an empty license
    defaults to GPL-2.0-or-later.
    """
    license = (license or "").strip()
    if not license:
        return DEFAULT_LICENSE

    for pattern, spdx in _LICENSE_PATTERNS:
        if re.search(pattern, license, re.IGNORECASE):
            return spdx
    return license


def normalize_authors(authors: list[Any] | None) -> list[dict[str, str]]:
    """Normalize a mix of author names and author records.

    Keeps only name, email, homepage and role; drops empty fields and any
    author without a name.
    """
    normalized = []
    for author in authors or []:
        if isinstance(author, str):
            if author.strip():
                normalized.append({"name": author.strip()})
            continue
        if not isinstance(author, dict):
            continue

        record = {
            key: str(author[key]).strip()
            for key in AUTHOR_FIELDS
            if author.get(key) and str(author[key]).strip()
        }
        if record.get("name"):
            normalized.append(record)
    return normalized


def normalize_package_name(name: str) -> str:
    """Lowercase a name and strip anything Composer does not allow in package names."""
    return re.sub(r"[^a-z0-9_\-.]+", "", name.lower())


def merge_dependencies(
    existing: dict[str, dict[str, Any]], incoming: dict[str, dict[str, Any]]
) -> dict[str, dict[str, Any]]:
    """Merge dependency maps keyed by pseudo-id.

    An incoming entry fully replaces an existing entry with the same pseudo-id;
    entries with different pseudo-ids accumulate.
    """
    return {**existing, **incoming}
