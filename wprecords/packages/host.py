"""Host environment: the WordPress install the records pipeline runs against.

Builders never look at global state; everything they need to know about the
host (installed plugins and themes, pending updates, which URLs are local)
goes through a HostEnvironment passed in at construction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote, urlparse

from wprecords.packages.headers import get_plugin_data, get_theme_data

if TYPE_CHECKING:
    from wprecords.config import Settings
    from wprecords.packages.models import Package

logger = logging.getLogger(__name__)

UPDATES_FILENAME = "updates.json"


@dataclass
class HostEnvironment:
    """Queries about the host install.

    Attributes:
        home_url: Public base URL of the host (e.g., "https://example.com")
        document_root: Directory served at ``home_url``
        plugins_dir: Installed plugins directory
        themes_dir: Installed themes directory
        plugin_updates: Pending plugin updates keyed by plugin basename,
            each ``{"new_version": ..., "package": <zip url>}``
        theme_updates: Pending theme updates keyed by theme slug
    """

    home_url: str = "http://localhost"
    document_root: Path | None = None
    plugins_dir: Path | None = None
    themes_dir: Path | None = None
    plugin_updates: dict[str, dict[str, Any]] = field(default_factory=dict)
    theme_updates: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> HostEnvironment:
        """Create a host environment from settings.

        Pending updates are read from ``<state_dir>/updates.json`` when present
        (``{"plugins": {...}, "themes": {...}}``).
        """
        plugin_updates: dict = {}
        theme_updates: dict = {}
        updates_file = Path(settings.state_dir) / UPDATES_FILENAME
        if updates_file.is_file():
            try:
                updates = json.loads(updates_file.read_text(encoding="utf-8"))
                plugin_updates = updates.get("plugins", {}) or {}
                theme_updates = updates.get("themes", {}) or {}
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable updates file {updates_file}: {e}")

        return cls(
            home_url=settings.home_url,
            document_root=Path(settings.document_root) if settings.document_root else None,
            plugins_dir=Path(settings.plugins_dir) if settings.plugins_dir else None,
            themes_dir=Path(settings.themes_dir) if settings.themes_dir else None,
            plugin_updates=plugin_updates,
            theme_updates=theme_updates,
        )

    # Plugins

    def installed_plugins(self) -> dict[str, dict[str, str]]:
        """Scan the plugins directory.

        Returns:
            Header data keyed by plugin basename ("akismet/akismet.php", or
            "hello.php" for single-file plugins), sorted by basename
        """
        plugins: dict[str, dict[str, str]] = {}
        if self.plugins_dir is None or not self.plugins_dir.is_dir():
            return plugins

        candidates = list(self.plugins_dir.glob("*.php")) + list(self.plugins_dir.glob("*/*.php"))
        for path in sorted(candidates):
            data = get_plugin_data(path)
            if data["Name"]:
                plugins[path.relative_to(self.plugins_dir).as_posix()] = data
        return plugins

    def is_plugin_installed(self, basename: str) -> bool:
        return bool(basename) and basename in self.installed_plugins()

    def get_plugin_data(self, basename: str) -> dict[str, str]:
        return self.installed_plugins().get(basename, {})

    def plugin_path(self, basename: str) -> Path | None:
        if self.plugins_dir is None or not basename:
            return None
        return self.plugins_dir / basename

    def plugin_directory(self, basename: str) -> Path | None:
        """Directory holding a plugin (the plugins directory itself for single-file plugins)."""
        if self.plugins_dir is None or not basename:
            return None
        if "/" not in basename:
            return self.plugins_dir
        return self.plugins_dir / basename.split("/", 1)[0]

    def find_plugin_basename(self, slug: str) -> str | None:
        """Find the basename of an installed plugin by its slug (directory or file stem)."""
        for basename in self.installed_plugins():
            head = basename.split("/", 1)[0]
            if head == slug or Path(basename).stem == slug:
                return basename
        return None

    # Themes

    def installed_themes(self) -> dict[str, dict[str, str]]:
        """Scan the themes directory; header data keyed by theme slug."""
        themes: dict[str, dict[str, str]] = {}
        if self.themes_dir is None or not self.themes_dir.is_dir():
            return themes

        for style in sorted(self.themes_dir.glob("*/style.css")):
            data = get_theme_data(style)
            if data["Name"]:
                themes[style.parent.name] = data
        return themes

    def is_theme_installed(self, slug: str) -> bool:
        return bool(slug) and slug in self.installed_themes()

    def get_theme_data(self, slug: str) -> dict[str, str]:
        return self.installed_themes().get(slug, {})

    def theme_directory(self, slug: str) -> Path | None:
        if self.themes_dir is None or not slug:
            return None
        return self.themes_dir / slug

    # Updates and URLs

    def get_pending_update_for(self, package: Package) -> dict[str, Any] | None:
        """Return the pending update for an installed package, if any.

        An update is pending only when it carries a package URL and its
        version differs from the installed one.
        """
        if package.type == "theme":
            update = self.theme_updates.get(package.slug)
        else:
            update = self.plugin_updates.get(package.basename)

        if not update or not update.get("new_version") or not update.get("package"):
            return None
        if update["new_version"] == package.installed_version:
            return None
        return update

    def is_local_url(self, url: str) -> bool:
        """Whether a URL is a file:// URL or an HTTP(S) URL on the home host."""
        target = urlparse(url)
        if target.scheme == "file":
            return True
        if target.scheme not in ("http", "https") or not target.hostname:
            return False
        home = urlparse(self.home_url)
        return bool(home.hostname) and target.hostname == home.hostname

    def local_url_to_path(self, url: str) -> Path | None:
        """Map a local URL (file:// or same-host) to a filesystem path."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        if self.document_root is None or not self.is_local_url(url):
            return None

        home_path = urlparse(self.home_url).path.rstrip("/")
        path = unquote(parsed.path)
        if home_path and path.startswith(home_path):
            path = path[len(home_path) :]
        root = self.document_root.resolve()
        resolved = (root / path.lstrip("/")).resolve()
        if root not in resolved.parents:
            return None
        return resolved
