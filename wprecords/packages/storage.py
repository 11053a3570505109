"""Local filesystem storage for release artifacts.

All paths passed to LocalStorage are relative to its root directory. Writes
go through a temporary sibling file and ``os.replace`` so readers never see a
half-written artifact.
"""

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalStorage:
    """Artifact store rooted at a local directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def get_absolute_path(self, path: str = "") -> Path:
        """Resolve a storage-relative path, refusing paths outside the root.

        Raises:
            ValueError: If the path escapes the storage root
        """
        root = self.root.resolve()
        absolute = (root / path).resolve()
        if absolute != root and root not in absolute.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return absolute

    def exists(self, file: str) -> bool:
        return self.get_absolute_path(file).is_file()

    def list_files(self, path: str) -> list[str]:
        """List the files directly inside a storage directory (relative paths, sorted)."""
        directory = self.get_absolute_path(path)
        if not directory.is_dir():
            return []
        return sorted(
            str(Path(path) / entry.name) for entry in directory.iterdir() if entry.is_file()
        )

    def checksum(self, algorithm: str, file: str) -> str:
        """Compute a hex digest of a stored file.

        Raises:
            FileNotFoundError: If the file is not stored
        """
        absolute = self.get_absolute_path(file)
        if not absolute.is_file():
            raise FileNotFoundError(f"Stored file not found: {file}")

        digest = hashlib.new(algorithm)
        with open(absolute, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def mtime(self, file: str) -> int:
        return int(self.get_absolute_path(file).stat().st_mtime)

    def move(self, source: Path | str, destination: str) -> None:
        """Atomically move an external file into storage.

        The file is first copied next to the destination when the source is on
        a different filesystem, then renamed into place.
        """
        target = self.get_absolute_path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(source, target)
        except OSError:
            # Cross-device move: stage a copy beside the target first
            fd, staged = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.suffix)
            os.close(fd)
            try:
                shutil.copyfile(source, staged)
                os.replace(staged, target)
            except OSError:
                Path(staged).unlink(missing_ok=True)
                raise
            Path(source).unlink(missing_ok=True)
        logger.debug(f"Moved {source} to {target}")

    def read(self, file: str) -> str:
        return self.get_absolute_path(file).read_text(encoding="utf-8")

    def write(self, file: str, content: str) -> None:
        """Write text content to a stored file atomically."""
        target = self.get_absolute_path(file)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, staged = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.suffix)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(staged, target)
        except OSError:
            Path(staged).unlink(missing_ok=True)
            raise

    def delete(self, file: str) -> None:
        self.get_absolute_path(file).unlink(missing_ok=True)

    def delete_directory(self, path: str) -> None:
        directory = self.get_absolute_path(path)
        if directory.is_dir():
            shutil.rmtree(directory)
