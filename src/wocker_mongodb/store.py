"""File-system store backing the plugin's persisted documents.

The store directory (``~/.workspace/plugins/mongodb`` by default) holds the
``config.json`` registry document. Writes go through a temporary file and
``os.replace`` so a crash mid-write never leaves a truncated document behind.
"""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import RegistryError


@dataclass(frozen=True)
class ConfigStore:
    """Read and write JSON documents under a single root directory."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named document."""
        return self.root / name

    def exists(self, name: str = "") -> bool:
        """Return True when *name* (or the root itself) exists."""
        return self.path_for(name).exists() if name else self.root.exists()

    def mkdir(self, name: str = "") -> None:
        """Create the root directory, or a named subdirectory, when missing."""
        target = self.path_for(name) if name else self.root
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RegistryError(f"Failed to create {target}: {exc}") from exc

    def read_document(self, name: str) -> dict[str, object]:
        """Return the parsed JSON object stored under *name*."""
        path = self.path_for(name)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise RegistryError(f"Document {path} does not exist.") from exc
        except json.JSONDecodeError as exc:
            raise RegistryError(f"Document corrupted ({path}): {exc}") from exc
        except OSError as exc:
            raise RegistryError(f"Failed to read {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise RegistryError(f"Document {path} must contain a JSON object.")
        return dict(data)

    def write_document(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically persist *payload* as JSON under *name*."""
        if not self.root.exists():
            self.mkdir()
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=4, sort_keys=False)
                handle.write("\n")
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise RegistryError(f"Failed to write {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["ConfigStore"]
