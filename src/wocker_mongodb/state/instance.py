"""In-memory representation of a managed MongoDB instance."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from ..errors import RegistryError

DEFAULT_IMAGE_NAME = "mongo"
DEFAULT_IMAGE_VERSION = "latest"
CONTAINER_PREFIX = "mongodb"
CONTAINER_SUFFIX = "ws"
VOLUME_PREFIX = "wocker-mongodb"


def default_storage(name: str) -> str:
    """Return the data volume name derived from *name*."""
    return f"{VOLUME_PREFIX}-{name}"


def default_config_storage(name: str) -> str:
    """Return the config volume name derived from *name*."""
    return f"{VOLUME_PREFIX}-config-{name}"


@dataclass(slots=True)
class Instance:
    """A single MongoDB service and its persisted settings.

    ``storage`` and ``config_storage`` hold explicit volume overrides only;
    the effective names are resolved on read so an instance without an
    override always reports its default-derived volume.
    """

    name: str
    username: str
    password: str
    image_name: str | None = None
    image_version: str | None = None
    storage: str | None = None
    config_storage: str | None = None

    @property
    def container_name(self) -> str:
        """Return the container name for this instance."""
        return f"{CONTAINER_PREFIX}-{self.name}.{CONTAINER_SUFFIX}"

    @property
    def image(self) -> str:
        """Return the image reference, falling back to ``mongo:latest``."""
        image_name = self.image_name or DEFAULT_IMAGE_NAME
        image_version = self.image_version or DEFAULT_IMAGE_VERSION
        return f"{image_name}:{image_version}"

    @property
    def default_storage(self) -> str:
        """Return the data volume name used when no override is set."""
        return default_storage(self.name)

    @property
    def default_config_storage(self) -> str:
        """Return the config volume name used when no override is set."""
        return default_config_storage(self.name)

    @property
    def storage_volume(self) -> str:
        """Return the effective data volume name."""
        return self.storage or self.default_storage

    @property
    def config_volume(self) -> str:
        """Return the effective config volume name."""
        return self.config_storage or self.default_config_storage

    def connection_uri(self, port: int = 27017) -> str:
        """Return a ``mongodb://`` URI reaching this instance on the container network.

        Credentials are percent-encoded so reserved characters survive parsing.
        """
        username = quote(self.username, safe="")
        password = quote(self.password, safe="")
        return f"mongodb://{username}:{password}@{self.container_name}:{port}"

    # Serialisation -----------------------------------------------------
    def to_document(self) -> dict[str, str]:
        """Return the JSON-serialisable registry entry (unset keys omitted)."""
        document: dict[str, str] = {
            "name": self.name,
            "username": self.username,
            "password": self.password,
        }
        optional = {
            "imageName": self.image_name,
            "imageVersion": self.image_version,
            "storage": self.storage,
            "configStorage": self.config_storage,
        }
        for key, value in optional.items():
            if value:
                document[key] = value
        return document

    @classmethod
    def from_document(cls, entry: Mapping[str, Any]) -> Instance:
        """Build an instance from a registry entry.

        The legacy ``volume``/``configVolume`` keys are accepted as aliases
        for ``storage``/``configStorage``.
        """
        if not isinstance(entry, Mapping):
            raise RegistryError("Database entry must be a mapping.")

        values: dict[str, str] = {}
        for key in ("name", "username", "password"):
            raw = entry.get(key)
            text = str(raw).strip() if raw is not None else ""
            if not text:
                raise RegistryError(f"Database entry missing '{key}'.")
            values[key] = text if key == "name" else str(raw)

        return cls(
            name=values["name"],
            username=values["username"],
            password=values["password"],
            image_name=_optional(entry.get("imageName")),
            image_version=_optional(entry.get("imageVersion")),
            storage=_optional(entry.get("storage") or entry.get("volume")),
            config_storage=_optional(entry.get("configStorage") or entry.get("configVolume")),
        )


def _optional(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = ["Instance", "default_config_storage", "default_storage"]
