"""Registry of managed instances plus the default-instance pointer.

The registry is loaded once per invocation from ``config.json`` through a
:class:`~wocker_mongodb.store.ConfigStore`, mutated in memory and persisted
explicitly with :meth:`Registry.save` after every mutating operation.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

from ..errors import (
    InstanceNotFoundError,
    NoDefaultInstanceError,
    RegistryError,
)
from ..store import ConfigStore
from .instance import Instance

REGISTRY_DOCUMENT = "config.json"


@dataclass
class Registry:
    """Ordered collection of :class:`Instance` keyed by name."""

    store: ConfigStore
    document: str = REGISTRY_DOCUMENT
    default_name: str | None = None
    _instances: dict[str, Instance] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, store: ConfigStore, document: str = REGISTRY_DOCUMENT) -> Registry:
        """Return the registry stored in *document*, or an empty one when absent."""
        registry = cls(store=store, document=document)
        if not store.exists(document):
            return registry
        registry._apply_document(store.read_document(document))
        return registry

    def save(self) -> None:
        """Persist the registry; the store directory is created when missing."""
        self.store.write_document(self.document, self.to_document())

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, name: str | None = None) -> Instance:
        """Return the instance named *name*, or the default instance when omitted."""
        if not name:
            if not self.default_name:
                raise NoDefaultInstanceError()
            name = self.default_name
        instance = self._instances.get(name)
        if instance is None:
            raise InstanceNotFoundError(name)
        return instance

    def has(self, name: str) -> bool:
        """Return True when an instance named *name* is registered."""
        return name in self._instances

    def names(self) -> list[str]:
        """Return registered names in insertion order."""
        return list(self._instances)

    def is_default(self, name: str) -> bool:
        """Return True when *name* is the current default instance."""
        return self.default_name is not None and self.default_name == name

    def __iter__(self) -> Iterator[Instance]:
        return iter(list(self._instances.values()))

    def __len__(self) -> int:
        return len(self._instances)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def upsert(self, instance: Instance) -> None:
        """Insert or replace *instance*; the first instance becomes the default."""
        if not instance.name:
            raise RegistryError("Database name must be a non-empty string.")
        self._instances[instance.name] = instance
        if not self.default_name:
            self.default_name = instance.name

    def remove(self, name: str) -> Instance:
        """Remove and return the instance named *name*."""
        instance = self._instances.pop(name, None)
        if instance is None:
            raise InstanceNotFoundError(name)
        if self.default_name == name:
            self.default_name = None
        return instance

    def set_default(self, name: str) -> None:
        """Point the default at an existing instance."""
        if name not in self._instances:
            raise InstanceNotFoundError(name)
        self.default_name = name

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_document(self) -> dict[str, object]:
        """Return the JSON-serialisable registry document."""
        document: dict[str, object] = {}
        if self.default_name:
            document["default"] = self.default_name
        document["databases"] = [instance.to_document() for instance in self._instances.values()]
        return document

    def _apply_document(self, payload: Mapping[str, object]) -> None:
        raw_entries = payload.get("databases", [])
        if raw_entries is None:
            raw_entries = []
        if not isinstance(raw_entries, list):
            raise RegistryError("Registry 'databases' must be a list.")

        instances: dict[str, Instance] = {}
        for entry in raw_entries:
            if not isinstance(entry, Mapping):
                raise RegistryError("Registry database entries must be mappings.")
            instance = Instance.from_document(entry)
            instances[instance.name] = instance
        self._instances = instances

        default_raw = payload.get("default")
        default_name = str(default_raw).strip() if default_raw is not None else ""
        # A pointer to a removed entry is dropped rather than trusted.
        self.default_name = default_name if default_name in instances else None


__all__ = ["REGISTRY_DOCUMENT", "Registry"]
