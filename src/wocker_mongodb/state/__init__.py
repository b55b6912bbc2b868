"""Instance entity and registry state."""
from __future__ import annotations

from .instance import Instance, default_config_storage, default_storage
from .registry import REGISTRY_DOCUMENT, Registry

__all__ = [
    "Instance",
    "REGISTRY_DOCUMENT",
    "Registry",
    "default_config_storage",
    "default_storage",
]
