"""Lifecycle operations for managed MongoDB instances.

Each operation resolves its target through the :class:`Registry`, translates
the desired state into container engine calls and persists the registry
after every mutation. Nothing here retries; engine failures propagate to
the caller untouched.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from packaging.version import InvalidVersion, Version

from .errors import (
    CancelledError,
    IncompatibleHostError,
    NameTakenError,
    PasswordMismatchError,
    ProtectedDefaultError,
    ValidationError,
)
from .logging import StructuredLogger
from .providers.docker import DockerProvider
from .providers.prompts import Prompter
from .state import Instance, Registry

DATA_PATH = "/data/db"
CONFIG_PATH = "/data/configdb"
RESTART_POLICY = "always"


@dataclass(frozen=True)
class InstanceRow:
    """Display projection of a single instance."""

    name: str
    username: str
    container_name: str
    image: str
    storage_volume: str
    config_volume: str
    default: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "username": self.username,
            "container_name": self.container_name,
            "image": self.image,
            "storage_volume": self.storage_volume,
            "config_volume": self.config_volume,
            "default": self.default,
        }


@dataclass
class StartResult:
    """Outcome of :meth:`LifecycleController.start`."""

    instance: Instance
    created: bool = False
    started: bool = False
    removed_existing: bool = False
    created_volumes: list[str] = field(default_factory=list)


def container_environment(instance: Instance) -> dict[str, str]:
    """Return the root credential variables passed to the MongoDB container."""
    return {
        "MONGO_INITDB_ROOT_USERNAME": instance.username,
        "MONGO_INITDB_ROOT_PASSWORD": instance.password,
        # Legacy names read by older wocker images.
        "MONGO_ROOT_USER": instance.username,
        "MONGO_ROOT_PASSWORD": instance.password,
    }


def container_volumes(instance: Instance) -> list[str]:
    """Return the volume binds for the MongoDB container."""
    return [
        f"{instance.config_volume}:{CONFIG_PATH}",
        f"{instance.storage_volume}:{DATA_PATH}",
    ]


class LifecycleController:
    """Create, start, stop, upgrade and destroy MongoDB instances."""

    def __init__(
        self,
        registry: Registry,
        engine: DockerProvider,
        prompter: Prompter,
        logger: StructuredLogger,
        *,
        min_engine_version: str = "20.10.0",
    ) -> None:
        """Bind the controller to its collaborators."""
        self.registry = registry
        self.engine = engine
        self.prompter = prompter
        self.logger = logger
        self.min_engine_version = min_engine_version

    # ------------------------------------------------------------------
    # Registry-only operations
    # ------------------------------------------------------------------
    def create(
        self,
        name: str | None = None,
        username: str | None = None,
        password: str | None = None,
        *,
        password_confirm: str | None = None,
        image_name: str | None = None,
        image_version: str | None = None,
    ) -> Instance:
        """Register a new instance; no container is created.

        A supplied *name* that is already taken raises
        :class:`NameTakenError`; the caller picks another one. Missing
        values are requested from the prompter.
        """
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Database name is required.")
            if self.registry.has(name):
                raise NameTakenError(name)
        else:
            name = self._prompt_name()

        if not username:
            username = self.prompter.text("Username")
            if not username:
                raise ValidationError("Username is required.")

        if not password:
            password = self.prompter.password("Password")
            if not password:
                raise ValidationError("Password is required.")
            password_confirm = self.prompter.password("Confirm password")

        if password_confirm is not None and password_confirm != password:
            raise PasswordMismatchError()

        instance = Instance(
            name=name,
            username=username,
            password=password,
            image_name=image_name or None,
            image_version=image_version or None,
        )
        self.registry.upsert(instance)
        self.registry.save()
        self.logger.info("Database created.", name=name, image=instance.image)
        return instance

    def upgrade(
        self,
        name: str | None = None,
        *,
        image_name: str | None = None,
        image_version: str | None = None,
        storage: str | None = None,
        config_storage: str | None = None,
    ) -> bool:
        """Apply image/volume changes; returns False (and skips saving) when nothing changed."""
        instance = self.registry.get(name)
        updates = {
            "image_name": image_name,
            "image_version": image_version,
            "storage": storage,
            "config_storage": config_storage,
        }
        changed: dict[str, str] = {}
        for attribute, value in updates.items():
            if value and getattr(instance, attribute) != value:
                setattr(instance, attribute, value)
                changed[attribute] = value

        if not changed:
            return False

        self.registry.upsert(instance)
        self.registry.save()
        self.logger.info("Database upgraded.", name=instance.name, **changed)
        return True

    def use(self, name: str) -> Instance:
        """Make *name* the default instance."""
        if not name:
            raise ValidationError("A database name is required.")
        instance = self.registry.get(name)
        self.registry.set_default(instance.name)
        self.registry.save()
        return instance

    def list(self) -> list[InstanceRow]:
        """Return one display row per registered instance."""
        rows: list[InstanceRow] = []
        for instance in self.registry:
            is_default = self.registry.is_default(instance.name)
            rows.append(
                InstanceRow(
                    name=f"{instance.name} (default)" if is_default else instance.name,
                    username=instance.username,
                    container_name=instance.container_name,
                    image=instance.image,
                    storage_volume=instance.storage_volume,
                    config_volume=instance.config_volume,
                    default=is_default,
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Container operations
    # ------------------------------------------------------------------
    def start(self, name: str | None = None, *, restart: bool = False) -> StartResult:
        """Ensure the instance container exists and is running."""
        self.ensure_compatible_host()

        if not name and len(self.registry) == 0:
            self.create()

        instance = self.registry.get(name)
        result = StartResult(instance=instance)

        container = self.engine.get_container(instance.container_name)
        if restart and container is not None:
            self.engine.remove_container(instance.container_name)
            result.removed_existing = True
            container = None

        if container is None:
            for volume in (instance.config_volume, instance.storage_volume):
                if not self.engine.has_volume(volume):
                    self.engine.create_volume(volume)
                    result.created_volumes.append(volume)

            container = self.engine.create_container(
                instance.container_name,
                instance.image,
                env=container_environment(instance),
                volumes=container_volumes(instance),
                restart=RESTART_POLICY,
            )
            result.created = True

        if not container.is_running():
            self.logger.info("Starting database service.", name=instance.name)
            container.start()
            result.started = True

        return result

    def restart(self, name: str | None = None) -> StartResult:
        """Recreate and start the instance container."""
        return self.start(name, restart=True)

    def stop(self, name: str | None = None) -> bool:
        """Remove the instance container; returns False when none existed."""
        instance = self.registry.get(name)
        self.logger.info("Stopping database service.", name=instance.name)
        return self.engine.remove_container(instance.container_name)

    def destroy(self, name: str, *, yes: bool = False, force: bool = False) -> list[str]:
        """Remove the container, default-named volumes and registry entry of *name*.

        Volumes with an explicit override are kept. Returns the removed
        volume names.
        """
        self.ensure_compatible_host()

        if not name:
            raise ValidationError("A database name is required to destroy it.")
        instance = self.registry.get(name)

        if not force and self.registry.is_default(instance.name):
            raise ProtectedDefaultError(instance.name)

        if not yes:
            confirmed = self.prompter.confirm(
                f'Are you sure you want to delete the "{instance.name}" database? '
                "This action cannot be undone and all data will be lost.",
                default=False,
            )
            if not confirmed:
                raise CancelledError()

        self.stop(instance.name)

        removed: list[str] = []
        candidates = (
            (instance.config_volume, instance.default_config_storage),
            (instance.storage_volume, instance.default_storage),
        )
        for volume, default_volume in candidates:
            if volume != default_volume:
                self.logger.info("Keeping overridden volume.", name=instance.name, volume=volume)
                continue
            if self.engine.has_volume(volume):
                self.engine.remove_volume(volume)
                removed.append(volume)

        self.registry.remove(instance.name)
        self.registry.save()
        self.logger.info("Database destroyed.", name=instance.name, volumes=removed)
        return removed

    def ensure_compatible_host(self) -> None:
        """Raise :class:`IncompatibleHostError` when the engine is too old."""
        raw_version = self.engine.engine_version()
        try:
            current = Version(_normalise_engine_version(raw_version))
            minimum = Version(self.min_engine_version)
        except InvalidVersion as exc:
            raise IncompatibleHostError(
                f"Unable to parse Docker engine version '{raw_version}'."
            ) from exc
        if current < minimum:
            raise IncompatibleHostError(
                f"Docker engine {raw_version} is older than the supported "
                f"minimum {self.min_engine_version}. Please update Docker."
            )

    def _prompt_name(self) -> str:
        while True:
            candidate = self.prompter.text("Mongodb name").strip()
            if not candidate:
                raise ValidationError("Database name is required.")
            if not self.registry.has(candidate):
                return candidate
            self.prompter.notify(f"Database name '{candidate}' is already taken.")


def _normalise_engine_version(raw: str) -> str:
    """Strip vendor suffixes such as ``24.0.7-ce`` or ``20.10.21+dfsg1``."""
    text = raw.strip().lstrip("v")
    for separator in ("-", "+", "~"):
        text = text.split(separator, 1)[0]
    return text


__all__ = [
    "CONFIG_PATH",
    "DATA_PATH",
    "InstanceRow",
    "LifecycleController",
    "StartResult",
    "container_environment",
    "container_volumes",
]
