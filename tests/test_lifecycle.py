"""Lifecycle controller tests against the in-memory engine."""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from wocker_mongodb.errors import (
    CancelledError,
    IncompatibleHostError,
    InstanceNotFoundError,
    NameTakenError,
    PasswordMismatchError,
    ProtectedDefaultError,
    ValidationError,
)
from wocker_mongodb.lifecycle import LifecycleController
from wocker_mongodb.logging import StructuredLogger
from wocker_mongodb.state import Instance, Registry


@pytest.fixture
def make_controller(
    registry: Registry,
    engine: Any,
    logger: StructuredLogger,
    prompter_factory: Callable[..., Any],
) -> Callable[..., LifecycleController]:
    def factory(**answers: Any) -> LifecycleController:
        return LifecycleController(registry, engine, prompter_factory(**answers), logger)

    return factory


def test_create_registers_instance_and_sets_default(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """The first created instance is persisted and becomes the default."""
    controller = make_controller()

    instance = controller.create("alpha", "root", "pw", image_version="6.0")

    assert instance.image == "mongo:6.0"
    assert registry.default_name == "alpha"
    reloaded = Registry.load(registry.store)
    assert reloaded.get().name == "alpha"


def test_create_with_taken_name_fails_without_changes(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """A supplied name that already exists is refused."""
    registry.upsert(Instance("alpha", "root", "pw"))
    controller = make_controller()

    with pytest.raises(NameTakenError, match="alpha"):
        controller.create("alpha", "other", "pw2")

    assert registry.get("alpha").username == "root"
    assert not registry.store.exists("config.json")


def test_create_blank_name_is_rejected(make_controller: Callable[..., LifecycleController]) -> None:
    """Whitespace-only names are invalid."""
    with pytest.raises(ValidationError):
        make_controller().create("   ", "root", "pw")


def test_create_prompts_for_missing_values(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """Missing name, username and password are asked for; taken names are re-asked."""
    registry.upsert(Instance("alpha", "root", "pw"))
    controller = make_controller(texts=["alpha", "beta", "admin"], passwords=["pw", "pw"])

    instance = controller.create()

    assert instance.name == "beta"
    assert instance.username == "admin"
    assert controller.prompter.notices == ["Database name 'alpha' is already taken."]


def test_create_password_mismatch(make_controller: Callable[..., LifecycleController]) -> None:
    """Prompted passwords must be confirmed."""
    controller = make_controller(passwords=["one", "two"])

    with pytest.raises(PasswordMismatchError):
        controller.create("alpha", "root")


def test_create_explicit_confirmation_mismatch(
    make_controller: Callable[..., LifecycleController],
) -> None:
    """A supplied confirmation is compared against the password."""
    with pytest.raises(PasswordMismatchError):
        make_controller().create("alpha", "root", "one", password_confirm="two")


def test_upgrade_noop_does_not_write(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """Unchanged values leave the registry file untouched."""
    registry.upsert(Instance("alpha", "root", "pw", image_version="6.0"))

    changed = make_controller().upgrade("alpha", image_version="6.0")

    assert changed is False
    assert not registry.store.exists("config.json")


def test_upgrade_persists_changes(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """Changed fields are saved for the next start."""
    registry.upsert(Instance("alpha", "root", "pw"))

    changed = make_controller().upgrade(image_name="percona/mongodb", storage="shared-data")

    assert changed is True
    reloaded = Registry.load(registry.store).get("alpha")
    assert reloaded.image == "percona/mongodb:latest"
    assert reloaded.storage_volume == "shared-data"


def test_use_sets_default(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """The default pointer moves to the requested instance."""
    registry.upsert(Instance("alpha", "u", "p"))
    registry.upsert(Instance("beta", "u", "p"))

    make_controller().use("beta")

    assert Registry.load(registry.store).default_name == "beta"


def test_use_unknown_instance(make_controller: Callable[..., LifecycleController]) -> None:
    """Unknown names are reported."""
    with pytest.raises(InstanceNotFoundError):
        make_controller().use("ghost")


def test_list_marks_default(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """The default instance carries a suffix in listings."""
    registry.upsert(Instance("alpha", "u", "p"))
    registry.upsert(Instance("beta", "u", "p", storage="shared"))

    rows = make_controller().list()

    assert [row.name for row in rows] == ["alpha (default)", "beta"]
    assert rows[1].storage_volume == "shared"
    assert rows[0].to_dict()["container_name"] == "mongodb-alpha.ws"


def test_start_creates_volumes_then_container(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """A fresh start provisions config then data volume, then the container."""
    registry.upsert(Instance("alpha", "root", "pw", image_version="6.0"))

    result = make_controller().start("alpha")

    assert result.created is True
    assert result.started is True
    assert result.created_volumes == ["wocker-mongodb-config-alpha", "wocker-mongodb-alpha"]
    assert [call for call in engine.calls if call[0] != "engine_version"] == [
        ("create_volume", "wocker-mongodb-config-alpha"),
        ("create_volume", "wocker-mongodb-alpha"),
        ("create_container", "mongodb-alpha.ws"),
    ]
    container = engine.containers["mongodb-alpha.ws"]
    assert container.image == "mongo:6.0"
    assert container.restart == "always"
    assert container.env["MONGO_INITDB_ROOT_USERNAME"] == "root"
    assert container.env["MONGO_INITDB_ROOT_PASSWORD"] == "pw"
    assert container.volumes == [
        "wocker-mongodb-config-alpha:/data/configdb",
        "wocker-mongodb-alpha:/data/db",
    ]
    assert container.running is True


def test_start_is_idempotent_for_running_container(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """A running container is left alone."""
    registry.upsert(Instance("alpha", "root", "pw"))
    existing = engine.add_container("mongodb-alpha.ws", running=True)

    result = make_controller().start()

    assert result.created is False
    assert result.started is False
    assert existing.start_calls == 0


def test_start_reuses_existing_volumes(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Existing volumes are not recreated."""
    registry.upsert(Instance("alpha", "root", "pw"))
    engine.volumes.update({"wocker-mongodb-alpha", "wocker-mongodb-config-alpha"})

    result = make_controller().start("alpha")

    assert result.created_volumes == []


def test_restart_recreates_container(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Restart removes the existing container before creating a new one."""
    registry.upsert(Instance("alpha", "root", "pw", image_version="7.0"))
    old = engine.add_container("mongodb-alpha.ws", running=True, image="mongo:6.0")

    result = make_controller().restart("alpha")

    assert result.removed_existing is True
    new = engine.containers["mongodb-alpha.ws"]
    assert new is not old
    assert new.image == "mongo:7.0"
    assert new.running is True


def test_start_without_instances_bootstraps_creation(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Starting with an empty registry walks through create first."""
    controller = make_controller(texts=["first", "root"], passwords=["pw", "pw"])

    result = controller.start()

    assert result.instance.name == "first"
    assert registry.default_name == "first"
    assert "mongodb-first.ws" in engine.containers


def test_start_refuses_old_engine(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Engines below the supported minimum are rejected before any change."""
    registry.upsert(Instance("alpha", "root", "pw"))
    engine.version = "19.03.12"

    with pytest.raises(IncompatibleHostError):
        make_controller().start("alpha")

    assert engine.containers == {}


def test_vendor_suffixed_engine_versions_are_accepted(
    make_controller: Callable[..., LifecycleController],
    engine: Any,
) -> None:
    """Distribution suffixes do not break version comparison."""
    engine.version = "20.10.21+dfsg1"

    make_controller().ensure_compatible_host()


def test_stop_removes_container(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Stop deletes the container and reports whether one existed."""
    registry.upsert(Instance("alpha", "root", "pw"))
    engine.add_container("mongodb-alpha.ws", running=True)
    controller = make_controller()

    assert controller.stop("alpha") is True
    assert controller.stop("alpha") is False
    assert "mongodb-alpha.ws" not in engine.containers


def test_destroy_default_requires_force(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """The default instance is protected unless forced."""
    registry.upsert(Instance("alpha", "root", "pw"))

    with pytest.raises(ProtectedDefaultError):
        make_controller().destroy("alpha", yes=True)

    assert registry.has("alpha")


def test_destroy_removes_default_volumes_only(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Overridden volumes survive destroy; derived ones are removed."""
    registry.upsert(Instance("alpha", "root", "pw"))
    registry.upsert(Instance("beta", "root", "pw", storage="shared-data"))
    engine.add_container("mongodb-beta.ws", running=True)
    engine.volumes.update({"shared-data", "wocker-mongodb-config-beta"})

    removed = make_controller().destroy("beta", yes=True)

    assert removed == ["wocker-mongodb-config-beta"]
    assert engine.volumes == {"shared-data"}
    assert "mongodb-beta.ws" not in engine.containers
    assert Registry.load(registry.store).names() == ["alpha"]


def test_destroy_forced_default_clears_pointer(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
) -> None:
    """Forcing destruction of the default leaves no default."""
    registry.upsert(Instance("alpha", "root", "pw"))

    make_controller().destroy("alpha", yes=True, force=True)

    reloaded = Registry.load(registry.store)
    assert len(reloaded) == 0
    assert reloaded.default_name is None


def test_destroy_declined_confirmation(
    make_controller: Callable[..., LifecycleController],
    registry: Registry,
    engine: Any,
) -> None:
    """Declining the prompt cancels without touching anything."""
    registry.upsert(Instance("alpha", "root", "pw"))
    registry.upsert(Instance("beta", "root", "pw"))
    engine.add_container("mongodb-beta.ws", running=True)

    with pytest.raises(CancelledError):
        make_controller(confirms=[False]).destroy("beta")

    assert registry.has("beta")
    assert "mongodb-beta.ws" in engine.containers
