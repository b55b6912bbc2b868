"""Shared mongo-express console reflecting the running instances."""
from __future__ import annotations

from dataclasses import dataclass

from .errors import EngineError
from .logging import StructuredLogger
from .providers.docker import DockerProvider
from .providers.proxy import ProxyProvider
from .state import Instance, Registry

MONGODB_PORT = 27017
ADMIN_PORT = "80"


@dataclass
class AdminResult:
    """Outcome of :meth:`AdminAggregator.refresh`."""

    connection: str | None = None
    instance: str | None = None
    removed_existing: bool = False
    started: bool = False
    skipped: list[str] | None = None


class AdminAggregator:
    """Rebuild the admin console container from the current instance states."""

    def __init__(
        self,
        registry: Registry,
        engine: DockerProvider,
        proxy: ProxyProvider,
        logger: StructuredLogger,
        *,
        container_name: str = "dbadmin-mongodb.workspace",
        image: str = "mongo-express:latest",
    ) -> None:
        """Bind the aggregator to its collaborators."""
        self.registry = registry
        self.engine = engine
        self.proxy = proxy
        self.logger = logger
        self.container_name = container_name
        self.image = image

    def environment(self, connection: str) -> dict[str, str]:
        """Return the console container environment for *connection*."""
        return {
            "VIRTUAL_HOST": self.container_name,
            "VIRTUAL_PORT": ADMIN_PORT,
            "VCAP_APP_HOST": self.container_name,
            "PORT": ADMIN_PORT,
            "ME_CONFIG_BASICAUTH": "false",
            "ME_CONFIG_BASICAUTH_USERNAME": "",
            "ME_CONFIG_BASICAUTH_PASSWORD": "",
            "ME_CONFIG_MONGODB_ENABLE_ADMIN": "true",
            "ME_CONFIG_MONGODB_URL": connection,
        }

    def find_running(self) -> tuple[Instance | None, list[str]]:
        """Return the first instance with a running container and the names that failed inspection.

        mongo-express accepts a single backing server, so the scan stops at
        the first match.
        """
        failed: list[str] = []
        for instance in self.registry:
            try:
                container = self.engine.get_container(instance.container_name)
                if container is None:
                    continue
                if container.is_running():
                    return instance, failed
            except EngineError as exc:
                self.logger.warning(
                    "Treating database as stopped after inspect failure.",
                    name=instance.name,
                    error=str(exc),
                )
                failed.append(instance.name)
        return None, failed

    def refresh(self) -> AdminResult:
        """Recreate the console for the first running instance, or remove it when none runs."""
        instance, failed = self.find_running()
        result = AdminResult(skipped=failed or None)

        result.removed_existing = self.engine.remove_container(self.container_name)

        if instance is None:
            return result

        connection = instance.connection_uri(MONGODB_PORT)
        result.connection = connection
        result.instance = instance.name

        container = self.engine.get_container(self.container_name)
        if container is None:
            self.logger.info("Mongodb admin starting.", instance=instance.name)
            self.engine.pull_image(self.image)
            container = self.engine.create_container(
                self.container_name,
                self.image,
                env=self.environment(connection),
                restart="always",
            )

        if not container.is_running():
            container.start()
            self.proxy.notify_routing_changed()
            result.started = True

        return result


__all__ = ["AdminAggregator", "AdminResult"]
