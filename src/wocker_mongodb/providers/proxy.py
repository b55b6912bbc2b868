"""Reverse proxy provider.

The workspace proxy watches the Docker event stream and routes
``VIRTUAL_HOST`` containers on its own; notifying it only requires making
sure its container is up.
"""
from __future__ import annotations

from dataclasses import dataclass

from .docker import DockerProvider


@dataclass(slots=True)
class ProxyProvider:
    """Keep the workspace reverse proxy running after routing changes."""

    engine: DockerProvider
    container_name: str = "proxy.workspace"

    def notify_routing_changed(self) -> bool:
        """Start the proxy container when it exists but is stopped.

        Returns ``True`` when a start was issued. A missing proxy container
        is left alone; provisioning it belongs to the workspace tooling.
        """
        container = self.engine.get_container(self.container_name)
        if container is None:
            return False
        if container.is_running():
            return False
        container.start()
        return True


__all__ = ["ProxyProvider"]
