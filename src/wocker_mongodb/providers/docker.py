"""Docker engine provider built on the Docker SDK for Python.

The provider exposes the small surface the lifecycle, admin and backup
layers need: container lookup/creation/removal, volume management, image
pulls and streaming ``exec`` sessions. Every SDK failure is re-raised as an
:class:`~wocker_mongodb.errors.EngineError` so callers never handle
``docker.errors`` directly.
"""
from __future__ import annotations

import socket
import time
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.models.containers import Container
from docker.utils.socket import consume_socket_output, frames_iter

from ..errors import EngineError, ExecError

EXEC_EXIT_POLL_ATTEMPTS = 50
EXEC_EXIT_POLL_INTERVAL = 0.1


def split_image_reference(reference: str) -> tuple[str, str]:
    """Split ``repository[:tag]`` into its parts, defaulting the tag to ``latest``."""
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, "latest"
    return repository, tag


def _wait_exit_code(api: Any, exec_id: str) -> int | None:
    """Return the exit code of *exec_id* once the daemon reports it finished."""
    info: Mapping[str, Any] = {}
    for _ in range(EXEC_EXIT_POLL_ATTEMPTS):
        info = api.exec_inspect(exec_id)
        if not info.get("Running"):
            break
        time.sleep(EXEC_EXIT_POLL_INTERVAL)
    return info.get("ExitCode")


class ExecOutput:
    """Stdout of a command running inside a container, delivered chunk by chunk."""

    def __init__(self, api: Any, exec_id: str, stream: Any, label: str) -> None:
        """Wrap a demultiplexed ``exec_start`` stream."""
        self._api = api
        self._exec_id = exec_id
        self._stream = stream
        self._stderr = bytearray()
        self.label = label

    def __iter__(self) -> Iterator[bytes]:
        try:
            for stdout_chunk, stderr_chunk in self._stream:
                if stderr_chunk:
                    self._stderr.extend(stderr_chunk)
                if stdout_chunk:
                    yield stdout_chunk
        except DockerException as exc:
            raise EngineError(f"{self.label} output stream failed: {exc}") from exc

    def close(self) -> None:
        """Release the underlying HTTP stream."""
        close = getattr(self._stream, "close", None)
        if callable(close):
            close()

    def check(self) -> None:
        """Raise :class:`ExecError` when the command exited unsuccessfully."""
        try:
            exit_code = _wait_exit_code(self._api, self._exec_id)
        except DockerException as exc:
            raise EngineError(f"Failed to inspect {self.label}: {exc}") from exc
        if exit_code != 0:
            raise ExecError(self.label, exit_code, self._stderr.decode("utf-8", errors="replace"))


class ExecInput:
    """Stdin of a command running inside a container.

    ``write`` blocks until the daemon accepted the chunk, so a slow consumer
    throttles the producer instead of accumulating data in memory.
    """

    def __init__(self, api: Any, exec_id: str, sock: Any, label: str) -> None:
        """Wrap the hijacked socket returned by ``exec_start(socket=True)``."""
        self._api = api
        self._exec_id = exec_id
        self._sock = sock
        self._raw = getattr(sock, "_sock", sock)
        self._closed = False
        self.label = label

    def write(self, chunk: bytes) -> None:
        """Send *chunk* to the command's stdin."""
        try:
            self._raw.sendall(chunk)
        except OSError as exc:
            self.abort()
            raise EngineError(f"{self.label} input stream closed: {exc}") from exc

    def finish(self) -> None:
        """Close stdin, wait for the command and raise on a non-zero exit code."""
        stderr: bytes | None = None
        try:
            self._raw.shutdown(socket.SHUT_WR)
            _, stderr = consume_socket_output(frames_iter(self._sock, tty=False), demux=True)
        except OSError as exc:
            raise EngineError(f"{self.label} stream failed: {exc}") from exc
        finally:
            self.abort()
        try:
            exit_code = _wait_exit_code(self._api, self._exec_id)
        except DockerException as exc:
            raise EngineError(f"Failed to inspect {self.label}: {exc}") from exc
        if exit_code != 0:
            message = (stderr or b"").decode("utf-8", errors="replace")
            raise ExecError(self.label, exit_code, message)

    def abort(self) -> None:
        """Close the socket, terminating the command's input stream."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.close()
        except OSError:
            pass


@dataclass(slots=True)
class DockerContainer:
    """Handle on a single container."""

    client: docker.DockerClient
    container: Container

    @property
    def name(self) -> str:
        """Return the container name."""
        return str(self.container.name)

    def is_running(self) -> bool:
        """Return True when the daemon reports the container as running."""
        try:
            self.container.reload()
        except DockerException as exc:
            raise EngineError(f"Failed to inspect container '{self.name}': {exc}") from exc
        state = self.container.attrs.get("State") or {}
        return bool(state.get("Running"))

    def start(self) -> None:
        """Start the container."""
        try:
            self.container.start()
        except DockerException as exc:
            raise EngineError(f"Failed to start container '{self.name}': {exc}") from exc

    def exec_output(self, command: Sequence[str]) -> ExecOutput:
        """Run *command* and return its stdout as a chunk stream."""
        api = self.client.api
        try:
            exec_id = api.exec_create(
                self.container.id,
                list(command),
                stdout=True,
                stderr=True,
                tty=False,
            )["Id"]
            stream = api.exec_start(exec_id, stream=True, demux=True)
        except DockerException as exc:
            raise EngineError(f"Failed to run {command[0]} in '{self.name}': {exc}") from exc
        return ExecOutput(api, exec_id, stream, label=command[0])

    def exec_input(self, command: Sequence[str]) -> ExecInput:
        """Run *command* with stdin attached and return the writable end."""
        api = self.client.api
        try:
            exec_id = api.exec_create(
                self.container.id,
                list(command),
                stdin=True,
                stdout=True,
                stderr=True,
                tty=False,
            )["Id"]
            sock = api.exec_start(exec_id, socket=True)
        except DockerException as exc:
            raise EngineError(f"Failed to run {command[0]} in '{self.name}': {exc}") from exc
        return ExecInput(api, exec_id, sock, label=command[0])

    def exec_text(self, command: Sequence[str]) -> str:
        """Run *command* to completion and return its decoded stdout."""
        output = self.exec_output(command)
        try:
            data = b"".join(output)
        finally:
            output.close()
        output.check()
        return data.decode("utf-8", errors="replace")


@dataclass(slots=True)
class DockerProvider:
    """Container engine operations used by wocker-mongodb."""

    client: docker.DockerClient | None = None
    network: str | None = "workspace"
    base_url: str | None = None
    timeout: int = 60

    def docker_client(self) -> docker.DockerClient:
        """Return the SDK client, connecting on first use.

        Without a *base_url* the connection follows ``DOCKER_HOST`` and the
        other variables understood by :func:`docker.from_env`.
        """
        if self.client is None:
            try:
                if self.base_url:
                    self.client = docker.DockerClient(base_url=self.base_url, timeout=self.timeout)
                else:
                    self.client = docker.from_env(timeout=self.timeout)
            except DockerException as exc:
                raise EngineError(f"Unable to connect to the Docker engine: {exc}") from exc
        return self.client

    def engine_version(self) -> str:
        """Return the Docker server version string."""
        try:
            info = self.docker_client().version()
        except DockerException as exc:
            raise EngineError(f"Unable to query the Docker engine version: {exc}") from exc
        return str(info.get("Version", ""))

    # Containers ------------------------------------------------------------
    def get_container(self, name: str) -> DockerContainer | None:
        """Return the container named *name*, or ``None`` when absent."""
        try:
            container = self.docker_client().containers.get(name)
        except NotFound:
            return None
        except DockerException as exc:
            raise EngineError(f"Failed to look up container '{name}': {exc}") from exc
        return DockerContainer(self.docker_client(), container)

    def create_container(
        self,
        name: str,
        image: str,
        *,
        env: Mapping[str, str],
        volumes: Sequence[str] = (),
        restart: str = "always",
    ) -> DockerContainer:
        """Create (but do not start) a container, pulling *image* when missing."""
        self._ensure_image(image)
        network = self._ensure_network()
        options: dict[str, Any] = {
            "name": name,
            "environment": dict(env),
            "restart_policy": {"Name": restart},
        }
        if volumes:
            options["volumes"] = list(volumes)
        if network:
            options["network"] = network
        try:
            container = self.docker_client().containers.create(image, **options)
        except DockerException as exc:
            raise EngineError(f"Failed to create container '{name}': {exc}") from exc
        return DockerContainer(self.docker_client(), container)

    def remove_container(self, name: str) -> bool:
        """Stop and delete the container named *name*; absent containers are ignored."""
        try:
            container = self.docker_client().containers.get(name)
        except NotFound:
            return False
        except DockerException as exc:
            raise EngineError(f"Failed to look up container '{name}': {exc}") from exc
        try:
            container.stop()
            container.remove()
        except NotFound:
            return True
        except DockerException as exc:
            raise EngineError(f"Failed to remove container '{name}': {exc}") from exc
        return True

    # Volumes ---------------------------------------------------------------
    def has_volume(self, name: str) -> bool:
        """Return True when the named volume exists."""
        try:
            self.docker_client().volumes.get(name)
        except NotFound:
            return False
        except DockerException as exc:
            raise EngineError(f"Failed to look up volume '{name}': {exc}") from exc
        return True

    def create_volume(self, name: str) -> None:
        """Create the named volume."""
        try:
            self.docker_client().volumes.create(name=name)
        except DockerException as exc:
            raise EngineError(f"Failed to create volume '{name}': {exc}") from exc

    def remove_volume(self, name: str) -> None:
        """Delete the named volume."""
        try:
            self.docker_client().volumes.get(name).remove()
        except DockerException as exc:
            raise EngineError(f"Failed to remove volume '{name}': {exc}") from exc

    # Images ----------------------------------------------------------------
    def pull_image(self, reference: str) -> None:
        """Pull *reference* from its registry."""
        repository, tag = split_image_reference(reference)
        try:
            self.docker_client().images.pull(repository, tag=tag)
        except DockerException as exc:
            raise EngineError(f"Failed to pull image '{reference}': {exc}") from exc

    def _ensure_image(self, reference: str) -> None:
        try:
            self.docker_client().images.get(reference)
        except ImageNotFound:
            self.pull_image(reference)
        except DockerException as exc:
            raise EngineError(f"Failed to look up image '{reference}': {exc}") from exc

    def _ensure_network(self) -> str | None:
        if not self.network:
            return None
        try:
            self.docker_client().networks.get(self.network)
        except NotFound:
            try:
                self.docker_client().networks.create(self.network, driver="bridge")
            except DockerException as exc:
                raise EngineError(f"Failed to create network '{self.network}': {exc}") from exc
        except DockerException as exc:
            raise EngineError(f"Failed to look up network '{self.network}': {exc}") from exc
        return self.network


__all__ = [
    "DockerContainer",
    "DockerProvider",
    "ExecInput",
    "ExecOutput",
    "split_image_reference",
]
