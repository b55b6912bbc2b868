"""Pytest configuration and in-memory fakes for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from pathlib import Path

import pytest

from wocker_mongodb.errors import EngineError, ExecError
from wocker_mongodb.logging import StructuredLogger
from wocker_mongodb.state import Registry
from wocker_mongodb.store import ConfigStore


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeExecOutput:
    """Chunked stdout of a scripted command."""

    def __init__(
        self,
        chunks: Sequence[bytes],
        *,
        exit_code: int = 0,
        error: Exception | None = None,
        label: str = "cmd",
    ) -> None:
        self.chunks = list(chunks)
        self.exit_code = exit_code
        self.error = error
        self.label = label
        self.closed = False
        self.yielded = 0

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True

    def check(self) -> None:
        if self.exit_code != 0:
            raise ExecError(self.label, self.exit_code, "scripted failure")


class FakeExecInput:
    """Records bytes written to a scripted command's stdin."""

    def __init__(self, *, exit_code: int = 0, label: str = "cmd") -> None:
        self.exit_code = exit_code
        self.label = label
        self.writes: list[bytes] = []
        self.finished = False
        self.aborted = False

    @property
    def received(self) -> bytes:
        return b"".join(self.writes)

    def write(self, chunk: bytes) -> None:
        if self.aborted:
            raise EngineError("input stream closed")
        self.writes.append(chunk)

    def finish(self) -> None:
        self.finished = True
        self.abort()
        if self.exit_code != 0:
            raise ExecError(self.label, self.exit_code, "scripted failure")

    def abort(self) -> None:
        self.aborted = True


class FakeContainer:
    """Container double with scripted exec behaviour."""

    def __init__(
        self,
        name: str,
        *,
        image: str = "",
        env: Mapping[str, str] | None = None,
        volumes: Sequence[str] = (),
        restart: str = "always",
        running: bool = False,
    ) -> None:
        self.name = name
        self.image = image
        self.env = dict(env or {})
        self.volumes = list(volumes)
        self.restart = restart
        self.running = running
        self.start_calls = 0
        self.inspect_error: Exception | None = None
        self.exec_calls: list[list[str]] = []
        self.outputs: list[FakeExecOutput] = []
        self.inputs: list[FakeExecInput] = []
        self.output_factory: Callable[[list[str]], FakeExecOutput] = lambda command: (
            FakeExecOutput([], label=command[0])
        )
        self.input_factory: Callable[[list[str]], FakeExecInput] = lambda command: (
            FakeExecInput(label=command[0])
        )

    def is_running(self) -> bool:
        if self.inspect_error is not None:
            raise self.inspect_error
        return self.running

    def start(self) -> None:
        self.start_calls += 1
        self.running = True

    def exec_output(self, command: Sequence[str]) -> FakeExecOutput:
        self.exec_calls.append(list(command))
        output = self.output_factory(list(command))
        self.outputs.append(output)
        return output

    def exec_input(self, command: Sequence[str]) -> FakeExecInput:
        self.exec_calls.append(list(command))
        stdin = self.input_factory(list(command))
        self.inputs.append(stdin)
        return stdin

    def exec_text(self, command: Sequence[str]) -> str:
        output = self.exec_output(command)
        try:
            data = b"".join(output)
        finally:
            output.close()
        output.check()
        return data.decode("utf-8")


class FakeEngine:
    """In-memory stand-in for :class:`~wocker_mongodb.providers.DockerProvider`."""

    def __init__(self, version: str = "24.0.7") -> None:
        self.version = version
        self.containers: dict[str, FakeContainer] = {}
        self.volumes: set[str] = set()
        self.pulled: list[str] = []
        self.calls: list[tuple[str, str]] = []

    def add_container(self, name: str, *, running: bool = False, **kwargs: object) -> FakeContainer:
        container = FakeContainer(name, running=running, **kwargs)  # type: ignore[arg-type]
        self.containers[name] = container
        return container

    def engine_version(self) -> str:
        self.calls.append(("engine_version", ""))
        return self.version

    def get_container(self, name: str) -> FakeContainer | None:
        return self.containers.get(name)

    def create_container(
        self,
        name: str,
        image: str,
        *,
        env: Mapping[str, str],
        volumes: Iterable[str] = (),
        restart: str = "always",
    ) -> FakeContainer:
        self.calls.append(("create_container", name))
        return self.add_container(
            name,
            image=image,
            env=dict(env),
            volumes=list(volumes),
            restart=restart,
        )

    def remove_container(self, name: str) -> bool:
        self.calls.append(("remove_container", name))
        return self.containers.pop(name, None) is not None

    def has_volume(self, name: str) -> bool:
        return name in self.volumes

    def create_volume(self, name: str) -> None:
        self.calls.append(("create_volume", name))
        self.volumes.add(name)

    def remove_volume(self, name: str) -> None:
        self.calls.append(("remove_volume", name))
        self.volumes.discard(name)

    def pull_image(self, reference: str) -> None:
        self.calls.append(("pull_image", reference))
        self.pulled.append(reference)


class ScriptedPrompter:
    """Prompter double answering from pre-seeded queues."""

    def __init__(
        self,
        *,
        texts: Sequence[str] = (),
        passwords: Sequence[str] = (),
        selections: Sequence[str] = (),
        confirms: Sequence[bool] = (),
    ) -> None:
        self.texts = list(texts)
        self.passwords = list(passwords)
        self.selections = list(selections)
        self.confirms = list(confirms)
        self.notices: list[str] = []
        self.asked: list[tuple[str, str]] = []
        self.choices: list[list[str]] = []

    def notify(self, message: str) -> None:
        self.notices.append(message)

    def text(self, message: str) -> str:
        self.asked.append(("text", message))
        return self.texts.pop(0)

    def password(self, message: str) -> str:
        self.asked.append(("password", message))
        return self.passwords.pop(0)

    def select(self, message: str, choices: Sequence[str]) -> str:
        self.asked.append(("select", message))
        self.choices.append(list(choices))
        if self.selections:
            return self.selections.pop(0)
        return choices[0]

    def confirm(self, message: str, *, default: bool = False) -> bool:
        self.asked.append(("confirm", message))
        return self.confirms.pop(0)


@pytest.fixture
def engine() -> FakeEngine:
    """Return an empty fake container engine."""
    return FakeEngine()


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    """Return a config store rooted in a temporary directory."""
    return ConfigStore(tmp_path / "data")


@pytest.fixture
def registry(store: ConfigStore) -> Registry:
    """Return an empty registry backed by the temporary store."""
    return Registry.load(store)


@pytest.fixture
def logger(tmp_path: Path) -> StructuredLogger:
    """Return a structured logger writing into the temporary directory."""
    return StructuredLogger(tmp_path / "logs")


@pytest.fixture
def prompter_factory() -> Callable[..., ScriptedPrompter]:
    """Return a factory building scripted prompters."""
    return ScriptedPrompter


@pytest.fixture
def make_output() -> Callable[..., FakeExecOutput]:
    """Return a factory building scripted command output streams."""
    return FakeExecOutput


@pytest.fixture
def make_input() -> Callable[..., FakeExecInput]:
    """Return a factory building scripted command input streams."""
    return FakeExecInput
