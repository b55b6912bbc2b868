"""Streamed dump and restore of logical databases inside running instances.

Archives are stored as ``<root>/<instance>/<database>/<timestamp>.gzip`` and
hold ``mongodump --archive --gzip`` output. Bytes are forwarded chunk by
chunk between the host file and the command running in the container; no
archive is ever buffered whole in memory.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from .errors import (
    BackupError,
    CancelledError,
    ContainerNotRunningError,
    NoBackupsFoundError,
    NoDatabasesFoundError,
    ValidationError,
)
from .logging import StructuredLogger
from .providers.docker import DockerContainer, DockerProvider
from .providers.prompts import Prompter
from .state import Instance, Registry

CHUNK_SIZE = 64 * 1024
ARCHIVE_SUFFIX = ".gzip"
AUTH_DATABASE = "admin"
LIST_DATABASES_SCRIPT = (
    "db.adminCommand({listDatabases: 1}).databases"
    ".forEach(function (d) { print(d.name); })"
)


def copy_stream(chunks: Iterable[bytes], sink: Callable[[bytes], object]) -> int:
    """Forward every chunk from *chunks* to *sink* as it arrives; return the byte count."""
    total = 0
    for chunk in chunks:
        if not chunk:
            continue
        sink(chunk)
        total += len(chunk)
    return total


def read_chunks(handle: BinaryIO, size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield successive blocks of at most *size* bytes from *handle*."""
    while True:
        chunk = handle.read(size)
        if not chunk:
            return
        yield chunk


def parse_database_names(output: str) -> list[str]:
    """Return unique, non-empty database names from newline-delimited *output*."""
    names: list[str] = []
    for line in output.splitlines():
        name = line.strip()
        if name and name not in names:
            names.append(name)
    return names


def _credentials(instance: Instance) -> list[str]:
    return [
        "--authenticationDatabase",
        AUTH_DATABASE,
        "--username",
        instance.username,
        "--password",
        instance.password,
    ]


def dump_command(instance: Instance, database: str) -> list[str]:
    """Return the ``mongodump`` invocation writing a gzip archive to stdout."""
    return ["mongodump", *_credentials(instance), "--db", database, "--archive", "--gzip"]


def restore_command(instance: Instance, database: str) -> list[str]:
    """Return the ``mongorestore`` invocation reading a gzip archive from stdin."""
    return [
        "mongorestore",
        *_credentials(instance),
        "--nsInclude",
        f"{database}.*",
        "--drop",
        "--archive",
        "--gzip",
        "--quiet",
    ]


def _safe_segment(value: str, label: str) -> str:
    text = value.strip()
    if not text or text in {".", ".."} or "/" in text or "\\" in text:
        raise ValidationError(f"Invalid {label}: {value!r}.")
    return text


class BackupPipeline:
    """Back up, restore and prune dump archives for registered instances."""

    def __init__(
        self,
        registry: Registry,
        engine: DockerProvider,
        prompter: Prompter,
        logger: StructuredLogger,
        *,
        root: Path,
        shell_bin: str = "mongosh",
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """Bind the pipeline to its collaborators and the archive root."""
        self.registry = registry
        self.engine = engine
        self.prompter = prompter
        self.logger = logger
        self.root = Path(root).expanduser()
        self.shell_bin = shell_bin
        self.chunk_size = chunk_size

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def list_databases(
        self,
        instance: Instance,
        *,
        container: DockerContainer | None = None,
    ) -> list[str]:
        """Return the logical databases held by *instance*."""
        container = container or self._running_container(instance)
        command = [
            self.shell_bin,
            "--quiet",
            *_credentials(instance),
            "--eval",
            LIST_DATABASES_SCRIPT,
        ]
        return parse_database_names(container.exec_text(command))

    def list_backups(self, name: str | None = None) -> dict[str, list[str]]:
        """Return archive file names per database for an instance."""
        instance = self.registry.get(name)
        return {
            database: self._archives(instance, database)
            for database in self._backup_databases(instance)
        }

    def generate_filename(self, directory: Path) -> str:
        """Return a timestamped archive name that does not exist in *directory* yet."""
        stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        candidate = f"{stamp}{ARCHIVE_SUFFIX}"
        counter = 1
        while (directory / candidate).exists():
            candidate = f"{stamp}-{counter}{ARCHIVE_SUFFIX}"
            counter += 1
        return candidate

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def backup(self, name: str | None = None, database: str | None = None) -> Path:
        """Stream a dump of *database* into a new archive and return its path."""
        instance = self.registry.get(name)
        container = self._running_container(instance)

        if not database:
            databases = self.list_databases(instance, container=container)
            if not databases:
                raise NoDatabasesFoundError(f"No databases found in '{instance.name}'.")
            database = self.prompter.select("Database", databases)
        database = _safe_segment(database, "database name")

        directory = self.root / instance.name / database
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Failed to prepare backup directory {directory}: {exc}") from exc
        destination = directory / self.generate_filename(directory)

        output = container.exec_output(dump_command(instance, database))
        try:
            with destination.open("wb") as handle:
                written = copy_stream(output, handle.write)
            output.check()
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise BackupError(f"Failed to write backup {destination}: {exc}") from exc
        except Exception:
            destination.unlink(missing_ok=True)
            raise
        finally:
            output.close()

        self.logger.info(
            "Backup written.",
            name=instance.name,
            database=database,
            path=destination,
            size_bytes=written,
        )
        return destination

    def restore(
        self,
        name: str | None = None,
        database: str | None = None,
        filename: str | None = None,
    ) -> Path:
        """Stream an archive back into *database*, dropping its collections first."""
        instance = self.registry.get(name)
        database, path = self._resolve_archive(instance, database, filename)
        container = self._running_container(instance)

        try:
            handle = path.open("rb")
        except OSError as exc:
            raise BackupError(f"Failed to open backup {path}: {exc}") from exc

        with handle:
            stdin = container.exec_input(restore_command(instance, database))
            try:
                copied = copy_stream(read_chunks(handle, self.chunk_size), stdin.write)
            except OSError as exc:
                stdin.abort()
                raise BackupError(f"Failed to read backup {path}: {exc}") from exc
            except Exception:
                stdin.abort()
                raise
            stdin.finish()

        self.logger.info(
            "Backup restored.",
            name=instance.name,
            database=database,
            path=path,
            size_bytes=copied,
        )
        return path

    def delete_backup(
        self,
        name: str | None = None,
        database: str | None = None,
        filename: str | None = None,
        *,
        yes: bool = False,
    ) -> Path:
        """Delete one archive and prune its database directory when left empty."""
        instance = self.registry.get(name)
        database, path = self._resolve_archive(instance, database, filename)

        if not yes:
            confirmed = self.prompter.confirm(
                f'Are you sure you want to delete "{path.name}" from "{database}"?',
                default=False,
            )
            if not confirmed:
                raise CancelledError()

        directory = path.parent
        try:
            path.unlink()
            if not any(directory.iterdir()):
                directory.rmdir()
        except OSError as exc:
            raise BackupError(f"Failed to delete backup {path}: {exc}") from exc
        self.logger.info("Backup deleted.", name=instance.name, database=database, path=path)
        return path

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _running_container(self, instance: Instance) -> DockerContainer:
        container = self.engine.get_container(instance.container_name)
        if container is None or not container.is_running():
            raise ContainerNotRunningError(instance.container_name)
        return container

    def _backup_databases(self, instance: Instance) -> list[str]:
        directory = self.root / instance.name
        if not directory.is_dir():
            return []
        return sorted(entry.name for entry in directory.iterdir() if entry.is_dir())

    def _archives(self, instance: Instance, database: str) -> list[str]:
        directory = self.root / instance.name / database
        if not directory.is_dir():
            return []
        return sorted(entry.name for entry in directory.iterdir() if entry.is_file())

    def _resolve_archive(
        self,
        instance: Instance,
        database: str | None,
        filename: str | None,
    ) -> tuple[str, Path]:
        if not database:
            database = self._select(
                "Database",
                self._backup_databases(instance),
                f"No backups found for '{instance.name}'.",
            )
        database = _safe_segment(database, "database name")

        if not filename:
            filename = self._select(
                "Backup file",
                self._archives(instance, database),
                f"No backups found for '{instance.name}/{database}'.",
            )
        filename = _safe_segment(filename, "backup file name")

        path = self.root / instance.name / database / filename
        if not path.is_file():
            raise NoBackupsFoundError(f"Backup '{instance.name}/{database}/{filename}' not found.")
        return database, path

    def _select(self, message: str, choices: Sequence[str], empty_message: str) -> str:
        if not choices:
            raise NoBackupsFoundError(empty_message)
        return self.prompter.select(message, list(choices))


__all__ = [
    "BackupPipeline",
    "copy_stream",
    "dump_command",
    "parse_database_names",
    "read_chunks",
    "restore_command",
]
