"""Exception hierarchy shared by the lifecycle, admin and backup layers.

Every error carries the exit code the CLI terminates with so commands can
map failures without maintaining a separate lookup table.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class MongodbError(RuntimeError):
    """Base class for failures surfaced to the operator."""

    rc: int = ExitCode.VALIDATION


class ValidationError(MongodbError):
    """Raised when required input is missing or malformed."""


class RegistryError(MongodbError):
    """Raised when the persisted registry document cannot be used."""

    rc = ExitCode.ENVIRONMENT


class InstanceNotFoundError(MongodbError):
    """Raised when a named instance is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Database '{name}' not found.")
        self.name = name


class NoDefaultInstanceError(MongodbError):
    """Raised when no name was given and no default instance is set."""

    def __init__(self) -> None:
        super().__init__("Default database is not defined.")


class NameTakenError(MongodbError):
    """Raised when creating an instance under a name already in use."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Database name '{name}' is already taken.")
        self.name = name


class PasswordMismatchError(MongodbError):
    """Raised when a password and its confirmation differ."""

    def __init__(self) -> None:
        super().__init__("Passwords do not match.")


class ProtectedDefaultError(MongodbError):
    """Raised when destroying the default instance without ``force``."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Can't delete default database '{name}'. Use --force to override."
        )
        self.name = name


class CancelledError(MongodbError):
    """Raised when the operator declines a confirmation prompt."""

    rc = ExitCode.CANCELLED

    def __init__(self, message: str = "Aborted.") -> None:
        super().__init__(message)


class IncompatibleHostError(MongodbError):
    """Raised when the container engine is older than the supported minimum."""

    rc = ExitCode.ENVIRONMENT


class NoBackupsFoundError(MongodbError):
    """Raised when a restore or delete has no backup files to choose from."""


class NoDatabasesFoundError(MongodbError):
    """Raised when an instance reports no logical databases to back up."""


class BackupError(MongodbError):
    """Raised when a backup archive or its directory cannot be read or written."""

    rc = ExitCode.PROVIDER


class EngineError(MongodbError):
    """Raised when the container engine rejects or fails a request."""

    rc = ExitCode.PROVIDER


class ContainerNotRunningError(EngineError):
    """Raised when a command needs a running container that is absent or stopped."""

    def __init__(self, container_name: str) -> None:
        super().__init__(f"Container '{container_name}' is not running.")
        self.container_name = container_name


class ExecError(EngineError):
    """Raised when a command executed inside a container fails."""

    def __init__(self, command: str, exit_code: int | None, output: str = "") -> None:
        detail = output.strip() or "no output"
        super().__init__(f"{command} failed (exit {exit_code}): {detail}")
        self.command = command
        self.exit_code = exit_code
        self.output = output


__all__ = [
    "BackupError",
    "CancelledError",
    "ContainerNotRunningError",
    "EngineError",
    "ExecError",
    "IncompatibleHostError",
    "InstanceNotFoundError",
    "MongodbError",
    "NameTakenError",
    "NoBackupsFoundError",
    "NoDatabasesFoundError",
    "NoDefaultInstanceError",
    "PasswordMismatchError",
    "ProtectedDefaultError",
    "RegistryError",
    "ValidationError",
]
