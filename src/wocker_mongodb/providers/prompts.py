"""Interactive input providers."""
from __future__ import annotations

from collections.abc import Sequence

import typer
from rich.console import Console

from ..errors import ValidationError


class Prompter:
    """Ask the operator for missing values on the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        """Use *console* to render choice lists."""
        self.console = console or Console()

    def notify(self, message: str) -> None:
        """Show an informational message between prompts."""
        self.console.print(f"[yellow]{message}[/yellow]")

    def text(self, message: str) -> str:
        """Prompt for a free-text value."""
        return str(typer.prompt(message)).strip()

    def password(self, message: str) -> str:
        """Prompt for a hidden value."""
        return str(typer.prompt(message, hide_input=True))

    def select(self, message: str, choices: Sequence[str]) -> str:
        """Prompt until the operator picks one of *choices* by number or value."""
        if not choices:
            raise ValidationError(f"{message} No choices available.")
        if len(choices) == 1:
            return choices[0]
        self.console.print(message)
        for index, choice in enumerate(choices, start=1):
            self.console.print(f"  [bold]{index}[/bold]) {choice}")
        while True:
            raw = str(typer.prompt("Select", default="1")).strip()
            if raw in choices:
                return raw
            if raw.isdigit() and 1 <= int(raw) <= len(choices):
                return choices[int(raw) - 1]
            self.console.print(f"[red]Invalid selection: {raw}[/red]")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Ask a yes/no question."""
        return bool(typer.confirm(message, default=default))


class NonInteractivePrompter(Prompter):
    """Refuse every prompt; used when running with ``--no-input``."""

    def _refuse(self, message: str) -> ValidationError:
        return ValidationError(f"Input required but prompting is disabled: {message}")

    def text(self, message: str) -> str:
        """Refuse free-text input."""
        raise self._refuse(message)

    def password(self, message: str) -> str:
        """Refuse hidden input."""
        raise self._refuse(message)

    def select(self, message: str, choices: Sequence[str]) -> str:
        """Refuse a selection."""
        raise self._refuse(message)

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Refuse a confirmation."""
        raise self._refuse(message)


__all__ = ["NonInteractivePrompter", "Prompter"]
