"""Provider interfaces for wocker-mongodb."""
from __future__ import annotations

from .docker import DockerContainer, DockerProvider, ExecInput, ExecOutput
from .prompts import NonInteractivePrompter, Prompter
from .proxy import ProxyProvider

__all__ = [
    "DockerContainer",
    "DockerProvider",
    "ExecInput",
    "ExecOutput",
    "NonInteractivePrompter",
    "Prompter",
    "ProxyProvider",
]
