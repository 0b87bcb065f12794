"""Operator confirmation port.

Polling loops and the version confirmation step never call ``input()``
directly; they receive a ``ConfirmProtocol``. ``interactive`` tells callers
whether asking makes sense at all: a non-interactive confirmer is never
asked, the caller applies its documented default instead.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

__all__ = ["AutoConfirm", "ConfirmProtocol", "TyperConfirm"]


class ConfirmProtocol(Protocol):
    @property
    def interactive(self) -> bool: ...

    def confirm(self, prompt: str) -> bool: ...

    def choose(self, prompt: str, choices: Sequence[tuple[str, str]]) -> str:
        """Return the key of the selected ``(key, label)`` choice."""
        ...

    def text(self, prompt: str) -> str: ...


class TyperConfirm:
    """Terminal prompts via typer."""

    @property
    def interactive(self) -> bool:
        return True

    def confirm(self, prompt: str) -> bool:
        import typer

        return bool(typer.confirm(prompt, default=False))

    def choose(self, prompt: str, choices: Sequence[tuple[str, str]]) -> str:
        import typer

        keys = [key for key, _ in choices]
        lines = [prompt, *(f"  ({key}) {label}" for key, label in choices)]
        while True:
            answer = str(typer.prompt("\n".join(lines), default=keys[0])).strip().lower()
            if answer in keys:
                return answer
            typer.echo(f"choose one of: {', '.join(keys)}")

    def text(self, prompt: str) -> str:
        import typer

        return str(typer.prompt(prompt)).strip()


@dataclass(frozen=True, slots=True)
class AutoConfirm:
    """Non-interactive confirmer; callers fall back to their defaults."""

    @property
    def interactive(self) -> bool:
        return False

    def confirm(self, prompt: str) -> bool:
        return False

    def choose(self, prompt: str, choices: Sequence[tuple[str, str]]) -> str:
        return choices[0][0]

    def text(self, prompt: str) -> str:
        return ""
