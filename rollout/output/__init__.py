"""Operator-facing output and prompts."""

from .console import ConsoleProtocol, MockConsole, RichConsole, Style
from .prompt import AutoConfirm, ConfirmProtocol, TyperConfirm

__all__ = [
    "AutoConfirm",
    "ConfirmProtocol",
    "ConsoleProtocol",
    "MockConsole",
    "RichConsole",
    "Style",
    "TyperConfirm",
]
