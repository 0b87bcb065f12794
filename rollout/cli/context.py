from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from rollout.core.config import CONFIG_FILENAME, PublishConfig, load_config_or_default
from rollout.core.errors import ErrorCode
from rollout.core.result import Err
from rollout.output.console import ConsoleProtocol, RichConsole, Style


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config: PublishConfig
    console: ConsoleProtocol


def build_context(root: Path | None = None) -> CLIContext:
    console = RichConsole()
    try:
        resolved = (root or Path.cwd()).expanduser().resolve()
    except OSError as e:
        typer.echo(f"error: invalid --cwd: {e}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    if not resolved.is_dir():
        typer.echo(f"error: not a directory: {resolved}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    config_result = load_config_or_default(resolved / CONFIG_FILENAME)
    if isinstance(config_result, Err):
        console.error(config_result.error.message)
        console.print(f"hint: fix or remove {CONFIG_FILENAME}", Style.DIM)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    return CLIContext(root=resolved, config=config_result.value, console=console)
