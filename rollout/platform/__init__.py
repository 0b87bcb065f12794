"""Subprocess execution."""

from .process import ProcessError, run, run_silent, run_with_dry_run

__all__ = ["ProcessError", "run", "run_silent", "run_with_dry_run"]
