"""Core building blocks shared by every layer.

- result: Ok/Err values returned instead of raising
- structured: narrowing helpers for JSON/TOML payloads
- errors: process exit codes
- config: typed publish configuration
"""

from .errors import ErrorCode
from .result import Err, Ok, Result, is_err, is_ok

__all__ = ["ErrorCode", "Err", "Ok", "Result", "is_err", "is_ok"]
