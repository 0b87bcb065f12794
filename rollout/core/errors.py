"""Process exit codes.

Every publish failure maps onto one of these so that CI wrappers can tell a
bad invocation from a red build or an unreachable GitHub.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    - 0: Success
    - 1: User error (bad flags, aborted confirmation, wrong branch)
    - 2: Environment error (not a repo, missing env vars, missing token)
    - 3: Build error (prepublish script failed, checks/workflows failed)
    - 4: Network error (GitHub/remote unreachable, tag never propagated)
    - 5: I/O error (manifest unreadable)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
