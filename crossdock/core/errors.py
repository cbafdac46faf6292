"""Process exit codes.

Every CLI command terminates with one of these codes so that a CI runner can
tell a bad invocation from a broken build or a failed registry push.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    The numeric values are part of the CLI contract and must stay stable:
    - 0: Success
    - 1: User error (bad flags, malformed configuration or trigger metadata)
    - 2: Environment error (toolchain or emulation unavailable)
    - 3: Build error (compilation failed, artifact missing for the image)
    - 4: Network error (transient infrastructure failures that exhausted retries)
    - 5: I/O error (staging directory not writable)
    - 6: Publish error (registry rejected the manifest list)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5
    PUBLISH_ERROR = 6

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK
