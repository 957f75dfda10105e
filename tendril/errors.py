"""
Error taxonomy for the Tendril agent.

Per-job errors (integrity, parsing, external processes) are caught by the
job loop and turned into a FAILED status. StartupError is the only error
that is allowed to end the process.
"""

from typing import Optional


class TendrilError(Exception):
    """Base class for all agent errors."""


class StartupError(TendrilError):
    """Required identity or environment data is missing or invalid."""


class IntegrityError(TendrilError):
    """Declared configuration hash does not match the computed one."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"security violation: configuration hash mismatch. "
            f"Expected {expected}, got {actual}"
        )


class ConfigParseError(TendrilError):
    """Configuration snapshot could not be decoded."""


class ExternalProcessError(TendrilError):
    """An external command failed to start or exited non-zero."""

    def __init__(self, command: str, returncode: Optional[int] = None, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output

        if returncode is None:
            message = f"{command} failed to start"
        else:
            message = f"{command} exited with code {returncode}"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)


class TransportError(TendrilError):
    """A control-plane call failed or returned an error payload."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")
