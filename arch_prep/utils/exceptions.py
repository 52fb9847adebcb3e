# arch_prep/utils/exceptions.py
from typing import Optional


# --- Shell command errors (raised by the Executor) ---

class ShellCommandError(Exception):
    """Base class for errors related to shell command execution."""

    def __init__(self, command: str, exit_code: int = -1, stdout: str = "", stderr: str = "", message: str = "Command execution failed."):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{message} (Command: '{command}', Exit Code: {exit_code})")


class CommandNotFoundError(ShellCommandError):
    """Raised when the executable specified in the command cannot be found."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=127, stdout=stdout, stderr=stderr, message="Command not found.")


class CommandTimeoutError(ShellCommandError):
    """Raised when the command exceeds the execution timeout."""

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, exit_code=124, stdout=stdout, stderr=stderr, message=f"Command timed out after {timeout} seconds.")


class InvalidCommandError(ShellCommandError):
    """Raised when the command string/list is invalid, empty, or improperly formatted."""

    def __init__(self, command: str, message: str):
        super().__init__(command, exit_code=-2, message=message)


class PermissionDeniedError(ShellCommandError):
    """Raised when command execution fails due to permissions."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=126, stdout=stdout, stderr=stderr, message="Permission denied.")


# --- Disk preparation errors ---

class PrepError(Exception):
    """Base class for fatal disk preparation errors."""


class OperationAborted(PrepError):
    """Raised when the operator declines a safety confirmation."""

    def __init__(self, stage: Optional[str] = None, message: str = "Operation aborted by user"):
        self.stage = stage
        super().__init__(message)


class DeviceNotReadyError(PrepError):
    """Raised when a device node does not show up before the settle timeout."""

    def __init__(self, path: str, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(f"Device node {path} did not appear within {timeout} seconds")


class PreflightError(PrepError):
    """Raised when the host is not fit to run the preparation."""


class ConfigError(PrepError):
    """Raised for unreadable or invalid configuration files."""
