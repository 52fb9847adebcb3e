# arch_prep/__init__.py

# Versioning
__version__ = "0.1.0"

# Utility imports
from .utils.exceptions import ShellCommandError
from .utils.exceptions import CommandNotFoundError
from .utils.exceptions import CommandTimeoutError
from .utils.exceptions import PrepError
from .utils.exceptions import OperationAborted

__all__ = [
    "ShellCommandError",
    "CommandNotFoundError",
    "CommandTimeoutError",
    "PrepError",
    "OperationAborted",
]
