# arch_prep/utils/logger.py
import logging
import os
import sys
from contextlib import contextmanager

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from arch_prep.utils.exceptions import ShellCommandError

# --- 1. Custom Log Levels and Subclassed Logger ---
# Define custom levels (must be done before setting LoggerClass)
SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26
logging.addLevelName(SECTION_LEVEL_NUM, 'SECTION')
logging.addLevelName(EXECUTE_LEVEL_NUM, 'EXECUTE')

THEME = Theme({
    "section": "bold yellow",
    "success": "green",
    "warning": "bold yellow",
    "error": "red",
    "critical": "bold reverse red",
})


class AppLogger(logging.Logger):
    """
    Subclasses logging.Logger to add custom methods for SECTION and EXECUTE levels.
    """

    def section(self, msg, *args, **kwargs):
        """Logs a message at the SECTION level."""
        if self.isEnabledFor(SECTION_LEVEL_NUM):
            self._log(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        """Logs a message at the EXECUTE level."""
        if self.isEnabledFor(EXECUTE_LEVEL_NUM):
            self._log(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


# Set the custom logger class globally
logging.setLoggerClass(AppLogger)


# --- 2. File Formatter (For consistent file structure) ---
class FileFormatter(logging.Formatter):
    """
    Detailed formatter for file output.
    """

    def format(self, record):
        record.levelname_fixed = f"{record.levelname:<9}"
        record.name_fixed = f"{record.name:<15}"
        record.filename_fixed = f"{record.filename:<20}"
        record.lineno_fixed = f"{record.lineno:<5}"

        fmt = '%(asctime)s - %(levelname_fixed)s - %(name_fixed)s - %(filename_fixed)s:%(lineno_fixed)s - %(message)s'
        self._style._fmt = fmt

        return super().format(record)


# --- 3. RichAppLogger Wrapper (Focuses on TUI presentation) ---
class RichAppLogger:
    """
    Manages TUI output via Rich Consoles and wraps the AppLogger instance.

    ``console`` writes to stdout (progress, info, tool listings) and
    ``err_console`` writes to stderr (errors only).
    """

    def __init__(self, console: Console, logger: AppLogger, err_console: Console = None):
        self.console = console
        self.err_console = err_console or console
        self.logger: AppLogger = logger

    def section(self, message: str, *args, **kwargs):
        """Logs a message with the custom SECTION level and prints a styled header to TUI."""
        self.console.print(Text(f"\n{message}", style="section"))
        self.logger.section(f"SECTION: {message}", *args, **kwargs)

    @contextmanager
    def execution_step(self, message: str):
        """
        Context manager for a live Rich Status display, ensuring the
        [RUNNING] status is overwritten by the final [COMPLETED]/[CRITICAL] message.
        """
        with self.console.status(f"[bold green]...[/] [RUNNING] {message}", spinner="dots") as status:

            # Log the start to file. This will NOT be printed to console due to the filter.
            self.logger.execute(f"[RUNNING] {message}")

            try:
                yield status

                self.console.print(f"[green]✔ [COMPLETED][/green] {message}")
                self.logger.execute(f"[COMPLETED] {message}")

            except Exception as e:
                status_tag = "[CRITICAL]" if isinstance(e, ShellCommandError) else "[FAILED]"

                self.console.print(f"[bold red]✘ {status_tag}[/bold red] {message}")
                self.logger.execute(f"{status_tag} {message}")

                # Traceback goes to the file only; the console handler sits at INFO.
                self.logger.debug(f"Exception during execution step: {message}", exc_info=True)

                raise

    def show(self, output: str, title: str = None):
        """Prints raw tool output (lsblk, parted listings) to stdout and records it in the file log."""
        if title:
            self.console.print(Text(title, style="success"))
        self.console.print(output.rstrip(), markup=False, highlight=False)
        self.logger.debug(f"{title or 'Output'}:\n{output.rstrip()}")

    def table(self, table: Table):
        """Prints a rich table to stdout."""
        self.console.print(table)

    # --- Standard Logging Wrappers (Simple pass-through to logger) ---

    def info(self, message, *args, **kwargs):
        self.logger.info(message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self.logger.warning(message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self.logger.error(message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)

    def critical(self, message, *args, **kwargs):
        self.logger.critical(message, *args, **kwargs)

    def exception(self, message, *args, **kwargs):
        """Logs an ERROR to file with traceback and prints a rich traceback to stderr."""
        self.logger.exception(message, *args, **kwargs)
        self.err_console.print(f"[bold red]FATAL ERROR: {message}[/bold red]")
        self.err_console.print_exception(show_locals=False)


# --- 4. Custom Filters ---

class ExecuteFilter(logging.Filter):
    """
    Excludes EXECUTE and SECTION records from the console handler; execution_step
    and section() already print their own TUI lines.
    """
    def filter(self, record):
        return record.levelno not in (EXECUTE_LEVEL_NUM, SECTION_LEVEL_NUM)


class BelowErrorFilter(logging.Filter):
    """Keeps ERROR and above off the stdout handler; those belong to stderr."""
    def filter(self, record):
        return record.levelno < logging.ERROR


# --- 5. Initialization Routine ---
def initialize_app_logger(
    app_name: str,
    log_directory: str = "logs",
    log_file_name: str = "arch-prep.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.INFO,
) -> RichAppLogger:
    """
    Initializes and configures the AppLogger for file output and Rich Consoles for TUI.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    # 1. File Handler Setup
    os.makedirs(log_directory, exist_ok=True)
    log_file_path = os.path.join(log_directory, log_file_name)

    file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(FileFormatter())
    logger.addHandler(file_handler)

    # 2. Rich Console Setup
    console = Console(file=sys.stdout, theme=THEME, soft_wrap=True)
    err_console = Console(file=sys.stderr, theme=THEME, soft_wrap=True)

    # 3. Rich Handlers: INFO/WARNING to stdout, ERROR/CRITICAL to stderr
    stream_handler = RichHandler(
        console=console,
        show_time=False,
        show_level=True,
        show_path=False,
        keywords=[],
        level=console_log_level
    )
    stream_handler.addFilter(ExecuteFilter())
    stream_handler.addFilter(BelowErrorFilter())
    logger.addHandler(stream_handler)

    error_handler = RichHandler(
        console=err_console,
        show_time=False,
        show_level=True,
        show_path=False,
        keywords=[],
        level=logging.ERROR
    )
    logger.addHandler(error_handler)

    return RichAppLogger(console, logger, err_console=err_console)
