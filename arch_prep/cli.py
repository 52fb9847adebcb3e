# arch_prep/cli.py
from pathlib import Path
from typing import Optional

import typer
from rich.text import Text

from arch_prep import __version__
from arch_prep.config.models import PrepConfig, Variant
from arch_prep.executors.blockdev import SystemBlockDevice
from arch_prep.pipeline import run_pipeline
from arch_prep.preflight import run_preflight
from arch_prep.ui import Prompter
from arch_prep.utils.exceptions import ConfigError, OperationAborted, PrepError, ShellCommandError
from arch_prep.utils.executor import Executor
from arch_prep.utils.logger import initialize_app_logger

app = typer.Typer(add_completion=False, help="Interactively prepare a disk for an Arch Linux installation.")


def _version_callback(value: bool):
    if value:
        typer.echo(f"arch-prep {__version__}")
        raise typer.Exit()


@app.command()
def main(
    variant: Optional[Variant] = typer.Option(None, "--variant", help="Partition layout: 'swap' (ESP 512MiB + swap = RAM) or 'noswap' (ESP 2048MiB)."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", exists=True, dir_okay=False, help="TOML configuration file."),
    mount_root: Optional[str] = typer.Option(None, "--mount-root", help="Where the new system is mounted (default /mnt)."),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Log state-changing commands instead of running them."),
    log_dir: Optional[str] = typer.Option(None, "--log-dir", help="Directory for the log file."),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
):
    """
    Select a disk, wipe it, partition it (GPT) and mount a Btrfs subvolume layout.
    """
    overrides = dict(variant=variant, mount_root=mount_root, dry_run=dry_run, log_directory=log_dir)
    try:
        if config:
            prep_config = PrepConfig.load_config_from_file(config, **overrides)
        else:
            prep_config = PrepConfig.from_values(**overrides)
    except ConfigError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    logger = initialize_app_logger(
        app_name="arch_prep",
        log_directory=prep_config.log_directory,
        log_file_name=prep_config.log_file_name,
    )

    logger.console.clear()
    logger.console.print(Text("Arch Linux Disk Preparation Script", style="bold green"))
    logger.console.print(Text("WARNING: This will erase all data on the selected disk!\n", style="bold yellow"))
    typer.echo(prep_config.display_summary())

    try:
        run_preflight(logger, dry_run=prep_config.dry_run)

        executor = Executor(logger_instance=logger)
        ops = SystemBlockDevice(executor, dry_run=prep_config.dry_run)
        run_pipeline(ops, Prompter(console=logger.console), prep_config)

    except OperationAborted as e:
        logger.error(f"{e} (at {e.stage})" if e.stage else str(e))
        raise typer.Exit(code=1)
    except ShellCommandError as e:
        logger.critical(f"FATAL ERROR during disk preparation. The operation failed at command: '{e.command}'")
        logger.critical("The disk may be left partially prepared; review the log for details.")
        raise typer.Exit(code=1)
    except PrepError as e:
        logger.critical(f"Setup terminated: {e}")
        raise typer.Exit(code=1)
    except (KeyboardInterrupt, EOFError):
        logger.error("Interrupted by user")
        raise typer.Exit(code=1)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        raise typer.Exit(code=1)
