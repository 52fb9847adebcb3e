# arch_prep/ui.py
from typing import Dict, List, Optional

from rich.console import Console
from rich.prompt import Confirm, InvalidResponse, Prompt
from rich.table import Table


class YesNoConfirm(Confirm):
    """Confirm prompt that also takes 'yes' and 'no'."""
    choices = ["y", "yes", "n", "no"]

    def process_response(self, value: str) -> bool:
        value = value.strip().lower()
        if value not in self.choices:
            raise InvalidResponse(self.validate_error_message)
        return value in ("y", "yes")


class Prompter:
    """Operator input via rich prompts. Stages receive it so tests can answer for the operator."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console

    def ask(self, message: str) -> str:
        return Prompt.ask(f"[yellow]{message}[/]", console=self.console)

    def confirm(self, message: str) -> bool:
        """Yes/no question; anything but an explicit yes is a no."""
        return YesNoConfirm.ask(f"[bold yellow]{message}[/]", default=False, console=self.console)


def disks_table(disks: List[Dict[str, str]]) -> Table:
    """Available disks as a rich table."""
    table = Table(title="Available Disks")
    table.add_column("Device Name", style="cyan", no_wrap=True)
    table.add_column("Size", style="success")
    table.add_column("Type", style="success")
    table.add_column("Model", style="success")
    table.add_column("Transport", style="success")

    for disk in disks:
        table.add_row(
            f"/dev/{disk.get('NAME', '?')}",
            disk.get("SIZE", ""),
            disk.get("TYPE", ""),
            disk.get("MODEL") or "[italic]Unknown[/]",
            disk.get("TRAN") or "[italic]-[/]",
        )
    return table
