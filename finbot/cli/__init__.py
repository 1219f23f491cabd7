"""finbot CLI — command line interface."""

import click
from finbot import __version__
from .shared import console


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="finbot")
@click.pass_context
def cli(ctx):
    """finbot — WhatsApp finance assistant"""
    if ctx.invoked_subcommand is None:
        _show_help()


def _show_help():
    """Show all available commands."""
    console.print(f"[bold]finbot v{__version__}[/bold] — WhatsApp finance assistant\n")

    commands = [
        ("start", "Connect to WhatsApp and answer authorized chats"),
        ("check", "Validate configuration and show the authorized chats"),
        ("logout", "Delete the saved WhatsApp session (pair again on next start)"),
    ]
    for name, desc in commands:
        console.print(f"    [bold]finbot {name:10s}[/bold] {desc}")
    console.print()
    console.print("[dim]Run 'finbot <command> --help' for details on a specific command.[/dim]")


# Import all command modules (registers commands onto cli group)
from . import cmd_start  # noqa: E402, F401
from . import cmd_auth  # noqa: E402, F401


def main():
    """CLI entry point."""
    cli()
