"""Start and configuration check commands."""

import sys

import click

from . import cli
from .shared import console


@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def start(debug):
    """Connect to WhatsApp and start answering messages."""
    from finbot.config import load_settings
    from finbot.main import main

    settings = load_settings()
    if debug:
        settings.debug = True

    console.print("[bold blue]Starting finbot...[/bold blue]")
    sys.exit(main(settings))


@cli.command()
def check():
    """Validate the environment without connecting."""
    from finbot.config import load_settings, validate_startup
    from finbot.errors import ConfigurationError
    from finbot.main import report_configuration_error

    settings = load_settings()
    try:
        allow_list = validate_startup(settings)
    except ConfigurationError as e:
        report_configuration_error(e)
        sys.exit(1)

    console.print("[bold green]Configuration OK.[/bold green] Authorized chats:")
    for label, jid in allow_list.describe():
        console.print(f"   {label:8s} {jid}")
