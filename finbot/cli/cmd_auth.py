"""Session management commands."""

import asyncio

import click

from . import cli
from .shared import console


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def logout(yes):
    """Delete the saved WhatsApp session.

    Needed after WhatsApp logs the bot out: the next `finbot start`
    shows a new QR code to pair with.

    Only finbot's credentials are removed. The wacli device store
    (~/.wacli by default) is kept; unlink the device from the phone
    (Linked devices) if it is still listed there.
    """
    from finbot.config import load_settings
    from finbot.session.credentials import FileCredentialStore
    from finbot.transports.wacli import DEFAULT_STORE_DIR

    store = FileCredentialStore(load_settings().auth_dir)
    if not store.auth_dir.exists():
        console.print(f"[dim]No saved session in {store.auth_dir}[/dim]")
        return

    if not yes:
        click.confirm(f"Delete saved session in {store.auth_dir}?", abort=True)

    asyncio.run(store.clear())
    console.print("[green]Session deleted.[/green] Run 'finbot start' to pair again.")
    console.print(
        f"[dim]The wacli device store in {DEFAULT_STORE_DIR} was not touched. "
        "If the phone still lists this device under Linked devices, remove it there.[/dim]"
    )
