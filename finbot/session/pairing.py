"""Out-of-band display of the pairing code."""

import io

import qrcode
from rich.console import Console

_console = Console()

QR_GENERATOR_HINT = (
    "Paste it into https://www.qr-code-generator.com/ or https://goqr.me/ "
    "and scan the generated code instead."
)


def render_qr(payload: str) -> str:
    """Render a pairing payload as a scannable text-mode QR code."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def show_pairing_code(payload: str, console: Console | None = None):
    """Print the QR code and its raw text so the operator can link the device."""
    console = console or _console
    console.print("\n[bold]Scan the QR code below with WhatsApp (Linked devices):[/bold]\n")
    console.print(render_qr(payload), markup=False, highlight=False)
    console.print("If the QR code above is broken, copy the text below:")
    console.rule()
    console.print(payload, markup=False, highlight=False, soft_wrap=True)
    console.rule()
    console.print(f"[dim]{QR_GENERATOR_HINT}[/dim]\n")
