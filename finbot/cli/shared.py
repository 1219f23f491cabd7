"""Shared utilities for finbot CLI commands."""

from rich.console import Console

console = Console()
