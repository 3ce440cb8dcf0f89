"""CLI output styling utilities.

- Cyan bold for labels
- Green for success messages (with checkmark)
- Red for error messages (with cross)
"""

from __future__ import annotations

__all__ = [
    "style_error",
    "style_label",
    "style_success",
]

import click


def style_label(label: str) -> str:
    """Style a label for summary lines.

    Example:
        >>> click.echo(style_label("Socket") + " /tmp/app.sock")
        Socket: /tmp/app.sock
    """
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    """Style a success message with checkmark."""
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    """Style an error message with cross."""
    return click.style(f"✗ {message}", fg="red")
