"""
CLI layer for inspection-spine.

Provides a Typer application with sub-commands that delegate to the
scheduling package (``inspection_spine.scheduling``).  All scheduling logic
lives there; this package handles only terminal transport: argument
parsing, coloured output, and table formatting.

Entry point::

    inspection-spine --help
"""

from inspection_spine.cli.app import app

__all__ = ["app"]
