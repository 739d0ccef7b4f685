"""CLI module for WebpLab commands.

Each command lives in its own module; this package assembles them into the
``webplab`` command group.
"""

import click

from .. import __version__
from .analyze_cmd import analyze
from .batch_cmd import batch
from .convert_cmd import convert
from .info_cmd import info
from .optimize_cmd import optimize


@click.group()
@click.version_option(version=__version__, prog_name="webplab")
def main() -> None:
    """🖼️ WebpLab: GIF to WebP conversion quality laboratory."""
    pass


main.add_command(convert)
main.add_command(batch)
main.add_command(analyze)
main.add_command(optimize)
main.add_command(info)

__all__ = [
    "analyze",
    "batch",
    "convert",
    "info",
    "main",
    "optimize",
]
