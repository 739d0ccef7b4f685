"""Environment and input inspection command."""

from pathlib import Path

import click
import psutil
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..codec import format_bytes, get_codec_info
from ..error_handling import safe_operation
from ..meta import analyze_image
from ..optimizer import select_strategy
from .utils import handle_generic_error


@click.command()
@click.argument(
    "files",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def info(files: tuple[Path, ...]) -> None:
    """Show codec capabilities, or the attributes of the given images.

    FILES: Optional images to probe
    """
    console = Console()

    try:
        if not files:
            codec_info = safe_operation(get_codec_info, "read codec info", default_return={})
            memory = psutil.virtual_memory()

            table = Table(title="🖼️  WebpLab Environment", show_header=True, header_style="bold magenta")
            table.add_column("Item", style="cyan", no_wrap=True)
            table.add_column("Value")
            table.add_row("webplab", __version__)
            table.add_row("Pillow", str(codec_info.get("pillow_version", "unknown")))
            table.add_row("libwebp", str(codec_info.get("libwebp_version") or "unknown"))
            table.add_row("WebP support", "✅" if codec_info.get("webp") else "❌")
            table.add_row("Animated WebP", "✅" if codec_info.get("webp_animation") else "❌")
            table.add_row("CPU cores", str(psutil.cpu_count() or "unknown"))
            table.add_row("Available memory", format_bytes(memory.available))
            console.print(table)
            return

        table = Table(title="🔍 Image Attributes", show_header=True, header_style="bold magenta")
        for column in ("File", "Size", "Dimensions", "Frames", "Alpha", "Adaptive strategy"):
            table.add_column(column)

        for path in files:
            attributes = analyze_image(path)
            selection = select_strategy(attributes)
            table.add_row(
                path.name,
                format_bytes(attributes.file_size),
                f"{attributes.width}x{attributes.height}",
                str(attributes.frames),
                "yes" if attributes.has_alpha else "no",
                f"{selection.strategy.value} ({selection.rationale})",
            )
        console.print(table)

    except Exception as e:
        handle_generic_error("Info", e)
