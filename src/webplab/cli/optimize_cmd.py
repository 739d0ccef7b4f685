"""Parameter prediction command (no encoding)."""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..codec import format_bytes
from ..comparison import format_psnr
from ..config import with_overrides
from ..io import json_safe
from ..optimizer import Strategy, optimize_file, validate_optimization
from .utils import (
    config_option,
    configure_logging,
    handle_generic_error,
    load_config_or_exit,
    verbose_option,
)


@click.command()
@click.argument(
    "input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--strategy",
    "-s",
    type=click.Choice([s.value for s in Strategy]),
    default=Strategy.ADAPTIVE.value,
    show_default=True,
    help="Optimizer strategy",
)
@click.option(
    "--allow-lossless/--no-lossless",
    default=None,
    help="Let the quality strategy pick lossless (default: from config)",
)
@click.option("--json", "output_json", is_flag=True, help="Output the prediction as JSON")
@config_option
@verbose_option
def optimize(
    input_file: Path,
    strategy: str,
    allow_lossless: bool | None,
    output_json: bool,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """Predict WebP encode parameters for a GIF without converting it.

    INPUT_FILE: Path to the GIF to analyze
    """
    configure_logging(verbose)
    config = load_config_or_exit(config_path)
    options = with_overrides(config.optimizer, allow_lossless=allow_lossless)

    try:
        result = optimize_file(input_file, strategy, options)
        acceptable = validate_optimization(result, options)

        if output_json:
            click.echo(
                json.dumps(
                    json_safe({**result.to_dict(), "meets_targets": acceptable}), indent=2
                )
            )
            return

        attributes = result.metadata["input_analysis"]
        table = Table(title="🎯 Predicted Parameters", show_header=True, header_style="bold magenta")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")
        table.add_row(
            "Input",
            f"{format_bytes(attributes.file_size)}, {attributes.width}x{attributes.height}, "
            f"{attributes.frames} frames",
        )
        table.add_row("Strategy", result.strategy)
        table.add_row("Rationale", result.rationale)
        table.add_row("Quality", str(result.quality))
        table.add_row("Effort", str(result.effort))
        table.add_row("Lossless", str(result.lossless))
        table.add_row("Predicted size", format_bytes(result.predicted_size))
        table.add_row("Predicted compression", f"{result.predicted_compression_ratio * 100:.1f}%")
        table.add_row("Predicted PSNR", format_psnr(result.predicted_psnr))
        table.add_row("Meets targets", "✅" if acceptable else "⚠️")
        Console().print(table)

    except Exception as e:
        handle_generic_error("Optimization", e)
