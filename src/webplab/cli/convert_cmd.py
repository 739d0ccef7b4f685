"""Single-file GIF to WebP conversion command."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..codec import PillowWebPCodec, format_bytes
from ..comparison import StructuralSSIMEstimator, format_psnr
from ..optimizer import Strategy
from ..pipeline import ConversionJob, ItemOutcome
from .utils import (
    config_option,
    configure_logging,
    display_common_header,
    display_path_info,
    handle_generic_error,
    handle_keyboard_interrupt,
    load_config_or_exit,
    preset_option,
    resolve_fixed_params,
    verbose_option,
)


def outcome_table(outcome: ItemOutcome) -> Table:
    """Rich table describing one finished conversion."""
    table = Table(title="📊 Conversion Result", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Output", str(outcome.output_path))
    table.add_row(
        "Size",
        f"{format_bytes(outcome.bytes_before)} → {format_bytes(outcome.bytes_after)}",
    )
    table.add_row("Compression", f"{outcome.compression_ratio * 100:.1f}%")
    table.add_row(
        "Parameters",
        f"quality={outcome.params.quality} effort={outcome.params.effort} "
        f"lossless={outcome.params.lossless}",
    )
    if outcome.optimization is not None:
        table.add_row("Strategy", outcome.optimization.strategy)
        table.add_row("Rationale", outcome.optimization.rationale)

    metrics = outcome.metrics
    if metrics is not None:
        if metrics.is_valid:
            table.add_row("PSNR", format_psnr(metrics.psnr))
            table.add_row("SSIM", str(metrics.ssim))
            table.add_row("Score", f"{metrics.quality_score}/100")
            table.add_row("Grade", metrics.grade.value.upper())
        else:
            table.add_row("Quality", f"[red]{metrics.metadata.get('error', 'error')}[/red]")

    if outcome.criteria is not None:
        status = "[green]passed[/green]" if outcome.criteria.passed else (
            f"[yellow]failed: {', '.join(sorted(outcome.criteria.failed_checks))}[/yellow]"
        )
        table.add_row("Criteria", status)

    table.add_row("Time", f"{outcome.processing_ms}ms")
    return table


@click.command()
@click.argument(
    "input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output WebP path (default: <name>.webp beside the input)",
)
@click.option(
    "--strategy",
    "-s",
    type=click.Choice([s.value for s in Strategy]),
    default=Strategy.ADAPTIVE.value,
    show_default=True,
    help="Optimizer strategy",
)
@preset_option
@click.option("--quality", "-q", type=int, help="Fixed WebP quality (30-100)")
@click.option("--effort", "-e", type=int, help="Fixed encoder effort (0-6)")
@click.option("--lossless", is_flag=True, help="Encode losslessly")
@click.option(
    "--skip-quality", is_flag=True, help="Do not measure quality after encoding"
)
@click.option(
    "--structural-ssim",
    is_flag=True,
    help="Compute true SSIM instead of the PSNR-based estimate",
)
@config_option
@verbose_option
def convert(
    input_file: Path,
    output: Path | None,
    strategy: str,
    preset: str | None,
    quality: int | None,
    effort: int | None,
    lossless: bool,
    skip_quality: bool,
    structural_ssim: bool,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """Convert a single GIF to WebP.

    INPUT_FILE: Path to the GIF to convert
    """
    configure_logging(verbose)
    config = load_config_or_exit(config_path)
    params = resolve_fixed_params(preset, quality, effort, lossless)

    try:
        display_common_header("WebpLab Conversion")
        display_path_info("Input", input_file, "📄")

        job = ConversionJob(
            codec=PillowWebPCodec(config.codec),
            strategy=strategy,
            params=params,
            optimizer_config=config.optimizer,
            criteria=config.criteria,
            batch_config=config.batch,
            measure_quality=not skip_quality,
            estimator=StructuralSSIMEstimator() if structural_ssim else None,
        )
        outcome = job.convert(input_file, output)

        Console().print(outcome_table(outcome))
        click.echo("✅ Conversion complete!")

    except KeyboardInterrupt:
        handle_keyboard_interrupt("Conversion")
    except Exception as e:
        handle_generic_error("Conversion", e)
