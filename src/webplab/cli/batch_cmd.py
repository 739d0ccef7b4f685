"""Batch conversion command for directories of GIFs."""

from pathlib import Path

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from ..batch import BatchProcessor, ProgressEvent, TaskStatus
from ..codec import PillowWebPCodec
from ..comparison import StructuralSSIMEstimator
from ..config import with_overrides
from ..optimizer import Strategy
from ..pipeline import ConversionJob
from ..report import format_batch_summary, write_batch_csv, write_batch_report
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


@click.command()
@click.argument(
    "input_dir",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for WebP outputs (default: beside each input)",
)
@click.option(
    "--concurrency",
    "-j",
    type=click.IntRange(min=1),
    help="Maximum conversions in flight (default: from config, 4)",
)
@click.option(
    "--stop-on-error/--keep-going",
    default=None,
    help="Stop starting new conversions after the first failure (default: keep going)",
)
@click.option(
    "--recursive/--no-recursive",
    default=None,
    help="Scan sub-directories (default: recursive)",
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
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a JSON report of the run",
)
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a CSV row per file",
)
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Also write a timestamped log file here",
)
@config_option
@verbose_option
def batch(
    input_dir: Path,
    output_dir: Path | None,
    concurrency: int | None,
    stop_on_error: bool | None,
    recursive: bool | None,
    strategy: str,
    preset: str | None,
    quality: int | None,
    effort: int | None,
    lossless: bool,
    skip_quality: bool,
    structural_ssim: bool,
    report_path: Path | None,
    csv_path: Path | None,
    log_dir: Path | None,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """Convert every GIF under a directory to WebP.

    INPUT_DIR: Directory containing GIF files
    """
    configure_logging(verbose, log_dir)
    config = load_config_or_exit(config_path)
    params = resolve_fixed_params(preset, quality, effort, lossless)
    batch_config = with_overrides(config.batch, stop_on_error=stop_on_error, recursive=recursive)
    # Passed per run so WEBPLAB_CONCURRENCY cannot override the flag
    concurrency = concurrency or batch_config.concurrency

    try:
        display_common_header("WebpLab Batch Conversion")
        display_path_info("Input directory", input_dir)
        if output_dir:
            display_path_info("Output directory", output_dir)
        click.echo(f"👥 Concurrency: {concurrency}")

        job = ConversionJob(
            output_dir=output_dir,
            codec=PillowWebPCodec(config.codec),
            strategy=strategy,
            params=params,
            optimizer_config=config.optimizer,
            criteria=config.criteria,
            batch_config=batch_config,
            measure_quality=not skip_quality,
            estimator=StructuralSSIMEstimator() if structural_ssim else None,
            source_root=input_dir,
        )
        processor = BatchProcessor(job, batch_config)

        files = processor.find_input_files(input_dir)
        if not files:
            click.echo("⚠️  No GIF files found")
            return

        console = Console()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            bar = progress.add_task("Converting...", total=len(files))

            def on_progress(event: ProgressEvent) -> None:
                name = Path(event.item_id).name
                if event.status is TaskStatus.FAILED:
                    progress.console.print(f"[red]❌ {name}: {event.error}[/red]")
                progress.update(
                    bar, completed=event.completed_count, description=f"Converted {name}"
                )

            processor.add_progress_observer(on_progress)
            run = processor.process_files(files, concurrency=concurrency)

        click.echo(format_batch_summary(run))

        if report_path:
            write_batch_report(run, report_path)
            display_path_info("Report saved to", report_path, "📝")
        if csv_path:
            write_batch_csv(run, csv_path)
            display_path_info("CSV saved to", csv_path, "📝")

        memory = processor.get_memory_usage()
        click.echo(f"🧠 Memory: rss {memory['rss']}, vms {memory['vms']}")

        if run.failed_count:
            raise SystemExit(1)

    except KeyboardInterrupt:
        handle_keyboard_interrupt("Batch conversion")
    except SystemExit:
        raise
    except Exception as e:
        handle_generic_error("Batch conversion", e)
