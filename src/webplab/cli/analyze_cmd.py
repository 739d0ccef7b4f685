"""Quality comparison command for original/WebP pairs."""

import json
from pathlib import Path

import click

from ..codec import PillowWebPCodec
from ..comparison import StructuralSSIMEstimator
from ..io import json_safe
from ..quality import batch_quality_analysis, validate_quality_criteria
from ..report import generate_quality_report, summarize_quality
from .utils import (
    config_option,
    configure_logging,
    handle_generic_error,
    handle_keyboard_interrupt,
    load_config_or_exit,
    verbose_option,
)


@click.command()
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--structural-ssim",
    is_flag=True,
    help="Compute true SSIM instead of the PSNR-based estimate",
)
@click.option(
    "--check", is_flag=True, help="Exit with status 1 if any pair misses the quality criteria"
)
@click.option("--json", "output_json", is_flag=True, help="Output the summary as JSON")
@config_option
@verbose_option
def analyze(
    files: tuple[Path, ...],
    structural_ssim: bool,
    check: bool,
    output_json: bool,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """Compare originals with their re-encoded versions.

    FILES: ORIGINAL COMPRESSED pairs, e.g. ``a.gif a.webp b.gif b.webp``
    """
    if len(files) % 2:
        raise click.UsageError("FILES must be ORIGINAL COMPRESSED pairs")

    configure_logging(verbose)
    config = load_config_or_exit(config_path)

    try:
        pairs = list(zip(files[::2], files[1::2]))
        results = batch_quality_analysis(
            pairs,
            codec=PillowWebPCodec(config.codec),
            estimator=StructuralSSIMEstimator() if structural_ssim else None,
        )
        subject = results[0] if len(results) == 1 else results

        if output_json:
            click.echo(json.dumps(json_safe(summarize_quality(subject)), indent=2))
        else:
            click.echo(generate_quality_report(subject))

        if check:
            failed = [
                original.name
                for (original, _), metrics in zip(pairs, results)
                if not (metrics.is_valid and validate_quality_criteria(metrics, config.criteria))
            ]
            if failed:
                click.echo(f"❌ Quality criteria not met: {', '.join(failed)}", err=True)
                raise SystemExit(1)
            click.echo("✅ All pairs meet the quality criteria")

    except KeyboardInterrupt:
        handle_keyboard_interrupt("Analysis")
    except SystemExit:
        raise
    except Exception as e:
        handle_generic_error("Analysis", e)
