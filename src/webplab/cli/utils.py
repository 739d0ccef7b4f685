"""Shared utilities for CLI commands."""

import sys
from pathlib import Path

import click

from ..config import WEBP_PRESETS, WebpLabConfig, load_config
from ..error_handling import WebpLabError
from ..io import setup_logging
from ..optimizer import EncodeParameters


def handle_generic_error(command_name: str, error: Exception) -> None:
    """Handle generic command errors with consistent formatting."""
    click.echo(f"❌ {command_name} failed: {error}", err=True)
    sys.exit(1)


def handle_keyboard_interrupt(command_name: str) -> None:
    """Handle keyboard interrupt with consistent formatting."""
    click.echo(f"\n⏹️  {command_name} interrupted by user", err=True)
    sys.exit(1)


def load_config_or_exit(config_path: Path | None) -> WebpLabConfig:
    """Load the YAML config, exiting with a message if it is invalid."""
    try:
        return load_config(config_path)
    except WebpLabError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)


def configure_logging(verbose: bool, log_dir: Path | None = None) -> None:
    setup_logging(log_dir, "DEBUG" if verbose else "WARNING")


def resolve_fixed_params(
    preset: str | None, quality: int | None, effort: int | None, lossless: bool
) -> EncodeParameters | None:
    """Encode parameters from ``--preset``/``--quality``/``--effort``/``--lossless``.

    Returns None when none of them is given, leaving the choice to the
    optimizer.
    """
    if preset is None and quality is None and effort is None and not lossless:
        return None

    base = dict(WEBP_PRESETS[preset]) if preset else dict(WEBP_PRESETS["balanced"])
    if quality is not None:
        base["quality"] = quality
    if effort is not None:
        base["effort"] = effort
    if lossless:
        base.update({"quality": 100, "lossless": True})

    try:
        return EncodeParameters(**base)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def display_common_header(title: str) -> None:
    """Display a common header for CLI commands."""
    click.echo(f"🖼️  {title}")


def display_path_info(label: str, path: Path, emoji: str = "📁") -> None:
    """Display path information with consistent formatting."""
    click.echo(f"{emoji} {label}: {path}")


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file",
)

verbose_option = click.option(
    "--verbose", "-v", is_flag=True, help="Show debug logging"
)

preset_option = click.option(
    "--preset",
    type=click.Choice(sorted(WEBP_PRESETS)),
    help="Use a named encode preset instead of the optimizer",
)
