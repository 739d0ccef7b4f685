"""Configuration settings for WebpLab."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .error_handling import ConfigurationError

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_INPUT_BYTES = 100 * MIB

# Hard limits of the WebP encoder parameter space
QUALITY_FLOOR = 30
QUALITY_CEILING = 100
EFFORT_MIN = 0
EFFORT_MAX = 6


@dataclass
class OptimizerConfig:
    """Defaults for encode-parameter prediction."""

    # Target size reduction (0.62 = output is 38% of the input)
    target_compression_ratio: float = 0.62

    # Lowest acceptable predicted PSNR (dB)
    min_psnr: float = 35.0

    # Quality search bounds for lossy encodes
    max_quality: int = 95
    min_quality: int = 45

    # Encoder effort (0 = fastest, 6 = smallest output)
    max_effort: int = 6

    # Allow the quality strategy to fall back to lossless for small inputs
    allow_lossless: bool = False

    def __post_init__(self) -> None:
        if not (QUALITY_FLOOR <= self.min_quality <= self.max_quality <= QUALITY_CEILING):
            raise ValueError(
                f"Quality bounds must satisfy {QUALITY_FLOOR} <= min_quality <= max_quality "
                f"<= {QUALITY_CEILING}, got min_quality={self.min_quality}, "
                f"max_quality={self.max_quality}"
            )

        if not (EFFORT_MIN <= self.max_effort <= EFFORT_MAX):
            raise ValueError(
                f"max_effort must be between {EFFORT_MIN} and {EFFORT_MAX}, got {self.max_effort}"
            )

        if not (0.0 < self.target_compression_ratio < 1.0):
            raise ValueError(
                f"target_compression_ratio must be between 0 and 1, got {self.target_compression_ratio}"
            )

        if self.min_psnr <= 0:
            raise ValueError(f"min_psnr must be positive, got {self.min_psnr}")


@dataclass
class QualityCriteria:
    """Acceptance thresholds applied to a measured conversion."""

    min_psnr: float = 35.0
    min_score: float = 75.0

    # Accepted band for the achieved size reduction
    min_ratio: float = 0.60
    max_ratio: float = 0.64

    def __post_init__(self) -> None:
        if self.min_ratio > self.max_ratio:
            raise ValueError(
                f"min_ratio must be <= max_ratio, got min_ratio={self.min_ratio}, "
                f"max_ratio={self.max_ratio}"
            )

        if not (0.0 <= self.min_score <= 100.0):
            raise ValueError(f"min_score must be between 0 and 100, got {self.min_score}")


@dataclass
class BatchConfig:
    """Configuration for batch conversion runs with environment variable overrides."""

    # Maximum in-flight items
    # Override with: WEBPLAB_CONCURRENCY
    concurrency: int = DEFAULT_CONCURRENCY

    # Stop admitting new items after the first failure
    stop_on_error: bool = False

    # Descend into sub-directories when scanning an input directory
    recursive: bool = True

    # File extensions picked up by directory scans
    extensions: tuple[str, ...] = (".gif",)

    # Inputs above this size are rejected before encoding
    # Override with: WEBPLAB_MAX_INPUT_MB
    max_input_bytes: int = DEFAULT_MAX_INPUT_BYTES

    def __post_init__(self) -> None:
        # Environment overrides only replace values left at their defaults
        env_concurrency = os.getenv("WEBPLAB_CONCURRENCY")
        if env_concurrency and self.concurrency == DEFAULT_CONCURRENCY:
            try:
                self.concurrency = int(env_concurrency)
            except ValueError:
                logger.warning(f"Invalid WEBPLAB_CONCURRENCY: {env_concurrency}")

        env_max_mb = os.getenv("WEBPLAB_MAX_INPUT_MB")
        if env_max_mb and self.max_input_bytes == DEFAULT_MAX_INPUT_BYTES:
            try:
                self.max_input_bytes = int(float(env_max_mb) * MIB)
            except ValueError:
                logger.warning(f"Invalid WEBPLAB_MAX_INPUT_MB: {env_max_mb}")

        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")

        if self.max_input_bytes <= 0:
            raise ValueError(
                f"max_input_bytes must be positive, got {self.max_input_bytes}"
            )

        self.extensions = tuple(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in self.extensions
        )


@dataclass
class CodecConfig:
    """Configuration for the Pillow-backed WebP codec."""

    # Animation loop count written to the WebP container (0 = forever)
    loop: int = 0

    # Encode every frame of animated inputs
    animated: bool = True

    # Resampling filter used when decoding to a target size
    resample: str = "lanczos"

    def __post_init__(self) -> None:
        valid_filters = {"nearest", "bilinear", "bicubic", "lanczos"}
        if self.resample not in valid_filters:
            raise ValueError(f"Invalid resample filter: {self.resample}")

        if self.loop < 0:
            raise ValueError(f"loop must be non-negative, got {self.loop}")


# Named encode presets (quality, effort, lossless)
WEBP_PRESETS: dict[str, dict[str, Any]] = {
    "high_quality": {"quality": 90, "effort": 6, "lossless": False},
    "balanced": {"quality": 75, "effort": 6, "lossless": False},
    "high_compression": {"quality": 60, "effort": 6, "lossless": False},
    "ultra_compression": {"quality": 45, "effort": 6, "lossless": False},
    "lossless": {"quality": 100, "effort": 6, "lossless": True},
}


@dataclass
class WebpLabConfig:
    """All configuration sections bundled together."""

    optimizer: OptimizerConfig
    criteria: QualityCriteria
    batch: BatchConfig
    codec: CodecConfig


_SECTION_TYPES: dict[str, type] = {
    "optimizer": OptimizerConfig,
    "criteria": QualityCriteria,
    "batch": BatchConfig,
    "codec": CodecConfig,
}


def _build_section(name: str, values: dict[str, Any] | None) -> Any:
    section_type = _SECTION_TYPES[name]
    if not values:
        return section_type()

    known = {f.name for f in fields(section_type)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(
            f"Unknown keys in '{name}' section: {', '.join(sorted(unknown))}"
        )

    if name == "batch" and "extensions" in values:
        values = {**values, "extensions": tuple(values["extensions"])}

    return section_type(**values)


def load_config(config_path: Path | None = None) -> WebpLabConfig:
    """Load configuration from a YAML file or return defaults.

    The file may contain any of the ``optimizer``, ``criteria``, ``batch`` and
    ``codec`` sections. A missing file falls back to defaults.

    Raises:
        ConfigurationError: If the file cannot be parsed or holds invalid values
    """
    data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
        else:
            logger.info(f"Loading config from: {config_path}")
            try:
                with open(config_path, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Invalid YAML in {config_path}", cause=e
                ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {config_path}")

    unknown_sections = set(data) - set(_SECTION_TYPES)
    if unknown_sections:
        raise ConfigurationError(
            f"Unknown config sections: {', '.join(sorted(unknown_sections))}"
        )

    try:
        return WebpLabConfig(
            **{name: _build_section(name, data.get(name)) for name in _SECTION_TYPES}
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e


def with_overrides(config: Any, **overrides: Any) -> Any:
    """Return a copy of a config section with non-None overrides applied."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    return replace(config, **changes) if changes else config


# Default configuration instances
DEFAULT_OPTIMIZER_CONFIG = OptimizerConfig()
DEFAULT_QUALITY_CRITERIA = QualityCriteria()
DEFAULT_BATCH_CONFIG = BatchConfig()
DEFAULT_CODEC_CONFIG = CodecConfig()
