"""Heuristic WebP encode-parameter prediction.

Given :class:`~webplab.meta.ImageAttributes`, predicts encode parameters
(quality, effort, lossless) and the expected outcome (size, size reduction,
PSNR) under one of three strategies, or picks the strategy itself from the
attributes (``adaptive``).

Everything here is pure and deterministic. The prediction curves (ratio,
size and PSNR as functions of quality) are empirical fits carried over for
compatibility with earlier results. They have not been calibrated against
measured encodes and should not be read as ground truth.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .config import (
    DEFAULT_OPTIMIZER_CONFIG,
    EFFORT_MAX,
    EFFORT_MIN,
    QUALITY_CEILING,
    QUALITY_FLOOR,
    WEBP_PRESETS,
    OptimizerConfig,
)
from .error_handling import AttributeAnalysisError, log_info_with_context
from .meta import ImageAttributes, analyze_image

logger = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * 1024

# Pixel-volume (width * height * frames) tiers for the base quality
BASE_QUALITY_TIERS: tuple[tuple[int, int], ...] = (
    (50_000, 85),
    (200_000, 80),
    (800_000, 75),
    (2_000_000, 70),
)
BASE_QUALITY_FLOOR = 65

# Compression strategy adjustments
HIGH_RESOLUTION_AREA = 1_000_000
HIGH_RESOLUTION_PENALTY = 10
MANY_FRAMES = 20
MANY_FRAMES_PENALTY = 5

# Quality strategy file-size tiers
QUALITY_LARGE_FILE = 5 * MIB
QUALITY_MEDIUM_FILE = 1 * MIB
LOSSLESS_MAX_FILE = 2 * MIB
LOSSLESS_PREDICTED_RATIO = 0.3


class Strategy(str, Enum):
    """Optimization strategies."""

    COMPRESSION = "compression"
    QUALITY = "quality"
    BALANCED = "balanced"
    ADAPTIVE = "adaptive"


@dataclass(frozen=True)
class EncodeParameters:
    """WebP encoder settings."""

    quality: int = 75
    effort: int = 6
    lossless: bool = False

    def __post_init__(self) -> None:
        if not (QUALITY_FLOOR <= self.quality <= QUALITY_CEILING):
            raise ValueError(
                f"quality must be between {QUALITY_FLOOR} and {QUALITY_CEILING}, got {self.quality}"
            )
        if not (EFFORT_MIN <= self.effort <= EFFORT_MAX):
            raise ValueError(
                f"effort must be between {EFFORT_MIN} and {EFFORT_MAX}, got {self.effort}"
            )

    @classmethod
    def from_preset(cls, name: str) -> EncodeParameters:
        try:
            return cls(**WEBP_PRESETS[name])
        except KeyError:
            raise ValueError(
                f"Unknown preset '{name}'. Available: {', '.join(WEBP_PRESETS)}"
            ) from None


@dataclass(frozen=True)
class OptimizationResult:
    """Predicted parameters and outcome for one image."""

    params: EncodeParameters
    predicted_size: int
    predicted_compression_ratio: float
    predicted_psnr: float
    strategy: str
    rationale: str
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def quality(self) -> int:
        return self.params.quality

    @property
    def effort(self) -> int:
        return self.params.effort

    @property
    def lossless(self) -> bool:
        return self.params.lossless

    def to_dict(self) -> dict[str, Any]:
        return {
            "quality": self.quality,
            "effort": self.effort,
            "lossless": self.lossless,
            "predicted_size": self.predicted_size,
            "predicted_compression_ratio": self.predicted_compression_ratio,
            "predicted_psnr": self.predicted_psnr,
            "strategy": self.strategy,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class StrategyRule:
    """``strategy`` applies when ``predicate`` holds; ``reason`` explains why."""

    predicate: Callable[[ImageAttributes], bool]
    strategy: Strategy
    reason: str


# Evaluated top to bottom; the first match picks the strategy
STRATEGY_RULES: tuple[StrategyRule, ...] = (
    StrategyRule(lambda a: a.file_size > 10 * MIB, Strategy.COMPRESSION, "large file (>10MB)"),
    StrategyRule(lambda a: a.file_size < 500 * KIB, Strategy.QUALITY, "small file (<500KB)"),
    StrategyRule(lambda a: a.area > 2_000_000, Strategy.COMPRESSION, "high resolution (>2MP)"),
    StrategyRule(lambda a: a.frames > 50, Strategy.COMPRESSION, "many frames (>50)"),
)

DEFAULT_STRATEGY_REASON = "default balanced strategy"


@dataclass(frozen=True)
class StrategySelection:
    strategy: Strategy
    reasons: tuple[str, ...]

    @property
    def rationale(self) -> str:
        return ", ".join(self.reasons) if self.reasons else DEFAULT_STRATEGY_REASON


def _clamp_quality(quality: int, options: OptimizerConfig) -> int:
    return max(options.min_quality, min(options.max_quality, quality))


def _predicted_size(file_size: int, ratio: float) -> int:
    return math.floor(file_size * (1 - ratio))


def _quality_psnr(quality: int, options: OptimizerConfig) -> float:
    return max(options.min_psnr, 30 + quality / 100 * 25)


def predict_base_quality(width: int, height: int, frames: int) -> int:
    """Base quality (85 down to 65) from total pixel volume."""
    total_pixels = width * height * frames
    for upper_bound, quality in BASE_QUALITY_TIERS:
        if total_pixels < upper_bound:
            return quality
    return BASE_QUALITY_FLOOR


def optimize_for_compression(
    attributes: ImageAttributes, options: OptimizerConfig | None = None
) -> OptimizationResult:
    """Favor small output: quality derived from pixel volume and target ratio."""
    opts = options or DEFAULT_OPTIMIZER_CONFIG

    base_quality = predict_base_quality(attributes.width, attributes.height, attributes.frames)
    target_adjustment = math.floor((1 - opts.target_compression_ratio) * 30)
    size_adjustment = -HIGH_RESOLUTION_PENALTY if attributes.area > HIGH_RESOLUTION_AREA else 0
    frame_adjustment = -MANY_FRAMES_PENALTY if attributes.frames > MANY_FRAMES else 0

    quality = _clamp_quality(
        base_quality - target_adjustment + size_adjustment + frame_adjustment, opts
    )

    ratio = min(0.8, 0.3 + (100 - quality) / 100 * 0.4)
    predicted_psnr = max(30.0, 25 + quality / 100 * 20)

    adjustments = [f"base quality {base_quality}", f"target adjustment -{target_adjustment}"]
    if size_adjustment:
        adjustments.append(f"high resolution {size_adjustment}")
    if frame_adjustment:
        adjustments.append(f"many frames {frame_adjustment}")

    return OptimizationResult(
        params=EncodeParameters(quality=quality, effort=opts.max_effort, lossless=False),
        predicted_size=_predicted_size(attributes.file_size, ratio),
        predicted_compression_ratio=ratio,
        predicted_psnr=predicted_psnr,
        strategy=Strategy.COMPRESSION.value,
        rationale="compression-focused: " + ", ".join(adjustments),
        metadata={
            "optimization_strategy": "compression-focused",
            "quality_adjustments": {
                "base_quality": base_quality,
                "target_adjustment": -target_adjustment,
                "size_adjustment": size_adjustment,
                "frame_adjustment": frame_adjustment,
            },
        },
    )


def optimize_for_quality(
    attributes: ImageAttributes, options: OptimizerConfig | None = None
) -> OptimizationResult:
    """Favor fidelity: high quality by file-size tier, lossless for small inputs if allowed."""
    opts = options or DEFAULT_OPTIMIZER_CONFIG

    if attributes.file_size > QUALITY_LARGE_FILE:
        base_quality = 80
    elif attributes.file_size > QUALITY_MEDIUM_FILE:
        base_quality = 85
    else:
        base_quality = 90

    if opts.allow_lossless and attributes.file_size < LOSSLESS_MAX_FILE:
        return OptimizationResult(
            params=EncodeParameters(quality=100, effort=opts.max_effort, lossless=True),
            predicted_size=_predicted_size(attributes.file_size, LOSSLESS_PREDICTED_RATIO),
            predicted_compression_ratio=LOSSLESS_PREDICTED_RATIO,
            predicted_psnr=math.inf,
            strategy=Strategy.QUALITY.value,
            rationale="quality-focused: lossless (file under 2MB)",
            metadata={
                "optimization_strategy": "quality-focused-lossless",
                "base_quality": base_quality,
            },
        )

    quality = _clamp_quality(base_quality, opts)
    ratio = min(0.6, 0.2 + (100 - quality) / 100 * 0.3)

    return OptimizationResult(
        params=EncodeParameters(quality=quality, effort=opts.max_effort, lossless=False),
        predicted_size=_predicted_size(attributes.file_size, ratio),
        predicted_compression_ratio=ratio,
        predicted_psnr=_quality_psnr(quality, opts),
        strategy=Strategy.QUALITY.value,
        rationale=f"quality-focused: base quality {base_quality} by file size",
        metadata={"optimization_strategy": "quality-focused", "base_quality": base_quality},
    )


def optimize_balanced(
    attributes: ImageAttributes, options: OptimizerConfig | None = None
) -> OptimizationResult:
    """Midpoint of the compression and quality strategies."""
    opts = options or DEFAULT_OPTIMIZER_CONFIG

    compression_result = optimize_for_compression(attributes, opts)
    quality_result = optimize_for_quality(attributes, opts)

    quality = _clamp_quality(
        math.floor((compression_result.quality + quality_result.quality) / 2), opts
    )
    ratio = (
        compression_result.predicted_compression_ratio
        + quality_result.predicted_compression_ratio
    ) / 2

    return OptimizationResult(
        params=EncodeParameters(quality=quality, effort=opts.max_effort, lossless=False),
        predicted_size=_predicted_size(attributes.file_size, ratio),
        predicted_compression_ratio=ratio,
        predicted_psnr=_quality_psnr(quality, opts),
        strategy=Strategy.BALANCED.value,
        rationale=(
            f"balanced: mean of compression ({compression_result.quality}) "
            f"and quality ({quality_result.quality})"
        ),
        metadata={
            "optimization_strategy": "balanced",
            "compression_result": compression_result.to_dict(),
            "quality_result": quality_result.to_dict(),
        },
    )


def select_strategy(
    attributes: ImageAttributes,
    rules: tuple[StrategyRule, ...] = STRATEGY_RULES,
) -> StrategySelection:
    """Pick a strategy from the first matching rule (``balanced`` if none).

    Every matching rule contributes its reason, not just the winning one.
    """
    matched = [rule for rule in rules if rule.predicate(attributes)]
    strategy = matched[0].strategy if matched else Strategy.BALANCED
    return StrategySelection(
        strategy=strategy, reasons=tuple(rule.reason for rule in matched)
    )


_STRATEGY_FUNCTIONS: dict[Strategy, Callable[[ImageAttributes, OptimizerConfig | None], OptimizationResult]] = {
    Strategy.COMPRESSION: optimize_for_compression,
    Strategy.QUALITY: optimize_for_quality,
    Strategy.BALANCED: optimize_balanced,
}


def optimize_adaptive(
    attributes: ImageAttributes, options: OptimizerConfig | None = None
) -> OptimizationResult:
    """Choose a strategy from the image attributes and apply it."""
    selection = select_strategy(attributes)
    result = _STRATEGY_FUNCTIONS[selection.strategy](attributes, options)

    logger.debug(
        f"Adaptive optimizer chose '{selection.strategy.value}': {selection.rationale}"
    )

    return OptimizationResult(
        params=result.params,
        predicted_size=result.predicted_size,
        predicted_compression_ratio=result.predicted_compression_ratio,
        predicted_psnr=result.predicted_psnr,
        strategy=selection.strategy.value,
        rationale=selection.rationale,
        metadata={
            **result.metadata,
            "selected_strategy": selection.strategy.value,
            "selection_reason": selection.rationale,
            "strategy_detail": result.rationale,
        },
    )


def optimize(
    attributes: ImageAttributes,
    strategy: Strategy | str = Strategy.ADAPTIVE,
    options: OptimizerConfig | None = None,
) -> OptimizationResult:
    """Run a strategy by name."""
    strategy = Strategy(strategy)
    if strategy is Strategy.ADAPTIVE:
        return optimize_adaptive(attributes, options)
    return _STRATEGY_FUNCTIONS[strategy](attributes, options)


def optimize_file(
    input_path: Path,
    strategy: Strategy | str = Strategy.ADAPTIVE,
    options: OptimizerConfig | None = None,
    probe: Callable[[Path], ImageAttributes] = analyze_image,
) -> OptimizationResult:
    """Probe ``input_path`` and optimize from its attributes.

    Raises:
        AttributeAnalysisError: If the probe fails (not retried)
    """
    try:
        attributes = probe(input_path)
    except AttributeAnalysisError:
        raise
    except Exception as e:
        raise AttributeAnalysisError(
            f"Failed to analyze {input_path.name}", cause=e
        ) from e

    result = optimize(attributes, strategy, options)
    log_info_with_context(
        f"Optimized {input_path.name}: {result.strategy} strategy",
        context={
            "quality": result.quality,
            "effort": result.effort,
            "lossless": result.lossless,
            "reason": result.rationale,
        },
        logger=logger,
    )
    return OptimizationResult(
        params=result.params,
        predicted_size=result.predicted_size,
        predicted_compression_ratio=result.predicted_compression_ratio,
        predicted_psnr=result.predicted_psnr,
        strategy=result.strategy,
        rationale=result.rationale,
        metadata={**result.metadata, "input_analysis": attributes},
    )


def validate_optimization(
    result: OptimizationResult, options: OptimizerConfig | None = None
) -> bool:
    """Sanity-check a prediction against the configured targets.

    Fails when the predicted PSNR is below ``min_psnr``. A predicted ratio
    under 80% of the target only logs a warning.
    """
    opts = options or DEFAULT_OPTIMIZER_CONFIG

    if result.predicted_psnr < opts.min_psnr:
        logger.warning(
            f"⚠️  Predicted PSNR below minimum ({opts.min_psnr}dB): "
            f"{result.predicted_psnr:.2f}dB"
        )
        return False

    if result.predicted_compression_ratio < opts.target_compression_ratio * 0.8:
        logger.warning(
            f"⚠️  Predicted compression ratio below 80% of target: "
            f"{result.predicted_compression_ratio * 100:.1f}%"
        )

    return True
