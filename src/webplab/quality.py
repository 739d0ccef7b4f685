"""Composite quality scoring, grading and acceptance checks.

Turns the raw fidelity numbers from :mod:`webplab.comparison` plus the
achieved size reduction into a 0-100 score and a discrete grade, and checks
a result against caller-supplied acceptance criteria.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .comparison import SSIMEstimator, compare_pixels, format_psnr
from .config import DEFAULT_QUALITY_CRITERIA, QualityCriteria
from .error_handling import (
    WebpLabError,
    clean_error_message,
    error_context,
    log_warning_with_context,
)

if TYPE_CHECKING:
    from .codec import ImageCodec

logger = logging.getLogger(__name__)


class QualityGrade(str, Enum):
    """Discrete quality classification."""

    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    UNACCEPTABLE = "unacceptable"
    ERROR = "error"


@dataclass(frozen=True)
class QualityThreshold:
    """Minimum PSNR (dB) and composite score required for a grade."""

    psnr: float
    ssim: float
    score: float


# Ordered from strictest to most lenient
QUALITY_THRESHOLDS: dict[QualityGrade, QualityThreshold] = {
    QualityGrade.EXCELLENT: QualityThreshold(psnr=40.0, ssim=0.95, score=90.0),
    QualityGrade.GOOD: QualityThreshold(psnr=35.0, ssim=0.90, score=75.0),
    QualityGrade.ACCEPTABLE: QualityThreshold(psnr=30.0, ssim=0.85, score=60.0),
    QualityGrade.POOR: QualityThreshold(psnr=25.0, ssim=0.80, score=40.0),
    QualityGrade.UNACCEPTABLE: QualityThreshold(psnr=20.0, ssim=0.70, score=20.0),
}

# Composite score weights
PSNR_WEIGHT = 0.6
SSIM_WEIGHT = 0.3
COMPRESSION_WEIGHT = 0.1
COMPRESSION_BONUS_CAP = 10.0
COMPRESSION_BONUS_SCALE = 15.0


@dataclass(frozen=True)
class QualityMetrics:
    """Outcome of one original/re-encoded comparison."""

    mse: float
    psnr: float
    ssim: float
    compression_ratio: float
    quality_score: float
    grade: QualityGrade
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_valid(self) -> bool:
        """False for the ``error`` sentinel produced by failed comparisons."""
        return self.grade is not QualityGrade.ERROR

    @classmethod
    def error(cls, message: str, **metadata: Any) -> QualityMetrics:
        """Sentinel for a comparison that could not be completed."""
        return cls(
            mse=math.inf,
            psnr=0.0,
            ssim=0.0,
            compression_ratio=0.0,
            quality_score=0.0,
            grade=QualityGrade.ERROR,
            metadata={**metadata, "error": clean_error_message(message)},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mse": self.mse,
            "psnr": self.psnr,
            "ssim": self.ssim,
            "compression_ratio": self.compression_ratio,
            "quality_score": self.quality_score,
            "grade": self.grade.value,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ValidationFailure:
    """One unmet acceptance check. Reported, never raised."""

    check: str
    message: str
    expected: Any = None
    actual: Any = None


@dataclass(frozen=True)
class CriteriaResult:
    """Result of :func:`validate_quality_criteria`."""

    passed: bool
    checks: dict[str, bool]
    failures: tuple[ValidationFailure, ...] = ()

    @property
    def failed_checks(self) -> frozenset[str]:
        return frozenset(name for name, ok in self.checks.items() if not ok)

    def __bool__(self) -> bool:
        return self.passed


def _js_round(value: float) -> int:
    # Half-up rounding, so 74.5 scores 75 rather than 74
    return int(math.floor(value + 0.5))


def _psnr_score(psnr: float) -> float:
    excellent = QUALITY_THRESHOLDS[QualityGrade.EXCELLENT].psnr
    good = QUALITY_THRESHOLDS[QualityGrade.GOOD].psnr
    acceptable = QUALITY_THRESHOLDS[QualityGrade.ACCEPTABLE].psnr

    if psnr >= excellent:
        return 100.0
    if psnr >= good:
        return 75.0 + (psnr - good) / (excellent - good) * 25.0
    if psnr >= acceptable:
        return 50.0 + (psnr - acceptable) / (good - acceptable) * 25.0
    return max(0.0, psnr / acceptable * 50.0)


def calculate_quality_score(psnr: float, ssim: float, compression_ratio: float) -> int:
    """Composite 0-100 score.

    ``0.6 * psnr_score + 0.3 * ssim * 100 + 0.1 * clamp(ratio * 15, 0, 10)``, where
    ``psnr_score`` interpolates linearly between the grade PSNR boundaries
    (100 at or above the excellent boundary). The result is clamped to
    ``[0, 100]`` and rounded half-up.
    """
    psnr_component = _psnr_score(psnr)
    ssim_component = ssim * 100.0
    # Never negative: outputs larger than the input get no bonus
    compression_bonus = max(
        0.0, min(COMPRESSION_BONUS_CAP, compression_ratio * COMPRESSION_BONUS_SCALE)
    )

    total = (
        psnr_component * PSNR_WEIGHT
        + ssim_component * SSIM_WEIGHT
        + compression_bonus * COMPRESSION_WEIGHT
    )

    return _js_round(min(100.0, max(0.0, total)))


def get_quality_grade(psnr: float, ssim: float, quality_score: float) -> QualityGrade:
    """Highest grade whose PSNR *and* score thresholds are both met.

    Only excellent, good and acceptable need both. Below that the grade is
    poor when PSNR reaches the poor boundary and unacceptable otherwise.
    ``ssim`` is accepted for interface symmetry and does not affect the grade.
    """
    for grade in (QualityGrade.EXCELLENT, QualityGrade.GOOD, QualityGrade.ACCEPTABLE):
        threshold = QUALITY_THRESHOLDS[grade]
        if psnr >= threshold.psnr and quality_score >= threshold.score:
            return grade

    if psnr >= QUALITY_THRESHOLDS[QualityGrade.POOR].psnr:
        return QualityGrade.POOR
    return QualityGrade.UNACCEPTABLE


def build_quality_metrics(
    mse: float,
    psnr: float,
    ssim: float,
    compression_ratio: float,
    metadata: dict[str, Any] | None = None,
) -> QualityMetrics:
    """Score and grade raw numbers into a :class:`QualityMetrics`."""
    score = calculate_quality_score(psnr, ssim, compression_ratio)
    grade = get_quality_grade(psnr, ssim, score)
    return QualityMetrics(
        mse=mse,
        psnr=psnr,
        ssim=ssim,
        compression_ratio=compression_ratio,
        quality_score=score,
        grade=grade,
        metadata=metadata or {},
    )


def validate_quality_criteria(
    metrics: QualityMetrics,
    criteria: QualityCriteria | None = None,
) -> CriteriaResult:
    """Check a result against acceptance thresholds.

    The three checks (PSNR floor, score floor, ratio band) are independent;
    the result passes only if all of them do. Each miss is reported as a
    :class:`ValidationFailure` and logged as a warning.
    """
    criteria = criteria or DEFAULT_QUALITY_CRITERIA

    checks = {
        "psnr": metrics.psnr >= criteria.min_psnr,
        "quality_score": metrics.quality_score >= criteria.min_score,
        "compression_ratio": criteria.min_ratio
        <= metrics.compression_ratio
        <= criteria.max_ratio,
    }

    failures: list[ValidationFailure] = []
    if not checks["psnr"]:
        failures.append(
            ValidationFailure(
                check="psnr",
                message=f"PSNR {metrics.psnr}dB < {criteria.min_psnr}dB",
                expected=criteria.min_psnr,
                actual=metrics.psnr,
            )
        )
    if not checks["quality_score"]:
        failures.append(
            ValidationFailure(
                check="quality_score",
                message=f"Quality score {metrics.quality_score} < {criteria.min_score}",
                expected=criteria.min_score,
                actual=metrics.quality_score,
            )
        )
    if not checks["compression_ratio"]:
        failures.append(
            ValidationFailure(
                check="compression_ratio",
                message=(
                    f"Compression ratio {metrics.compression_ratio * 100:.1f}% outside "
                    f"{criteria.min_ratio * 100:.0f}-{criteria.max_ratio * 100:.0f}%"
                ),
                expected=(criteria.min_ratio, criteria.max_ratio),
                actual=metrics.compression_ratio,
            )
        )

    passed = not failures
    if not passed:
        log_warning_with_context(
            "Quality criteria not met",
            context={f.check: f.message for f in failures},
            logger=logger,
        )

    return CriteriaResult(passed=passed, checks=checks, failures=tuple(failures))


def compare_image_quality(
    original_path: Path,
    compressed_path: Path,
    codec: ImageCodec | None = None,
    estimator: SSIMEstimator | None = None,
) -> QualityMetrics:
    """Measure how faithfully ``compressed_path`` reproduces ``original_path``.

    Both files are decoded to the original's resolution (first frame, alpha
    removed) and compared pixel by pixel.

    Raises:
        DecodeError: If either image cannot be decoded
        WebpLabError: If the files cannot be read or compared
    """
    if codec is None:
        from .codec import PillowWebPCodec

        codec = PillowWebPCodec()

    with error_context(
        "compare image quality",
        context={"original": original_path.name, "compressed": compressed_path.name},
        logger=logger,
    ):
        original_size = original_path.stat().st_size
        compressed_size = compressed_path.stat().st_size
        if original_size == 0:
            raise WebpLabError(f"Original file is empty: {original_path}")

        compression_ratio = (original_size - compressed_size) / original_size

        original = codec.decode_to_raw_pixels(original_path)
        logger.info(f"🔍 Quality analysis started: {original.width}x{original.height}")
        compressed = codec.decode_to_raw_pixels(
            compressed_path, original.width, original.height
        )

        channels = min(original.channels, compressed.channels, 3)
        comparison = compare_pixels(
            original.pixels,
            compressed.pixels,
            channels=channels,
            width=original.width,
            height=original.height,
            estimator=estimator,
        )

    metadata = {
        "original_size": original_size,
        "compressed_size": compressed_size,
        "width": original.width,
        "height": original.height,
        "channels": channels,
        "original_format": original.format,
        "compressed_format": compressed_path.suffix.lstrip(".").lower(),
        "ssim_method": comparison.ssim_method,
        "analysis": {
            "pixel_count": original.width * original.height,
            "bytes_compared": comparison.samples_compared,
            "avg_pixel_difference": math.sqrt(comparison.mse),
            "size_savings": original_size - compressed_size,
        },
    }

    metrics = build_quality_metrics(
        comparison.mse, comparison.psnr, comparison.ssim, compression_ratio, metadata
    )

    logger.info(
        f"✅ Quality analysis complete: PSNR {format_psnr(metrics.psnr)}, "
        f"score {metrics.quality_score}, grade {metrics.grade.value}"
    )
    return metrics


def batch_quality_analysis(
    image_pairs: list[tuple[Path, Path]],
    codec: ImageCodec | None = None,
    estimator: SSIMEstimator | None = None,
) -> list[QualityMetrics]:
    """Compare many (original, compressed) pairs in order.

    A pair that fails yields the ``error`` sentinel instead of aborting the
    whole analysis, so every input has exactly one entry in the output.
    """
    results: list[QualityMetrics] = []
    total = len(image_pairs)

    logger.info(f"🔍 Batch quality analysis started: {total} files")

    for index, (original, compressed) in enumerate(image_pairs):
        names = {
            "batch_index": index,
            "original_file": original.name,
            "compressed_file": compressed.name,
        }
        logger.info(f"📊 Analyzing ({index + 1}/{total}): {original.name}")

        try:
            metrics = compare_image_quality(original, compressed, codec, estimator)
            results.append(
                QualityMetrics(
                    mse=metrics.mse,
                    psnr=metrics.psnr,
                    ssim=metrics.ssim,
                    compression_ratio=metrics.compression_ratio,
                    quality_score=metrics.quality_score,
                    grade=metrics.grade,
                    metadata={**metrics.metadata, **names},
                )
            )
        except WebpLabError as e:
            logger.error(f"❌ {original.name} analysis failed: {e}")
            results.append(QualityMetrics.error(str(e), **names))

    valid = [r for r in results if r.is_valid]
    if valid:
        logger.info(
            f"📈 Batch analysis complete: avg PSNR "
            f"{_finite_mean([r.psnr for r in valid]):.2f}dB, avg score "
            f"{sum(r.quality_score for r in valid) / len(valid):.1f}, "
            f"success/failure {len(valid)}/{total - len(valid)}"
        )
    else:
        logger.info(f"📈 Batch analysis complete: 0/{total} succeeded")

    return results


def _finite_mean(values: list[float]) -> float:
    finite = [v for v in values if math.isfinite(v)]
    return sum(finite) / len(finite) if finite else math.inf if values else 0.0
