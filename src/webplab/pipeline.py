"""Per-item conversion job: probe, optimize, encode, write, measure.

A :class:`ConversionJob` is the default unit of work handed to
:class:`~webplab.batch.BatchProcessor`. It is a plain callable taking an
input path and returning an :class:`ItemOutcome`; any failure propagates as
an exception for the batch layer to record.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .codec import (
    ImageCodec,
    PillowWebPCodec,
    format_bytes,
    generate_output_path,
    validate_input_file,
)
from .comparison import SSIMEstimator
from .config import (
    DEFAULT_BATCH_CONFIG,
    DEFAULT_OPTIMIZER_CONFIG,
    DEFAULT_QUALITY_CRITERIA,
    BatchConfig,
    OptimizerConfig,
    QualityCriteria,
)
from .error_handling import EncodeError, WebpLabError, error_context
from .io import atomic_write
from .optimizer import EncodeParameters, OptimizationResult, Strategy, optimize_file
from .quality import (
    CriteriaResult,
    QualityMetrics,
    compare_image_quality,
    validate_quality_criteria,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemOutcome:
    """Everything a finished conversion produced."""

    input_path: Path
    output_path: Path
    bytes_before: int
    bytes_after: int
    params: EncodeParameters
    optimization: OptimizationResult | None = None
    metrics: QualityMetrics | None = None
    criteria: CriteriaResult | None = None
    processing_ms: int = 0

    @property
    def saved_bytes(self) -> int:
        return self.bytes_before - self.bytes_after

    @property
    def compression_ratio(self) -> float:
        if self.bytes_before == 0:
            return 0.0
        return self.saved_bytes / self.bytes_before

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_path": str(self.input_path),
            "output_path": str(self.output_path),
            "bytes_before": self.bytes_before,
            "bytes_after": self.bytes_after,
            "compression_ratio": self.compression_ratio,
            "quality": self.params.quality,
            "effort": self.params.effort,
            "lossless": self.params.lossless,
            "optimization": self.optimization.to_dict() if self.optimization else None,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "criteria_passed": self.criteria.passed if self.criteria else None,
            "failed_checks": sorted(self.criteria.failed_checks) if self.criteria else [],
            "processing_ms": self.processing_ms,
        }


class ConversionJob:
    """GIF to WebP conversion of one file, with optional quality measurement.

    Args:
        output_dir: Where ``<stem>.webp`` files go (beside the input if None)
        codec: Image codec (Pillow WebP by default)
        strategy: Optimizer strategy used when ``params`` is not fixed
        params: Fixed encode parameters; skips the optimizer when given
        optimizer_config: Optimizer bounds and targets
        criteria: Acceptance thresholds checked after measurement
        batch_config: Input size limit and accepted extensions
        measure_quality: Decode both files and score the result
        estimator: SSIM estimator for the quality measurement
        source_root: Inputs below this directory keep their relative
            sub-directory under ``output_dir``

    An output path belongs to the first input that claims it; a different
    input resolving to the same path fails with :class:`EncodeError` instead
    of overwriting it.
    """

    def __init__(
        self,
        output_dir: Path | None = None,
        codec: ImageCodec | None = None,
        strategy: Strategy | str = Strategy.ADAPTIVE,
        params: EncodeParameters | None = None,
        optimizer_config: OptimizerConfig | None = None,
        criteria: QualityCriteria | None = None,
        batch_config: BatchConfig | None = None,
        measure_quality: bool = True,
        estimator: SSIMEstimator | None = None,
        source_root: Path | None = None,
    ):
        self.output_dir = output_dir
        self.source_root = source_root
        self.codec = codec or PillowWebPCodec()
        self.strategy = Strategy(strategy)
        self.params = params
        self.optimizer_config = optimizer_config or DEFAULT_OPTIMIZER_CONFIG
        self.criteria = criteria or DEFAULT_QUALITY_CRITERIA
        self.batch_config = batch_config or DEFAULT_BATCH_CONFIG
        self.measure_quality = measure_quality
        self.estimator = estimator

        self._claims_lock = threading.Lock()
        self._claimed_outputs: dict[Path, Path] = {}

    def __call__(self, input_path: Path | str) -> ItemOutcome:
        return self.convert(Path(input_path))

    def convert(self, input_path: Path, output_path: Path | None = None) -> ItemOutcome:
        """Convert one file.

        Raises:
            InputValidationError: If the input fails the pre-checks
            AttributeAnalysisError: If the optimizer cannot probe the input
            EncodeError: If encoding or writing the output fails
        """
        start_time = time.perf_counter()
        logger.info(f"🔄 Converting: {input_path.name}")

        bytes_before = validate_input_file(
            input_path,
            max_bytes=self.batch_config.max_input_bytes,
            extensions=self.batch_config.extensions,
        )

        optimization: OptimizationResult | None = None
        if self.params is not None:
            params = self.params
        else:
            optimization = optimize_file(input_path, self.strategy, self.optimizer_config)
            params = optimization.params

        if output_path is None:
            output_path = generate_output_path(input_path, self.output_dir, self.source_root)
        self._claim_output(input_path, output_path)

        encoded = self.codec.encode(input_path, params)

        with error_context(
            "write WebP output", EncodeError, context={"file": output_path.name}, logger=logger
        ):
            with atomic_write(output_path, "wb") as f:
                f.write(encoded)

        bytes_after = len(encoded)

        metrics: QualityMetrics | None = None
        criteria: CriteriaResult | None = None
        if self.measure_quality:
            metrics = self._measure(input_path, output_path)
            if metrics.is_valid:
                criteria = validate_quality_criteria(metrics, self.criteria)

        processing_ms = int((time.perf_counter() - start_time) * 1000)

        outcome = ItemOutcome(
            input_path=input_path,
            output_path=output_path,
            bytes_before=bytes_before,
            bytes_after=bytes_after,
            params=params,
            optimization=optimization,
            metrics=metrics,
            criteria=criteria,
            processing_ms=processing_ms,
        )

        logger.info(
            f"✅ Converted: {input_path.name} {format_bytes(bytes_before)} → "
            f"{format_bytes(bytes_after)} ({outcome.compression_ratio * 100:.1f}%, "
            f"{processing_ms}ms)"
        )
        return outcome

    def _claim_output(self, input_path: Path, output_path: Path) -> None:
        source = input_path.resolve()
        target = output_path.resolve()
        with self._claims_lock:
            owner = self._claimed_outputs.setdefault(target, source)
        if owner != source:
            raise EncodeError(
                f"Output {output_path} is already written by {owner}",
                context={"file": input_path.name},
            )

    def _measure(self, input_path: Path, output_path: Path) -> QualityMetrics:
        # The encode already succeeded, so a failed measurement is recorded
        # as an error-graded result instead of failing the item.
        try:
            return compare_image_quality(input_path, output_path, self.codec, self.estimator)
        except WebpLabError as e:
            logger.warning(f"⚠️  Quality measurement failed for {input_path.name}: {e}")
            return QualityMetrics.error(str(e), original_file=input_path.name)
