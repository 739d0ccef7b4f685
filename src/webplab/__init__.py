"""WebpLab - GIF to WebP conversion quality laboratory."""

__version__: str = "0.1.0"
__author__: str = "WebpLab Team"

from .batch import BatchProcessor, BatchRun, BatchTask, ProgressEvent, TaskStatus
from .comparison import compute_mse, compute_psnr, estimate_ssim
from .meta import ImageAttributes, analyze_image
from .optimizer import EncodeParameters, OptimizationResult, Strategy, optimize
from .pipeline import ConversionJob, ItemOutcome
from .quality import (
    QualityGrade,
    QualityMetrics,
    calculate_quality_score,
    compare_image_quality,
    get_quality_grade,
    validate_quality_criteria,
)
from .report import generate_quality_report

__all__ = [
    "BatchProcessor",
    "BatchRun",
    "BatchTask",
    "ConversionJob",
    "EncodeParameters",
    "ImageAttributes",
    "ItemOutcome",
    "OptimizationResult",
    "ProgressEvent",
    "QualityGrade",
    "QualityMetrics",
    "Strategy",
    "TaskStatus",
    "analyze_image",
    "calculate_quality_score",
    "compare_image_quality",
    "compute_mse",
    "compute_psnr",
    "estimate_ssim",
    "generate_quality_report",
    "get_quality_grade",
    "optimize",
    "validate_quality_criteria",
]
