"""Human-readable and machine-readable reports for quality and batch results."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .batch import BatchRun, BatchTask, TaskStatus
from .codec import format_bytes
from .comparison import format_psnr
from .io import save_json, write_csv_rows
from .quality import QualityGrade, QualityMetrics

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "❌ No quality analysis results."

# Grades shown in the aggregate distribution, best first
REPORTED_GRADES = (
    QualityGrade.EXCELLENT,
    QualityGrade.GOOD,
    QualityGrade.ACCEPTABLE,
    QualityGrade.POOR,
    QualityGrade.UNACCEPTABLE,
)

CSV_FIELDS = [
    "item_id",
    "status",
    "error",
    "bytes_before",
    "bytes_after",
    "compression_ratio",
    "quality",
    "effort",
    "lossless",
    "strategy",
    "psnr",
    "ssim",
    "quality_score",
    "grade",
    "duration_ms",
]


def _as_list(
    metrics: QualityMetrics | Sequence[QualityMetrics],
) -> list[QualityMetrics]:
    if isinstance(metrics, QualityMetrics):
        return [metrics]
    return list(metrics)


def summarize_quality(
    metrics: QualityMetrics | Sequence[QualityMetrics],
) -> dict[str, Any]:
    """Summary numbers behind :func:`generate_quality_report`.

    A single result yields its own figures; a list yields totals, averages
    over the valid entries and the grade distribution. ``valid`` is zero
    when no entry carries a usable measurement.
    """
    results = _as_list(metrics)
    valid = [m for m in results if m.is_valid and m.psnr > 0]

    if len(results) == 1 and valid:
        result = valid[0]
        analysis = result.metadata.get("analysis", {})
        return {
            "total": 1,
            "valid": 1,
            "grade": result.grade.value,
            "quality_score": result.quality_score,
            "psnr": result.psnr,
            "ssim": result.ssim,
            "compression_ratio": result.compression_ratio,
            "width": result.metadata.get("width"),
            "height": result.metadata.get("height"),
            "size_savings": analysis.get("size_savings", 0),
        }

    if not valid:
        return {"total": len(results), "valid": 0, "failed": len(results)}

    finite_psnr = [m.psnr for m in valid if math.isfinite(m.psnr)]
    return {
        "total": len(results),
        "valid": len(valid),
        "failed": len(results) - len(valid),
        "average_quality_score": sum(m.quality_score for m in valid) / len(valid),
        "average_psnr": (
            sum(finite_psnr) / len(finite_psnr) if finite_psnr else math.inf
        ),
        "average_compression_ratio": sum(m.compression_ratio for m in valid) / len(valid),
        "grade_distribution": {
            grade.value: sum(1 for m in valid if m.grade is grade) for grade in REPORTED_GRADES
        },
    }


def generate_quality_report(metrics: QualityMetrics | Sequence[QualityMetrics]) -> str:
    """Render a quality report for one result or an aggregate over many."""
    summary = summarize_quality(metrics)

    if summary["valid"] == 0:
        return NO_RESULTS_MESSAGE

    lines: list[str] = []
    if summary["total"] == 1:
        lines += [
            "📊 Image Quality Report",
            "=" * 32,
            "",
            f"🎯 Grade: {summary['grade'].upper()}",
            f"📈 Quality score: {summary['quality_score']}/100",
            f"📏 PSNR: {format_psnr(summary['psnr'])}",
            f"🔗 SSIM: {summary['ssim']}",
            f"📦 Compression: {summary['compression_ratio'] * 100:.1f}%",
            f"📐 Resolution: {summary['width']}x{summary['height']}",
            f"💾 Size saved: {summary['size_savings'] / 1024:.1f}KB",
        ]
    else:
        lines += [
            "📊 Batch Quality Report",
            "=" * 26,
            "",
            f"📁 Total files: {summary['total']}",
            f"✅ Succeeded: {summary['valid']}",
            f"❌ Failed: {summary['failed']}",
            "",
            f"📈 Average quality score: {summary['average_quality_score']:.1f}/100",
            f"📏 Average PSNR: {format_psnr(summary['average_psnr'])}",
            f"📦 Average compression: {summary['average_compression_ratio'] * 100:.1f}%",
            "",
            "🏆 Grade distribution:",
        ]
        for grade, count in summary["grade_distribution"].items():
            lines.append(f"   {grade.replace('_', ' ').title()}: {count}")

    return "\n".join(lines) + "\n"


def format_batch_summary(run: BatchRun) -> str:
    """Plain-text summary of a finished batch run."""
    lines = [
        "📊 Batch Summary",
        "=" * 40,
        f"Total: {run.total_count}  Succeeded: {run.processed_count}  "
        f"Failed: {run.failed_count}  Skipped: {run.skipped_count}",
        f"⏱️  Total time: {run.elapsed_seconds:.2f}s",
    ]

    completed = run.completed_tasks
    if completed:
        durations = [t.duration_ms for t in completed if t.duration_ms is not None]
        if durations:
            lines.append(f"⚡ Average time per file: {sum(durations) / len(durations):.0f}ms")

    lines += [
        f"💾 Size: {format_bytes(run.total_bytes_before)} → "
        f"{format_bytes(run.total_bytes_after)} "
        f"(saved {format_bytes(run.total_bytes_before - run.total_bytes_after)})",
        f"📦 Aggregate compression: {run.aggregate_ratio * 100:.1f}%",
    ]

    if completed:
        lines += ["", "✅ Succeeded:"]
        for task in completed:
            detail = ""
            ratio = getattr(task.result, "compression_ratio", None)
            if ratio is not None:
                detail = f" ({ratio * 100:.1f}%)"
            lines.append(f"   {task.input_path.name}{detail}")

    failed = run.failed_tasks
    if failed:
        lines += ["", "❌ Failed:"]
        for task in failed:
            lines.append(f"   {task.input_path.name}: {task.error}")

    skipped = run.skipped_tasks
    if skipped:
        lines += ["", "⏭️  Skipped:"]
        for task in skipped:
            lines.append(f"   {task.input_path.name}")

    return "\n".join(lines) + "\n"


def _task_row(task: BatchTask) -> dict[str, Any]:
    row: dict[str, Any] = {
        "item_id": task.item_id,
        "status": task.status.value,
        "error": task.error or "",
        "duration_ms": task.duration_ms if task.duration_ms is not None else "",
    }

    result = task.result
    if task.status is TaskStatus.COMPLETED and result is not None:
        params = getattr(result, "params", None)
        row.update(
            {
                "bytes_before": getattr(result, "bytes_before", ""),
                "bytes_after": getattr(result, "bytes_after", ""),
                "compression_ratio": getattr(result, "compression_ratio", ""),
                "quality": params.quality if params else "",
                "effort": params.effort if params else "",
                "lossless": params.lossless if params else "",
            }
        )
    if task.optimization is not None:
        row["strategy"] = task.optimization.strategy
    if task.metrics is not None:
        row.update(
            {
                "psnr": task.metrics.psnr,
                "ssim": task.metrics.ssim,
                "quality_score": task.metrics.quality_score,
                "grade": task.metrics.grade.value,
            }
        )
    return row


def write_batch_report(run: BatchRun, report_path: Path) -> None:
    """Write the run as JSON: summary figures plus one entry per item."""
    items = []
    for task in run.tasks:
        entry = _task_row(task)
        to_dict = getattr(task.result, "to_dict", None)
        if callable(to_dict):
            entry["result"] = to_dict()
        items.append(entry)

    data = {
        "started_at": run.started_at.isoformat(),
        "elapsed_seconds": run.elapsed_seconds,
        "concurrency": run.concurrency,
        "stop_on_error": run.stop_on_error,
        "summary": {
            "total": run.total_count,
            "processed": run.processed_count,
            "failed": run.failed_count,
            "skipped": run.skipped_count,
            "total_bytes_before": run.total_bytes_before,
            "total_bytes_after": run.total_bytes_after,
            "aggregate_ratio": run.aggregate_ratio,
        },
        "items": items,
    }
    save_json(data, report_path)
    logger.info(f"📝 Batch report written: {report_path}")


def write_batch_csv(run: BatchRun, csv_path: Path) -> None:
    """Write one CSV row per item of the run."""
    write_csv_rows(csv_path, [_task_row(task) for task in run.tasks], CSV_FIELDS)
    logger.info(f"📝 Batch CSV written: {csv_path}")
