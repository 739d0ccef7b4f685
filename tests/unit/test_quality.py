"""Tests for webplab.quality scoring, grading and criteria checks."""

import math

import pytest

from webplab.config import QualityCriteria
from webplab.quality import (
    QualityGrade,
    QualityMetrics,
    build_quality_metrics,
    calculate_quality_score,
    get_quality_grade,
    validate_quality_criteria,
)


def make_metrics(psnr=38.0, ssim=0.9, ratio=0.62, score=None):
    metrics = build_quality_metrics(mse=10.0, psnr=psnr, ssim=ssim, compression_ratio=ratio)
    if score is None:
        return metrics
    return QualityMetrics(
        mse=metrics.mse,
        psnr=metrics.psnr,
        ssim=metrics.ssim,
        compression_ratio=metrics.compression_ratio,
        quality_score=score,
        grade=metrics.grade,
    )


class TestCalculateQualityScore:
    @pytest.mark.fast
    def test_perfect_match(self):
        # 0.6 * 100 + 0.3 * 100 + 0.1 * min(10, 0.62 * 15)
        assert calculate_quality_score(math.inf, 1.0, 0.62) == 91

    @pytest.mark.fast
    def test_compression_bonus_capped(self):
        assert calculate_quality_score(math.inf, 1.0, 0.9) == 91
        assert calculate_quality_score(math.inf, 1.0, 5.0) == 91

    @pytest.mark.fast
    def test_interpolates_between_good_and_excellent(self):
        # psnr_score = 75 + 3/5 * 25 = 90; 54 + 27 + 0 = 81
        assert calculate_quality_score(38.0, 0.9, 0.0) == 81

    @pytest.mark.fast
    def test_low_psnr_scaled_from_zero(self):
        # psnr_score = 15/30 * 50 = 25; 15 + 15 = 30
        assert calculate_quality_score(15.0, 0.5, 0.0) == 30

    @pytest.mark.fast
    def test_clamped_to_range(self):
        assert calculate_quality_score(0.0, 0.0, 0.0) == 0
        assert 0 <= calculate_quality_score(-10.0, 0.0, -1.0) <= 100

    @pytest.mark.fast
    def test_larger_output_gets_no_bonus(self):
        assert calculate_quality_score(math.inf, 1.0, -0.5) == 90

    @pytest.mark.fast
    def test_non_decreasing_in_psnr(self):
        scores = [calculate_quality_score(p / 2, 0.85, 0.6) for p in range(0, 120)]
        assert all(a <= b for a, b in zip(scores, scores[1:]))


class TestGetQualityGrade:
    @pytest.mark.fast
    @pytest.mark.parametrize(
        "psnr, score, expected",
        [
            (math.inf, 99, QualityGrade.EXCELLENT),
            (40.0, 90, QualityGrade.EXCELLENT),
            (40.0, 89, QualityGrade.GOOD),
            (35.0, 75, QualityGrade.GOOD),
            (36.0, 70, QualityGrade.ACCEPTABLE),
            (30.0, 60, QualityGrade.ACCEPTABLE),
            (30.0, 59, QualityGrade.POOR),
            (25.0, 10, QualityGrade.POOR),
            (24.99, 100, QualityGrade.UNACCEPTABLE),
            (5.0, 0, QualityGrade.UNACCEPTABLE),
        ],
    )
    def test_thresholds(self, psnr, score, expected):
        assert get_quality_grade(psnr, 0.9, score) is expected

    @pytest.mark.fast
    def test_zero_mse_is_excellent_for_any_ratio(self):
        for ratio in (-1.0, 0.0, 0.3, 0.62, 2.0):
            metrics = build_quality_metrics(0.0, math.inf, 1.0, ratio)
            assert metrics.grade is QualityGrade.EXCELLENT


class TestQualityMetrics:
    @pytest.mark.fast
    def test_error_sentinel(self):
        metrics = QualityMetrics.error("decode failed,\nbad header", original_file="x.gif")

        assert not metrics.is_valid
        assert metrics.grade is QualityGrade.ERROR
        assert metrics.mse == math.inf
        assert metrics.psnr == 0.0
        assert metrics.quality_score == 0.0
        assert metrics.metadata["error"] == "decode failed; bad header"
        assert metrics.metadata["original_file"] == "x.gif"

    @pytest.mark.fast
    def test_to_dict(self):
        data = make_metrics().to_dict()
        assert data["grade"] in {g.value for g in QualityGrade}
        assert set(data) >= {"mse", "psnr", "ssim", "compression_ratio", "quality_score"}


class TestValidateQualityCriteria:
    @pytest.mark.fast
    def test_all_checks_pass(self):
        result = validate_quality_criteria(make_metrics(psnr=38.0, ratio=0.62, score=80))

        assert result.passed
        assert bool(result)
        assert result.failed_checks == frozenset()
        assert result.failures == ()

    @pytest.mark.fast
    def test_reports_each_failed_check(self):
        result = validate_quality_criteria(make_metrics(psnr=30.0, ratio=0.70, score=80))

        assert not result.passed
        assert result.failed_checks == {"psnr", "compression_ratio"}
        assert {f.check for f in result.failures} == {"psnr", "compression_ratio"}

    @pytest.mark.fast
    def test_ratio_band_is_inclusive(self):
        criteria = QualityCriteria(min_psnr=0, min_score=0, min_ratio=0.6, max_ratio=0.64)
        assert validate_quality_criteria(make_metrics(ratio=0.6), criteria).passed
        assert validate_quality_criteria(make_metrics(ratio=0.64), criteria).passed
        assert not validate_quality_criteria(make_metrics(ratio=0.59), criteria).passed

    @pytest.mark.fast
    def test_idempotent(self):
        metrics = make_metrics(psnr=33.0, ratio=0.5, score=70)
        first = validate_quality_criteria(metrics)
        second = validate_quality_criteria(metrics)

        assert first.passed == second.passed
        assert first.failed_checks == second.failed_checks

    @pytest.mark.fast
    def test_logs_warning_on_failure(self, caplog):
        with caplog.at_level("WARNING", logger="webplab.quality"):
            validate_quality_criteria(make_metrics(psnr=20.0, score=10))

        assert "Quality criteria not met" in caplog.text
