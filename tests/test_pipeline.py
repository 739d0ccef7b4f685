"""Tests for the per-item conversion job and its use by the batch processor."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from webplab.batch import BatchProcessor, TaskStatus
from webplab.config import BatchConfig, QualityCriteria
from webplab.error_handling import DecodeError, EncodeError, InputValidationError
from webplab.optimizer import EncodeParameters
from webplab.pipeline import ConversionJob, ItemOutcome
from webplab.quality import QualityGrade


class TestConversionJob:
    def test_adaptive_conversion(self, sample_gif: Path, tmp_path: Path):
        out_dir = tmp_path / "out"
        outcome = ConversionJob(output_dir=out_dir)(sample_gif)

        assert isinstance(outcome, ItemOutcome)
        assert outcome.output_path == out_dir / "sample.webp"
        assert outcome.output_path.exists()
        assert outcome.bytes_before == sample_gif.stat().st_size
        assert outcome.bytes_after == outcome.output_path.stat().st_size
        assert outcome.optimization is not None
        assert outcome.params == outcome.optimization.params
        assert outcome.metrics is not None and outcome.metrics.is_valid
        assert outcome.criteria is not None

    def test_fixed_params_skip_optimizer(self, sample_gif: Path, tmp_path: Path):
        params = EncodeParameters(quality=60, effort=2)
        outcome = ConversionJob(output_dir=tmp_path, params=params, measure_quality=False)(
            sample_gif
        )

        assert outcome.params == params
        assert outcome.optimization is None
        assert outcome.metrics is None
        assert outcome.criteria is None

    def test_explicit_output_path(self, sample_gif: Path, tmp_path: Path):
        target = tmp_path / "custom" / "name.webp"
        outcome = ConversionJob(measure_quality=False).convert(sample_gif, target)

        assert outcome.output_path == target
        assert target.read_bytes()[:4] == b"RIFF"

    def test_lossless_output_grades_excellent(self, single_frame_gif: Path, tmp_path: Path):
        job = ConversionJob(
            output_dir=tmp_path / "out",
            params=EncodeParameters.from_preset("lossless"),
            criteria=QualityCriteria(min_psnr=0, min_score=0, min_ratio=-10, max_ratio=1),
        )
        outcome = job(single_frame_gif)

        assert outcome.metrics.mse == 0.0
        assert outcome.metrics.grade is QualityGrade.EXCELLENT
        assert outcome.criteria.passed

    def test_measurement_failure_keeps_output(self, sample_gif: Path, tmp_path: Path):
        codec = MagicMock()
        codec.encode.return_value = b"RIFF\x00\x00\x00\x00WEBPVP8 "
        codec.decode_to_raw_pixels.side_effect = DecodeError("bad header")

        outcome = ConversionJob(output_dir=tmp_path / "out", codec=codec, params=EncodeParameters())(
            sample_gif
        )

        assert outcome.output_path.exists()
        assert outcome.metrics.grade is QualityGrade.ERROR
        assert not outcome.metrics.is_valid
        assert "bad header" in outcome.metrics.metadata["error"]
        assert outcome.criteria is None

    def test_encode_failure_propagates(self, sample_gif: Path, tmp_path: Path):
        codec = MagicMock()
        codec.encode.side_effect = EncodeError("encoder crashed")

        with pytest.raises(EncodeError):
            ConversionJob(output_dir=tmp_path / "out", codec=codec)(sample_gif)
        assert not (tmp_path / "out" / "sample.webp").exists()

    def test_rejects_non_gif(self, tmp_path: Path):
        path = tmp_path / "image.png"
        path.write_bytes(b"\x89PNG")

        with pytest.raises(InputValidationError):
            ConversionJob()(path)

    @pytest.mark.fast
    def test_outcome_ratio_and_dict(self):
        outcome = ItemOutcome(
            input_path=Path("a.gif"),
            output_path=Path("a.webp"),
            bytes_before=1000,
            bytes_after=250,
            params=EncodeParameters(quality=80),
        )

        assert outcome.saved_bytes == 750
        assert outcome.compression_ratio == 0.75
        data = outcome.to_dict()
        assert data["quality"] == 80
        assert data["metrics"] is None
        assert data["failed_checks"] == []

    @pytest.mark.fast
    def test_zero_byte_input_ratio(self):
        outcome = ItemOutcome(Path("a.gif"), Path("a.webp"), 0, 10, EncodeParameters())
        assert outcome.compression_ratio == 0.0


class TestBatchWithConversionJob:
    def test_directory_conversion(self, gif_directory: Path, tmp_path: Path):
        out_dir = tmp_path / "webp"
        processor = BatchProcessor(config=BatchConfig(concurrency=2), output_dir=out_dir)

        run = processor.process_directory(gif_directory)

        assert run.processed_count == 3
        assert run.failed_count == 0
        assert sorted(p.relative_to(out_dir).as_posix() for p in out_dir.rglob("*.webp")) == [
            "a.webp",
            "b.webp",
            "nested/c.webp",
        ]
        for task in run.tasks:
            assert task.status is TaskStatus.COMPLETED
            assert task.optimization is not None
            assert task.metrics is not None
        assert run.total_bytes_before == sum(t.result.bytes_before for t in run.tasks)

    def test_bad_file_fails_alone(self, gif_directory: Path, tmp_path: Path):
        (gif_directory / "broken.gif").write_bytes(b"not a gif at all")
        processor = BatchProcessor(output_dir=tmp_path / "webp")

        run = processor.process_directory(gif_directory, recursive=False)

        statuses = {t.input_path.name: t.status for t in run.tasks}
        assert statuses == {
            "a.gif": TaskStatus.COMPLETED,
            "b.gif": TaskStatus.COMPLETED,
            "broken.gif": TaskStatus.FAILED,
        }
        assert run.failed_tasks[0].error


class TestOutputCollisions:
    def test_same_names_in_subdirectories_kept_apart(self, same_name_gifs: Path, tmp_path: Path):
        out_dir = tmp_path / "out"
        processor = BatchProcessor(config=BatchConfig(concurrency=2), output_dir=out_dir)

        run = processor.process_directory(same_name_gifs)

        assert [t.status for t in run.tasks] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
        outputs = {t.input_path.relative_to(same_name_gifs).as_posix(): t.result for t in run.tasks}
        assert outputs["x.gif"].output_path == out_dir / "x.webp"
        assert outputs["sub/x.gif"].output_path == out_dir / "sub" / "x.webp"
        for outcome in outputs.values():
            assert outcome.bytes_after == outcome.output_path.stat().st_size
        assert outputs["sub/x.gif"].metrics.metadata["width"] == 24

    def test_flat_output_refuses_to_overwrite(self, same_name_gifs: Path, tmp_path: Path):
        out_dir = tmp_path / "out"
        job = ConversionJob(output_dir=out_dir, params=EncodeParameters(quality=70))
        inputs = [same_name_gifs / "x.gif", same_name_gifs / "sub" / "x.gif"]

        run = BatchProcessor(job).process_files(inputs, concurrency=1)

        first, second = run.tasks
        assert first.status is TaskStatus.COMPLETED
        assert second.status is TaskStatus.FAILED
        assert "already written by" in second.error
        assert isinstance(second.exception.cause, EncodeError)
        assert first.result.bytes_after == (out_dir / "x.webp").stat().st_size

    def test_same_input_may_be_converted_again(self, sample_gif: Path, tmp_path: Path):
        job = ConversionJob(output_dir=tmp_path / "out", measure_quality=False)

        first = job(sample_gif)
        second = job(sample_gif)

        assert first.output_path == second.output_path
