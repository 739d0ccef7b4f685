"""Pixel-level fidelity metrics between two raw pixel buffers.

All functions here are pure: they take already decoded, equally sized
buffers (interleaved ``uint8`` samples, ``channels`` per pixel) and return
numbers. Decoding and resizing live in :mod:`webplab.codec`.

SSIM note: :func:`estimate_ssim` does *not* compute structural similarity.
It maps PSNR monotonically onto ``[0.5, 1.0]`` and is only a rough stand-in
for the real index. :class:`StructuralSSIMEstimator` provides an actual
SSIM computation (scikit-image) behind the same :class:`SSIMEstimator`
interface for callers that can afford it.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np
from skimage.metrics import structural_similarity

from .error_handling import SizeMismatchError

logger = logging.getLogger(__name__)

# Alpha is never compared
MAX_COMPARED_CHANNELS = 3

# PSNR range mapped onto the SSIM approximation
SSIM_PSNR_CEILING_DB = 50.0
SSIM_APPROX_FLOOR = 0.5


def _as_samples(buffer: Any) -> np.ndarray:
    if isinstance(buffer, (bytes, bytearray, memoryview)):
        return np.frombuffer(buffer, dtype=np.uint8)
    return np.asarray(buffer).ravel()


def _drop_extra_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    if channels <= MAX_COMPARED_CHANNELS:
        return samples
    return samples.reshape(-1, channels)[:, :MAX_COMPARED_CHANNELS]


def compute_mse(original: Any, compressed: Any, channels: int = 3) -> float:
    """Mean of squared per-channel differences over all pixels.

    Args:
        original: Interleaved samples of the reference image
        compressed: Interleaved samples of the re-encoded image
        channels: Samples per pixel; anything beyond the third (alpha) is ignored

    Returns:
        Non-negative MSE. Identical buffers give 0.0.

    Raises:
        SizeMismatchError: If the buffers differ in length
        ValueError: If the buffers are empty or not a whole number of pixels
    """
    a = _as_samples(original)
    b = _as_samples(compressed)

    if a.size != b.size:
        raise SizeMismatchError(
            f"Pixel buffer sizes do not match: {a.size} != {b.size}",
            context={"original_len": a.size, "compressed_len": b.size},
        )

    if channels < 1:
        raise ValueError(f"channels must be at least 1, got {channels}")

    if a.size == 0:
        raise ValueError("Cannot compare empty pixel buffers")

    if a.size % channels != 0:
        raise ValueError(
            f"Buffer length {a.size} is not a multiple of channel count {channels}"
        )

    a = _drop_extra_channels(a, channels)
    b = _drop_extra_channels(b, channels)

    diff = a.astype(np.float64) - b.astype(np.float64)
    return float(np.mean(diff * diff))


def compute_psnr(mse: float, max_value: float = 255.0) -> float:
    """Peak signal-to-noise ratio in dB, rounded to two decimals.

    Returns ``math.inf`` for a perfect match (``mse == 0``).
    """
    if mse < 0:
        raise ValueError(f"MSE must be non-negative, got {mse}")

    if mse == 0:
        return math.inf

    psnr = 20 * math.log10(max_value / math.sqrt(mse))
    return round(psnr, 2)


def format_psnr(psnr: float) -> str:
    """Display form of a PSNR value (``'∞ (identical)'`` for a perfect match)."""
    if math.isinf(psnr) and psnr > 0:
        return "∞ (identical)"
    return f"{psnr:.2f}dB"


def estimate_ssim(psnr: float) -> float:
    """Approximate SSIM from PSNR.

    This is a monotone mapping, not a structural-similarity computation:
    PSNR is clamped to ``[0, 50]`` dB and scaled linearly onto ``[0.5, 1.0]``.
    Two images with identical PSNR always get the same value regardless of
    where their errors sit. Use :class:`StructuralSSIMEstimator` for the
    real index.
    """
    if math.isinf(psnr) and psnr > 0:
        return 1.0

    normalized = max(0.0, min(SSIM_PSNR_CEILING_DB, psnr)) / SSIM_PSNR_CEILING_DB
    ssim = SSIM_APPROX_FLOOR + normalized * (1.0 - SSIM_APPROX_FLOOR)
    return round(ssim, 3)


class SSIMEstimator(Protocol):
    """Produces an SSIM value in ``[0, 1]`` for a compared pair."""

    name: str

    def estimate(
        self,
        psnr: float,
        original: Any,
        compressed: Any,
        width: int | None,
        height: int | None,
        channels: int,
    ) -> float: ...


class PsnrSSIMEstimator:
    """Default estimator: the PSNR-derived approximation (:func:`estimate_ssim`)."""

    name = "psnr-approx"

    def estimate(
        self,
        psnr: float,
        original: Any,
        compressed: Any,
        width: int | None,
        height: int | None,
        channels: int,
    ) -> float:
        return estimate_ssim(psnr)


class StructuralSSIMEstimator:
    """True SSIM via :func:`skimage.metrics.structural_similarity`.

    Needs the image dimensions to rebuild the 2-D layout. Images smaller
    than 3 pixels on a side cannot be windowed and fall back to the PSNR
    approximation.
    """

    name = "structural"

    def estimate(
        self,
        psnr: float,
        original: Any,
        compressed: Any,
        width: int | None,
        height: int | None,
        channels: int,
    ) -> float:
        if math.isinf(psnr) and psnr > 0:
            return 1.0

        if not width or not height:
            raise ValueError("Structural SSIM needs width and height")

        used_channels = min(channels, MAX_COMPARED_CHANNELS)
        a = _drop_extra_channels(_as_samples(original), channels)
        b = _drop_extra_channels(_as_samples(compressed), channels)
        a = a.reshape(height, width, used_channels)
        b = b.reshape(height, width, used_channels)

        win_size = min(7, height, width)
        if win_size % 2 == 0:
            win_size -= 1
        if win_size < 3:
            logger.debug(
                f"Image {width}x{height} too small for windowed SSIM, using approximation"
            )
            return estimate_ssim(psnr)

        if used_channels == 1:
            value = structural_similarity(
                a[:, :, 0], b[:, :, 0], data_range=255, win_size=win_size
            )
        else:
            value = structural_similarity(
                a, b, data_range=255, channel_axis=2, win_size=win_size
            )

        return round(max(0.0, min(1.0, float(value))), 3)


@dataclass(frozen=True)
class PixelComparison:
    """Raw fidelity numbers for one compared pair."""

    mse: float
    psnr: float
    ssim: float
    channels: int
    samples_compared: int
    ssim_method: str


def compare_pixels(
    original: Any,
    compressed: Any,
    channels: int = 3,
    width: int | None = None,
    height: int | None = None,
    estimator: SSIMEstimator | None = None,
) -> PixelComparison:
    """Run MSE, PSNR and SSIM over a buffer pair."""
    estimator = estimator or PsnrSSIMEstimator()

    mse = compute_mse(original, compressed, channels)
    psnr = compute_psnr(mse)
    ssim = estimator.estimate(psnr, original, compressed, width, height, channels)

    return PixelComparison(
        mse=mse,
        psnr=psnr,
        ssim=ssim,
        channels=min(channels, MAX_COMPARED_CHANNELS),
        samples_compared=int(_as_samples(original).size),
        ssim_method=estimator.name,
    )
