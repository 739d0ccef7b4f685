"""Image codec boundary: WebP encoding and raw-pixel decoding through Pillow.

Everything that touches actual image bytes goes through an
:class:`ImageCodec`. The core (optimizer, comparison, batch) only sees
:class:`RawPixels` and encoded ``bytes``, so tests can swap in a double.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
from PIL import Image, features

from .config import DEFAULT_BATCH_CONFIG, DEFAULT_CODEC_CONFIG, CodecConfig
from .error_handling import (
    DecodeError,
    EncodeError,
    InputValidationError,
    error_context,
)

if TYPE_CHECKING:
    from .optimizer import EncodeParameters

logger = logging.getLogger(__name__)

_RESAMPLE_FILTERS = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}


@dataclass(frozen=True)
class RawPixels:
    """Interleaved ``uint8`` samples of a single decoded frame."""

    pixels: np.ndarray
    width: int
    height: int
    channels: int
    format: str | None = None


class ImageCodec(Protocol):
    """What the core needs from an image codec."""

    def encode(self, path: Path, params: EncodeParameters) -> bytes: ...

    def decode_to_raw_pixels(
        self,
        path: Path,
        target_width: int | None = None,
        target_height: int | None = None,
    ) -> RawPixels: ...


class PillowWebPCodec:
    """WebP encoder and pixel decoder backed by Pillow."""

    def __init__(self, config: CodecConfig | None = None):
        self.config = config or DEFAULT_CODEC_CONFIG
        self._resample = _RESAMPLE_FILTERS[self.config.resample]

    def encode(self, path: Path, params: EncodeParameters) -> bytes:
        """Encode ``path`` (every frame, if animated) to WebP bytes.

        Raises:
            EncodeError: If the input cannot be read or the encoder fails
        """
        with error_context(
            "encode WebP",
            EncodeError,
            context={"file": path.name, "quality": params.quality, "effort": params.effort},
            logger=logger,
        ):
            with Image.open(path) as img:
                animated = self.config.animated and getattr(img, "is_animated", False)
                buffer = io.BytesIO()
                img.save(
                    buffer,
                    format="WEBP",
                    save_all=animated,
                    quality=params.quality,
                    method=params.effort,
                    lossless=params.lossless,
                    loop=self.config.loop,
                )
                return buffer.getvalue()

    def decode_to_raw_pixels(
        self,
        path: Path,
        target_width: int | None = None,
        target_height: int | None = None,
    ) -> RawPixels:
        """Decode the first frame of ``path`` to RGB samples.

        Alpha is dropped. When both target dimensions are given the frame is
        resized to exactly that size.

        Raises:
            DecodeError: If the image cannot be opened or decoded
        """
        with error_context(
            "decode image", DecodeError, context={"file": path.name}, logger=logger
        ):
            with Image.open(path) as img:
                source_format = (img.format or path.suffix.lstrip(".")).lower()
                img.seek(0)
                frame = img.convert("RGB")

            if target_width and target_height and frame.size != (target_width, target_height):
                frame = frame.resize((target_width, target_height), self._resample)

            pixels = np.asarray(frame, dtype=np.uint8).reshape(-1)
            return RawPixels(
                pixels=pixels,
                width=frame.width,
                height=frame.height,
                channels=3,
                format=source_format,
            )


def validate_input_file(
    input_path: Path,
    max_bytes: int | None = None,
    extensions: tuple[str, ...] = (".gif",),
) -> int:
    """Pre-conversion checks: exists, allowed extension, size limit.

    Returns:
        File size in bytes

    Raises:
        InputValidationError: On the first failed check
    """
    if max_bytes is None:
        max_bytes = DEFAULT_BATCH_CONFIG.max_input_bytes

    if not input_path.exists():
        raise InputValidationError(f"File not found: {input_path}")

    if not input_path.is_file():
        raise InputValidationError(f"Not a file: {input_path}")

    suffix = input_path.suffix.lower()
    if suffix not in extensions:
        raise InputValidationError(
            f"Unsupported file type: {suffix or '(none)'} (expected {', '.join(extensions)})"
        )

    size = input_path.stat().st_size
    if size > max_bytes:
        raise InputValidationError(
            f"File too large: {format_bytes(size)} (max {format_bytes(max_bytes)})"
        )

    return size


def generate_output_path(
    input_path: Path, output_dir: Path | None = None, source_root: Path | None = None
) -> Path:
    """``<stem>.webp`` next to the input, or inside ``output_dir``.

    With ``source_root``, inputs below it keep their sub-directory under
    ``output_dir`` so same-named files from different folders stay apart.
    """
    output_name = f"{input_path.stem}.webp"
    if output_dir is None:
        return input_path.with_name(output_name)

    if source_root is not None:
        try:
            relative = input_path.parent.relative_to(source_root)
        except ValueError:
            pass
        else:
            return output_dir / relative / output_name
    return output_dir / output_name


def format_bytes(num_bytes: float) -> str:
    """Human-readable byte count (``1536`` -> ``'1.5 KB'``)."""
    if num_bytes == 0:
        return "0 Bytes"

    sign = "-" if num_bytes < 0 else ""
    value = float(abs(num_bytes))
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1

    return f"{sign}{round(value, 2):g} {units[index]}"


def get_codec_info() -> dict[str, Any]:
    """Pillow version and WebP capabilities of the running interpreter."""
    import PIL

    return {
        "pillow_version": PIL.__version__,
        "webp": bool(features.check("webp")),
        "webp_animation": bool(features.check_feature("webp_anim"))
        if "webp_anim" in features.get_supported_features()
        else bool(features.check("webp")),
        "libwebp_version": features.version("webp"),
    }
