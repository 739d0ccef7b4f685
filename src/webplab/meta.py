"""Attribute probing for source images."""

from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from .error_handling import AttributeAnalysisError

# Frame counts above this add nothing to parameter prediction
MAX_ESTIMATED_FRAMES = 100
DEFAULT_DENSITY = 72


@dataclass(frozen=True)
class ImageAttributes:
    """What the optimizer knows about a source image."""

    file_size: int
    width: int
    height: int
    frames: int
    format: str = "gif"
    has_alpha: bool = False
    density: int = DEFAULT_DENSITY

    def __post_init__(self) -> None:
        if self.file_size < 0:
            raise ValueError(f"file_size must be non-negative, got {self.file_size}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid dimensions: {self.width}x{self.height}")
        if self.frames < 1:
            raise ValueError(f"frames must be at least 1, got {self.frames}")

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def pixel_volume(self) -> int:
        """Pixels across all frames."""
        return self.width * self.height * self.frames


def estimate_frame_count(file_size: int, width: int, height: int) -> int:
    """Size-based frame estimate for containers that do not report frames."""
    return max(1, file_size // (width * height * 3))


def analyze_image(file_path: Path) -> ImageAttributes:
    """Probe a source image for size, dimensions, frames and alpha.

    Args:
        file_path: Path to the image (normally a GIF)

    Returns:
        ImageAttributes for the file

    Raises:
        AttributeAnalysisError: If the file is missing or cannot be parsed
    """
    if not file_path.exists():
        raise AttributeAnalysisError(f"File not found: {file_path}")

    try:
        file_size = file_path.stat().st_size

        with Image.open(file_path) as img:
            width, height = img.size
            image_format = (img.format or file_path.suffix.lstrip(".")).lower()

            frame_count = getattr(img, "n_frames", None)
            if not frame_count:
                frame_count = estimate_frame_count(file_size, width, height)

            has_alpha = (
                img.mode in ("RGBA", "LA", "PA")
                or "transparency" in img.info
            )

            dpi = img.info.get("dpi")
            density = int(round(dpi[0])) if dpi else DEFAULT_DENSITY

        return ImageAttributes(
            file_size=file_size,
            width=width,
            height=height,
            frames=min(int(frame_count), MAX_ESTIMATED_FRAMES),
            format=image_format,
            has_alpha=has_alpha,
            density=density,
        )

    except Exception as e:
        raise AttributeAnalysisError(
            f"Failed to analyze {file_path.name}", cause=e, context={"file": str(file_path)}
        ) from e
