"""Shared fixtures: small GIFs generated on the fly with Pillow."""

from pathlib import Path

import pytest
from PIL import Image


def create_test_gif(
    path: Path,
    frames: int = 3,
    size: tuple[int, int] = (32, 32),
    pattern: str = "gradient",
) -> Path:
    """Write a small animated GIF at ``path`` and return it.

    ``gradient`` frames carry enough detail for a lossy encode to differ from
    the source; ``solid`` frames are a single colour.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    width, height = size
    images = []
    for i in range(frames):
        img = Image.new("RGB", size)
        if pattern == "solid":
            img.paste((200, 40 * (i % 6), 90), (0, 0, width, height))
        else:
            pixels = img.load()
            for x in range(width):
                for y in range(height):
                    pixels[x, y] = (
                        (x * 255 // max(width - 1, 1) + i * 20) % 256,
                        (y * 255 // max(height - 1, 1)) % 256,
                        ((x + y) * 8 + i * 40) % 256,
                    )
        images.append(img)

    images[0].save(path, save_all=True, append_images=images[1:], duration=100, loop=0)
    return path


@pytest.fixture
def sample_gif(tmp_path: Path) -> Path:
    return create_test_gif(tmp_path / "sample.gif")


@pytest.fixture
def single_frame_gif(tmp_path: Path) -> Path:
    return create_test_gif(tmp_path / "still.gif", frames=1, pattern="solid")


@pytest.fixture
def gif_directory(tmp_path: Path) -> Path:
    """Directory with three GIFs (one nested) and a non-GIF file."""
    root = tmp_path / "gifs"
    create_test_gif(root / "a.gif", frames=2)
    create_test_gif(root / "b.gif", frames=2, pattern="solid")
    create_test_gif(root / "nested" / "c.gif", frames=1)
    (root / "notes.txt").write_text("not an image")
    return root


@pytest.fixture
def same_name_gifs(tmp_path: Path) -> Path:
    """Two different GIFs both named ``x.gif``, one in a sub-directory."""
    root = tmp_path / "in"
    create_test_gif(root / "x.gif", frames=3)
    create_test_gif(root / "sub" / "x.gif", frames=1, size=(24, 16), pattern="solid")
    return root
