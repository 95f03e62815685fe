from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

import sprite


def solid(w: int, h: int, color=(255, 0, 0, 255)) -> Image.Image:
    return Image.new("RGBA", (w, h), color)


def src(name: str, w: int, h: int, color=(255, 0, 0, 255)) -> sprite.SourceImage:
    return sprite.SourceImage.from_image(name, solid(w, h, color))


@pytest.fixture
def two_images():
    return [src("a", 10, 20, (255, 0, 0, 255)), src("b", 30, 5, (0, 0, 255, 128))]


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "icons"
    (folder / "sub").mkdir(parents=True)
    solid(16, 16, (255, 0, 0, 255)).save(folder / "play.png")
    solid(8, 24, (0, 255, 0, 255)).save(folder / "sub" / "stop.png")
    solid(32, 8, (0, 0, 255, 255)).save(folder / "pause.webp", lossless=True)
    (folder / "notes.txt").write_text("not an image")
    return folder
