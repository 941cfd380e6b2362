"""Fixtures for building small tile trees on disk."""

from pathlib import Path
from typing import Callable, Tuple

import pytest
from PIL import Image


def _write_tile(root: Path, zoom: int, x: int, y: int,
                color: Tuple[int, int, int, int] = (200, 50, 50, 255), size: int = 256) -> Path:
    path = root / str(zoom) / str(x) / f"{y}.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGBA', (size, size), color).save(path, 'PNG')
    return path


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """An empty dataset root."""
    folder = tmp_path / "tiles"
    folder.mkdir()
    return folder


@pytest.fixture
def write_tile() -> Callable[..., Path]:
    """Write a solid-color tile at {root}/{zoom}/{x}/{y}.png under any root."""
    return _write_tile


@pytest.fixture
def make_tile(root: Path) -> Callable[..., Path]:
    """Write a solid-color tile under the root fixture."""
    def _make(zoom: int, x: int, y: int, color=(200, 50, 50, 255), size: int = 256) -> Path:
        return _write_tile(root, zoom, x, y, color, size)
    return _make


@pytest.fixture
def quadrant() -> Callable[..., Image.Image]:
    """Crop quadrant (i, j) out of a combined tile."""
    def _crop(img: Image.Image, i: int, j: int, tile_size: int = 256) -> Image.Image:
        left, top = i * tile_size, j * tile_size
        return img.crop((left, top, left + tile_size, top + tile_size))
    return _crop


@pytest.fixture
def is_fully_transparent() -> Callable[[Image.Image], bool]:
    def _check(img: Image.Image) -> bool:
        return img.getchannel('A').getextrema() == (0, 0)
    return _check
