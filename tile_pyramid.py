#!/usr/bin/env python3
"""
Tile Pyramid Reducer

Builds the coarser zoom levels of a tiled map from the most detailed level
found on disk. Tiles live at {root}/{z}/{x}/{y}.png following OpenStreetMap
conventions. Each tile at zoom Z is made from the 4 tiles at zoom Z+1:

    (2x, 2y)    (2x+1, 2y)
    (2x, 2y+1)  (2x+1, 2y+1)

Every child is resized to TILE_SIZE x TILE_SIZE and pasted into one
(2*TILE_SIZE) x (2*TILE_SIZE) tile. Missing children become fully transparent
quadrants. Stored tiles are therefore double size, and get halved when they
are read back as children for the next level.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import nullcontext
from pathlib import Path, PurePosixPath
from typing import Callable, ContextManager, Dict, Iterable, Iterator, List, Optional, Tuple

from PIL import Image


# Constants
TILE_SIZE = 256         # Quadrant edge; stored tiles are 2 * TILE_SIZE
TILE_EXTENSION = '.png'
DEFAULT_MAX_ZOOM = 24
DEFAULT_MIN_ZOOM = 0
TRANSPARENT = (0, 0, 0, 0)

TileCoord = Tuple[int, int]
ProgressFactory = Callable[[int, int], ContextManager]


class PyramidError(Exception):
    """Base class for errors that abort a pyramid build."""


class TilePathError(PyramidError, ValueError):
    """A tile path does not follow the {x}/{y}.png layout."""

    def __init__(self, path, reason: str):
        self.path = path
        super().__init__(f"Malformed tile path {path}: {reason}")


class TileIOError(PyramidError):
    """An existing tile could not be read, or an output tile could not be written."""

    def __init__(self, path, action: str, cause: Exception):
        self.path = path
        super().__init__(f"Failed to {action} {path}: {cause}")


def zoom_dir(root: Path, zoom: int) -> Path:
    return Path(root) / str(zoom)


def tile_path(root: Path, zoom: int, x: int, y: int) -> Path:
    """Path of tile (x, y) at the given zoom level."""
    return zoom_dir(root, zoom) / str(x) / f"{y}{TILE_EXTENSION}"


def find_last_zoom_level(root: Path, max_zoom: int, min_zoom: int) -> int:
    """Find the most detailed zoom level that has a directory under root.

    Walks from max_zoom down to min_zoom inclusive.

    Returns:
        The first zoom level whose directory exists, or min_zoom if none does
    """
    for zoom in range(max_zoom, min_zoom - 1, -1):
        if zoom_dir(root, zoom).exists():
            return zoom
    return min_zoom


def _parse_index(path, segment: str) -> int:
    # Plain ASCII digits only; int() would also take signs, spaces and other scripts
    if not (segment.isascii() and segment.isdigit()):
        raise TilePathError(path, f"{segment!r} is not a tile index")
    return int(segment)


def parse_tile_path(path) -> TileCoord:
    """Parse a relative tile path into its (x, y) coordinates.

    Accepts "{x}/{y}.png" or "{z}/{x}/{y}.png"; the leading zoom segment is
    ignored when present.

    Raises:
        TilePathError: if the path has too few segments or a non-integer x or y
    """
    parts = PurePosixPath(Path(path).as_posix()).parts
    if len(parts) < 2:
        raise TilePathError(path, "expected {x}/{y}" + TILE_EXTENSION)

    x = _parse_index(path, parts[-2])
    y = _parse_index(path, PurePosixPath(parts[-1]).stem)
    return (x, y)


def _list_dir(directory: Path) -> List[Path]:
    # Missing or unreadable directories just mean there are no tiles there
    try:
        return sorted(directory.iterdir())
    except OSError:
        return []


def iter_tile_paths(root: Path, zoom: int) -> Iterator[Path]:
    """Lazily yield tile paths at a zoom level, relative to root.

    Scans {root}/{zoom}/{x}/ directories, then {y}.png files in each one.
    """
    root = Path(root)
    for x_dir in _list_dir(zoom_dir(root, zoom)):
        if not x_dir.is_dir():
            continue
        for entry in _list_dir(x_dir):
            if entry.suffix.lower() == TILE_EXTENSION and entry.is_file():
                yield entry.relative_to(root)


def collect_tile_coords(root: Path, zoom: int) -> List[TileCoord]:
    """Collect the (x, y) coordinates of every tile present at a zoom level.

    Returns:
        Sorted list of coordinates, empty if the level directory is missing

    Raises:
        TilePathError: if a .png file has a non-integer name or x directory
    """
    return sorted(parse_tile_path(path) for path in iter_tile_paths(root, zoom))


def quad_source_coords(bx: int, by: int) -> List[Tuple[int, int, TileCoord]]:
    """The 4 child tiles that make up tile (bx, by) one zoom level out.

    Returns:
        List of (i, j, (child_x, child_y)) where (i, j) is the quadrant offset
    """
    return [
        (i, j, (bx * 2 + i, by * 2 + j))
        for i in range(2)
        for j in range(2)
    ]


def parent_coords(coords: Iterable[TileCoord]) -> List[TileCoord]:
    """Map child tile coordinates to the unique, sorted parent coordinates."""
    return sorted({(x // 2, y // 2) for x, y in coords})


def load_quadrant(path: Path, tile_size: int = TILE_SIZE) -> Image.Image:
    """Open a tile and resize it to one tile_size x tile_size RGBA quadrant."""
    try:
        with Image.open(path) as img:
            rgba = img.convert('RGBA')
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        # Pillow decoders raise all of these for unreadable or oversized images
        raise TileIOError(path, "read", e) from e

    # LANCZOS keeps aliasing low when halving over and over across levels
    return rgba.resize((tile_size, tile_size), Image.Resampling.LANCZOS)


def reduce_tile(
    root: Path,
    bx: int,
    by: int,
    src_zoom: int,
    dst_zoom: Optional[int] = None,
    tile_size: int = TILE_SIZE,
    optimize: bool = False,
) -> Path:
    """Build tile (bx, by) at dst_zoom from its 4 children at src_zoom.

    Args:
        root: Dataset root directory
        bx: Destination tile x coordinate
        by: Destination tile y coordinate
        src_zoom: Zoom level the children are read from
        dst_zoom: Zoom level to write, defaults to src_zoom - 1
        tile_size: Quadrant edge; the written tile is twice this size
        optimize: Save with lossless PNG optimization

    Returns:
        Path of the written tile, which is overwritten if it already exists

    Raises:
        TileIOError: if an existing child cannot be decoded or the output
            cannot be written
    """
    if dst_zoom is None:
        dst_zoom = src_zoom - 1

    combined = Image.new('RGBA', (tile_size * 2, tile_size * 2), TRANSPARENT)

    for i, j, (child_x, child_y) in quad_source_coords(bx, by):
        box = (i * tile_size, j * tile_size)
        child_path = tile_path(root, src_zoom, child_x, child_y)
        if child_path.is_file():
            combined.paste(load_quadrant(child_path, tile_size), box)
        else:
            # Missing children always get explicit alpha 0
            combined.paste(TRANSPARENT, box + (box[0] + tile_size, box[1] + tile_size))

    output_path = tile_path(root, dst_zoom, bx, by)
    try:
        # Workers may race to create the same x directory
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if optimize:
            combined.save(output_path, 'PNG', optimize=True, compress_level=9)
        else:
            combined.save(output_path, 'PNG')
    except OSError as e:
        raise TileIOError(output_path, "write", e) from e

    return output_path


def reduce_level(
    root: Path,
    src_zoom: int,
    coords: Optional[List[TileCoord]] = None,
    tile_size: int = TILE_SIZE,
    workers: int = 1,
    optimize: bool = False,
    on_tile: Optional[Callable[[int], object]] = None,
    targets: Optional[List[TileCoord]] = None,
) -> int:
    """Write every tile of zoom src_zoom - 1 that has at least one child.

    Returns only after all tiles of the level are written, so the next level
    can safely read them.

    Args:
        root: Dataset root directory
        src_zoom: Zoom level to read children from
        coords: Child coordinates at src_zoom, scanned from disk if not given
        tile_size: Quadrant edge
        workers: Number of threads; 1 reduces tiles one at a time
        optimize: Save with lossless PNG optimization
        on_tile: Called with 1 after each tile is written
        targets: Parent coordinates to write, derived from coords if not given

    Returns:
        Number of tiles written
    """
    dst_zoom = src_zoom - 1
    if targets is None:
        if coords is None:
            coords = collect_tile_coords(root, src_zoom)
        targets = parent_coords(coords)

    try:
        zoom_dir(root, dst_zoom).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise TileIOError(zoom_dir(root, dst_zoom), "create", e) from e

    if workers <= 1:
        for bx, by in targets:
            reduce_tile(root, bx, by, src_zoom, dst_zoom, tile_size, optimize)
            if on_tile:
                on_tile(1)
        return len(targets)

    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [
            executor.submit(reduce_tile, root, bx, by, src_zoom, dst_zoom, tile_size, optimize)
            for bx, by in targets
        ]
        for future in as_completed(futures):
            future.result()
            if on_tile:
                on_tile(1)
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)

    return len(targets)


def build_pyramid(
    root: Path,
    max_zoom: int = DEFAULT_MAX_ZOOM,
    min_zoom: int = DEFAULT_MIN_ZOOM,
    tile_size: int = TILE_SIZE,
    workers: int = 1,
    optimize: bool = False,
    progress: Optional[ProgressFactory] = None,
) -> Dict[int, int]:
    """Reduce level after level from the last zoom level found down to min_zoom.

    Every level down to min_zoom is visited, even when a level turns out empty.

    Args:
        root: Dataset root directory, assumed to exist
        max_zoom: Most detailed zoom level to look for
        min_zoom: Least detailed zoom level to produce
        tile_size: Quadrant edge
        workers: Threads per level
        optimize: Save with lossless PNG optimization
        progress: Called as progress(dst_zoom, total) for each level; must
            return a context manager with an update(n) method (e.g. tqdm)

    Returns:
        Dictionary mapping each written zoom level -> number of tiles written
    """
    root = Path(root)
    written = {}

    zoom = find_last_zoom_level(root, max_zoom, min_zoom)
    print(f"Starting zoom level: {zoom}")

    while zoom > min_zoom:
        coords = collect_tile_coords(root, zoom)
        dst_zoom = zoom - 1
        print(f"Total PNG files at zoom level {zoom}: {len(coords)}")
        print(f"🔨 Generating zoom level {dst_zoom}...")

        targets = parent_coords(coords)
        bar_cm = progress(dst_zoom, len(targets)) if progress else nullcontext()
        with bar_cm as bar:
            on_tile = bar.update if bar is not None else None
            written[dst_zoom] = reduce_level(
                root, zoom, coords, tile_size, workers, optimize, on_tile, targets
            )

        print(f"   Created {written[dst_zoom]} tiles at zoom level {dst_zoom}")
        zoom -= 1

    return written
