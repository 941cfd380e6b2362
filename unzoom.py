#!/usr/bin/env python3
"""
Map Tile Unzoomer

Generates the less detailed zoom levels of a map tile folder by combining
tiles from the most detailed zoom level found, one level at a time, down to
--min-zoom. Tiles are read and written as {folder}/{z}/{x}/{y}.png.

Usage:
  python unzoom.py FOLDER [--max-zoom 24] [--min-zoom 0] [--workers 4]
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

import tile_pyramid
from tile_pyramid import PyramidError

__version__ = '0.1.0'


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return number


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Generate unzoomed level images from map tile images'
    )
    parser.add_argument(
        'folder',
        help='Folder path of the map tile data'
    )
    parser.add_argument(
        '--max-zoom',
        type=non_negative_int,
        default=tile_pyramid.DEFAULT_MAX_ZOOM,
        help=f'Most detailed zoom level, reduced until found (default: {tile_pyramid.DEFAULT_MAX_ZOOM})'
    )
    parser.add_argument(
        '--min-zoom',
        type=non_negative_int,
        default=tile_pyramid.DEFAULT_MIN_ZOOM,
        help=f'Least detailed zoom level (default: {tile_pyramid.DEFAULT_MIN_ZOOM})'
    )
    parser.add_argument(
        '--tile-size',
        type=positive_int,
        default=tile_pyramid.TILE_SIZE,
        help=f'Quadrant size in pixels; output tiles are twice this (default: {tile_pyramid.TILE_SIZE})'
    )
    parser.add_argument(
        '--workers',
        type=positive_int,
        default=1,
        help='Threads used to build the tiles of one zoom level (default: 1)'
    )
    parser.add_argument(
        '--optimize',
        action='store_true',
        help='Save tiles with lossless PNG optimization (slower, smaller files)'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Do not show a progress bar'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.min_zoom > args.max_zoom:
        parser.error(f"--min-zoom ({args.min_zoom}) is greater than --max-zoom ({args.max_zoom})")
    return args


def level_progress_bar(dst_zoom: int, total: int) -> tqdm:
    return tqdm(
        total=total,
        desc=f"Zoom {dst_zoom}",
        unit='tile',
        ascii='->#',
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    folder = Path(args.folder)
    if not folder.exists():
        print(f"❌ Folder does not exist: {args.folder}", file=sys.stderr)
        return 1

    print("╔════════════════════════════════════════════════════════════╗")
    print("║  Map Tile Unzoomer                                         ║")
    print("╚════════════════════════════════════════════════════════════╝")
    print()
    print(f"Folder:      {folder.absolute()}")
    print(f"Zoom range:  {args.min_zoom} to {args.max_zoom}")
    print(f"Tile size:   {args.tile_size * 2}x{args.tile_size * 2} pixels")
    print()

    try:
        written = tile_pyramid.build_pyramid(
            folder,
            max_zoom=args.max_zoom,
            min_zoom=args.min_zoom,
            tile_size=args.tile_size,
            workers=args.workers,
            optimize=args.optimize,
            progress=None if args.no_progress else level_progress_bar,
        )
    except PyramidError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    print()
    print(f"✅ Done! Wrote {sum(written.values())} tiles across {len(written)} zoom levels")
    return 0


if __name__ == '__main__':
    sys.exit(main())
