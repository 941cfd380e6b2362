"""Tests for the unzoom command line."""

from pathlib import Path

import pytest

import unzoom


def test_missing_folder_exits_with_error(tmp_path: Path, capsys) -> None:
    assert unzoom.main([str(tmp_path / "missing")]) == 1
    assert "Folder does not exist" in capsys.readouterr().err


def test_builds_pyramid(root: Path, make_tile, capsys) -> None:
    make_tile(3, 0, 0, size=32)
    make_tile(3, 0, 1, size=32)

    code = unzoom.main([str(root), "--max-zoom", "5", "--tile-size", "16", "--no-progress"])

    assert code == 0
    for zoom in range(3):
        assert (root / str(zoom) / "0" / "0.png").exists()
    out = capsys.readouterr().out
    assert "Starting zoom level: 3" in out
    assert "Total PNG files at zoom level 3: 2" in out


def test_progress_bar_and_workers(root: Path, make_tile) -> None:
    for x in range(4):
        make_tile(2, x, x, size=16)

    code = unzoom.main([str(root), "--max-zoom", "2", "--tile-size", "8", "--workers", "2", "--optimize"])

    assert code == 0
    assert sorted(p.name for p in (root / "1").iterdir()) == ["0", "1"]


def test_corrupt_tile_exits_with_error(root: Path, capsys) -> None:
    bad = root / "1" / "0" / "0.png"
    bad.parent.mkdir(parents=True)
    bad.write_bytes(b"nope")

    assert unzoom.main([str(root), "--max-zoom", "1", "--no-progress"]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_defaults() -> None:
    args = unzoom.parse_args(["tiles"])
    assert args.folder == "tiles"
    assert args.max_zoom == 24
    assert args.min_zoom == 0
    assert args.tile_size == 256
    assert args.workers == 1
    assert not args.optimize


@pytest.mark.parametrize(
    "argv",
    [
        ["tiles", "--min-zoom", "5", "--max-zoom", "3"],
        ["tiles", "--max-zoom", "-1"],
        ["tiles", "--workers", "0"],
        ["tiles", "--tile-size", "0"],
        ["tiles", "--max-zoom", "ten"],
    ],
    ids=["min-above-max", "negative-zoom", "no-workers", "zero-tile-size", "not-a-number"],
)
def test_invalid_arguments(argv) -> None:
    with pytest.raises(SystemExit) as exc_info:
        unzoom.parse_args(argv)
    assert exc_info.value.code == 2


def test_version(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        unzoom.parse_args(["--version"])
    assert exc_info.value.code == 0
    assert unzoom.__version__ in capsys.readouterr().out
