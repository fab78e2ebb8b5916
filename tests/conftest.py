# %%
import sqlite3
from pathlib import Path
from typing import Dict, Optional, Tuple

import pytest

Coord = Tuple[int, int, int]

# %%
def create_flat_mbtiles(path: Path, tiles: Dict[Coord, Optional[bytes]],
                        metadata: Optional[Dict[str, str]] = None) -> Path:
    """Write a plain one-table MBTiles file the way most tile generators do"""
    conn = sqlite3.connect(path)
    cursor = conn.cursor()
    cursor.execute('CREATE TABLE metadata (name text, value text)')
    cursor.execute('''
        CREATE TABLE tiles (
            zoom_level integer,
            tile_column integer,
            tile_row integer,
            tile_data blob
        )
    ''')
    cursor.executemany("INSERT INTO metadata VALUES (?, ?)", (metadata or {}).items())
    cursor.executemany(
        "INSERT INTO tiles VALUES (?, ?, ?, ?)",
        [(z, x, y, data) for (z, x, y), data in tiles.items()],
    )
    conn.commit()
    conn.close()
    return path


def read_all_tiles(path: Path) -> Dict[Coord, bytes]:
    """Tiles as seen through the `tiles` table or view"""
    conn = sqlite3.connect(path)
    try:
        rows = conn.execute("SELECT zoom_level, tile_column, tile_row, tile_data FROM tiles")
        return {(z, x, y): bytes(data) for z, x, y, data in rows}
    finally:
        conn.close()


def read_metadata_table(path: Path) -> Dict[str, str]:
    conn = sqlite3.connect(path)
    try:
        return dict(conn.execute("SELECT name, value FROM metadata"))
    finally:
        conn.close()


def count_rows(path: Path, table: str) -> int:
    conn = sqlite3.connect(path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()

# %%
TILE_A = b"\x89PNG tile A"
TILE_B = b"\x89PNG tile B"
TILE_C = b"\x89PNG tile C"


@pytest.fixture
def scenario_tiles() -> Dict[Coord, bytes]:
    """Four tiles at zoom 6, B stored twice"""
    return {
        (6, 0, 3): TILE_A,
        (6, 0, 5): TILE_B,
        (6, 1, 4): TILE_C,
        (6, 2, 6): TILE_B,
    }


@pytest.fixture
def flat_source(tmp_path, scenario_tiles) -> Path:
    return create_flat_mbtiles(
        tmp_path / "source.mbtiles",
        scenario_tiles,
        {"name": "scenario", "format": "png", "agg_tiles_hash": "STALE"},
    )
