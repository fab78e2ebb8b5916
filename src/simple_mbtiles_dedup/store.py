# %%
#|export
import logging
import sqlite3
from enum import Enum
from typing import Iterable, Iterator, NamedTuple, Optional, Tuple

from .errors import IntegrityConflict, SourceReadError, TargetWriteError
from .hashing import content_hash
from .schema import MbtType

logger = logging.getLogger(__name__)


class TileCoord(NamedTuple):
    """TMS tile address as stored in MBTiles"""
    z: int
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


class OnDuplicate(Enum):
    """What to do when a coordinate is already present in the target"""
    ABORT = "abort"
    OVERRIDE = "override"
    IGNORE = "ignore"

    @property
    def verb(self) -> str:
        return {OnDuplicate.ABORT: "INSERT", OnDuplicate.OVERRIDE: "INSERT OR REPLACE",
                OnDuplicate.IGNORE: "INSERT OR IGNORE"}[self]


def _write(conn: sqlite3.Connection, sql: str, params: tuple, coord: TileCoord,
           tile_hash: Optional[str] = None) -> int:
    try:
        return conn.execute(sql, params).rowcount
    except sqlite3.IntegrityError as e:
        raise TargetWriteError(f"Tile already exists in target: {e}", coord=coord, tile_hash=tile_hash) from e
    except sqlite3.Error as e:
        raise TargetWriteError(f"Unable to write tile: {e}", coord=coord, tile_hash=tile_hash) from e


# %%
class TileStore:
    """Read/write access to the tiles of one layout.

    The converter only talks to this interface, so it does not care whether
    the rows end up in one table or are split into images and map.
    """
    mbt_type: MbtType
    relation: str

    def _select(self, columns: str, zooms: Optional[Iterable[int]]) -> Tuple[str, tuple]:
        sql = f"SELECT {columns} FROM {self.relation}"
        params: tuple = ()
        if zooms is not None:
            params = tuple(sorted(set(zooms)))
            sql += f" WHERE zoom_level IN ({', '.join('?' * len(params))})"
        return sql + " ORDER BY zoom_level, tile_column, tile_row", params

    def read_tiles(self, conn: sqlite3.Connection,
                   zooms: Optional[Iterable[int]] = None) -> Iterator[Tuple[TileCoord, Optional[bytes]]]:
        # TEXT cells come back as their bytes
        sql, params = self._select("zoom_level, tile_column, tile_row, CAST(tile_data AS BLOB)", zooms)
        for z, x, y, data in conn.execute(sql, params):
            yield TileCoord(z, x, y), data

    def tile_count(self, conn: sqlite3.Connection) -> int:
        return conn.execute(f"SELECT COUNT(*) FROM {self.relation}").fetchone()[0]

    def has_tiles(self, conn: sqlite3.Connection) -> bool:
        return conn.execute(f"SELECT 1 FROM {self.relation} LIMIT 1").fetchone() is not None

    def tile_hashes(self, conn: sqlite3.Connection) -> Iterator[str]:
        for _, data in self.read_tiles(conn):
            if data is not None:
                yield content_hash(data)

    def write_tile(self, conn: sqlite3.Connection, coord: TileCoord, data: bytes, tile_id: str,
                   is_new: bool, on_duplicate: OnDuplicate = OnDuplicate.ABORT) -> bool:
        """Store one tile, returns False if an existing tile was kept instead"""
        raise NotImplementedError

    def remove_orphans(self, conn: sqlite3.Connection) -> int:
        return 0


class FlatStore(TileStore):
    mbt_type = MbtType.FLAT
    relation = "tiles"

    def write_tile(self, conn, coord, data, tile_id, is_new, on_duplicate=OnDuplicate.ABORT):
        written = _write(
            conn,
            f"{on_duplicate.verb} INTO tiles (zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
            (coord.z, coord.x, coord.y, data),
            coord,
            tile_id,
        )
        return written > 0


class NormalizedStore(TileStore):
    relation = "map LEFT JOIN images ON images.tile_id = map.tile_id"

    def __init__(self, mbt_type: MbtType = MbtType.NORMALIZED):
        self.mbt_type = mbt_type

    def read_tiles(self, conn, zooms=None):
        sql, params = self._select(
            "zoom_level, tile_column, tile_row, CAST(tile_data AS BLOB), map.tile_id, images.tile_id IS NULL",
            zooms,
        )
        for z, x, y, data, tile_id, dangling in conn.execute(sql, params):
            coord = TileCoord(z, x, y)
            if dangling:
                raise SourceReadError("Map row references a missing image", coord=coord, tile_hash=tile_id)
            yield coord, data

    def tile_hashes(self, conn):
        # each image counts once however many map rows point at it
        rows = conn.execute(
            "SELECT CAST(tile_data AS BLOB) FROM images "
            "WHERE tile_id IN (SELECT tile_id FROM map) AND tile_data IS NOT NULL"
        )
        for (data,) in rows:
            yield content_hash(data)

    def write_image(self, conn: sqlite3.Connection, coord: TileCoord, tile_id: str, data: bytes) -> bool:
        inserted = _write(conn, "INSERT OR IGNORE INTO images (tile_id, tile_data) VALUES (?, ?)",
                          (tile_id, data), coord, tile_id)
        if inserted:
            return True
        # written by an earlier pass; must hold the same payload
        existing = conn.execute("SELECT tile_data FROM images WHERE tile_id = ?", (tile_id,)).fetchone()[0]
        if existing != data:
            raise IntegrityConflict("Target image holds a different payload for this hash",
                                    coord=coord, tile_hash=tile_id)
        return False

    def write_tile(self, conn, coord, data, tile_id, is_new, on_duplicate=OnDuplicate.ABORT):
        if is_new:
            self.write_image(conn, coord, tile_id, data)
        written = _write(
            conn,
            f"{on_duplicate.verb} INTO map (zoom_level, tile_column, tile_row, tile_id) VALUES (?, ?, ?, ?)",
            (coord.z, coord.x, coord.y, tile_id),
            coord,
            tile_id,
        )
        return written > 0

    def remove_orphans(self, conn):
        removed = conn.execute("DELETE FROM images WHERE tile_id NOT IN (SELECT tile_id FROM map)").rowcount
        if removed:
            logger.info(f"Removed {removed} unreferenced images")
        return removed


def store_for(mbt_type: MbtType) -> TileStore:
    if mbt_type is MbtType.FLAT:
        return FlatStore()
    return NormalizedStore(mbt_type)
