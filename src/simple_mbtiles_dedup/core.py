# %%
#|export
import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from .hashing import AGG_TILES_HASH, aggregate_hash
from .schema import METADATA, MbtType, detect_type, list_objects
from .store import TileStore, store_for

logger = logging.getLogger(__name__)


def read_metadata(conn: sqlite3.Connection) -> Dict[str, str]:
    if list_objects(conn).get("metadata") != "table":
        return {}
    return {name: value for name, value in conn.execute("SELECT name, value FROM metadata")}


def write_metadata(conn: sqlite3.Connection, name: str, value: Optional[str]) -> None:
    """Set or, with value None, delete one metadata entry"""
    if value is None:
        conn.execute("DELETE FROM metadata WHERE name = ?", (name,))
        return
    # metadata tables in the wild often lack a primary key, so no INSERT OR REPLACE
    updated = conn.execute("UPDATE metadata SET value = ? WHERE name = ?", (value, name)).rowcount
    if updated == 0:
        conn.execute("INSERT INTO metadata (name, value) VALUES (?, ?)", (name, value))


class MBTilesDB:
    def __init__(self, db_path: Union[str, Path], create: bool = False):
        self.db_path = Path(db_path)
        if not create and not self.db_path.exists():
            raise FileNotFoundError(f"MBTiles file not found: {db_path}")

    def __repr__(self) -> str:
        return f"MBTilesDB({str(self.db_path)!r})"

    @contextlib.contextmanager
    def get_connection(self, readonly: bool = False) -> Iterator[sqlite3.Connection]:
        """Create a new connection for each operation"""
        if readonly:
            conn = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True, isolation_level=None)
        else:
            conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One write transaction; anything raised inside rolls all of it back"""
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                # sqlite may already have rolled back on its own, e.g. on SQLITE_FULL
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def same_file(self, other: "MBTilesDB") -> bool:
        return self.db_path.resolve() == other.db_path.resolve()

    # %%
    def detect_type(self) -> Optional[MbtType]:
        with self.get_connection(readonly=True) as conn:
            return detect_type(conn, self.db_path)

    def store(self) -> Optional[TileStore]:
        mbt_type = self.detect_type()
        return store_for(mbt_type) if mbt_type is not None else None

    def get_metadata(self) -> Dict:
        with self.get_connection(readonly=True) as conn:
            return read_metadata(conn)

    def get_metadata_value(self, name: str) -> Optional[str]:
        return self.get_metadata().get(name)

    def set_metadata_value(self, name: str, value: Optional[str]) -> None:
        with self.transaction() as conn:
            conn.execute(METADATA.create_sql())
            write_metadata(conn, name, value)

    def get_tile(self, z: int, x: int, y: int, store: Optional[TileStore] = None) -> Optional[bytes]:
        """Tile payload at a TMS address; pass `store` to skip layout detection"""
        store = store or self.store()
        if store is None:
            return None
        with self.get_connection(readonly=True) as conn:
            result = conn.execute(
                f'SELECT CAST(tile_data AS BLOB) FROM {store.relation} WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?',
                (z, x, y),
            ).fetchone()
            return result[0] if result else None

    # %%
    def get_agg_tiles_hash(self) -> Optional[str]:
        return self.get_metadata_value(AGG_TILES_HASH)

    def compute_agg_tiles_hash(self) -> str:
        store = self.store()
        with self.get_connection(readonly=True) as conn:
            return aggregate_hash(store.tile_hashes(conn) if store is not None else ())

    def update_agg_tiles_hash(self) -> str:
        """Recompute the aggregate hash and store it in metadata"""
        with self.transaction() as conn:
            mbt_type = detect_type(conn, self.db_path)
            value = aggregate_hash(store_for(mbt_type).tile_hashes(conn) if mbt_type is not None else ())
            conn.execute(METADATA.create_sql())
            write_metadata(conn, AGG_TILES_HASH, value)
        logger.info(f"Updated {AGG_TILES_HASH} of {self.db_path} to {value}")
        return value
