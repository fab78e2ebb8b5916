# %%
import sqlite3

import pytest

from simple_mbtiles_dedup.errors import UnsupportedSchemaVariant
from simple_mbtiles_dedup.schema import (
    FLAT_TILES,
    MAP,
    TILES_VIEW,
    TILES_WITH_HASH_VIEW,
    MbtType,
    detect_type,
    drop_schema,
    init_schema,
    list_objects,
    schema_objects,
)

# %%
@pytest.fixture
def conn():
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()


def test_table_ddl():
    assert FLAT_TILES.create_sql() == (
        "CREATE TABLE IF NOT EXISTS tiles (zoom_level INTEGER NOT NULL, tile_column INTEGER NOT NULL, "
        "tile_row INTEGER NOT NULL, tile_data BLOB, PRIMARY KEY (zoom_level, tile_column, tile_row))"
    )
    assert MAP.column_names == ("zoom_level", "tile_column", "tile_row", "tile_id")


def test_view_ddl_is_a_join():
    sql = TILES_WITH_HASH_VIEW.create_sql()
    assert sql.startswith("CREATE VIEW IF NOT EXISTS tiles_with_hash AS SELECT")
    assert "images.tile_id AS tile_hash" in sql
    assert sql.endswith("FROM map JOIN images ON images.tile_id = map.tile_id")
    assert TILES_VIEW.column_names == ("zoom_level", "tile_column", "tile_row", "tile_data")


def test_parse_type():
    assert MbtType.parse("flat") is MbtType.FLAT
    assert MbtType.parse("Hash_Verified") is MbtType.HASH_VERIFIED
    assert MbtType.parse(MbtType.NORMALIZED) is MbtType.NORMALIZED
    with pytest.raises(ValueError):
        MbtType.parse("flat-with-hash")


def test_schema_objects_per_type():
    names = lambda t: [obj.name for obj in schema_objects(t)]
    assert names(MbtType.FLAT) == ["metadata", "tiles"]
    assert "tiles_with_hash" not in names(MbtType.NORMALIZED)
    assert names(MbtType.HASH_VERIFIED)[-1] == "tiles_with_hash"

# %%
@pytest.mark.parametrize("mbt_type", list(MbtType))
def test_detect_what_was_created(conn, mbt_type):
    init_schema(conn, mbt_type)
    assert detect_type(conn) is mbt_type


def test_detect_empty_database(conn):
    assert detect_type(conn) is None
    conn.execute("CREATE TABLE metadata (name text, value text)")
    assert detect_type(conn) is None


def test_detect_normalized_without_tiles_view(conn):
    conn.execute("CREATE TABLE images (tile_data blob, tile_id text)")
    conn.execute("CREATE TABLE map (zoom_level integer, tile_column integer, tile_row integer, tile_id text)")
    assert detect_type(conn) is MbtType.NORMALIZED


def test_detect_rejects_map_without_images(conn):
    conn.execute("CREATE TABLE map (zoom_level integer, tile_column integer, tile_row integer, tile_id text)")
    with pytest.raises(UnsupportedSchemaVariant):
        detect_type(conn)


def test_detect_rejects_tiles_missing_columns(conn):
    conn.execute("CREATE TABLE tiles (z integer, x integer, y integer, data blob)")
    with pytest.raises(UnsupportedSchemaVariant, match="tiles table"):
        detect_type(conn)


def test_detect_rejects_flat_with_hash_table(conn):
    conn.execute(
        "CREATE TABLE tiles_with_hash (zoom_level integer, tile_column integer, tile_row integer, "
        "tile_data blob, tile_hash text)"
    )
    conn.execute("CREATE VIEW tiles AS SELECT zoom_level, tile_column, tile_row, tile_data FROM tiles_with_hash")
    with pytest.raises(UnsupportedSchemaVariant):
        detect_type(conn, "flat-with-hash.mbtiles")

# %%
def test_drop_schema_removes_every_layout(conn):
    init_schema(conn, MbtType.HASH_VERIFIED)
    conn.execute("INSERT INTO metadata VALUES ('name', 'x')")
    drop_schema(conn)
    assert list_objects(conn) == {"metadata": "table"}
    assert conn.execute("SELECT COUNT(*) FROM metadata").fetchone()[0] == 0

    init_schema(conn, MbtType.FLAT)
    drop_schema(conn)
    assert detect_type(conn) is None


def test_views_follow_table_changes(conn):
    init_schema(conn, MbtType.HASH_VERIFIED)
    conn.execute("INSERT INTO images VALUES ('ABC', x'01')")
    conn.execute("INSERT INTO map VALUES (1, 0, 0, 'ABC')")
    assert conn.execute("SELECT tile_data FROM tiles").fetchall() == [(b"\x01",)]
    conn.execute("UPDATE images SET tile_data = x'02'")
    assert conn.execute("SELECT tile_data, tile_hash FROM tiles_with_hash").fetchall() == [(b"\x02", "ABC")]
