# %%
#|export
"""
Table and view definitions for the three supported MBTiles layouts.

    flat           tiles(zoom_level, tile_column, tile_row, tile_data)
    normalized     images(tile_id, tile_data) + map(zoom_level, tile_column, tile_row, tile_id)
                   with a `tiles` view joining the two
    hash-verified  normalized plus a `tiles_with_hash` view exposing images.tile_id as tile_hash
"""
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from .errors import UnsupportedSchemaVariant


class MbtType(Enum):
    FLAT = "flat"
    NORMALIZED = "normalized"
    HASH_VERIFIED = "hash-verified"

    @property
    def is_normalized(self) -> bool:
        return self is not MbtType.FLAT

    @property
    def has_hash_view(self) -> bool:
        return self is MbtType.HASH_VERIFIED

    @classmethod
    def parse(cls, value: Union[str, "MbtType"]) -> "MbtType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value.strip().lower().replace("_", "-"))
        except ValueError:
            choices = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown MBTiles type {value!r}, expected one of: {choices}") from None

    def __str__(self) -> str:
        return self.value


# %%
@dataclass(frozen=True)
class Column:
    name: str
    type: str
    not_null: bool = False

    def sql(self) -> str:
        return f"{self.name} {self.type}{' NOT NULL' if self.not_null else ''}"


@dataclass(frozen=True)
class Table:
    name: str
    columns: Tuple[Column, ...]
    primary_key: Tuple[str, ...] = ()

    kind = "table"

    def create_sql(self) -> str:
        parts = [c.sql() for c in self.columns]
        if self.primary_key:
            parts.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        return f"CREATE TABLE IF NOT EXISTS {self.name} ({', '.join(parts)})"

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.columns)


@dataclass(frozen=True)
class Index:
    name: str
    table: str
    columns: Tuple[str, ...]
    unique: bool = False

    kind = "index"

    def create_sql(self) -> str:
        unique = "UNIQUE " if self.unique else ""
        return f"CREATE {unique}INDEX IF NOT EXISTS {self.name} ON {self.table} ({', '.join(self.columns)})"


@dataclass(frozen=True)
class View:
    """A read-time join; never stored"""
    name: str
    columns: Tuple[Tuple[str, str], ...]  # (expression, alias)
    from_table: str
    join_table: str
    join_on: str

    kind = "view"

    def create_sql(self) -> str:
        select = ", ".join(f"{expr} AS {alias}" for expr, alias in self.columns)
        return (
            f"CREATE VIEW IF NOT EXISTS {self.name} AS SELECT {select} "
            f"FROM {self.from_table} JOIN {self.join_table} ON {self.join_on}"
        )

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(alias for _, alias in self.columns)


# %%
COORD_COLUMNS = ("zoom_level", "tile_column", "tile_row")

_coords = tuple(Column(name, "INTEGER", not_null=True) for name in COORD_COLUMNS)

METADATA = Table(
    "metadata",
    (Column("name", "TEXT", not_null=True), Column("value", "TEXT")),
    primary_key=("name",),
)

FLAT_TILES = Table("tiles", _coords + (Column("tile_data", "BLOB"),), primary_key=COORD_COLUMNS)

IMAGES = Table(
    "images",
    (Column("tile_id", "TEXT", not_null=True), Column("tile_data", "BLOB")),
    primary_key=("tile_id",),
)

MAP = Table("map", _coords + (Column("tile_id", "TEXT", not_null=True),), primary_key=COORD_COLUMNS)

MAP_TILE_ID_INDEX = Index("map_tile_id", "map", ("tile_id",))

_joined = tuple((f"map.{name}", name) for name in COORD_COLUMNS) + (("images.tile_data", "tile_data"),)

TILES_VIEW = View("tiles", _joined, "map", "images", "images.tile_id = map.tile_id")

TILES_WITH_HASH_VIEW = View(
    "tiles_with_hash",
    _joined + (("images.tile_id", "tile_hash"),),
    "map",
    "images",
    "images.tile_id = map.tile_id",
)

SchemaObject = Union[Table, Index, View]


def schema_objects(mbt_type: MbtType) -> Tuple[SchemaObject, ...]:
    """Objects to create, in dependency order, for the given layout"""
    if mbt_type is MbtType.FLAT:
        return (METADATA, FLAT_TILES)
    objects = (METADATA, IMAGES, MAP, MAP_TILE_ID_INDEX, TILES_VIEW)
    if mbt_type.has_hash_view:
        objects += (TILES_WITH_HASH_VIEW,)
    return objects


# %%
def list_objects(conn: sqlite3.Connection) -> Dict[str, str]:
    rows = conn.execute("SELECT name, type FROM sqlite_master WHERE type IN ('table', 'view')")
    return {name: kind for name, kind in rows}


def column_names(conn: sqlite3.Connection, name: str) -> Tuple[str, ...]:
    return tuple(row[1] for row in conn.execute(f"PRAGMA table_info({name})"))


def _has_columns(conn: sqlite3.Connection, name: str, expected: Tuple[str, ...]) -> bool:
    return set(expected) <= set(column_names(conn, name))


def detect_type(conn: sqlite3.Connection, path=None) -> Optional[MbtType]:
    """Work out which layout a database uses.

    Returns None when the database holds none of the tile tables, and raises
    UnsupportedSchemaVariant when it holds some of them in a shape that matches
    no known layout.
    """
    objects = list_objects(conn)
    if not any(name in objects for name in ("tiles", "map", "images")):
        return None

    if objects.get("tiles") == "table":
        if _has_columns(conn, "tiles", FLAT_TILES.column_names):
            return MbtType.FLAT
        raise UnsupportedSchemaVariant(
            f"tiles table has columns {column_names(conn, 'tiles')}", path
        )

    if objects.get("map") == "table" and objects.get("images") == "table":
        if not _has_columns(conn, "map", MAP.column_names):
            raise UnsupportedSchemaVariant(f"map table has columns {column_names(conn, 'map')}", path)
        if not _has_columns(conn, "images", IMAGES.column_names):
            raise UnsupportedSchemaVariant(f"images table has columns {column_names(conn, 'images')}", path)
        if objects.get("tiles_with_hash") == "view" and _has_columns(
            conn, "tiles_with_hash", TILES_WITH_HASH_VIEW.column_names
        ):
            return MbtType.HASH_VERIFIED
        return MbtType.NORMALIZED

    found = ", ".join(f"{kind} {name}" for name, kind in sorted(objects.items()))
    raise UnsupportedSchemaVariant(f"unrecognized tile layout ({found})", path)


def init_schema(conn: sqlite3.Connection, mbt_type: MbtType) -> None:
    for obj in schema_objects(mbt_type):
        conn.execute(obj.create_sql())


def drop_schema(conn: sqlite3.Connection) -> None:
    """Remove the tile tables and views of any layout and clear metadata rows"""
    objects = list_objects(conn)
    # views first, they reference map and images
    for name in ("tiles_with_hash", "tiles", "map", "images"):
        kind = objects.get(name)
        if kind in ("table", "view"):
            conn.execute(f"DROP {kind.upper()} {name}")
    if objects.get("metadata") == "table":
        conn.execute("DELETE FROM metadata")
