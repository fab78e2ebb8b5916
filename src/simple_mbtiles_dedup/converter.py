# %%
#|export
"""
Copy tiles between MBTiles layouts, deduplicating payloads on the way.

A conversion reads every tile of the source in (zoom, column, row) order,
hashes it, asks the DedupIndex whether the payload was already written, and
writes the tile into the target layout. Everything that touches the target
happens inside a single transaction, so a failed or interrupted conversion
leaves the target exactly as it was.
"""
import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from itertools import islice
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .config import ConvertConfig, IfExists
from .core import MBTilesDB, read_metadata, write_metadata
from .dedup import DedupIndex
from .errors import SourceReadError, TargetNotEmpty, TargetWriteError, UnsupportedSchemaVariant
from .hashing import AGG_TILES_HASH, aggregate_hash, content_hash
from .schema import MbtType, detect_type, drop_schema, init_schema
from .store import TileCoord, TileStore, store_for

logger = logging.getLogger(__name__)

Hasher = Callable[[bytes], str]


@dataclass
class ConvertSummary:
    source_type: MbtType
    target_type: MbtType
    tiles_read: int = 0
    tiles_written: int = 0
    unique_tiles: int = 0
    deduplicated: int = 0
    skipped: int = 0
    ignored: int = 0
    orphans_removed: int = 0
    agg_tiles_hash: Optional[str] = None
    elapsed: float = 0.0

    def as_dict(self) -> Dict:
        data = asdict(self)
        data["source_type"] = str(self.source_type)
        data["target_type"] = str(self.target_type)
        return data


class Progress:
    def __init__(self, every: int):
        self.every = every
        self.start_time = time.monotonic()
        self.done = 0

    def advance(self) -> None:
        self.done += 1
        if self.every and self.done % self.every == 0:
            logger.info(str(self))

    def __str__(self) -> str:
        elapsed = time.monotonic() - self.start_time
        speed = self.done / elapsed if elapsed > 0 else 0.0
        return f"[{elapsed:.1f}s] {self.done} tiles @ {speed:.1f}/s"


# %%
def _read_source(store: TileStore, conn: sqlite3.Connection, zooms: Optional[List[int]],
                 path: Path, summary: ConvertSummary) -> Iterator[Tuple[TileCoord, bytes]]:
    last = None
    try:
        for coord, data in store.read_tiles(conn, zooms):
            last = coord
            if data is None:
                logger.warning(f"Tile {coord} has no data, skipping")
                summary.skipped += 1
                continue
            summary.tiles_read += 1
            yield coord, data
    except sqlite3.Error as e:
        raise SourceReadError(f"Failed to read tiles from {path}: {e}", coord=last) from e


def _batches(tiles: Iterable, size: int) -> Iterator[list]:
    it = iter(tiles)
    while True:
        batch = list(islice(it, size))
        if not batch:
            return
        yield batch


def _prepare_target(conn: sqlite3.Connection, path: Path, config: ConvertConfig) -> MbtType:
    """Create, truncate or reuse the target layout according to the if-exists policy"""
    try:
        existing = detect_type(conn, path)
    except UnsupportedSchemaVariant:
        if config.if_exists is not IfExists.OVERWRITE:
            raise
        logger.warning(f"Replacing unrecognized tile layout in {path}")
        drop_schema(conn)
        existing = None

    if existing is not None and store_for(existing).has_tiles(conn):
        if config.if_exists is IfExists.FAIL:
            raise TargetNotEmpty(f"{path} already contains tiles, choose overwrite or append")
        if config.if_exists is IfExists.APPEND:
            if existing is not config.dst_type:
                raise UnsupportedSchemaVariant(
                    f"cannot append to a {existing} archive as {config.dst_type}", path
                )
            logger.info(f"Appending to existing {existing} archive {path}")
            init_schema(conn, existing)
            return existing
        logger.info(f"Overwriting existing {existing} archive {path}")

    if existing is not None:
        drop_schema(conn)
    init_schema(conn, config.dst_type)
    return config.dst_type


def _copy_metadata(src_conn: sqlite3.Connection, dst_conn: sqlite3.Connection, path: Path,
                   set_meta: Dict[str, str]) -> None:
    try:
        metadata = read_metadata(src_conn)
    except sqlite3.Error as e:
        raise SourceReadError(f"Failed to read metadata from {path}: {e}") from e
    for name, value in metadata.items():
        if name == AGG_TILES_HASH:
            continue
        write_metadata(dst_conn, name, value)
    for name, value in set_meta.items():
        logger.info(f"Setting metadata key={name} value={value}")
        write_metadata(dst_conn, name, value)


# %%
def convert(source: MBTilesDB, target: MBTilesDB, config: Optional[ConvertConfig] = None,
            hasher: Hasher = content_hash) -> ConvertSummary:
    """Copy all tiles of `source` into `target` in one transaction"""
    config = config or ConvertConfig()
    if source.same_file(target):
        raise ValueError(f"Source and target are the same file: {source.db_path}")

    try:
        source_type = source.detect_type()
    except sqlite3.Error as e:
        raise SourceReadError(f"Failed to open {source.db_path}: {e}") from e
    if source_type is None:
        raise UnsupportedSchemaVariant("no tile tables found", source.db_path)
    source_store = store_for(source_type)

    started = time.monotonic()
    created = not target.db_path.exists()
    logger.info(f"Converting {source.db_path} ({source_type}) to {target.db_path} ({config.dst_type})")
    try:
        with source.get_connection(readonly=True) as src_conn:
            # source reads are wrapped where they happen, so anything left is the target's
            try:
                with target.transaction() as dst_conn:
                    target_type = _prepare_target(dst_conn, target.db_path, config)
                    summary = ConvertSummary(source_type, target_type)
                    _copy_tiles(source_store, src_conn, store_for(target_type), dst_conn,
                                source.db_path, config, hasher, summary)
                    _copy_metadata(src_conn, dst_conn, source.db_path, config.set_meta)
                    if config.skip_agg_hash:
                        write_metadata(dst_conn, AGG_TILES_HASH, None)
                    else:
                        logger.info(f"Computing {AGG_TILES_HASH} value...")
                        summary.agg_tiles_hash = aggregate_hash(store_for(target_type).tile_hashes(dst_conn))
                        write_metadata(dst_conn, AGG_TILES_HASH, summary.agg_tiles_hash)
            except sqlite3.Error as e:
                raise TargetWriteError(f"Failed to write {target.db_path}: {e}") from e
    except BaseException:
        if created:
            target.db_path.unlink(missing_ok=True)
        raise

    summary.elapsed = time.monotonic() - started
    logger.info(
        f"Wrote {summary.tiles_written} tiles ({summary.unique_tiles} unique, "
        f"{summary.deduplicated} deduplicated) to {target.db_path} in {summary.elapsed:.1f}s"
    )
    return summary


def _copy_tiles(source_store: TileStore, src_conn: sqlite3.Connection, target_store: TileStore,
                dst_conn: sqlite3.Connection, path: Path, config: ConvertConfig, hasher: Hasher,
                summary: ConvertSummary) -> None:
    index = DedupIndex()
    progress = Progress(config.progress_every)
    tiles = _read_source(source_store, src_conn, config.zooms(), path, summary)
    executor = ThreadPoolExecutor(max_workers=config.workers) if config.workers > 1 else None
    try:
        for batch in _batches(tiles, config.batch_size):
            payloads = [data for _, data in batch]
            hashes = list(executor.map(hasher, payloads)) if executor else [hasher(d) for d in payloads]
            for (coord, data), tile_hash in zip(batch, hashes):
                tile_id, is_new = index.intern(tile_hash, data, coord)
                if target_store.write_tile(dst_conn, coord, data, tile_id, is_new, config.on_duplicate):
                    summary.tiles_written += 1
                else:
                    logger.debug(f"Tile {coord} already exists, keeping existing")
                    summary.ignored += 1
                progress.advance()
    finally:
        if executor is not None:
            executor.shutdown()

    summary.unique_tiles = len(index)
    summary.deduplicated = index.duplicates
    summary.orphans_removed = target_store.remove_orphans(dst_conn)
    if summary.ignored:
        logger.warning(f"{summary.ignored} tiles already existed in the target and were kept")
    logger.info(str(progress))
