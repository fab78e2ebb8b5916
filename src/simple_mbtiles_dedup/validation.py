# %%
#|export
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from .core import MBTilesDB, read_metadata
from .hashing import AGG_TILES_HASH, EMPTY_AGG_HASH, aggregate_hash, content_hash
from .schema import MbtType, detect_type
from .store import store_for

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    path: str
    mbt_type: Optional[MbtType] = None
    tile_count: int = 0
    image_count: int = 0
    hash_mismatches: List[str] = field(default_factory=list)
    missing_images: List[Tuple[int, int, int]] = field(default_factory=list)
    orphan_images: List[str] = field(default_factory=list)
    stored_agg_hash: Optional[str] = None
    computed_agg_hash: str = EMPTY_AGG_HASH

    @property
    def agg_hash_matches(self) -> Optional[bool]:
        """None when the archive carries no stored hash to compare against"""
        if self.stored_agg_hash is None:
            return None
        return self.stored_agg_hash.upper() == self.computed_agg_hash

    @property
    def content_ok(self) -> bool:
        return not (self.hash_mismatches or self.missing_images or self.orphan_images)

    @property
    def ok(self) -> bool:
        return self.content_ok and self.agg_hash_matches is not False

    def as_dict(self) -> Dict:
        data = asdict(self)
        data["mbt_type"] = str(self.mbt_type) if self.mbt_type else None
        data["agg_hash_matches"] = self.agg_hash_matches
        data["ok"] = self.ok
        return data


def validate(db: MBTilesDB, update: bool = False) -> ValidationReport:
    """Re-derive every hash of an archive and compare with what it stores.

    With update=True the recomputed aggregate hash is written to metadata,
    but only if the per-tile checks found nothing wrong.
    """
    report = ValidationReport(path=str(db.db_path))
    with db.get_connection(readonly=True) as conn:
        report.mbt_type = detect_type(conn, db.db_path)
        report.stored_agg_hash = read_metadata(conn).get(AGG_TILES_HASH)
        if report.mbt_type is None:
            logger.warning(f"{db.db_path} has no tile tables")
        else:
            store = store_for(report.mbt_type)
            report.tile_count = store.tile_count(conn)
            if report.mbt_type.is_normalized:
                _check_images(conn, report)
            report.computed_agg_hash = aggregate_hash(store.tile_hashes(conn))

    for tile_id in report.hash_mismatches:
        logger.error(f"Image {tile_id} does not match the hash of its data")
    if report.missing_images:
        logger.error(f"{len(report.missing_images)} map rows reference missing images")
    if report.orphan_images:
        logger.warning(f"{len(report.orphan_images)} images are not referenced by any tile")

    if report.agg_hash_matches is None:
        logger.warning(f"{db.db_path} has no {AGG_TILES_HASH} metadata value")
    elif not report.agg_hash_matches:
        logger.error(
            f"{AGG_TILES_HASH} mismatch: stored {report.stored_agg_hash}, computed {report.computed_agg_hash}"
        )

    if update and report.content_ok and not report.agg_hash_matches:
        db.set_metadata_value(AGG_TILES_HASH, report.computed_agg_hash)
        report.stored_agg_hash = report.computed_agg_hash
        logger.info(f"Updated {AGG_TILES_HASH} to {report.computed_agg_hash}")
    return report


def _check_images(conn, report: ValidationReport) -> None:
    for tile_id, data in conn.execute("SELECT tile_id, CAST(tile_data AS BLOB) FROM images ORDER BY tile_id"):
        report.image_count += 1
        if data is not None and content_hash(data) != tile_id.upper():
            report.hash_mismatches.append(tile_id)
    report.missing_images = [
        tuple(row) for row in conn.execute(
            "SELECT zoom_level, tile_column, tile_row FROM map "
            "WHERE tile_id NOT IN (SELECT tile_id FROM images) "
            "ORDER BY zoom_level, tile_column, tile_row"
        )
    ]
    report.orphan_images = [
        tile_id for (tile_id,) in conn.execute(
            "SELECT tile_id FROM images WHERE tile_id NOT IN (SELECT tile_id FROM map) ORDER BY tile_id"
        )
    ]
