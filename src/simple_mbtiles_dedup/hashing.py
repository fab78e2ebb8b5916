# %%
#|export
import hashlib
from typing import Iterable, Union

AGG_TILES_HASH = "agg_tiles_hash"

# MD5 of zero bytes, the aggregate over an archive without tiles
EMPTY_AGG_HASH = "D41D8CD98F00B204E9800998ECF8427E"

BytesLike = Union[bytes, bytearray, memoryview]


def content_hash(data: BytesLike) -> str:
    """Uppercase hex MD5 of a tile payload, used as `tile_id` in normalized archives"""
    return hashlib.md5(data).hexdigest().upper()


def aggregate_hash(hashes: Iterable[str]) -> str:
    """Combine per-tile hashes into one archive digest.

    Every distinct hash counts once, and hashes are sorted before being
    concatenated, so the result does not depend on row order, on how many
    coordinates share a payload, or on the schema variant they came from.
    """
    md5 = hashlib.md5()
    for tile_hash in sorted({h.upper() for h in hashes}):
        md5.update(tile_hash.encode("ascii"))
    return md5.hexdigest().upper()
