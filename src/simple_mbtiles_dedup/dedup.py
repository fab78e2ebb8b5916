# %%
#|export
import hashlib
from collections import Counter
from typing import Dict, Optional, Tuple

from .errors import IntegrityConflict


def fingerprint(data: bytes) -> bytes:
    """Second digest of a payload, independent of the content hash"""
    return hashlib.sha256(data).digest()


class DedupIndex:
    """Content hash -> payload fingerprint seen during one conversion pass.

    Decides whether a tile needs a new `images` row or can reference one
    already written. Only a fixed-size SHA-256 fingerprint is kept per hash,
    so memory grows with the number of distinct tiles, not their size. The
    durable copy of this state is the target's images table; an index is
    never reused across conversions.
    """

    def __init__(self):
        self._fingerprints: Dict[str, bytes] = {}
        self._references: Counter = Counter()
        self.duplicates = 0

    def intern(self, tile_hash: str, data: bytes,
               coord: Optional[Tuple[int, int, int]] = None) -> Tuple[str, bool]:
        """Return (tile_id, is_new); is_new means an images insert is required"""
        seen = self._fingerprints.get(tile_hash)
        digest = fingerprint(data)
        if seen is None:
            self._fingerprints[tile_hash] = digest
            self._references[tile_hash] += 1
            return tile_hash, True
        if seen != digest:
            raise IntegrityConflict(
                "Different tile payloads share one content hash", coord=coord, tile_hash=tile_hash
            )
        self._references[tile_hash] += 1
        self.duplicates += 1
        return tile_hash, False

    def references(self, tile_id: str) -> int:
        return self._references[tile_id]

    def __contains__(self, tile_id: str) -> bool:
        return tile_id in self._fingerprints

    def __len__(self) -> int:
        return len(self._fingerprints)
