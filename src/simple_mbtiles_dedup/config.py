# %%
#|export
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from .schema import MbtType
from .store import OnDuplicate

MAX_ZOOM = 30


class IfExists(Enum):
    """What to do with a target archive that already holds tiles"""
    FAIL = "fail"
    OVERWRITE = "overwrite"
    APPEND = "append"


@dataclass
class Config:
    mbtiles_file: Path
    start_browser: bool = False
    port: int = 8765
    host: str = "127.0.0.1"
    static_dir: Optional[str] = None


@dataclass
class ConvertConfig:
    dst_type: Union[MbtType, str] = MbtType.NORMALIZED
    if_exists: Union[IfExists, str] = IfExists.FAIL
    on_duplicate: Union[OnDuplicate, str] = OnDuplicate.ABORT
    min_zoom: Optional[int] = None
    max_zoom: Optional[int] = None
    zoom_levels: Optional[List[int]] = None
    set_meta: Dict[str, str] = field(default_factory=dict)
    skip_agg_hash: bool = False
    batch_size: int = 1000
    workers: int = 1
    progress_every: int = 10000

    def __post_init__(self):
        self.dst_type = MbtType.parse(self.dst_type)
        self.if_exists = IfExists(self.if_exists)
        self.on_duplicate = OnDuplicate(self.on_duplicate)
        if self.zoom_levels and (self.min_zoom is not None or self.max_zoom is not None):
            raise ValueError("zoom_levels cannot be combined with min_zoom/max_zoom")
        for zoom in self.zoom_levels or []:
            if not 0 <= zoom <= MAX_ZOOM:
                raise ValueError(f"Zoom level {zoom} is outside 0..{MAX_ZOOM}")
        if self.min_zoom is not None and self.max_zoom is not None and self.min_zoom > self.max_zoom:
            raise ValueError(f"min_zoom {self.min_zoom} is greater than max_zoom {self.max_zoom}")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")

    def zooms(self) -> Optional[List[int]]:
        """Zoom levels to copy, None meaning all of them"""
        if self.zoom_levels:
            return sorted(set(self.zoom_levels))
        if self.min_zoom is None and self.max_zoom is None:
            return None
        low = self.min_zoom if self.min_zoom is not None else 0
        high = self.max_zoom if self.max_zoom is not None else MAX_ZOOM
        return list(range(low, high + 1))
