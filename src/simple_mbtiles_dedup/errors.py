# %%
#|export
from pathlib import Path
from typing import Optional, Tuple, Union


class MBTilesError(Exception):
    """Base class for every error raised by this package"""


class UnsupportedSchemaVariant(MBTilesError):
    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class ConvertError(MBTilesError):
    """A conversion attempt failed and its transaction was rolled back"""

    def __init__(self, message: str, coord: Optional[Tuple[int, int, int]] = None,
                 tile_hash: Optional[str] = None):
        self.coord = tuple(coord) if coord is not None else None
        self.tile_hash = tile_hash
        context = []
        if self.coord is not None:
            context.append("tile {}/{}/{}".format(*self.coord))
        if tile_hash is not None:
            context.append(f"hash {tile_hash}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class SourceReadError(ConvertError):
    pass


class IntegrityConflict(ConvertError):
    """Two different payloads resolved to the same content hash"""


class TargetWriteError(ConvertError):
    pass


class TargetNotEmpty(TargetWriteError):
    pass
