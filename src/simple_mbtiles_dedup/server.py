# %%
#|export
from pathlib import Path
from typing import Union, Optional
from fastapi import FastAPI, HTTPException
from fastapi.staticfiles import StaticFiles
from fastapi.responses import Response
import logging
import gzip

from .core import MBTilesDB
from .store import store_for
from .validation import validate

logger = logging.getLogger(__name__)

def flip_y(zoom: int, y: int) -> int:
    """Convert between TMS and XYZ tile coordinates"""
    return (1 << zoom) - 1 - y

def create_app(mbtiles_path: Union[str, Path], static_dir: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="Simple MBTiles Dedup")
    db = MBTilesDB(mbtiles_path)
    mbt_type = db.detect_type()
    store = store_for(mbt_type) if mbt_type is not None else None
    logger.info(f"Serving {db.db_path} ({mbt_type or 'no tiles'})")

    if static_dir:
        app.mount("/static", StaticFiles(directory=static_dir), name="static")

    @app.get("/metadata")
    async def get_metadata():
        metadata = db.get_metadata()
        metadata["mbtiles_type"] = str(mbt_type) if mbt_type else None
        return metadata

    @app.get("/validate")
    async def get_validation():
        return validate(db).as_dict()

    @app.get("/tiles/{z}/{x}/{y}")
    async def get_tile(z: int, x: int, y: str):
        # Strip file extension if present
        try:
            xyz_y = int(y.split('.')[0])
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid tile row")

        # Convert XYZ to TMS
        tms_y = flip_y(z, xyz_y)
        logger.debug(f"Tile request - XYZ:{z}/{x}/{xyz_y} -> TMS:{z}/{x}/{tms_y}")

        tile_data = db.get_tile(z, x, tms_y, store) if store is not None else None
        if tile_data is None:
            logger.info(f"Tile not found in database - TMS:{z}/{x}/{tms_y}")
            raise HTTPException(status_code=404, detail="Tile not found")

        # Check if the data is gzipped
        if tile_data.startswith(b'\x1f\x8b'):  # gzip magic number
            try:
                tile_data = gzip.decompress(tile_data)
            except (OSError, EOFError) as e:
                logger.error(f"Error decompressing tile {z}/{x}/{tms_y}: {e}")
                raise HTTPException(status_code=500, detail="Error processing tile data")

        return Response(
            content=tile_data,
            media_type="application/x-protobuf"
        )

    return app
