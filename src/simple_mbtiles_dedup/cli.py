# %%
import argparse
import json
import logging
import sqlite3
import webbrowser
from pathlib import Path
from typing import Tuple
import sys

from .config import Config, ConvertConfig, IfExists
from .converter import convert
from .core import MBTilesDB
from .errors import MBTilesError
from .schema import MbtType
from .store import OnDuplicate
from .validation import validate

logger = logging.getLogger(__name__)

# %%
def parse_key_value(value: str) -> Tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key or not val:
        raise argparse.ArgumentTypeError(f"Invalid key=value pair: {value}")
    return key, val


def parse_zoom_levels(value: str):
    try:
        return [int(z) for z in value.split(",") if z.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid zoom level list: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MBTiles conversion, deduplication and validation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    cp = commands.add_parser("copy", help="Copy tiles into another file, converting the layout")
    cp.add_argument("src_file", type=Path, help="Source MBTiles file")
    cp.add_argument("dst_file", type=Path, help="Destination MBTiles file")
    cp.add_argument("--dst-type", choices=[t.value for t in MbtType], default=MbtType.NORMALIZED.value,
                    help="Layout of the destination (default: normalized)")
    cp.add_argument("--if-exists", choices=[p.value for p in IfExists], default=IfExists.FAIL.value,
                    help="What to do when the destination already has tiles (default: fail)")
    cp.add_argument("--on-duplicate", choices=[d.value for d in OnDuplicate], default=OnDuplicate.ABORT.value,
                    help="What to do when a tile already exists while appending (default: abort)")
    cp.add_argument("--min-zoom", type=int, help="Minimum zoom level to copy")
    cp.add_argument("--max-zoom", type=int, help="Maximum zoom level to copy")
    cp.add_argument("-z", "--zoom-levels", type=parse_zoom_levels, help="Comma separated zoom levels to copy")
    cp.add_argument("--set-meta", type=parse_key_value, action="append", default=[], metavar="KEY=VALUE",
                    help="Set an extra metadata value, can be repeated")
    cp.add_argument("--skip-agg-tiles-hash", action="store_true", help="Do not compute agg_tiles_hash")
    cp.add_argument("--workers", type=int, default=1, help="Threads used to hash tiles (default: 1)")
    cp.add_argument("--batch-size", type=int, default=1000, help="Tiles hashed per batch (default: 1000)")

    val = commands.add_parser("validate", help="Check tile hashes and agg_tiles_hash")
    val.add_argument("mbtiles_file", type=Path, help="Path to MBTiles file")
    val.add_argument("--update", action="store_true", help="Store the recomputed agg_tiles_hash")

    get = commands.add_parser("meta-get", help="Print metadata values")
    get.add_argument("mbtiles_file", type=Path, help="Path to MBTiles file")
    get.add_argument("name", nargs="?", help="Metadata key, all of them if omitted")

    put = commands.add_parser("meta-set", help="Set or delete a metadata value")
    put.add_argument("mbtiles_file", type=Path, help="Path to MBTiles file")
    put.add_argument("name", help="Metadata key")
    put.add_argument("value", nargs="?", help="New value, deletes the key if omitted")

    serve = commands.add_parser("serve", help="Serve tiles over HTTP")
    serve.add_argument("mbtiles_file", type=Path, help="Path to MBTiles file")
    serve.add_argument("--start-browser", action="store_true", help="Open browser automatically")
    serve.add_argument("--port", type=int, default=8765, help="Port to start server (default: 8765)")
    serve.add_argument("--static-dir", type=str, help="Directory for static files (optional)")
    return parser

# %%
def run_copy(args) -> int:
    config = ConvertConfig(
        dst_type=args.dst_type,
        if_exists=args.if_exists,
        on_duplicate=args.on_duplicate,
        min_zoom=args.min_zoom,
        max_zoom=args.max_zoom,
        zoom_levels=args.zoom_levels,
        set_meta=dict(args.set_meta),
        skip_agg_hash=args.skip_agg_tiles_hash,
        workers=args.workers,
        batch_size=args.batch_size,
    )
    summary = convert(MBTilesDB(args.src_file), MBTilesDB(args.dst_file, create=True), config)
    print(json.dumps(summary.as_dict(), indent=2))
    return 0


def run_validate(args) -> int:
    report = validate(MBTilesDB(args.mbtiles_file), update=args.update)
    print(json.dumps(report.as_dict(), indent=2))
    return 0 if report.ok else 1


def run_meta_get(args) -> int:
    db = MBTilesDB(args.mbtiles_file)
    if args.name is None:
        print(json.dumps(db.get_metadata(), indent=2))
        return 0
    value = db.get_metadata_value(args.name)
    if value is None:
        logger.error(f"Metadata key {args.name} not found")
        return 1
    print(value)
    return 0


def run_meta_set(args) -> int:
    MBTilesDB(args.mbtiles_file).set_metadata_value(args.name, args.value)
    return 0


def run_serve(args) -> int:
    import uvicorn
    from .server import create_app

    config = Config(
        mbtiles_file=args.mbtiles_file,
        start_browser=args.start_browser,
        port=args.port,
        static_dir=args.static_dir if args.static_dir else None
    )

    app = create_app(config.mbtiles_file, static_dir=config.static_dir)

    if config.start_browser:
        webbrowser.open(f"http://{config.host}:{config.port}/static/index.html")

    uvicorn.run(app, host=config.host, port=config.port)
    return 0


COMMANDS = {
    "copy": run_copy,
    "validate": run_validate,
    "meta-get": run_meta_get,
    "meta-set": run_meta_set,
    "serve": run_serve,
}

# %%
def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return COMMANDS[args.command](args)
    except (MBTilesError, sqlite3.Error, FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1

# %%
if __name__ == "__main__":
    sys.exit(main())
