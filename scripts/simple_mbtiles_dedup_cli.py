# %%
import sys

from simple_mbtiles_dedup.cli import main

if __name__ == "__main__":
    sys.exit(main())
