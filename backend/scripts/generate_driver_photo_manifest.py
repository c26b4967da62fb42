"""CLI helper that writes ``manifest.json`` for the driver photos folder."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from league_core.photos import write_manifest


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "photos_dir",
        nargs="?",
        default=os.getenv("DRIVER_PHOTOS_DIR", "public/drivers-photos"),
        help="Folder holding <person_id>.<ext> photos",
    )
    parser.add_argument("--url-prefix", default="/drivers-photos")
    args = parser.parse_args(argv)

    photos_dir = Path(args.photos_dir)
    count = write_manifest(photos_dir, url_prefix=args.url_prefix)
    if count is None:
        print(f"ERROR: {photos_dir} folder not found.", file=sys.stderr)
        return 0

    print(f"Driver photo manifest created with {count} entries.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
