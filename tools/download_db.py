"""Dump the embedded database blob to a raw SQLite file.

Usage:
  python tools/download_db.py --data-dir ./data --out arcade.db
"""

from __future__ import annotations

import argparse
import base64
import os

from arcadehub.config import ArcadeConfig
from arcadehub.storage.kv import FileKeyValue


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--data-dir", required=True)
    ap.add_argument("--out", required=True)
    ap.add_argument("--prefix", default=None)
    args = ap.parse_args()

    cfg = ArcadeConfig.from_env()
    if args.prefix:
        cfg.storage_prefix = args.prefix
    blob = FileKeyValue(args.data_dir).get_item(cfg.db_blob_key)
    if not blob:
        print(f"No database blob under {cfg.db_blob_key}")
        return 1

    out = os.path.abspath(args.out)
    os.makedirs(os.path.dirname(out), exist_ok=True)
    with open(out, "wb") as f:
        f.write(base64.b64decode(blob))
    print(f"Wrote {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
