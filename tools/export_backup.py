"""Write a JSON backup of users, scores and settings.

Usage:
  python tools/export_backup.py --data-dir ./data --out backup.json
  python tools/export_backup.py --data-dir ./data --restore backup.json
"""

from __future__ import annotations

import argparse
import json
import os

from arcadehub.config import ArcadeConfig
from arcadehub.storage.kv import FileKeyValue
from arcadehub.storage.records import LocalRecordStore


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--data-dir", required=True)
    ap.add_argument("--prefix", default=None)
    group = ap.add_mutually_exclusive_group(required=True)
    group.add_argument("--out")
    group.add_argument("--restore")
    args = ap.parse_args()

    cfg = ArcadeConfig.from_env()
    if args.prefix:
        cfg.storage_prefix = args.prefix
    records = LocalRecordStore(FileKeyValue(args.data_dir), cfg)

    if args.restore:
        with open(args.restore, "r", encoding="utf-8") as f:
            records.import_data(json.load(f))
        print(f"Restored {args.restore}")
        return 0

    out = os.path.abspath(args.out)
    os.makedirs(os.path.dirname(out), exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(records.export_data(), f, indent=2)
    print(f"Wrote {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
