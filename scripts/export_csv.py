from __future__ import annotations

import argparse
from pathlib import Path

from parallel_sync import storage
from parallel_sync.config import load_config, resolve_paths
from parallel_sync.locks import LockRegistry
from parallel_sync.segment_store import SegmentStore

EXPORT_COLUMNS = ["id", "rowId", "src", "tgt", "status", "lengthRatio"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Export the parallel dataset to CSV for offline review.")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--out", default="", help="Output CSV (default: <exports_dir>/parallel.csv)")
    args = parser.parse_args()

    paths = resolve_paths(load_config(args.config))
    out = Path(args.out) if args.out else paths["exports_dir"] / "parallel.csv"

    store = SegmentStore(paths["segments"], LockRegistry(paths["locks_dir"]))
    rows = [{col: seg.to_dict().get(col, "") for col in EXPORT_COLUMNS} for seg in store.load()]
    storage.write_segments_csv(out, rows)

    print(f"Wrote {len(rows)} rows to {out}")


if __name__ == "__main__":
    main()
