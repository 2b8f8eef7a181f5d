from __future__ import annotations

import argparse
from pathlib import Path

from parallel_sync.batches import BatchBuilder, load_style_profile
from parallel_sync.gaps import GapDetector, write_gap_manifest
from parallel_sync.locks import LockRegistry
from parallel_sync.segment_store import SegmentStore


def main() -> None:
    parser = argparse.ArgumentParser(description="Write the gap manifest and batch documents for a dataset.")
    parser.add_argument("--segments", required=True, help="Path to the parallel JSONL dataset")
    parser.add_argument("--manifest", required=True, help="Output gaps.jsonl")
    parser.add_argument("--out-dir", required=True, help="Directory for batch-NNNN.md files")
    parser.add_argument("--batch-size", type=int, default=60)
    parser.add_argument("--style", default="", help="Optional style profile JSON")
    args = parser.parse_args()

    store = SegmentStore(args.segments, LockRegistry(Path(args.segments).parent / ".locks"))
    gaps = GapDetector().detect(store.load())
    write_gap_manifest(gaps, args.manifest)

    builder = BatchBuilder(batch_size=args.batch_size, style=load_style_profile(args.style or None))
    written = builder.write_batches(builder.build(gaps), args.out_dir)

    print(f"Wrote {len(gaps)} gaps to {args.manifest} and {len(written)} batch files to {args.out_dir}")


if __name__ == "__main__":
    main()
