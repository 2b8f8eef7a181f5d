from __future__ import annotations

import argparse

from parallel_sync.batches import load_style_profile
from parallel_sync.config import load_config, resolve_paths
from parallel_sync.errors import ParallelSyncError
from parallel_sync.locks import LockRegistry
from parallel_sync.segment_store import SegmentStore
from parallel_sync.utils import setup_logger
from run_pipeline import merge_batches


def main() -> None:
    parser = argparse.ArgumentParser(description="Merge completed batch documents into the dataset.")
    parser.add_argument("--config", default=None, help="Path to config.json")
    args = parser.parse_args()

    cfg = load_config(args.config)
    paths = resolve_paths(cfg)
    logger = setup_logger(paths.get("logs_dir", "logs"))
    locks = LockRegistry(paths["locks_dir"], timeout=float(cfg["sync"].get("lock_timeout_seconds", 10)))
    store = SegmentStore(paths["segments"], locks, logger=logger)

    try:
        report = merge_batches(cfg, paths, store, locks, load_style_profile(paths.get("style_profile")), logger)
    except ParallelSyncError as exc:
        print(f"Merge failed: {exc}")
        raise SystemExit(1)

    print(
        f"Merged {report.merged_count} of {report.translations_found} translations "
        f"({report.conflicts} already filled, {report.unknown_ids} unknown ids). Backup: {report.backup_path}"
    )


if __name__ == "__main__":
    main()
