from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

from parallel_sync.utils import setup_logger
from parallel_sync.batches import BatchBuilder, StyleProfile, load_style_profile
from parallel_sync.changelog import ChangeLog
from parallel_sync.config import load_config, resolve_paths
from parallel_sync.errors import MissingApiKeyError, ParallelSyncError
from parallel_sync.gaps import GapDetector, read_gap_manifest, write_gap_manifest
from parallel_sync.locks import LockRegistry
from parallel_sync.merger import BatchMerger, MergeReport
from parallel_sync.models import GapRecord
from parallel_sync.segment_store import SegmentStore
from parallel_sync.translator import MANUAL_PROVIDER, RateLimiter, build_translator, fill_batches


STEPS = ("gaps", "fill", "merge", "all")


def detect_and_build(
    cfg: Dict[str, Any],
    paths: Dict[str, Path],
    store: SegmentStore,
    style: StyleProfile,
    logger,
) -> List[GapRecord]:
    gcfg = cfg["gaps"]
    segments = store.load()
    logger.info("   Loaded %s segments from %s", len(segments), store.path)
    detector = GapDetector(
        source_script=gcfg.get("source_script", "\\u0600-\\u06FF"),
        min_target_chars=int(gcfg.get("min_target_chars", 3)),
        logger=logger,
    )
    gaps = detector.detect(segments)
    write_gap_manifest(gaps, paths["gaps_manifest"])
    logger.info("   Gap manifest written to %s", paths["gaps_manifest"])

    builder = BatchBuilder(batch_size=int(gcfg.get("batch_size", 60)), style=style, logger=logger)
    written = builder.write_batches(builder.build(gaps), paths["batches_dir"])
    logger.info("   %s batch documents in %s", len(written), paths["batches_dir"])
    return gaps


def translate_batches(cfg: Dict[str, Any], paths: Dict[str, Path], style: StyleProfile, logger) -> int:
    tcfg = cfg["translation"]
    provider = (tcfg.get("provider") or MANUAL_PROVIDER).lower()
    if provider == MANUAL_PROVIDER:
        logger.info("   Provider 'manual': slots left for hand translation in %s", paths["batches_dir"])
        return 0
    try:
        translator = build_translator(provider, tcfg)
    except MissingApiKeyError as exc:
        logger.error(str(exc))
        raise
    sched_cfg = tcfg.get("scheduling", {})
    gaps = read_gap_manifest(paths["gaps_manifest"], logger=logger)
    return fill_batches(
        paths["batches_dir"],
        gaps,
        translator,
        style=style,
        max_retries=int(sched_cfg.get("max_retries", 2)),
        retry_backoff=float(sched_cfg.get("retry_backoff_seconds", 2.0)),
        rate_limiter=RateLimiter(int(sched_cfg.get("requests_per_minute", 0))),
        logger=logger,
    )


def merge_batches(
    cfg: Dict[str, Any],
    paths: Dict[str, Path],
    store: SegmentStore,
    locks: LockRegistry,
    style: StyleProfile,
    logger,
) -> MergeReport:
    mcfg = cfg["merge"]
    changelog = ChangeLog(paths["sync_dir"], locks, logger=logger) if mcfg.get("append_change_records", True) else None
    merger = BatchMerger(
        store,
        batch_dir=paths["batches_dir"],
        backup_dir=paths["backups_dir"],
        changelog=changelog,
        translated_path=paths.get("translated_jsonl"),
        min_target_chars=int(cfg["gaps"].get("min_target_chars", 3)),
        translated_by=mcfg.get("translated_by", "batch"),
        style_digest=style.digest,
        merged_status=mcfg.get("status", "review_pending"),
        default_section=cfg["sync"].get("default_section", "S001"),
        logger=logger,
    )
    return merger.run()


def main() -> None:
    parser = argparse.ArgumentParser(description="Gap batches pipeline: detect -> translate -> merge.")
    parser.add_argument("--config", type=str, default=None, help="Path to config.json")
    parser.add_argument("--step", choices=STEPS, default="all", help="Run a single step (default: all)")
    args = parser.parse_args()

    load_dotenv()

    cfg = load_config(args.config)
    paths = resolve_paths(cfg)
    logger = setup_logger(paths.get("logs_dir", Path("logs")))

    locks = LockRegistry(paths["locks_dir"], timeout=float(cfg["sync"].get("lock_timeout_seconds", 10)))
    store = SegmentStore(paths["segments"], locks, logger=logger)

    try:
        style = load_style_profile(paths.get("style_profile"), logger=logger)
    except ValueError:
        logger.exception("Invalid style profile.")
        raise SystemExit(1)

    if args.step in ("gaps", "all"):
        logger.info("1) Gap detection + batch documents…")
        try:
            detect_and_build(cfg, paths, store, style, logger)
        except Exception:
            logger.exception("Gap detection failed.")
            raise SystemExit(1)

    if args.step in ("fill", "all"):
        logger.info("2) Translation of open slots…")
        try:
            translate_batches(cfg, paths, style, logger)
        except MissingApiKeyError:
            raise SystemExit(1)
        except Exception:
            logger.exception("Translation failed.")
            raise SystemExit(1)

    if args.step in ("merge", "all"):
        logger.info("3) Merge of completed batches…")
        try:
            report = merge_batches(cfg, paths, store, locks, style, logger)
        except ParallelSyncError as exc:
            report = getattr(exc, "report", None)
            if report is not None and report.dataset_written:
                logger.error("Merge aborted after the dataset was written; pending change records are retried on the next run.")
            else:
                logger.error("Merge aborted, dataset left unchanged.")
            raise SystemExit(1)
        logger.info("   Merge report: %s", report.as_dict())

    logger.info("Done.")


if __name__ == "__main__":
    main()
