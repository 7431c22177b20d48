"""Train a weighted codebook from parallel recordings.

This script:
1) Pairs the ``*.wav`` files of the source and target folders by basename.
2) Extracts frame-wise LSFs, aligns each pair with DTW and keeps the
   non-silent aligned frame pairs.
3) Optionally reduces the entries with k-means.
4) Stores the codebook (with global pitch statistics) as a ``.wcf`` file.

Re-run with --force to overwrite an existing codebook.
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from wcvc import codebook as codebook_io, config, training
from wcvc.prosody import PitchStatisticsType


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Train a weighted voice conversion codebook")
    parser.add_argument("--source-dir", type=Path, required=True, help="Source speaker recordings")
    parser.add_argument("--target-dir", type=Path, required=True, help="Target speaker recordings")
    parser.add_argument(
        "--codebook-out",
        type=Path,
        default=config.CODEBOOK_DIR / f"codebook{config.CODEBOOK_EXT}",
        help="Output path for the codebook file",
    )
    parser.add_argument("--sr", type=int, default=config.TARGET_SR, help="Analysis sample rate")
    parser.add_argument("--lp-order", type=int, default=config.LP_ORDER, help="Linear prediction order")
    parser.add_argument("--frame-length", type=float, default=config.FRAME_LENGTH_S, help="Seconds")
    parser.add_argument("--frame-skip", type=float, default=config.FRAME_SKIP_S, help="Seconds")
    parser.add_argument(
        "--num-clusters",
        type=int,
        default=None,
        help="Reduce the codebook to this many entries with k-means",
    )
    parser.add_argument(
        "--silence-db",
        type=float,
        default=-40.0,
        help="Frames this far below the loudest frame are skipped",
    )
    parser.add_argument(
        "--log-f0",
        action="store_true",
        help="Store pitch statistics in the log-Hz domain",
    )
    parser.add_argument("--force", action="store_true", help="Overwrite an existing codebook")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    config.ensure_directories()

    out_path: Path = args.codebook_out
    if out_path.exists() and not args.force:
        logging.info("Codebook exists at %s; use --force to retrain", out_path)
        return

    pairs = training.pair_parallel_files(args.source_dir, args.target_dir)
    if not pairs:
        raise SystemExit(f"No parallel recordings found in {args.source_dir} and {args.target_dir}")
    logging.info("Training on %d parallel pair(s)", len(pairs))

    stats_type = PitchStatisticsType.LOG_HERTZ if args.log_f0 else PitchStatisticsType.HERTZ
    codebook = training.train_codebook(
        pairs,
        lp_order=args.lp_order,
        sampling_rate=args.sr,
        frame_length=args.frame_length,
        frame_skip=args.frame_skip,
        num_clusters=args.num_clusters,
        silence_threshold_db=args.silence_db,
        statistics_type=stats_type,
    )
    codebook_io.save_codebook(codebook, out_path)
    logging.info("Saved codebook with %d entries -> %s", len(codebook), out_path)


if __name__ == "__main__":
    main()
