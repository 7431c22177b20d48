"""Convert a folder of source recordings with a trained codebook.

Every ``<name>.wav`` of the input folder is converted to
``<output>/<name>_output.wav``; missing pitch tracks are extracted first. A
``transform_report.json`` with the per-file outcome is written to the output
folder. Files that fail are reported and do not stop the batch; the exit
status is non-zero if any file failed.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from wcvc import config
from wcvc.exceptions import ConfigurationError
from wcvc.params import (
    DistanceMeasure,
    MapperParams,
    ProsodyParams,
    TransformerParams,
    WeightingMethod,
)
from wcvc.prosody import PitchStatisticsType, PitchTransformationMethod
from wcvc.transformer import BatchTransformer


def _scales(text: str):
    return tuple(float(v) for v in text.split(","))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Weighted codebook voice conversion (batch)")
    parser.add_argument("--input-dir", type=Path, required=True, help="Folder of source recordings")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=config.OUTPUTS_DIR / "converted",
        help="Folder for converted recordings",
    )
    parser.add_argument(
        "--codebook",
        type=Path,
        default=config.CODEBOOK_DIR / f"codebook{config.CODEBOOK_EXT}",
        help="Codebook produced by scripts/01_train_codebook.py",
    )

    mapping = parser.add_argument_group("codebook mapping")
    mapping.add_argument("--num-best", type=int, default=1, help="Number of best matches to weight")
    mapping.add_argument("--steepness", type=float, default=1.0, help="Weighting steepness")
    mapping.add_argument("--freq-range", type=float, default=5000.0, help="Candidate window (Hz)")
    mapping.add_argument(
        "--distance",
        choices=[m.value for m in DistanceMeasure],
        default=DistanceMeasure.INVERSE_HARMONIC_SYMMETRIC.value,
    )
    mapping.add_argument(
        "--weighting",
        choices=[m.value for m in WeightingMethod],
        default=WeightingMethod.EXPONENTIAL_HALF_WINDOW.value,
    )
    mapping.add_argument("--alpha", type=float, default=0.5, help="Symmetric distance mixing weight")

    prosody = parser.add_argument_group("prosody")
    prosody.add_argument(
        "--pitch-method",
        choices=[m.value for m in PitchTransformationMethod],
        default=PitchTransformationMethod.NO_TRANSFORMATION.value,
    )
    prosody.add_argument("--log-f0", action="store_true", help="Pitch statistics in log-Hz")
    for name in ("mean", "stddev", "range", "intercept", "slope"):
        prosody.add_argument(f"--use-input-{name}", action="store_true")

    scaling = parser.add_argument_group("scaling (comma-separated factors)")
    for name in ("pitch", "time", "energy", "vocal-tract"):
        scaling.add_argument(f"--{name}-scales", type=_scales, default=(1.0,))

    switches = parser.add_argument_group("switches")
    switches.add_argument("--no-vocal-tract", action="store_true", help="Skip codebook mapping")
    switches.add_argument("--fixed-rate", action="store_true", help="Fixed-rate vocal tract conversion")
    switches.add_argument("--from-source-codebook", action="store_true")
    switches.add_argument("--match-target-codebook", action="store_true")
    switches.add_argument("--single-pass", action="store_true", help="Process prosody in the vocal tract pass")
    switches.add_argument("--keep-vocal-tract", action="store_true", help="Keep the *_vt.wav files")
    switches.add_argument("--force-analysis", action="store_true", help="Re-extract pitch tracks")
    switches.add_argument("--show-frames", action="store_true", help="Frame progress bars")
    switches.add_argument("--tag-output", action="store_true", help="Append a run tag to the output folder")
    switches.add_argument("--output-info", default="", help="Prefix of the run tag")
    switches.add_argument("--workers", type=int, default=1, help="Items converted in parallel")
    return parser.parse_args()


def build_params(args: argparse.Namespace) -> TransformerParams:
    mapper = MapperParams(
        num_best_matches=args.num_best,
        weighting_steepness=args.steepness,
        freq_range=args.freq_range,
        distance_measure=DistanceMeasure(args.distance),
        weighting_method=WeightingMethod(args.weighting),
        alpha_for_symmetric=args.alpha,
    )
    prosody = ProsodyParams(
        statistics_type=PitchStatisticsType.LOG_HERTZ if args.log_f0 else PitchStatisticsType.HERTZ,
        transformation_method=PitchTransformationMethod(args.pitch_method),
        use_input_mean=args.use_input_mean,
        use_input_stddev=args.use_input_stddev,
        use_input_range=args.use_input_range,
        use_input_intercept=args.use_input_intercept,
        use_input_slope=args.use_input_slope,
    )
    return TransformerParams(
        input_folder=args.input_dir,
        output_folder=args.output_dir,
        codebook_file=args.codebook,
        mapper=mapper,
        prosody=prosody,
        pitch_scales=args.pitch_scales,
        time_scales=args.time_scales,
        energy_scales=args.energy_scales,
        vocal_tract_scales=args.vocal_tract_scales,
        is_vocal_tract_transformation=not args.no_vocal_tract,
        is_fixed_rate_vocal_tract_conversion=args.fixed_rate,
        is_resynthesize_vocal_tract_from_source_codebook=args.from_source_codebook,
        is_vocal_tract_match_using_target_codebook=args.match_target_codebook,
        is_separate_prosody=not args.single_pass,
        is_save_vocal_tract_only_version=args.keep_vocal_tract,
        is_forced_analysis=args.force_analysis,
        is_display_processing_frame_count=args.show_frames,
        tag_output_folder=args.tag_output,
        output_folder_info=args.output_info,
        num_workers=args.workers,
    )


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    config.ensure_directories()

    transformer = BatchTransformer(build_params(args))
    try:
        report = transformer.run()
    except ConfigurationError as exc:
        logging.error("%s", exc)
        return 2

    logging.info(
        "Done. converted=%d failed=%d -> %s",
        len(report.succeeded),
        len(report.failed),
        transformer.output_folder,
    )
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
