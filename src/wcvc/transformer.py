"""Batch conversion of a folder of source recordings.

Preflight checks the codebook header and the folders, the input set is built
from the ``*.wav`` files of the input folder, preprocessing and pitch
extraction run once over the whole set, and every item is converted by a
:class:`~wcvc.controller.PassController`. A failing item is reported in the
:class:`~wcvc.items.BatchReport` and the batch carries on.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from joblib import Parallel, delayed
from tqdm import tqdm

from wcvc import config, io_utils
from wcvc.audio_preproc import AudioPreprocessor
from wcvc.codebook import Codebook, CodebookFile, CodebookHeader
from wcvc.controller import PassController
from wcvc.exceptions import CodebookFormatError, ConfigurationError
from wcvc.features import FeatureExtractor
from wcvc.items import AdaptationItem, AdaptationSet, BatchReport, ItemResult
from wcvc.mapping import CodebookMapper
from wcvc.params import TransformerParams
from wcvc.resynthesis import LpcResynthesizer, ResynthesisEngine

logger = logging.getLogger(__name__)


class BatchTransformer:
    """Converts every item of an input folder with one shared codebook and mapper."""

    def __init__(
        self,
        params: TransformerParams,
        engine: Optional[ResynthesisEngine] = None,
        preprocessor: Optional[AudioPreprocessor] = None,
        feature_extractor: Optional[FeatureExtractor] = None,
    ) -> None:
        self.params = params
        self.engine = engine if engine is not None else LpcResynthesizer()
        self.preprocessor = preprocessor if preprocessor is not None else AudioPreprocessor()
        self.feature_extractor = feature_extractor
        self.output_folder = params.tagged_output_folder()
        self.header: Optional[CodebookHeader] = None

    # ------------------------------------------------------------------
    # Preflight
    # ------------------------------------------------------------------
    def check_params(self) -> CodebookHeader:
        """Validate the run before any item is touched.

        Raises
        ------
        ConfigurationError
            Missing or unreadable codebook, missing input folder, output
            folder that cannot be created, or a pitch transformation without
            usable target statistics.
        """

        params = self.params
        if not params.codebook_file.is_file():
            raise ConfigurationError(f"Codebook file not found: {params.codebook_file}")
        try:
            header = CodebookFile(params.codebook_file).read_header()
        except (CodebookFormatError, OSError) as exc:
            raise ConfigurationError(f"Cannot read codebook header: {exc}") from exc

        if not params.input_folder.is_dir():
            raise ConfigurationError(f"Input folder not found: {params.input_folder}")
        try:
            self.output_folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(f"Cannot create output folder {self.output_folder}: {exc}") from exc

        prosody = params.prosody
        if prosody.is_transformation_requested:
            target = prosody.target_statistics or header.target_f0_stats
            if target is None:
                raise ConfigurationError(
                    f"Pitch transformation {prosody.transformation_method.value} needs target "
                    "pitch statistics; the codebook holds none"
                )
            if target.statistics_type is not prosody.statistics_type:
                raise ConfigurationError(
                    f"Target pitch statistics are {target.statistics_type.name}, "
                    f"prosody parameters expect {prosody.statistics_type.name}"
                )
            if prosody.transformation_method.is_global and header.source_f0_stats is None:
                logger.warning("Codebook has no source pitch statistics; sentence statistics will be used")

        if self.feature_extractor is None:
            self.feature_extractor = FeatureExtractor(
                frame_skip=header.frame_skip, sampling_rate=header.sampling_rate
            )
        logger.info(
            "Codebook %s: LP order %d, %d Hz, %d entries",
            params.codebook_file.name,
            header.lp_order,
            header.sampling_rate,
            header.num_entries,
        )
        self.header = header
        return header

    # ------------------------------------------------------------------
    # Item sets
    # ------------------------------------------------------------------
    def get_input_set(self, folder: Optional[Path] = None) -> AdaptationSet:
        folder = Path(folder) if folder is not None else self.params.input_folder
        return AdaptationSet.from_audio_files(io_utils.list_audio_files(folder))

    def get_output_set(self, input_set: AdaptationSet, folder: Optional[Path] = None) -> AdaptationSet:
        folder = Path(folder) if folder is not None else self.output_folder
        return AdaptationSet(
            tuple(
                AdaptationItem(folder / f"{item.basename}{config.OUTPUT_SUFFIX}{config.WAV_EXT}")
                for item in input_set
            )
        )

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------
    def _load_codebook(self, header: CodebookHeader) -> Codebook:
        try:
            return CodebookFile(self.params.codebook_file).read_codebook_excluding_header(header)
        except (CodebookFormatError, OSError) as exc:
            raise ConfigurationError(f"Cannot read codebook entries: {exc}") from exc

    def transform(self, input_set: AdaptationSet, output_set: AdaptationSet) -> BatchReport:
        if len(input_set) != len(output_set):
            raise ValueError(
                f"Input and output sets differ in size ({len(input_set)} vs {len(output_set)})"
            )
        params = self.params
        report = BatchReport(
            codebook_file=str(params.codebook_file), output_folder=str(self.output_folder)
        )
        if len(input_set) == 0:
            logger.warning("No input files in %s", params.input_folder)
            report.completed = True
            return report

        header = self.header if self.header is not None else self.check_params()
        readable = self.preprocessor.run(input_set.items, header.sampling_rate)
        # unreadable items skip pitch extraction and fail in their own conversion
        self.feature_extractor.run(
            [input_set[i] for i in sorted(readable)], forced=params.is_forced_analysis
        )

        codebook = self._load_codebook(header)
        mapper = CodebookMapper(params.mapper)
        controller = PassController(self.engine)
        total = len(input_set)

        def convert(index: int) -> ItemResult:
            result = controller.convert(
                input_set[index], output_set[index], params, mapper, codebook, index=index
            )
            logger.info("Transformed file %d of %d", index + 1, total)
            return result

        if params.num_workers > 1:
            results = Parallel(n_jobs=params.num_workers, prefer="threads")(
                delayed(convert)(i) for i in range(total)
            )
        else:
            results = [convert(i) for i in tqdm(range(total), desc="Transforming", unit="file")]

        report.results = list(results)
        report.completed = True
        logger.info(
            "Transformation completed: %d of %d file(s) converted", len(report.succeeded), total
        )
        if report.failed:
            logger.warning(
                "Failed items: %s", ", ".join(Path(r.input_file).name for r in report.failed)
            )
        if params.write_report:
            report.write_json(self.output_folder / config.REPORT_NAME)
        return report

    def run(self) -> BatchReport:
        """Preflight, list the input folder and convert everything in it."""

        self.check_params()
        input_set = self.get_input_set()
        output_set = self.get_output_set(input_set)
        logger.info("Converting %d file(s) from %s", len(input_set), self.params.input_folder)
        return self.transform(input_set, output_set)


__all__ = ["BatchTransformer"]
