"""
Conversion Engine
=================
Main orchestrator that combines structural parsing, answer-key decoding,
export generation, validation and packaging into a complete conversion
pipeline.

Usage:
    engine = ConversionEngine(config)
    result = engine.convert_file("path/to/exam.pdf", "qti12")
    # result is a ConversionResult carrying the stored ArtifactRef

Architecture:
    Blocks → StructuralParser → QuestionDrafts ─┐
    Answer-key blocks → AnswerKeyParser ────────┴→ combine → IR →
    Exporter → ExportBundle → PackageAssembler → artifact store
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from .answer_key import AnswerKeyParser
from .block_extractor import load_blocks
from .combiner import combine
from .errors import ConversionError
from .exporters import get_exporter
from .models import (
    ArtifactRef,
    Block,
    ConversionReport,
    ConversionResult,
    ConversionWarning,
    ExportBundle,
    ImageAsset,
    QuestionAnswer,
    QuestionType,
)
from .packager import PackageAssembler, archive_name
from .state_machine import StructuralParser
from .storage import get_last_artifact, init_storage, load_artifact, save_artifact
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ConverterConfig:
    """Configuration for the conversion engine."""

    # Output settings
    output_dir: Optional[str] = None
    title: Optional[str] = None
    save_documents: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Parsing
    type_overrides: dict[int, QuestionType] = field(default_factory=dict)
    id_factory: Optional[Callable[[], str]] = None

    # PDF input
    min_image_size: int = 50


@dataclass
class PipelineRun:
    """Everything the pipeline knows before a backend is chosen."""

    questions: list[QuestionAnswer]
    images: dict[str, ImageAsset]
    warnings: list[ConversionWarning]
    report: ConversionReport
    boundary_index: Optional[int] = None


class ConversionEngine:
    """
    Main conversion engine.

    Orchestrates the full pipeline:
        1. Structural parsing (questions, options, images)
        2. Answer-key decoding
        3. Combination into the intermediate model
        4. Export generation for the selected backend
        5. Validation report
        6. Packaging and artifact storage

    Every run is independent; an engine holds no per-run state.
    """

    def __init__(self, config: Optional[ConverterConfig] = None):
        self.config = config or ConverterConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the converter package
        package_logger = logging.getLogger("quizconv")
        package_logger.setLevel(log_level)

        # Console handler
        if not any(type(h) is logging.StreamHandler for h in package_logger.handlers):
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_path = Path(self.config.log_file).absolute()
            already = any(
                isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path
                for h in package_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
                package_logger.addHandler(file_handler)

    # ─── Pipeline ─────────────────────────────────────────────────────────

    def inspect(self, blocks: Sequence[Block]) -> PipelineRun:
        """
        Parse, decode and combine without exporting.

        Raises:
            StructuralError: If no question could be recovered.
        """
        parser = StructuralParser(
            type_overrides=self.config.type_overrides,
            id_factory=self.config.id_factory,
        )
        outcome = parser.parse(blocks)

        if outcome.boundary_index is None:
            logger.warning("No answer key header found; every question will be unanswered")
            tail: Sequence[Block] = []
        else:
            tail = blocks[outcome.boundary_index + 1:]

        key = AnswerKeyParser().parse(tail, outcome.type_map)
        questions, combine_warnings = combine(outcome.drafts, key.answers)

        warnings = outcome.warnings + key.warnings + combine_warnings
        report = ValidationEngine().validate(questions, warnings, len(outcome.images))
        return PipelineRun(
            questions=questions,
            images=outcome.images,
            warnings=warnings,
            report=report,
            boundary_index=outcome.boundary_index,
        )

    def inspect_file(self, path: Union[str, Path]) -> PipelineRun:
        return self.inspect(load_blocks(path, self.config.min_image_size))

    def convert(
        self,
        blocks: Sequence[Block],
        format_key: str,
        title: Optional[str] = None,
    ) -> ConversionResult:
        """
        Convert a block stream into a stored quiz package.

        Args:
            blocks: Ordered block stream.
            format_key: Registered export backend key.
            title: Quiz title; defaults to the configured title.

        Returns:
            ConversionResult. Fatal failures are reported with
            success=False and a short user-facing message.
        """
        title = title or self.config.title or "Quiz"
        start_time = time.time()
        logger.info(f"Starting {format_key} conversion of {len(blocks)} blocks: {title!r}")

        try:
            # Unknown formats fail before any parsing work
            exporter = get_exporter(format_key)

            logger.info("Phase 1: Parsing")
            run = self.inspect(blocks)

            logger.info(f"Phase 2: Export ({exporter.display_name})")
            bundle = exporter.generate(run.questions, run.images, title)
            warnings = run.warnings + bundle.warnings

            logger.info("Phase 3: Validation")
            report = ValidationEngine().validate(
                run.questions, warnings, len(run.images), bundle.item_count
            )

            logger.info("Phase 4: Packaging")
            data = PackageAssembler().assemble(bundle)
            ref = save_artifact(
                data,
                archive_name(title, exporter.file_suffix),
                self.config.output_dir,
            )
            if self.config.save_documents:
                self._save_documents(bundle, ref)
        except ConversionError as e:
            if not e.fatal:
                raise
            logger.error(f"Conversion failed ({e.code}): {e.internal_message}")
            return ConversionResult(success=False, message=e.user_message)

        elapsed = time.time() - start_time
        logger.info(
            f"Conversion complete in {elapsed:.2f}s: "
            f"{report.exported_items} items in {ref.display_name}"
        )

        return ConversionResult(
            success=True,
            message=self._summary(report, exporter.display_name),
            artifact_ref=ref,
            report=report,
        )

    def convert_file(
        self,
        path: Union[str, Path],
        format_key: str,
        title: Optional[str] = None,
    ) -> ConversionResult:
        """Load blocks with the adapter matching the file type, then convert."""
        try:
            blocks = load_blocks(path, self.config.min_image_size)
        except ConversionError as e:
            logger.error(f"Cannot read {path} ({e.code}): {e.internal_message}")
            return ConversionResult(success=False, message=e.user_message)
        return self.convert(blocks, format_key, title or self.config.title or Path(path).stem)

    def download(self, artifact: Union[ArtifactRef, str, None] = None) -> bytes:
        """
        Archive bytes for a stored artifact, or the last one when omitted.

        Raises:
            ArtifactNotFoundError: If the archive is gone.
        """
        if artifact is None:
            artifact = get_last_artifact(self.config.output_dir)
        artifact_id = artifact.artifact_id if isinstance(artifact, ArtifactRef) else artifact
        return load_artifact(artifact_id, self.config.output_dir)

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _summary(self, report: ConversionReport, display_name: str) -> str:
        message = (
            f"Converted {report.exported_items} of {report.total_questions} "
            f"questions to {display_name}"
        )
        if report.missing_answer_numbers:
            message += f"; {len(report.missing_answer_numbers)} without an answer"
        if report.warnings:
            message += f" ({len(report.warnings)} warnings)"
        return message

    def _save_documents(self, bundle: ExportBundle, ref: ArtifactRef):
        """Write the unpacked bundle next to the archive for inspection."""
        target = init_storage(self.config.output_dir) / "documents" / ref.artifact_id
        for doc in [bundle.manifest, *bundle.documents]:
            path = target / doc.path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(doc.content, encoding="utf-8")
        for res in bundle.resources:
            path = target / res.path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(res.data)
        logger.info(f"Saved exploded documents: {target}")
