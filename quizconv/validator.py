"""
Validation Engine
=================
Post-conversion validation and reporting.

After each run, generates a report covering:
    - Total Questions
    - Questions With Answers (coverage percentage)
    - Questions Missing Answer
    - Missing Question Numbers (gaps in sequence)
    - Question type breakdown
    - Warning breakdown by code
    - Registered images

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Sequence

from .models import (
    ConversionReport,
    ConversionWarning,
    QuestionAnswer,
)

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates the intermediate model and produces a summary report.
    """

    def validate(
        self,
        questions: Sequence[QuestionAnswer],
        warnings: Sequence[ConversionWarning] = (),
        image_count: int = 0,
        exported_items: int = 0,
    ) -> ConversionReport:
        """
        Run full validation on the combined questions.

        Args:
            questions: Combined questions, in document order.
            warnings: Every warning accumulated during the run.
            image_count: Number of registered images.
            exported_items: Items the export backend actually emitted.

        Returns:
            ConversionReport with all detected issues.
        """
        report = ConversionReport(
            warnings=list(warnings),
            image_count=image_count,
            exported_items=exported_items,
        )

        report.warning_breakdown = dict(sorted(
            Counter(w.code.value for w in warnings).items()
        ))

        if not questions:
            logger.warning("No questions to validate")
            return report

        report.total_questions = len(questions)

        # Find missing numbers (gaps in sequence)
        numbers = [q.number for q in questions]
        expected = set(range(min(numbers), max(numbers) + 1))
        report.missing_question_numbers = sorted(expected - set(numbers))

        report.missing_answer_numbers = [q.number for q in questions if q.answer is None]
        report.answered_questions = report.total_questions - len(report.missing_answer_numbers)
        report.type_breakdown = dict(sorted(
            Counter(q.type.value for q in questions).items()
        ))

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Questions: {report.total_questions}")
        logger.info(
            f"Questions With Answers: {report.answered_questions} "
            f"({report.answer_coverage}%)"
        )
        logger.info(f"Exported Items: {report.exported_items}")
        logger.info(
            f"Missing Question Numbers: {len(report.missing_question_numbers)}"
        )
        logger.info(
            f"Questions Missing Answer: {len(report.missing_answer_numbers)}"
        )
        logger.info(f"Images: {report.image_count}")

        if report.type_breakdown:
            logger.info("Question Types:")
            for qtype, count in report.type_breakdown.items():
                logger.info(f"  • {qtype}: {count}")

        if report.warning_breakdown:
            logger.info("Warning Breakdown:")
            for code, count in report.warning_breakdown.items():
                logger.info(f"  • {code}: {count}")

        logger.info("=" * 60)

        return report
