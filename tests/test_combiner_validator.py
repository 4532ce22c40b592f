"""
Test Suite for the Combiner and Validation Engine
=================================================
"""

from __future__ import annotations

from quizconv.combiner import combine
from quizconv.models import (
    ChoiceAnswer,
    ConversionWarning,
    Option,
    QuestionAnswer,
    QuestionDraft,
    QuestionType,
    Stage,
    TextAnswer,
    WarningCode,
)
from quizconv.validator import ValidationEngine


def _draft(number: int, qtype: QuestionType = QuestionType.MULTIPLE_CHOICE_SINGLE) -> QuestionDraft:
    options = []
    if qtype == QuestionType.MULTIPLE_CHOICE_SINGLE:
        options = [Option(letter="A", text="x"), Option(letter="B", text="y")]
    return QuestionDraft(number=number, stem=f"Question text {number}", options=options, type=qtype)


# ═══════════════════════════════════════════════════════════════════════════════
# COMBINER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCombiner:

    def test_attaches_answers_by_number(self):
        questions, warnings = combine(
            [_draft(1), _draft(2, QuestionType.SHORT_ANSWER)],
            {1: ChoiceAnswer(letter="B"), 2: TextAnswer(literals=["water"])},
        )
        assert warnings == []
        assert [q.number for q in questions] == [1, 2]
        assert questions[0].answer == ChoiceAnswer(letter="B")
        assert questions[1].answer.literals == ["water"]
        assert questions[0].options == _draft(1).options
        assert questions[0].stem == "Question text 1"

    def test_missing_answer(self):
        questions, warnings = combine([_draft(1), _draft(2)], {1: ChoiceAnswer(letter="A")})
        assert questions[1].answer is None
        assert len(warnings) == 1
        assert warnings[0].code == WarningCode.MISSING_ANSWER
        assert warnings[0].stage == Stage.COMBINE
        assert warnings[0].question_number == 2

    def test_shape_mismatch_is_discarded(self):
        questions, warnings = combine([_draft(1)], {1: TextAnswer(literals=["B"])})
        assert questions[0].answer is None
        assert [w.code for w in warnings] == [WarningCode.ANSWER_SHAPE_MISMATCH]

    def test_document_order_kept(self):
        questions, _ = combine([_draft(3), _draft(1), _draft(2)], {})
        assert [q.number for q in questions] == [3, 1, 2]

    def test_unused_answers_ignored(self):
        questions, warnings = combine([_draft(1)], {1: ChoiceAnswer(letter="A"), 5: ChoiceAnswer(letter="B")})
        assert len(questions) == 1
        assert warnings == []


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION ENGINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestValidationEngine:
    """Test the post-run report."""

    def setup_method(self):
        self.validator = ValidationEngine()

    def test_empty_questions(self):
        report = self.validator.validate([])
        assert report.total_questions == 0
        assert report.answer_coverage == 0.0
        assert report.missing_question_numbers == []

    def test_full_report(self):
        questions = [
            QuestionAnswer(number=1, type=QuestionType.MULTIPLE_CHOICE_SINGLE, answer=ChoiceAnswer(letter="A")),
            QuestionAnswer(number=2, type=QuestionType.SHORT_ANSWER, answer=TextAnswer(literals=["x"])),
            QuestionAnswer(number=4, type=QuestionType.MULTIPLE_CHOICE_SINGLE),
        ]
        warnings = [
            ConversionWarning(stage=Stage.COMBINE, code=WarningCode.MISSING_ANSWER, message="m", question_number=4),
            ConversionWarning(stage=Stage.PARSE, code=WarningCode.ORPHAN_IMAGE, message="o"),
            ConversionWarning(stage=Stage.PARSE, code=WarningCode.ORPHAN_IMAGE, message="o"),
        ]

        report = self.validator.validate(questions, warnings, image_count=2, exported_items=3)

        assert report.total_questions == 3
        assert report.answered_questions == 2
        assert report.answer_coverage == 66.67
        assert report.missing_question_numbers == [3]
        assert report.missing_answer_numbers == [4]
        assert report.type_breakdown == {"multiple_choice_single": 2, "short_answer": 1}
        assert report.warning_breakdown == {"missing_answer": 1, "orphan_image": 2}
        assert report.image_count == 2
        assert report.exported_items == 3
        assert len(report.warnings) == 3

    def test_report_serializes_coverage(self):
        questions = [QuestionAnswer(number=1, type=QuestionType.ESSAY, answer=TextAnswer(literals=["x"]))]
        data = self.validator.validate(questions).model_dump()
        assert data["answer_coverage"] == 100.0
