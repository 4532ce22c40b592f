"""
Test Suite for the Answer-Key Parser
====================================
Per-type decoders and line-level error isolation.
"""

from __future__ import annotations

import pytest

from conftest import make_blocks
from quizconv.answer_key import (
    DECODERS,
    AnswerKeyParser,
    decode_matching,
    decode_multi_choice,
    decode_numeric,
    decode_ordering,
    decode_single_choice,
    decode_text,
    decode_true_false,
    normalize_line,
)
from quizconv.errors import AnswerDecodeError
from quizconv.models import (
    ChoiceAnswer,
    MatchPair,
    MultiChoiceAnswer,
    NumericAnswer,
    OrderingAnswer,
    QuestionType,
    Stage,
    TextAnswer,
    WarningCode,
)


# ═══════════════════════════════════════════════════════════════════════════════
# DECODER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDecoders:
    """Each question type decodes its payload into one record shape."""

    def test_every_type_has_a_decoder(self):
        assert set(DECODERS) == set(QuestionType)

    def test_single_choice(self):
        assert decode_single_choice("B") == ChoiceAnswer(letter="B")
        assert decode_single_choice("  c ") == ChoiceAnswer(letter="C")
        with pytest.raises(AnswerDecodeError):
            decode_single_choice("42")

    def test_true_false(self):
        assert decode_true_false("F") == ChoiceAnswer(letter="F")
        assert decode_true_false("True") == ChoiceAnswer(letter="T")
        assert decode_true_false("false") == ChoiceAnswer(letter="F")
        with pytest.raises(AnswerDecodeError):
            decode_true_false("maybe")

    def test_multi_choice_sorted_unique(self):
        assert decode_multi_choice("C, A, c") == MultiChoiceAnswer(letters=["A", "C"])
        assert decode_multi_choice("B D") == MultiChoiceAnswer(letters=["B", "D"])
        with pytest.raises(AnswerDecodeError):
            decode_multi_choice("none")

    def test_text_literals(self):
        assert decode_text("blue, Blue") == TextAnswer(literals=["blue", "Blue"])
        assert decode_text("Paris; paris") == TextAnswer(literals=["Paris", "paris"])
        assert decode_text("photosynthesis") == TextAnswer(literals=["photosynthesis"])
        with pytest.raises(AnswerDecodeError):
            decode_text(" , ")

    def test_numeric(self):
        assert decode_numeric("3.5") == NumericAnswer(value=3.5)
        assert decode_numeric(" -4 ") == NumericAnswer(value=-4.0)
        for bad in ["abc", "inf", "nan", ""]:
            with pytest.raises(AnswerDecodeError):
                decode_numeric(bad)

    def test_matching_pairs(self):
        answer = decode_matching("A=2, B-1")
        assert answer.pairs == [
            MatchPair(premise="A", response="2"),
            MatchPair(premise="B", response="1"),
        ]

    def test_matching_skips_malformed_pairs(self):
        answer = decode_matching("A=Paris, junk, B = Madrid")
        assert [p.premise for p in answer.pairs] == ["A", "B"]
        assert answer.pairs[1].response == "Madrid"
        with pytest.raises(AnswerDecodeError):
            decode_matching("nothing here")

    def test_ordering(self):
        assert decode_ordering("B, A, C") == OrderingAnswer(sequence=["B", "A", "C"])
        assert decode_ordering("B A C") == OrderingAnswer(sequence=["B", "A", "C"])
        with pytest.raises(AnswerDecodeError):
            decode_ordering("  ")

    def test_normalize_line(self):
        assert normalize_line("Answer:  1.   B") == "1. B"
        assert normalize_line("Correct Answer: 2) T") == "2) T"
        assert normalize_line("  3.  blue ") == "3. blue"


# ═══════════════════════════════════════════════════════════════════════════════
# PARSER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnswerKeyParser:
    """Test line splitting, dispatch by type and warning accumulation."""

    TYPES = {
        1: QuestionType.MULTIPLE_CHOICE_SINGLE,
        2: QuestionType.TRUE_FALSE,
        3: QuestionType.MULTIPLE_CHOICE_MULTI,
        4: QuestionType.FILL_IN_BLANK_NUMERIC,
        5: QuestionType.MATCHING,
        6: QuestionType.ORDERING,
        7: QuestionType.SHORT_ANSWER,
    }

    def _parse(self, *lines, types=None, parser=None):
        parser = parser or AnswerKeyParser()
        return parser.parse(make_blocks(*lines), types or self.TYPES)

    def test_decodes_by_question_type(self):
        outcome = self._parse(
            "1. B",
            "2) true",
            "3: A, C",
            "4 - 3.5",
            "5. A=2, B=1",
            "6. B, A, C",
            "7. Paris; paris",
        )
        assert outcome.warnings == []
        assert outcome.answers[1] == ChoiceAnswer(letter="B")
        assert outcome.answers[2] == ChoiceAnswer(letter="T")
        assert outcome.answers[3] == MultiChoiceAnswer(letters=["A", "C"])
        assert outcome.answers[4] == NumericAnswer(value=3.5)
        assert len(outcome.answers[5].pairs) == 2
        assert outcome.answers[6].sequence == ["B", "A", "C"]
        assert outcome.answers[7].literals == ["Paris", "paris"]

    def test_multi_line_block(self):
        outcome = self._parse("1. B\n2. F\n\n")
        assert set(outcome.answers) == {1, 2}

    def test_answer_prefix(self):
        outcome = self._parse("Answer: 1. B", "2. Ans: F")
        assert outcome.answers[1].letter == "B"
        assert outcome.answers[2].letter == "F"

    def test_line_without_separator_is_rejected(self):
        outcome = self._parse("1 B", "2. T")
        assert 1 not in outcome.answers
        assert outcome.answers[2].letter == "T"
        assert [w.code for w in outcome.warnings] == [WarningCode.ANSWER_DECODE_ERROR]
        assert outcome.warnings[0].stage == Stage.ANSWER_KEY
        assert outcome.warnings[0].line == "1 B"

    def test_bad_payload_names_question(self):
        outcome = self._parse("4. about three")
        assert outcome.answers == {}
        warning = outcome.warnings[0]
        assert warning.code == WarningCode.ANSWER_DECODE_ERROR
        assert warning.question_number == 4
        assert "fill_in_blank_numeric" in warning.message

    def test_unknown_question_number(self):
        outcome = self._parse("9. A")
        assert outcome.answers == {}
        assert [w.code for w in outcome.warnings] == [WarningCode.UNKNOWN_QUESTION_NUMBER]

    def test_duplicate_answer_last_wins(self):
        outcome = self._parse("1. A", "1. C")
        assert outcome.answers[1].letter == "C"
        assert [w.code for w in outcome.warnings] == [WarningCode.DUPLICATE_ANSWER]

    def test_repeated_header_ignored(self):
        outcome = self._parse("Answer Key", "1. B")
        assert outcome.warnings == []
        assert outcome.answers[1].letter == "B"

    def test_missing_decoder(self):
        parser = AnswerKeyParser(decoders={})
        outcome = self._parse("1. B", parser=parser)
        assert outcome.answers == {}
        assert [w.code for w in outcome.warnings] == [WarningCode.NO_DECODER]

    def test_one_bad_line_does_not_stop_the_rest(self):
        outcome = self._parse("garbage", "1. B", "???", "2. F")
        assert set(outcome.answers) == {1, 2}
        assert len(outcome.warnings) == 2

    def test_warnings_reset_between_runs(self):
        parser = AnswerKeyParser()
        self._parse("nonsense", parser=parser)
        outcome = self._parse("1. B", parser=parser)
        assert outcome.warnings == []
