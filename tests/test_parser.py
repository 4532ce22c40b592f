"""
Test Suite for the Structural Parser
====================================
Models, anchor patterns, the block rule table, type inference, the image
registry and the state-machine parser.
"""

from __future__ import annotations

import pytest

from conftest import make_blocks, make_image
from quizconv.errors import ImageProcessingError, StructuralError
from quizconv.images import (
    ImageRegistry,
    extension_for_mime,
    placeholder_ids,
    split_placeholders,
)
from quizconv.models import (
    Block,
    ChoiceAnswer,
    ConversionReport,
    ImageAsset,
    InlineImage,
    Option,
    QuestionAnswer,
    QuestionType,
    Stage,
    WarningCode,
)
from quizconv.state_machine import (
    ANSWER_KEY_HEADER_PATTERN,
    BLOCK_RULES,
    OPTION_PATTERN,
    QUESTION_PATTERN,
    ParserState,
    StructuralParser,
    classify,
    join_text,
)
from quizconv.type_inference import INFERENCE_RULES, TypeInferenceEngine


def _codes(warnings) -> list[WarningCode]:
    return [w.code for w in warnings]


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestModels:
    """Test the pydantic data models."""

    def test_block_is_empty(self):
        assert Block().is_empty
        assert Block(text="   ").is_empty
        assert not Block(text="1. Hi").is_empty
        assert not Block(inline_images=[make_image()]).is_empty

    def test_image_asset_placeholder(self):
        asset = ImageAsset(id="abc", data=b"x", filename="q1_img1_abc.png")
        assert asset.placeholder == "[IMG:abc]"

    def test_answer_union_discriminates_on_kind(self):
        q = QuestionAnswer.model_validate({
            "number": 1,
            "type": "true_false",
            "answer": {"kind": "choice", "letter": "T"},
        })
        assert isinstance(q.answer, ChoiceAnswer)
        assert q.answer.letter == "T"

    def test_question_answer_is_frozen(self):
        q = QuestionAnswer(number=1, type=QuestionType.ESSAY)
        with pytest.raises(Exception):
            q.number = 2

    def test_report_answer_coverage(self):
        report = ConversionReport(total_questions=4, answered_questions=3)
        assert report.answer_coverage == 75.0
        assert ConversionReport().answer_coverage == 0.0

    def test_inline_image_serializes_bytes_as_base64(self):
        data = InlineImage(data=b"\x00\x01").model_dump(mode="json")
        assert data["data"] == "AAE="


# ═══════════════════════════════════════════════════════════════════════════════
# PATTERN / RULE TABLE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnchorPatterns:
    """Test the regex anchors."""

    def test_question_patterns(self):
        for text in ["1. What", "12) What", "3 - What", "  4.  What"]:
            assert QUESTION_PATTERN.match(text), text
        assert QUESTION_PATTERN.match("7. What is it?").group(1) == "7"
        assert not QUESTION_PATTERN.match("1.5 is a number")
        assert not QUESTION_PATTERN.match("Question 1")

    def test_option_patterns(self):
        for text in ["A. Paris", "b) Rome", "(C) Madrid", "( d ) Lisbon"]:
            assert OPTION_PATTERN.match(text), text
        assert not OPTION_PATTERN.match("A.")
        assert not OPTION_PATTERN.match("AB. Paris")

    def test_answer_key_header(self):
        for text in ["Answer Key", "ANSWERS:", "key", "  answer   key :  "]:
            assert ANSWER_KEY_HEADER_PATTERN.match(text), text
        assert not ANSWER_KEY_HEADER_PATTERN.match("Answer key below")
        assert not ANSWER_KEY_HEADER_PATTERN.match("The key is here")


class TestBlockRules:
    """The classification table is ordered data; first match wins."""

    def test_rule_order(self):
        assert [r.name for r in BLOCK_RULES] == [
            "answer_key_header",
            "question_marker",
            "option",
            "continuation",
            "preamble",
        ]

    def test_header_wins_over_everything(self):
        rule, _ = classify("Answer Key", has_draft=True)
        assert rule.name == "answer_key_header"

    def test_option_requires_open_draft(self):
        assert classify("A. Paris", has_draft=True)[0].name == "option"
        assert classify("A. Paris", has_draft=False)[0].name == "preamble"

    def test_plain_text(self):
        assert classify("more words", has_draft=True)[0].name == "continuation"
        assert classify("more words", has_draft=False)[0].name == "preamble"

    def test_question_marker_with_draft(self):
        rule, match = classify("2. Next?", has_draft=True)
        assert rule.name == "question_marker"
        assert match.group(1) == "2"


class TestJoinText:

    def test_single_space(self):
        assert join_text("The capital", "of France") == "The capital of France"

    def test_no_space_before_punctuation(self):
        assert join_text("Hello", ", world") == "Hello, world"
        assert join_text("Value (x", ") here") == "Value (x) here"

    def test_existing_trailing_space(self):
        assert join_text("Hello ", "world") == "Hello world"

    def test_empty_sides(self):
        assert join_text("", "abc") == "abc"
        assert join_text("abc", "") == "abc"


# ═══════════════════════════════════════════════════════════════════════════════
# TYPE INFERENCE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestTypeInference:
    """Test the precedence table."""

    def setup_method(self):
        self.engine = TypeInferenceEngine()

    def test_keyword_rules(self):
        assert self.engine.infer("True or false: water is wet") == QuestionType.TRUE_FALSE
        assert self.engine.infer("Match the capitals to countries") == QuestionType.MATCHING
        assert self.engine.infer("Put these events in order") == QuestionType.ORDERING
        assert self.engine.infer("What sequence is correct?") == QuestionType.ORDERING
        assert self.engine.infer("The capital is ____.") == QuestionType.FILL_IN_BLANK_TEXT

    def test_structural_rules(self):
        ab = [Option(letter="A", text="x"), Option(letter="B", text="y")]
        tf = [Option(letter="T", text="True"), Option(letter="F", text="False")]
        assert self.engine.infer("Pick one", ab) == QuestionType.MULTIPLE_CHOICE_SINGLE
        assert self.engine.infer("Pick one", tf) == QuestionType.TRUE_FALSE

    def test_structural_rules_need_options(self):
        assert self.engine.infer("Pick one") == QuestionType.SHORT_ANSWER
        assert self.engine.infer("Pick one", [Option(letter="A")]) == QuestionType.SHORT_ANSWER

    def test_keyword_beats_options(self):
        options = [Option(letter="A"), Option(letter="B"), Option(letter="C")]
        assert self.engine.infer("Order the steps.", options) == QuestionType.ORDERING

    def test_ambiguity_falls_back_to_first_rule(self):
        stem = "Match the true or false statements"
        names = [r.name for r in self.engine.explain(stem)]
        assert names == ["true_false_keywords", "matching_keyword"]

        assert self.engine.infer(stem) == QuestionType.TRUE_FALSE
        assert len(self.engine.ambiguities) == 1
        assert self.engine.ambiguities[0].candidates == [
            QuestionType.TRUE_FALSE,
            QuestionType.MATCHING,
        ]

        self.engine.reset()
        assert self.engine.ambiguities == []

    def test_default_type(self):
        assert self.engine.infer("Explain photosynthesis.", []) == QuestionType.SHORT_ANSWER

    def test_rule_table_is_public(self):
        assert INFERENCE_RULES[0].name == "true_false_keywords"
        assert INFERENCE_RULES[-1].result == QuestionType.MULTIPLE_CHOICE_SINGLE


# ═══════════════════════════════════════════════════════════════════════════════
# IMAGE REGISTRY TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestImageRegistry:

    def test_split_placeholders(self):
        assert list(split_placeholders("a[IMG:x]b")) == [
            ("text", "a"),
            ("image", "x"),
            ("text", "b"),
        ]
        assert list(split_placeholders("[IMG:x]")) == [("image", "x")]
        assert placeholder_ids("[IMG:a] and [IMG:b]") == ["a", "b"]

    def test_extension_for_mime(self):
        assert extension_for_mime("image/jpeg") == "jpg"
        assert extension_for_mime("image/svg+xml") == "svg"
        assert extension_for_mime(None) == "png"

    def test_splice_at_offsets(self, id_factory):
        registry = ImageRegistry(id_factory)
        text, pending = registry.splice(
            "Look here",
            [make_image(offset=5), make_image(offset=None)],
        )
        assert text == "Look [IMG:img1]here[IMG:img2]"
        assert [image_id for image_id, _ in pending] == ["img1", "img2"]
        assert len(registry) == 0

    def test_register_assigns_filenames(self, id_factory):
        registry = ImageRegistry(id_factory)
        first = registry.register("img1", make_image(), 3)
        second = registry.register("img2", make_image(mime_type="image/jpeg"), 3)
        assert first.filename == "q3_img1_img1.png"
        assert second.filename == "q3_img2_img2.jpg"
        assert "img1" in registry
        assert set(registry.assets) == {"img1", "img2"}

    def test_register_rejects_bad_images(self):
        registry = ImageRegistry()
        with pytest.raises(ImageProcessingError):
            registry.register("a", make_image(data=b""), 1)
        with pytest.raises(ImageProcessingError):
            registry.register("b", make_image(mime_type="application/pdf"), 1)


# ═══════════════════════════════════════════════════════════════════════════════
# STRUCTURAL PARSER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStructuralParser:
    """Test the block-stream state machine."""

    def _parse(self, *lines, **kwargs):
        return StructuralParser(**kwargs).parse(make_blocks(*lines))

    def test_single_complete_question(self):
        outcome = self._parse("1. What is 2+2?", "A. 3", "B. 4", "Answer Key", "1. B")
        assert len(outcome.drafts) == 1
        draft = outcome.drafts[0]
        assert draft.number == 1
        assert draft.stem == "What is 2+2?"
        assert draft.options == [Option(letter="A", text="3"), Option(letter="B", text="4")]
        assert draft.type == QuestionType.MULTIPLE_CHOICE_SINGLE
        assert outcome.boundary_index == 3
        assert outcome.type_map == {1: QuestionType.MULTIPLE_CHOICE_SINGLE}
        assert outcome.warnings == []

    def test_multiple_questions(self):
        outcome = self._parse(
            "1. First?", "A. x", "B. y",
            "2. Second?", "(a) p", "(b) q",
            "3. Explain.",
        )
        assert [d.number for d in outcome.drafts] == [1, 2, 3]
        assert outcome.drafts[1].option_letters == ["A", "B"]
        assert outcome.drafts[2].type == QuestionType.SHORT_ANSWER
        assert outcome.boundary_index is None

    def test_continuation_lines(self):
        outcome = self._parse("1. The capital", "of France", "is which city?", "A. Paris", "B. Rome")
        assert outcome.drafts[0].stem == "The capital of France is which city?"

    def test_option_before_question_is_preamble(self):
        outcome = self._parse("Instructions: answer all.", "A. not an option", "1. Real?")
        assert len(outcome.drafts) == 1
        assert _codes(outcome.warnings) == [WarningCode.UNANCHORED_PREAMBLE] * 2
        assert all(w.stage == Stage.PARSE for w in outcome.warnings)

    def test_empty_blocks_skipped(self):
        blocks = [Block(), Block(text="1. Q?"), Block(text="  "), Block(text="A. x"), Block(text="B. y")]
        outcome = StructuralParser().parse(blocks)
        assert outcome.drafts[0].option_letters == ["A", "B"]

    def test_no_question_is_fatal(self):
        with pytest.raises(StructuralError) as exc:
            self._parse("Just some prose.", "Nothing numbered here.")
        assert exc.value.fatal
        assert "No questions" in exc.value.user_message

    def test_answer_key_stops_parsing(self):
        outcome = self._parse("1. Q?", "A. x", "B. y", "ANSWERS:", "2. Not a question")
        assert [d.number for d in outcome.drafts] == [1]
        assert outcome.boundary_index == 3

    def test_duplicate_question_numbers(self):
        outcome = self._parse("1. First", "A. x", "B. y", "1. Second", "A. z", "continued")
        assert len(outcome.drafts) == 1
        draft = outcome.drafts[0]
        assert draft.stem == "First"
        assert draft.option_letters == ["A", "B"]
        assert _codes(outcome.warnings) == [WarningCode.DUPLICATE_QUESTION_NUMBER]
        assert outcome.warnings[0].question_number == 1

    def test_true_false_by_option_letters(self):
        outcome = self._parse("1. The sky is green.", "T. True", "F. False")
        assert outcome.drafts[0].type == QuestionType.TRUE_FALSE
        assert outcome.type_map[1] == QuestionType.TRUE_FALSE

    def test_type_override(self):
        outcome = self._parse("1. Describe the water cycle.", type_overrides={1: QuestionType.ESSAY})
        assert outcome.drafts[0].type == QuestionType.ESSAY
        assert outcome.type_map == {1: QuestionType.ESSAY}

    def test_ambiguity_recorded_once(self):
        outcome = self._parse("1. Match the true or false statements")
        assert _codes(outcome.warnings) == [WarningCode.TYPE_INFERENCE_AMBIGUITY]
        assert outcome.warnings[0].stage == Stage.INFERENCE
        assert outcome.drafts[0].type == QuestionType.TRUE_FALSE

    def test_inline_image_in_stem(self, id_factory):
        blocks = [Block(text="1. Look here", inline_images=[make_image(offset=8)])]
        outcome = StructuralParser(id_factory=id_factory).parse(blocks)
        draft = outcome.drafts[0]
        assert draft.stem == "Look [IMG:img1]here"
        assert draft.has_images
        assert draft.image_ids == ["img1"]
        assert outcome.images["img1"].filename == "q1_img1_img1.png"
        assert outcome.images["img1"].question_number == 1

    def test_image_only_block_joins_stem(self, id_factory):
        blocks = [
            Block(text="1. Which shape?"),
            Block(inline_images=[make_image()]),
            Block(text="A. Circle"),
            Block(text="B. Square", inline_images=[make_image()]),
        ]
        outcome = StructuralParser(id_factory=id_factory).parse(blocks)
        draft = outcome.drafts[0]
        assert draft.stem == "Which shape? [IMG:img1]"
        assert draft.options[1].text == "Square[IMG:img2]"
        assert draft.image_ids == ["img1", "img2"]

    def test_picture_options(self, id_factory):
        blocks = [
            Block(text="1. Which shape is a circle?"),
            Block(text="A. ", inline_images=[make_image()]),
            Block(text="B.", inline_images=[make_image(data=b"other", offset=2)]),
        ]
        outcome = StructuralParser(id_factory=id_factory).parse(blocks)
        draft = outcome.drafts[0]
        assert draft.stem == "Which shape is a circle?"
        assert draft.option_letters == ["A", "B"]
        assert [o.text for o in draft.options] == ["[IMG:img1]", "[IMG:img2]"]
        assert draft.type == QuestionType.MULTIPLE_CHOICE_SINGLE
        assert draft.image_ids == ["img1", "img2"]
        assert outcome.images["img2"].filename == "q1_img2_img2.png"

    def test_picture_after_plain_text_stays_continuation(self, id_factory):
        blocks = [
            Block(text="1. Which shape?"),
            Block(text="Figure 1", inline_images=[make_image()]),
            Block(text="A. Circle"),
            Block(text="B. Square"),
        ]
        outcome = StructuralParser(id_factory=id_factory).parse(blocks)
        draft = outcome.drafts[0]
        assert draft.stem == "Which shape? Figure 1[IMG:img1]"
        assert draft.option_letters == ["A", "B"]

    def test_image_in_preamble_is_orphaned(self, id_factory):
        blocks = [Block(text="Logo", inline_images=[make_image()]), Block(text="1. Q?")]
        outcome = StructuralParser(id_factory=id_factory).parse(blocks)
        assert outcome.images == {}
        assert WarningCode.ORPHAN_IMAGE in _codes(outcome.warnings)

    def test_unreadable_image_leaves_placeholder(self, id_factory):
        blocks = [Block(text="1. Broken", inline_images=[make_image(data=b"")])]
        outcome = StructuralParser(id_factory=id_factory).parse(blocks)
        draft = outcome.drafts[0]
        assert draft.stem == "Broken[IMG:img1]"
        assert not draft.has_images
        assert outcome.images == {}
        assert _codes(outcome.warnings) == [WarningCode.IMAGE_PROCESSING_ERROR]

    def test_parser_is_reusable(self):
        parser = StructuralParser()
        first = parser.parse(make_blocks("1. A?", "2. B?"))
        second = parser.parse(make_blocks("5. C?"))
        assert [d.number for d in first.drafts] == [1, 2]
        assert [d.number for d in second.drafts] == [5]

    def test_state_after_answer_key(self):
        parser = StructuralParser()
        parser.parse(make_blocks("1. A?", "Answer Key", "1. x"))
        assert parser.state == ParserState.ANSWER_KEY

    def test_rerun_is_idempotent(self):
        lines = ("1. What is 2+2?", "A. 3", "B. 4", "2. True or false: 1 > 0", "Answer Key")
        first = self._parse(*lines)
        second = self._parse(*lines)
        assert first.drafts == second.drafts
        assert first.type_map == second.type_map
