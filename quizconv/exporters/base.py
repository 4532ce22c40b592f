"""
Exporter Base
=============
Shared interface and helpers for the per-format export backends.

A backend turns the combined questions plus the image registry into an
ExportBundle (manifest, documents, resource files). Items are built one
at a time; an item that cannot be built raises BackendGenerationError,
which `generate` catches, logs and records before moving on.
"""

from __future__ import annotations

import html
import logging
import re
import uuid
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence

from ..errors import BackendGenerationError
from ..images import split_placeholders
from ..models import (
    ChoiceAnswer,
    ConversionWarning,
    ExportBundle,
    ImageAsset,
    MultiChoiceAnswer,
    Option,
    QuestionAnswer,
    QuestionType,
    ResourceFile,
    Stage,
    WarningCode,
)

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

RESOURCES_DIR = "resources/"

CHOICE_TYPES = frozenset({
    QuestionType.MULTIPLE_CHOICE_SINGLE,
    QuestionType.MULTIPLE_CHOICE_MULTI,
    QuestionType.TRUE_FALSE,
})

SINGLE_CHOICE_TYPES = frozenset({
    QuestionType.MULTIPLE_CHOICE_SINGLE,
    QuestionType.TRUE_FALSE,
})


def to_xml(root: ET.Element) -> str:
    """Serialize an element tree with a UTF-8 declaration and indentation."""
    ET.indent(root, space="  ")
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def stable_id(prefix: str, *parts: Any) -> str:
    """Identifier derived from `parts`, identical across runs."""
    seed = ":".join(str(p) for p in parts)
    return f"{prefix}_{uuid.uuid5(uuid.NAMESPACE_URL, seed).hex}"


def safe_ident(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", value.strip()) or "x"


def unique_idents(values: Sequence[str], prefix: str) -> dict[str, str]:
    """
    Map each distinct value to `{prefix}_{safe_ident(value)}`. Values that
    sanitize to an identifier already taken get a numeric suffix.
    """
    idents: dict[str, str] = {}
    taken: set[str] = set()
    for value in values:
        if value in idents:
            continue
        base = ident = f"{prefix}_{safe_ident(value)}"
        counter = 2
        while ident in taken:
            ident = f"{base}_{counter}"
            counter += 1
        idents[value] = ident
        taken.add(ident)
    return idents


def format_number(value: float) -> str:
    """Render 4.0 as "4" and 2.5 as "2.5"."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def image_resources(images: Mapping[str, ImageAsset], prefix: str = RESOURCES_DIR) -> list[ResourceFile]:
    return [
        ResourceFile(path=f"{prefix}{asset.filename}", data=asset.data)
        for asset in sorted(images.values(), key=lambda a: a.filename)
    ]


class Exporter(ABC):
    """
    One export format.

    Subclasses set `format_key`, `display_name` and `file_suffix` and
    implement `build_item` (one question) and `package` (manifest and
    documents for every built item).
    """

    format_key: str = ""
    display_name: str = ""
    file_suffix: str = ""

    def __init__(self):
        self.warnings: list[ConversionWarning] = []
        self.images: Mapping[str, ImageAsset] = {}

    def generate(
        self,
        questions: Sequence[QuestionAnswer],
        images: Mapping[str, ImageAsset],
        title: str,
    ) -> ExportBundle:
        """Build every item, then package them into an ExportBundle."""
        self.warnings = []
        self.images = images
        title = title or "Quiz"

        built: list[tuple[QuestionAnswer, Any]] = []
        for question in questions:
            try:
                built.append((question, self.build_item(question)))
            except BackendGenerationError as e:
                logger.warning(f"[{self.format_key}] Question {question.number} omitted: {e.internal_message}")
                self.warn(
                    WarningCode.BACKEND_GENERATION_ERROR,
                    e.internal_message,
                    question.number,
                )

        bundle = self.package(built, title)
        bundle.item_count = len(built)
        bundle.warnings = list(self.warnings)
        logger.info(
            f"[{self.format_key}] Generated {len(built)}/{len(questions)} items, "
            f"{len(bundle.documents)} documents, {len(bundle.resources)} resources"
        )
        return bundle

    @abstractmethod
    def build_item(self, question: QuestionAnswer) -> Any:
        """Render one question. Raise BackendGenerationError to omit it."""

    @abstractmethod
    def package(self, built: list[tuple[QuestionAnswer, Any]], title: str) -> ExportBundle:
        """Wrap the built items into manifest, documents and resources."""

    # ─── Shared Helpers ───────────────────────────────────────────────────

    def warn(self, code: WarningCode, message: str, question_number: Optional[int] = None):
        self.warnings.append(ConversionWarning(
            stage=Stage.EXPORT,
            code=code,
            message=message,
            question_number=question_number,
        ))

    def image_src(self, asset: ImageAsset) -> str:
        return f"{RESOURCES_DIR}{asset.filename}"

    def image_attrs(self, asset: ImageAsset) -> dict[str, str]:
        """src and alt, plus width and height when the image size is known."""
        attrs = {"src": self.image_src(asset), "alt": asset.filename}
        if asset.width:
            attrs["width"] = str(asset.width)
        if asset.height:
            attrs["height"] = str(asset.height)
        return attrs

    def stem_text(self, question: QuestionAnswer) -> str:
        return question.stem or f"Question {question.number}"

    def render_html(self, text: str, question_number: Optional[int] = None) -> str:
        """Escape text and turn placeholders into <img> tags."""
        parts = []
        for kind, value in split_placeholders(text):
            if kind == "text":
                parts.append(html.escape(value, quote=False))
                continue
            asset = self.images.get(value)
            if asset is None:
                self._unresolved(value, question_number)
                parts.append(html.escape(f"[IMG:{value}]", quote=False))
            else:
                attrs = "".join(f' {name}="{html.escape(value)}"' for name, value in self.image_attrs(asset).items())
                parts.append(f"<img{attrs}/>")
        return "".join(parts)

    def append_rich_text(self, parent: ET.Element, text: str, question_number: Optional[int] = None):
        """Append text and <img> children to `parent`, keeping reading order."""
        last: Optional[ET.Element] = None
        for kind, value in split_placeholders(text):
            if kind == "image":
                asset = self.images.get(value)
                if asset is not None:
                    last = ET.SubElement(parent, "img", self.image_attrs(asset))
                    continue
                self._unresolved(value, question_number)
                value = f"[IMG:{value}]"
            if last is None:
                parent.text = (parent.text or "") + value
            else:
                last.tail = (last.tail or "") + value

    def referenced_assets(self, *texts: str) -> list[ImageAsset]:
        seen: list[ImageAsset] = []
        for text in texts:
            for kind, value in split_placeholders(text):
                asset = self.images.get(value) if kind == "image" else None
                if asset is not None and asset not in seen:
                    seen.append(asset)
        return seen

    def display_options(self, question: QuestionAnswer) -> list[Option]:
        """
        The question's options with repeated letters dropped (the first
        one wins), padded to at least two.
        """
        options: list[Option] = []
        for option in question.options:
            if option.letter.upper() in {o.letter.upper() for o in options}:
                logger.warning(f"[{self.format_key}] Question {question.number}: repeated option {option.letter} dropped")
                self.warn(
                    WarningCode.DUPLICATE_OPTION_LETTER,
                    f"Question {question.number} has more than one option {option.letter}; the later one was left out",
                    question.number,
                )
                continue
            options.append(option)
        if len(options) >= 2:
            return options

        if question.type == QuestionType.TRUE_FALSE and not options:
            padded = [Option(letter="T", text="True"), Option(letter="F", text="False")]
        else:
            padded = list(options)
            letter = "A"
            while len(padded) < 2:
                while letter in {o.letter for o in padded}:
                    letter = chr(ord(letter) + 1)
                padded.append(Option(letter=letter, text=f"Option {letter}"))

        logger.warning(f"[{self.format_key}] Question {question.number}: padded to {len(padded)} options")
        self.warn(
            WarningCode.PADDED_OPTIONS,
            f"Question {question.number} had fewer than two options; placeholders were added",
            question.number,
        )
        return padded

    def correct_letters(self, question: QuestionAnswer, options: Sequence[Option]) -> list[str]:
        """
        Option letters the answer marks correct. Falls back to the first
        option when there is no usable answer.
        """
        by_upper = {o.letter.upper(): o.letter for o in options}
        answer = question.answer
        letters: list[str] = []
        if isinstance(answer, ChoiceAnswer):
            letters = [answer.letter]
        elif isinstance(answer, MultiChoiceAnswer):
            letters = list(answer.letters)

        matched = [by_upper[l.upper()] for l in letters if l.upper() in by_upper]
        if matched:
            return matched

        reason = "no answer" if answer is None else f"answer {', '.join(letters)} matches no option"
        logger.warning(
            f"[{self.format_key}] Question {question.number}: {reason}, "
            f"defaulting to option {options[0].letter}"
        )
        self.warn(
            WarningCode.DEFAULTED_ANSWER,
            f"Question {question.number} has {reason}; option {options[0].letter} was marked correct",
            question.number,
        )
        return [options[0].letter]

    def _unresolved(self, image_id: str, question_number: Optional[int]):
        logger.warning(f"[{self.format_key}] Unresolved image {image_id}")
        self.warn(
            WarningCode.UNRESOLVED_IMAGE,
            f"Image {image_id} could not be included",
            question_number,
        )
