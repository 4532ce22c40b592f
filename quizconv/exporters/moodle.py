"""
Moodle XML Exporter
===================
A single quiz.xml with one <question type="multichoice"> per
single-choice item (multiple choice single and true/false). Other types
are omitted item by item.

Images are embedded: the HTML references @@PLUGINFILE@@/<file> and the
bytes travel base64-encoded in a <file> element next to the text, so the
package carries no separate resources.
"""

from __future__ import annotations

import base64
import xml.etree.ElementTree as ET

from ..errors import BackendGenerationError
from ..models import ExportBundle, GeneratedDocument, ImageAsset, QuestionAnswer
from .base import SINGLE_CHOICE_TYPES, Exporter, to_xml

PLUGINFILE = "@@PLUGINFILE@@/"


class MoodleExporter(Exporter):
    """Moodle XML quiz, multiple choice only."""

    format_key = "moodle"
    display_name = "Moodle XML"
    file_suffix = "Moodle"

    def image_src(self, asset: ImageAsset) -> str:
        return f"{PLUGINFILE}{asset.filename}"

    def _text(self, parent: ET.Element, tag: str, text: str, number: int) -> ET.Element:
        """A format="html" element with its text and embedded image files."""
        element = ET.SubElement(parent, tag, {"format": "html"})
        ET.SubElement(element, "text").text = self.render_html(text, number)
        for asset in self.referenced_assets(text):
            file_el = ET.SubElement(element, "file", {
                "name": asset.filename,
                "path": "/",
                "encoding": "base64",
            })
            file_el.text = base64.b64encode(asset.data).decode("ascii")
        return element

    def build_item(self, question: QuestionAnswer) -> ET.Element:
        if question.type not in SINGLE_CHOICE_TYPES:
            raise BackendGenerationError(
                f"{self.display_name} export supports only single-choice questions, "
                f"not {question.type.value}",
                question.number,
            )

        options = self.display_options(question)
        correct = self.correct_letters(question, options)[0]

        element = ET.Element("question", {"type": "multichoice"})
        ET.SubElement(ET.SubElement(element, "name"), "text").text = f"Question {question.number}"
        self._text(element, "questiontext", self.stem_text(question), question.number)
        general = ET.SubElement(element, "generalfeedback", {"format": "html"})
        ET.SubElement(general, "text").text = ""
        ET.SubElement(element, "defaultgrade").text = "1.0000000"
        ET.SubElement(element, "penalty").text = "0.3333333"
        ET.SubElement(element, "hidden").text = "0"
        ET.SubElement(element, "single").text = "true"
        ET.SubElement(element, "shuffleanswers").text = "false"
        ET.SubElement(element, "answernumbering").text = "ABCD"

        for option in options:
            answer = self._text(element, "answer", option.text or f"Option {option.letter}", question.number)
            answer.set("fraction", "100" if option.letter == correct else "0")
            feedback = ET.SubElement(answer, "feedback", {"format": "html"})
            ET.SubElement(feedback, "text").text = ""
        return element

    def package(self, built, title: str) -> ExportBundle:
        quiz = ET.Element("quiz")
        category = ET.SubElement(quiz, "question", {"type": "category"})
        ET.SubElement(ET.SubElement(category, "category"), "text").text = f"$course$/{title}"

        for _, element in built:
            quiz.append(element)

        return ExportBundle(
            format_key=self.format_key,
            manifest=GeneratedDocument(path="quiz.xml", content=to_xml(quiz)),
        )
