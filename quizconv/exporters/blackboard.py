"""
Blackboard Pool Exporter
========================
    imsmanifest.xml     one assessment/x-bb-qti-pool resource
    res00001.dat        QTI 1.2 pool holding single-choice items only
    resources/<file>    images, referenced as resources/<file>
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

from ..errors import BackendGenerationError
from ..models import ExportBundle, GeneratedDocument, QuestionAnswer, QuestionType
from .base import SINGLE_CHOICE_TYPES, Exporter, image_resources, stable_id, to_xml

BB_NS = "http://www.blackboard.com/content-packaging/"
POOL_FILE = "res00001.dat"

QUESTION_TYPE_LABELS = {
    QuestionType.MULTIPLE_CHOICE_SINGLE: "Multiple Choice",
    QuestionType.TRUE_FALSE: "True/False",
}


def formatted_text(parent: ET.Element, html_text: str, flow_class: str = "FORMATTED_TEXT_BLOCK") -> ET.Element:
    flow = ET.SubElement(parent, "flow", {"class": flow_class})
    material = ET.SubElement(flow, "material")
    extension = ET.SubElement(material, "mat_extension")
    text = ET.SubElement(extension, "mat_formattedtext", {"type": "HTML"})
    text.text = html_text
    return flow


class BlackboardExporter(Exporter):
    """Blackboard question pool, single-choice items only."""

    format_key = "blackboard"
    display_name = "Blackboard Pool"
    file_suffix = "Blackboard"

    def build_item(self, question: QuestionAnswer) -> ET.Element:
        if question.type not in SINGLE_CHOICE_TYPES:
            raise BackendGenerationError(
                f"{self.display_name} export supports only single-choice questions, "
                f"not {question.type.value}",
                question.number,
            )

        options = self.display_options(question)
        correct = self.correct_letters(question, options)[0]
        answer_ids = {
            o.letter: stable_id("answer", self.format_key, question.number, o.letter)
            for o in options
        }

        item = ET.Element("item", {"title": f"Question {question.number}", "maxattempts": "0"})
        metadata = ET.SubElement(item, "itemmetadata")
        ET.SubElement(metadata, "bbmd_asi_object_id").text = stable_id("item", self.format_key, question.number)
        ET.SubElement(metadata, "bbmd_asitype").text = "Item"
        ET.SubElement(metadata, "bbmd_assessmenttype").text = "Pool"
        ET.SubElement(metadata, "bbmd_questiontype").text = QUESTION_TYPE_LABELS[question.type]
        ET.SubElement(metadata, "qmd_absolutescore_max").text = "1.0"

        presentation = ET.SubElement(item, "presentation")
        block = ET.SubElement(presentation, "flow", {"class": "Block"})
        question_block = ET.SubElement(block, "flow", {"class": "QUESTION_BLOCK"})
        formatted_text(question_block, self.render_html(self.stem_text(question), question.number))

        response_block = ET.SubElement(block, "flow", {"class": "RESPONSE_BLOCK"})
        response_lid = ET.SubElement(response_block, "response_lid", {
            "ident": "response",
            "rcardinality": "Single",
            "rtiming": "No",
        })
        render_choice = ET.SubElement(response_lid, "render_choice", {
            "shuffle": "No",
            "minnumber": "0",
            "maxnumber": "0",
        })
        for option in options:
            flow_label = ET.SubElement(render_choice, "flow_label", {"class": "Block"})
            label = ET.SubElement(flow_label, "response_label", {
                "ident": answer_ids[option.letter],
                "shuffle": "Yes",
                "rarea": "Ellipse",
                "rrange": "Exact",
            })
            formatted_text(label, self.render_html(option.text or f"Option {option.letter}", question.number))

        resprocessing = ET.SubElement(item, "resprocessing", {"scoremodel": "SumOfScores"})
        outcomes = ET.SubElement(resprocessing, "outcomes")
        ET.SubElement(outcomes, "decvar", {
            "varname": "SCORE",
            "vartype": "Decimal",
            "defaultval": "0",
            "minvalue": "0",
        })

        correct_rc = ET.SubElement(resprocessing, "respcondition", {"title": "correct"})
        conditionvar = ET.SubElement(correct_rc, "conditionvar")
        ET.SubElement(conditionvar, "varequal", {"respident": "response", "case": "No"}).text = answer_ids[correct]
        ET.SubElement(correct_rc, "setvar", {"variablename": "SCORE", "action": "Set"}).text = "SCORE.max"

        incorrect_rc = ET.SubElement(resprocessing, "respcondition", {"title": "incorrect"})
        ET.SubElement(ET.SubElement(incorrect_rc, "conditionvar"), "other")
        ET.SubElement(incorrect_rc, "setvar", {"variablename": "SCORE", "action": "Set"}).text = "0"
        return item

    def package(self, built, title: str) -> ExportBundle:
        pool = ET.Element("questestinterop")
        assessment = ET.SubElement(pool, "assessment", {"title": title})
        metadata = ET.SubElement(assessment, "assessmentmetadata")
        ET.SubElement(metadata, "bbmd_asi_object_id").text = stable_id("pool", self.format_key, title)
        ET.SubElement(metadata, "bbmd_asitype").text = "Assessment"
        ET.SubElement(metadata, "bbmd_assessmenttype").text = "Pool"
        ET.SubElement(metadata, "qmd_absolutescore_max").text = f"{float(len(built))}"

        section = ET.SubElement(assessment, "section")
        section_metadata = ET.SubElement(section, "sectionmetadata")
        ET.SubElement(section_metadata, "bbmd_asitype").text = "Section"
        ET.SubElement(section_metadata, "bbmd_assessmenttype").text = "Pool"
        for _, element in built:
            section.append(element)

        manifest = ET.Element("manifest", {
            "identifier": "man00001",
            "xmlns:bb": BB_NS,
        })
        ET.SubElement(manifest, "organizations")
        resources = ET.SubElement(manifest, "resources")
        ET.SubElement(resources, "resource", {
            "bb:file": POOL_FILE,
            "bb:title": title,
            "identifier": "res00001",
            "type": "assessment/x-bb-qti-pool",
            "xml:base": "res00001",
        })

        return ExportBundle(
            format_key=self.format_key,
            manifest=GeneratedDocument(path="imsmanifest.xml", content=to_xml(manifest)),
            documents=[GeneratedDocument(path=POOL_FILE, content=to_xml(pool))],
            resources=image_resources(self.images),
        )
