"""
QTI 1.2 Exporter
================
Plain IMS QTI 1.2 package:

    imsmanifest.xml
    assessment.xml        <questestinterop><assessment><section> + every <item>
    resources/<file>      images, referenced as resources/<file>

Identifiers:
    item_<N>              item ident
    response_item_<N>     response ident
    choice_<LETTER>       choice / ordering label ident
    premise_<LETTER>      matching premise label ident
    response_<VALUE>      matching response label ident

Grading conditions (one scoring branch sets SCORE to 100):
    single choice / T-F   varequal
    multiple choice       and(varequal..., not(varequal)...)
    free text             or(varequal case="No" ...)
    numeric               varequal on a response_num
    matching              varsubset "premise_A.response_1 ..."
    ordering              varequal "choice_B choice_A ..." on an Ordered response
    essay                 any response
Every other response falls through to <other/> → 0.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Callable, Optional

from ..errors import BackendGenerationError
from ..models import (
    ExportBundle,
    GeneratedDocument,
    MatchingAnswer,
    NumericAnswer,
    OrderingAnswer,
    QuestionAnswer,
    QuestionType,
    TextAnswer,
)
from .base import (
    Exporter,
    format_number,
    image_resources,
    safe_ident,
    stable_id,
    to_xml,
    unique_idents,
)

logger = logging.getLogger(__name__)

QTI12_NS = "http://www.imsglobal.org/xsd/ims_qtiasiv1p2"
IMSCP_NS = "http://www.imsglobal.org/xsd/imscp_v1p1"
IMSMD_NS = "http://www.imsglobal.org/xsd/imsmd_v1p2"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

MAX_SCORE = "100"

ITEM_TYPE_LABELS = {
    QuestionType.MULTIPLE_CHOICE_SINGLE: "Multiple Choice",
    QuestionType.MULTIPLE_CHOICE_MULTI: "Multiple Response",
    QuestionType.TRUE_FALSE: "True/False",
    QuestionType.FILL_IN_BLANK_TEXT: "Fill in the Blank",
    QuestionType.FILL_IN_BLANK_NUMERIC: "Fill in the Blank Numeric",
    QuestionType.SHORT_ANSWER: "Short Answer",
    QuestionType.ESSAY: "Essay",
    QuestionType.MATCHING: "Matching",
    QuestionType.ORDERING: "Ordering",
}


def mattext(parent: ET.Element, html_text: str) -> ET.Element:
    material = ET.SubElement(parent, "material")
    m = ET.SubElement(material, "mattext", {"texttype": "text/html"})
    m.text = html_text
    return m


def metadata_field(parent: ET.Element, label: str, entry: str):
    field = ET.SubElement(parent, "qtimetadatafield")
    ET.SubElement(field, "fieldlabel").text = label
    ET.SubElement(field, "fieldentry").text = entry


def score_branch(resprocessing: ET.Element, title: str, score: str, cont: str = "No") -> ET.Element:
    """Add a respcondition setting SCORE; returns its (empty) conditionvar."""
    rc = ET.SubElement(resprocessing, "respcondition", {"title": title, "continue": cont})
    conditionvar = ET.SubElement(rc, "conditionvar")
    ET.SubElement(rc, "setvar", {"varname": "SCORE", "action": "Set"}).text = score
    return conditionvar


def fallback_branch(resprocessing: ET.Element):
    ET.SubElement(score_branch(resprocessing, "Incorrect", "0"), "other")


class Qti12Exporter(Exporter):
    """Plain QTI 1.2 package with every item inline in assessment.xml."""

    format_key = "qti12"
    display_name = "QTI 1.2"
    file_suffix = "QTI1.2"

    def __init__(self):
        super().__init__()
        self.builders: dict[QuestionType, Callable[[QuestionAnswer, ET.Element, ET.Element, str], None]] = {
            QuestionType.MULTIPLE_CHOICE_SINGLE: self._choice_item,
            QuestionType.TRUE_FALSE: self._choice_item,
            QuestionType.MULTIPLE_CHOICE_MULTI: self._choice_item,
            QuestionType.FILL_IN_BLANK_TEXT: self._text_item,
            QuestionType.SHORT_ANSWER: self._text_item,
            QuestionType.FILL_IN_BLANK_NUMERIC: self._numeric_item,
            QuestionType.ESSAY: self._essay_item,
            QuestionType.MATCHING: self._matching_item,
            QuestionType.ORDERING: self._ordering_item,
        }

    # ─── Items ────────────────────────────────────────────────────────────

    def item_ident(self, number: int) -> str:
        return f"item_{number}"

    def build_item(self, question: QuestionAnswer) -> ET.Element:
        builder = self.builders.get(question.type)
        if builder is None:
            raise BackendGenerationError(
                f"No {self.display_name} item template for {question.type.value}",
                question.number,
            )

        ident = self.item_ident(question.number)
        response_ident = f"response_{ident}"

        item = ET.Element("item", {"ident": ident, "title": f"Question {question.number}"})
        qtimetadata = ET.SubElement(ET.SubElement(item, "itemmetadata"), "qtimetadata")
        metadata_field(qtimetadata, "qmd_itemtype", ITEM_TYPE_LABELS[question.type])

        presentation = ET.SubElement(item, "presentation")
        resprocessing = ET.Element("resprocessing")
        outcomes = ET.SubElement(resprocessing, "outcomes")
        ET.SubElement(outcomes, "decvar", {
            "varname": "SCORE",
            "vartype": "Decimal",
            "minvalue": "0",
            "maxvalue": MAX_SCORE,
            "defaultval": "0",
        })

        builder(question, presentation, resprocessing, response_ident)
        item.append(resprocessing)
        return item

    def _stem(self, question: QuestionAnswer, presentation: ET.Element, blank: bool = False):
        html_text = self.render_html(self.stem_text(question), question.number)
        if blank and "___" not in html_text and "[blank]" not in html_text:
            html_text += " _____"
        mattext(presentation, html_text)

    def _labels(self, render_choice: ET.Element, idents_and_texts, shuffle: str = "No", number: Optional[int] = None):
        for ident, text in idents_and_texts:
            label = ET.SubElement(render_choice, "response_label", {"ident": ident, "rshuffle": shuffle})
            mattext(label, self.render_html(text, number))

    def _choice_item(self, question, presentation, resprocessing, response_ident):
        self._stem(question, presentation)
        options = self.display_options(question)
        multi = question.type == QuestionType.MULTIPLE_CHOICE_MULTI

        response_lid = ET.SubElement(presentation, "response_lid", {
            "ident": response_ident,
            "rcardinality": "Multiple" if multi else "Single",
        })
        render_choice = ET.SubElement(response_lid, "render_choice", {"shuffle": "No"})
        self._labels(
            render_choice,
            [(f"choice_{o.letter}", o.text or f"Option {o.letter}") for o in options],
            number=question.number,
        )

        correct = self.correct_letters(question, options)
        conditionvar = score_branch(resprocessing, "Correct", MAX_SCORE)
        if multi:
            conjunction = ET.SubElement(conditionvar, "and")
            for option in options:
                target = conjunction if option.letter in correct else ET.SubElement(conjunction, "not")
                ET.SubElement(target, "varequal", {"respident": response_ident}).text = f"choice_{option.letter}"
        else:
            ET.SubElement(conditionvar, "varequal", {"respident": response_ident}).text = f"choice_{correct[0]}"
        fallback_branch(resprocessing)

    def _text_item(self, question, presentation, resprocessing, response_ident):
        self._stem(question, presentation, blank=question.type == QuestionType.FILL_IN_BLANK_TEXT)
        response_str = ET.SubElement(presentation, "response_str", {"ident": response_ident, "rcardinality": "Single"})
        ET.SubElement(response_str, "render_fib", {"fibtype": "String", "prompt": "Box"})

        answer = question.answer
        if isinstance(answer, TextAnswer) and answer.literals:
            disjunction = ET.SubElement(score_branch(resprocessing, "Correct", MAX_SCORE), "or")
            for literal in answer.literals:
                ET.SubElement(disjunction, "varequal", {"respident": response_ident, "case": "No"}).text = literal
        else:
            self._ungraded(question)
        fallback_branch(resprocessing)

    def _numeric_item(self, question, presentation, resprocessing, response_ident):
        self._stem(question, presentation, blank=True)
        response_num = ET.SubElement(presentation, "response_num", {
            "ident": response_ident,
            "numtype": "Decimal",
            "rcardinality": "Single",
        })
        ET.SubElement(response_num, "render_fib", {"fibtype": "Decimal", "prompt": "Box"})

        answer = question.answer
        if isinstance(answer, NumericAnswer):
            conditionvar = score_branch(resprocessing, "Correct", MAX_SCORE)
            ET.SubElement(conditionvar, "varequal", {"respident": response_ident}).text = format_number(answer.value)
        else:
            self._ungraded(question)
        fallback_branch(resprocessing)

    def _essay_item(self, question, presentation, resprocessing, response_ident):
        self._stem(question, presentation)
        response_str = ET.SubElement(presentation, "response_str", {"ident": response_ident, "rcardinality": "Single"})
        ET.SubElement(response_str, "render_fib", {"fibtype": "String", "rows": "10", "prompt": "Box"})
        ET.SubElement(score_branch(resprocessing, "Any Response", MAX_SCORE, cont="Yes"), "other")

    def _matching_item(self, question, presentation, resprocessing, response_ident):
        self._stem(question, presentation)
        premises = self.display_options(question)
        premise_idents = {o.letter.upper(): f"premise_{o.letter}" for o in premises}

        answer = question.answer
        pairs = answer.pairs if isinstance(answer, MatchingAnswer) else []
        responses = sorted({p.response for p in pairs})
        response_idents = unique_idents(responses, "response")

        response_lid = ET.SubElement(presentation, "response_lid", {
            "ident": response_ident,
            "rcardinality": "Multiple",
            "rtiming": "No",
        })
        render_choice = ET.SubElement(response_lid, "render_choice", {"shuffle": "No"})
        self._labels(
            render_choice,
            [(premise_idents[o.letter.upper()], o.text or o.letter) for o in premises],
            number=question.number,
        )
        self._labels(render_choice, [(response_idents[r], r) for r in responses], number=question.number)

        mapped = []
        for pair in pairs:
            premise = premise_idents.get(pair.premise.upper())
            if premise is None:
                logger.debug(f"Question {question.number}: premise {pair.premise!r} is not an option, dropped")
                continue
            mapped.append(f"{premise}.{response_idents[pair.response]}")

        if mapped:
            conditionvar = score_branch(resprocessing, "Correct", MAX_SCORE)
            ET.SubElement(conditionvar, "varsubset", {"respident": response_ident}).text = " ".join(mapped)
        else:
            self._ungraded(question)
        fallback_branch(resprocessing)

    def _ordering_item(self, question, presentation, resprocessing, response_ident):
        self._stem(question, presentation)
        options = self.display_options(question)
        idents = {o.letter.upper(): f"choice_{o.letter}" for o in options}

        response_lid = ET.SubElement(presentation, "response_lid", {"ident": response_ident, "rcardinality": "Ordered"})
        render_choice = ET.SubElement(response_lid, "render_choice", {"shuffle": "Yes"})
        self._labels(
            render_choice,
            [(idents[o.letter.upper()], o.text or o.letter) for o in options],
            shuffle="Yes",
            number=question.number,
        )

        answer = question.answer
        sequence = []
        if isinstance(answer, OrderingAnswer):
            for token in answer.sequence:
                ident = idents.get(token.upper())
                if ident is None:
                    logger.debug(f"Question {question.number}: ordering token {token!r} is not an option, dropped")
                    continue
                sequence.append(ident)

        if sequence:
            conditionvar = score_branch(resprocessing, "Correct", MAX_SCORE)
            ET.SubElement(conditionvar, "varequal", {"respident": response_ident}).text = " ".join(sequence)
        else:
            self._ungraded(question)
        fallback_branch(resprocessing)

    def _ungraded(self, question: QuestionAnswer):
        logger.info(f"[{self.format_key}] Question {question.number} emitted without a correct response")

    # ─── Package ──────────────────────────────────────────────────────────

    def assessment_ident(self, title: str) -> str:
        return stable_id("assessment", self.format_key, title)

    def assessment_document(self, items: list[ET.Element], title: str, assessment_ident: str) -> ET.Element:
        root = ET.Element("questestinterop", {
            "xmlns": QTI12_NS,
            "xmlns:xsi": XSI_NS,
            "xsi:schemaLocation": f"{QTI12_NS} http://www.imsglobal.org/xsd/ims_qtiasiv1p2p1.xsd",
        })
        assessment = ET.SubElement(root, "assessment", {"ident": assessment_ident, "title": title})
        qtimetadata = ET.SubElement(assessment, "qtimetadata")
        self.assessment_metadata(qtimetadata)
        section = ET.SubElement(assessment, "section", {"ident": "root_section", "title": "Main Section"})
        for item in items:
            section.append(item)
        return root

    def assessment_metadata(self, qtimetadata: ET.Element):
        metadata_field(qtimetadata, "qmd_assessmenttype", "Assessment")

    def assessment_path(self, assessment_ident: str) -> str:
        return "assessment.xml"

    def manifest_document(self, title: str, assessment_ident: str, resource_paths: list[str]) -> ET.Element:
        root = ET.Element("manifest", {
            "identifier": stable_id("manifest", self.format_key, title),
            "xmlns": IMSCP_NS,
            "xmlns:imsmd": IMSMD_NS,
            "xmlns:xsi": XSI_NS,
            "xsi:schemaLocation": f"{IMSCP_NS} http://www.imsglobal.org/xsd/imscp_v1p1.xsd",
        })
        metadata = ET.SubElement(root, "metadata")
        ET.SubElement(metadata, "schema").text = "IMS Content"
        ET.SubElement(metadata, "schemaversion").text = "1.1.3"

        org_ident = stable_id("org", self.format_key, title)
        organizations = ET.SubElement(root, "organizations", {"default": org_ident})
        organization = ET.SubElement(organizations, "organization", {"identifier": org_ident, "structure": "hierarchical"})
        ET.SubElement(organization, "title").text = title
        org_item = ET.SubElement(organization, "item", {
            "identifier": "root_item",
            "identifierref": f"resource_{assessment_ident}",
        })
        ET.SubElement(org_item, "title").text = title

        resources = ET.SubElement(root, "resources")
        resource = ET.SubElement(resources, "resource", {
            "identifier": f"resource_{assessment_ident}",
            "type": "imsqti_xmlv1p2",
            "href": self.assessment_path(assessment_ident),
        })
        ET.SubElement(resource, "file", {"href": self.assessment_path(assessment_ident)})
        for path in resource_paths:
            web = ET.SubElement(resources, "resource", {
                "identifier": f"resource_{safe_ident(path)}",
                "type": "webcontent",
                "href": path,
            })
            ET.SubElement(web, "file", {"href": path})
        return root

    def package(self, built, title: str) -> ExportBundle:
        assessment_ident = self.assessment_ident(title)
        items = [element for _, element in built]
        resources = image_resources(self.images)

        assessment = self.assessment_document(items, title, assessment_ident)
        manifest = self.manifest_document(title, assessment_ident, [r.path for r in resources])

        return ExportBundle(
            format_key=self.format_key,
            manifest=GeneratedDocument(path="imsmanifest.xml", content=to_xml(manifest)),
            documents=[GeneratedDocument(path=self.assessment_path(assessment_ident), content=to_xml(assessment))],
            resources=resources,
        )
