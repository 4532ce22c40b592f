"""
QTI 2.1 Exporter
================
    imsmanifest.xml
    assessment.xml        assessmentTest referencing every item
    items/item<N>.xml     one assessmentItem per question
    resources/<file>      images, <img src="../resources/<file>"/>

Response identifier R<N>. Interactions and grading:
    single choice / T-F   choiceInteraction, match_correct
    multiple choice       choiceInteraction (maxChoices=0), match_correct
    free text             textEntryInteraction, or(stringMatch caseSensitive=false)
    numeric               textEntryInteraction (float), match_correct
    matching              matchInteraction, contains(directedPair...)
    ordering              orderInteraction, match_correct on an ordered response
    essay                 extendedTextInteraction, scored by hand
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET

from ..errors import BackendGenerationError
from ..models import (
    ExportBundle,
    GeneratedDocument,
    ImageAsset,
    MatchingAnswer,
    NumericAnswer,
    OrderingAnswer,
    QuestionAnswer,
    QuestionType,
    TextAnswer,
)
from .base import (
    RESOURCES_DIR,
    Exporter,
    format_number,
    image_resources,
    safe_ident,
    stable_id,
    to_xml,
    unique_idents,
)

logger = logging.getLogger(__name__)

QTI21_NS = "http://www.imsglobal.org/xsd/imsqti_v2p1"
IMSCP_NS = "http://www.imsglobal.org/xsd/imscp_v1p1"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
MATCH_CORRECT = "http://www.imsglobal.org/question/qti_v2p1/rptemplates/match_correct"


def declare_response(item: ET.Element, ident: str, cardinality: str, base_type: str, values=()) -> ET.Element:
    declaration = ET.SubElement(item, "responseDeclaration", {
        "identifier": ident,
        "cardinality": cardinality,
        "baseType": base_type,
    })
    if values:
        correct = ET.SubElement(declaration, "correctResponse")
        for value in values:
            ET.SubElement(correct, "value").text = value
    return declaration


def declare_score(item: ET.Element):
    outcome = ET.SubElement(item, "outcomeDeclaration", {
        "identifier": "SCORE",
        "cardinality": "single",
        "baseType": "float",
    })
    ET.SubElement(ET.SubElement(outcome, "defaultValue"), "value").text = "0"


def set_score_if(processing: ET.Element) -> ET.Element:
    """Open a responseCondition; returns its responseIf."""
    condition = ET.SubElement(processing, "responseCondition")
    response_if = ET.SubElement(condition, "responseIf")
    return response_if


def finish_score(response_if: ET.Element):
    outcome = ET.SubElement(response_if, "setOutcomeValue", {"identifier": "SCORE"})
    ET.SubElement(outcome, "baseValue", {"baseType": "float"}).text = "1"


class Qti21Exporter(Exporter):
    """QTI 2.1 package, one assessmentItem document per question."""

    format_key = "qti21"
    display_name = "QTI 2.1"
    file_suffix = "QTI2.1"

    def __init__(self):
        super().__init__()
        self.builders = {
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

    def image_src(self, asset: ImageAsset) -> str:
        return f"../{RESOURCES_DIR}{asset.filename}"

    # ─── Items ────────────────────────────────────────────────────────────

    def build_item(self, question: QuestionAnswer) -> ET.Element:
        builder = self.builders.get(question.type)
        if builder is None:
            raise BackendGenerationError(
                f"No {self.display_name} item template for {question.type.value}",
                question.number,
            )

        item = ET.Element("assessmentItem", {
            "xmlns": QTI21_NS,
            "xmlns:xsi": XSI_NS,
            "xsi:schemaLocation": f"{QTI21_NS} http://www.imsglobal.org/xsd/qti/qtiv2p1/imsqti_v2p1.xsd",
            "identifier": f"item{question.number}",
            "title": f"Question {question.number}",
            "adaptive": "false",
            "timeDependent": "false",
        })
        builder(question, item, f"R{question.number}")
        return item

    def _item_body(self, item: ET.Element, question: QuestionAnswer) -> ET.Element:
        body = ET.SubElement(item, "itemBody")
        stem = ET.SubElement(body, "div")
        self.append_rich_text(stem, self.stem_text(question), question.number)
        return body

    def _choices(self, parent: ET.Element, tag: str, options, number: int):
        for option in options:
            choice = ET.SubElement(parent, tag, {"identifier": f"choice_{option.letter}"})
            self.append_rich_text(choice, option.text or f"Option {option.letter}", number)

    def _choice_item(self, question, item, response_ident):
        options = self.display_options(question)
        multi = question.type == QuestionType.MULTIPLE_CHOICE_MULTI
        correct = self.correct_letters(question, options)

        declare_response(
            item,
            response_ident,
            "multiple" if multi else "single",
            "identifier",
            [f"choice_{letter}" for letter in correct],
        )
        declare_score(item)
        body = self._item_body(item, question)
        interaction = ET.SubElement(body, "choiceInteraction", {
            "responseIdentifier": response_ident,
            "shuffle": "false",
            "maxChoices": "0" if multi else "1",
        })
        self._choices(interaction, "simpleChoice", options, question.number)
        ET.SubElement(item, "responseProcessing", {"template": MATCH_CORRECT})

    def _text_item(self, question, item, response_ident):
        answer = question.answer
        literals = answer.literals if isinstance(answer, TextAnswer) else []

        declare_response(item, response_ident, "single", "string", literals[:1])
        declare_score(item)
        body = self._item_body(item, question)
        ET.SubElement(ET.SubElement(body, "p"), "textEntryInteraction", {
            "responseIdentifier": response_ident,
            "expectedLength": "30",
        })

        if not literals:
            self._ungraded(question)
            return
        response_if = set_score_if(ET.SubElement(item, "responseProcessing"))
        disjunction = ET.SubElement(response_if, "or")
        for literal in literals:
            match = ET.SubElement(disjunction, "stringMatch", {"caseSensitive": "false"})
            ET.SubElement(match, "variable", {"identifier": response_ident})
            ET.SubElement(match, "baseValue", {"baseType": "string"}).text = literal
        finish_score(response_if)

    def _numeric_item(self, question, item, response_ident):
        answer = question.answer
        values = [format_number(answer.value)] if isinstance(answer, NumericAnswer) else []

        declare_response(item, response_ident, "single", "float", values)
        declare_score(item)
        body = self._item_body(item, question)
        ET.SubElement(ET.SubElement(body, "p"), "textEntryInteraction", {
            "responseIdentifier": response_ident,
            "expectedLength": "10",
        })
        if values:
            ET.SubElement(item, "responseProcessing", {"template": MATCH_CORRECT})
        else:
            self._ungraded(question)

    def _essay_item(self, question, item, response_ident):
        declare_response(item, response_ident, "single", "string")
        declare_score(item)
        body = self._item_body(item, question)
        ET.SubElement(body, "extendedTextInteraction", {
            "responseIdentifier": response_ident,
            "expectedLines": "10",
        })

    def _matching_item(self, question, item, response_ident):
        premises = self.display_options(question)
        premise_idents = {o.letter.upper(): f"premise_{o.letter}" for o in premises}

        answer = question.answer
        pairs = answer.pairs if isinstance(answer, MatchingAnswer) else []
        responses = sorted({p.response for p in pairs})
        response_idents = unique_idents(responses, "response")

        mapped = []
        for pair in pairs:
            premise = premise_idents.get(pair.premise.upper())
            if premise is None:
                logger.debug(f"Question {question.number}: premise {pair.premise!r} is not an option, dropped")
                continue
            mapped.append(f"{premise} {response_idents[pair.response]}")

        declare_response(item, response_ident, "multiple", "directedPair", mapped)
        declare_score(item)
        body = self._item_body(item, question)
        interaction = ET.SubElement(body, "matchInteraction", {
            "responseIdentifier": response_ident,
            "shuffle": "false",
            "maxAssociations": str(len(premises)),
        })
        source = ET.SubElement(interaction, "simpleMatchSet")
        for option in premises:
            choice = ET.SubElement(source, "simpleAssociableChoice", {
                "identifier": premise_idents[option.letter.upper()],
                "matchMax": "1",
            })
            self.append_rich_text(choice, option.text or option.letter, question.number)
        target = ET.SubElement(interaction, "simpleMatchSet")
        for response in responses:
            choice = ET.SubElement(target, "simpleAssociableChoice", {
                "identifier": response_idents[response],
                "matchMax": str(len(premises)),
            })
            choice.text = response

        if not mapped:
            self._ungraded(question)
            return
        response_if = set_score_if(ET.SubElement(item, "responseProcessing"))
        contains = ET.SubElement(response_if, "contains")
        ET.SubElement(contains, "variable", {"identifier": response_ident})
        multiple = ET.SubElement(contains, "multiple")
        for value in mapped:
            ET.SubElement(multiple, "baseValue", {"baseType": "directedPair"}).text = value
        finish_score(response_if)

    def _ordering_item(self, question, item, response_ident):
        options = self.display_options(question)
        idents = {o.letter.upper(): f"choice_{o.letter}" for o in options}

        answer = question.answer
        sequence = []
        if isinstance(answer, OrderingAnswer):
            for token in answer.sequence:
                ident = idents.get(token.upper())
                if ident is None:
                    logger.debug(f"Question {question.number}: ordering token {token!r} is not an option, dropped")
                    continue
                sequence.append(ident)

        declare_response(item, response_ident, "ordered", "identifier", sequence)
        declare_score(item)
        body = self._item_body(item, question)
        interaction = ET.SubElement(body, "orderInteraction", {
            "responseIdentifier": response_ident,
            "shuffle": "true",
        })
        self._choices(interaction, "simpleChoice", options, question.number)
        if sequence:
            ET.SubElement(item, "responseProcessing", {"template": MATCH_CORRECT})
        else:
            self._ungraded(question)

    def _ungraded(self, question: QuestionAnswer):
        logger.info(f"[{self.format_key}] Question {question.number} emitted without a correct response")

    # ─── Package ──────────────────────────────────────────────────────────

    @staticmethod
    def item_path(question: QuestionAnswer) -> str:
        return f"items/item{question.number}.xml"

    def package(self, built, title: str) -> ExportBundle:
        test_ident = stable_id("test", self.format_key, title)
        resources = image_resources(self.images)

        test = ET.Element("assessmentTest", {
            "xmlns": QTI21_NS,
            "xmlns:xsi": XSI_NS,
            "identifier": test_ident,
            "title": title,
        })
        part = ET.SubElement(test, "testPart", {
            "identifier": "part1",
            "navigationMode": "linear",
            "submissionMode": "individual",
        })
        section = ET.SubElement(part, "assessmentSection", {
            "identifier": "section1",
            "title": title,
            "visible": "true",
        })

        documents = []
        for question, element in built:
            path = self.item_path(question)
            ET.SubElement(section, "assessmentItemRef", {
                "identifier": f"item{question.number}",
                "href": path,
            })
            documents.append(GeneratedDocument(path=path, content=to_xml(element)))
        documents.insert(0, GeneratedDocument(path="assessment.xml", content=to_xml(test)))

        manifest = self._manifest(title, built, [r.path for r in resources])
        return ExportBundle(
            format_key=self.format_key,
            manifest=GeneratedDocument(path="imsmanifest.xml", content=to_xml(manifest)),
            documents=documents,
            resources=resources,
        )

    def _manifest(self, title: str, built, resource_paths: list[str]) -> ET.Element:
        root = ET.Element("manifest", {
            "identifier": stable_id("manifest", self.format_key, title),
            "xmlns": IMSCP_NS,
            "xmlns:imsqti": QTI21_NS,
            "xmlns:xsi": XSI_NS,
        })
        ET.SubElement(root, "organizations")
        resources = ET.SubElement(root, "resources")

        test = ET.SubElement(resources, "resource", {
            "identifier": "resource_test",
            "type": "imsqti_test_xmlv2p1",
            "href": "assessment.xml",
        })
        ET.SubElement(test, "file", {"href": "assessment.xml"})
        for question, _ in built:
            ET.SubElement(test, "dependency", {"identifierref": f"resource_item{question.number}"})

        for question, _ in built:
            path = self.item_path(question)
            resource = ET.SubElement(resources, "resource", {
                "identifier": f"resource_item{question.number}",
                "type": "imsqti_item_xmlv2p1",
                "href": path,
            })
            ET.SubElement(resource, "file", {"href": path})
            for image_path in self._item_images(question, resource_paths):
                ET.SubElement(resource, "file", {"href": image_path})

        for path in resource_paths:
            web = ET.SubElement(resources, "resource", {
                "identifier": f"resource_{safe_ident(path)}",
                "type": "webcontent",
                "href": path,
            })
            ET.SubElement(web, "file", {"href": path})
        return root

    def _item_images(self, question: QuestionAnswer, resource_paths: list[str]) -> list[str]:
        texts = [question.stem] + [o.text for o in question.options]
        paths = [f"{RESOURCES_DIR}{a.filename}" for a in self.referenced_assets(*texts)]
        return [p for p in paths if p in resource_paths]
