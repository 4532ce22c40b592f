"""
IMS Common Cartridge Exporter
=============================
Canvas-flavoured common cartridge. Items use the QTI 1.2 grammar; only
the package layout and image references differ:

    imsmanifest.xml                       cartridge manifest (imscc_xmlv1p1)
    <assessment_id>/assessment_qti.xml    the assessment with every item
    resources/<file>                      images, referenced as
                                          $IMS-CC-FILEBASE$../resources/<file>
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

from ..models import ImageAsset
from .base import RESOURCES_DIR, safe_ident
from .qti12 import QTI12_NS, XSI_NS, Qti12Exporter, metadata_field

IMSCC_NS = "http://www.imsglobal.org/xsd/imsccv1p1/imscp_v1p1"
LOM_RESOURCE_NS = "http://ltsc.ieee.org/xsd/imsccv1p1/LOM/resource"
LOM_MANIFEST_NS = "http://ltsc.ieee.org/xsd/imsccv1p1/LOM/manifest"

FILEBASE = "$IMS-CC-FILEBASE$../"
ASSESSMENT_RESOURCE_TYPE = "imsqti_xmlv1p2/imscc_xmlv1p1/assessment"


class ImsccExporter(Qti12Exporter):
    """Common cartridge package for Canvas-style imports."""

    format_key = "imscc"
    display_name = "IMS Common Cartridge"
    file_suffix = "IMSCC"

    def image_src(self, asset: ImageAsset) -> str:
        return f"{FILEBASE}{RESOURCES_DIR}{asset.filename}"

    def assessment_path(self, assessment_ident: str) -> str:
        return f"{assessment_ident}/assessment_qti.xml"

    def assessment_document(self, items, title, assessment_ident):
        root = super().assessment_document(items, title, assessment_ident)
        root.set(
            "xsi:schemaLocation",
            f"{QTI12_NS} http://www.imsglobal.org/profile/cc/ccv1p1/ccv1p1_qtiasiv1p2p1_v1p0.xsd",
        )
        return root

    def assessment_metadata(self, qtimetadata: ET.Element):
        metadata_field(qtimetadata, "cc_profile", "cc.exam.v0p1")
        metadata_field(qtimetadata, "qmd_assessmenttype", "Examination")
        metadata_field(qtimetadata, "qmd_scoretype", "Percentage")

    def manifest_document(self, title, assessment_ident, resource_paths):
        root = ET.Element("manifest", {
            "identifier": f"{assessment_ident}_manifest",
            "xmlns": IMSCC_NS,
            "xmlns:lom": LOM_RESOURCE_NS,
            "xmlns:lomimscc": LOM_MANIFEST_NS,
            "xmlns:xsi": XSI_NS,
            "xsi:schemaLocation": (
                f"{IMSCC_NS} http://www.imsglobal.org/profile/cc/ccv1p1/ccv1p1_imscp_v1p2_v1p0.xsd "
                f"{LOM_RESOURCE_NS} http://www.imsglobal.org/profile/cc/ccv1p1/LOM/ccv1p1_lomresource_v1p0.xsd "
                f"{LOM_MANIFEST_NS} http://www.imsglobal.org/profile/cc/ccv1p1/LOM/ccv1p1_lommanifest_v1p0.xsd"
            ),
        })
        metadata = ET.SubElement(root, "metadata")
        ET.SubElement(metadata, "schema").text = "IMS Common Cartridge"
        ET.SubElement(metadata, "schemaversion").text = "1.1.0"
        lom = ET.SubElement(metadata, "lomimscc:lom")
        general = ET.SubElement(lom, "lomimscc:general")
        lom_title = ET.SubElement(general, "lomimscc:title")
        ET.SubElement(lom_title, "lomimscc:string").text = title

        ET.SubElement(root, "organizations")

        resources = ET.SubElement(root, "resources")
        resource = ET.SubElement(resources, "resource", {
            "identifier": assessment_ident,
            "type": ASSESSMENT_RESOURCE_TYPE,
        })
        ET.SubElement(resource, "file", {"href": self.assessment_path(assessment_ident)})
        for path in resource_paths:
            ET.SubElement(resource, "dependency", {"identifierref": f"resource_{safe_ident(path)}"})

        for path in resource_paths:
            web = ET.SubElement(resources, "resource", {
                "identifier": f"resource_{safe_ident(path)}",
                "type": "webcontent",
                "href": path,
            })
            ET.SubElement(web, "file", {"href": path})
        return root
