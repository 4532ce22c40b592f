"""
Quiz Package Converter
======================
Turns word-processor style quiz documents (numbered questions, lettered
options, a trailing answer key) into LMS-importable quiz packages.

Architecture:
    - Block Adapters: Read PDF, text or JSON block streams into ordered blocks
    - Structural Parser: Detects questions, options and images via text anchors
    - Type Inference: Assigns one of nine question types per question
    - Answer-Key Parser: Decodes the trailing key per question type
    - Combiner: Joins drafts and answers into the intermediate model
    - Export Backends: QTI 1.2, IMS Common Cartridge, QTI 2.1, Moodle, Blackboard
    - Package Assembler: Zips the generated documents and images

Version: 1.0.0
"""

__version__ = "1.0.0"
