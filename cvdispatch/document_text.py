"""
Plain-text reading of uploaded documents.

PDF via pypdf, DOCX by walking the WordprocessingML body with lxml,
plain text as-is. Output is normalized with clean_document_text so the
heuristic extractor sees one logical line per paragraph.
"""

from __future__ import annotations

from pathlib import Path
from typing import List
from zipfile import BadZipFile, ZipFile

from lxml import etree
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .errors import IntakeError
from .logging_utils import LOG
from .shared import DocumentRef, clean_document_text, normalize_text_for_processing

XML_PARSER = etree.XMLParser(recover=True, huge_tree=True)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
DOCX_NS = {"w": W_NS}

SUPPORTED_EXTENSIONS = ("pdf", "docx", "txt")


def read_document_text(document: DocumentRef) -> str:
    """
    Read and normalize the text content of a stored upload.

    Raises:
        IntakeError: Unsupported type or unreadable content
    """
    ext = document.extension
    if ext not in SUPPORTED_EXTENSIONS:
        raise IntakeError(f"Unsupported document type: .{ext}")

    try:
        if ext == "pdf":
            raw = read_pdf_text(document.path)
        elif ext == "docx":
            raw = read_docx_text(document.path)
        else:
            raw = document.path.read_text(encoding="utf-8", errors="replace")
    except (OSError, BadZipFile, KeyError, PdfReadError, etree.XMLSyntaxError) as e:
        raise IntakeError(f"Could not read {ext.upper()} document: {e}") from e

    text = clean_document_text(raw)
    LOG.debug("Read %d chars of text from %s", len(text), document.path.name)
    return text


def read_pdf_text(path: Path) -> str:
    reader = PdfReader(str(path))
    pages: List[str] = []
    for page in reader.pages:
        pages.append(page.extract_text() or "")
    return "\n".join(pages)


def _paragraph_text(p: etree._Element) -> str:
    parts: List[str] = []
    for node in p.iter():
        if not isinstance(node.tag, str):
            # comments and processing instructions
            continue
        tag = etree.QName(node).localname
        if tag == "t" and node.text:
            parts.append(node.text)
        elif tag in ("noBreakHyphen", "softHyphen"):
            parts.append("-")
        elif tag in ("br", "cr"):
            parts.append("\n")
        elif tag == "tab":
            parts.append("\t")
    return normalize_text_for_processing("".join(parts)).strip()


def read_docx_text(path: Path) -> str:
    """Body paragraphs in document order, one per line."""
    with ZipFile(path) as z:
        xml_bytes = z.read("word/document.xml")
    root = etree.fromstring(xml_bytes, XML_PARSER)
    if root is None:
        return ""

    lines: List[str] = []
    for p in root.findall(".//w:body//w:p", DOCX_NS):
        text = _paragraph_text(p)
        if text:
            lines.append(text)
    return "\n".join(lines)
