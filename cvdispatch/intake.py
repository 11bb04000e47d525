"""
Intake validation.

Confirms the submitted document exists, is a regular non-empty file and
yields text, before any paid external call is made.
"""

from __future__ import annotations

from typing import Callable

from .document_text import read_document_text
from .errors import IntakeError
from .logging_utils import LOG, mask_identifier
from .shared import DocumentRef


class IntakeValidator:
    def __init__(self, *, text_reader: Callable[[DocumentRef], str] = read_document_text):
        self._text_reader = text_reader

    def check(self, document: DocumentRef, requester_identifier: str) -> None:
        """
        Existence and size check only.

        Raises:
            IntakeError: Missing, not a file, or empty
        """
        path = document.path
        if not path.exists():
            raise IntakeError(f"Document not found: {path}")
        if not path.is_file():
            raise IntakeError(f"Document path is not a file: {path}")
        size = path.stat().st_size
        if size == 0:
            raise IntakeError(f"Document is empty: {path}")
        LOG.debug("Intake ok for %s: %s (%d bytes)", mask_identifier(requester_identifier), path.name, size)

    def validate(self, document: DocumentRef, requester_identifier: str) -> str:
        """
        Check the document and return its normalized text.

        Raises:
            IntakeError: The document is unusable
        """
        self.check(document, requester_identifier)
        text = self._text_reader(document)
        if not text.strip():
            raise IntakeError(f"No text could be read from {document.path.name}")
        return text
