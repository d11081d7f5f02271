import io
import zipfile
from pathlib import Path
from typing import BinaryIO, Optional, Union

import PyPDF2
from PyPDF2.errors import PdfReadError
from docx import Document
from docx.opc.exceptions import PackageNotFoundError

PDF_TYPES = {"application/pdf"}
DOCX_TYPES = {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}
TEXT_TYPES = {"text/plain"}

SUFFIX_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
}


class DocumentProcessor:
    """Handles extraction of text from PDF, DOCX and plain-text documents"""

    def supports(self, mime_type: Optional[str]) -> bool:
        return mime_type in PDF_TYPES | DOCX_TYPES | TEXT_TYPES

    def extract_text(self, file_path: Union[str, Path], mime_type: Optional[str] = None) -> str:
        """
        Extract text from a file on disk

        Args:
            file_path: Path to the document file
            mime_type: Declared content type; guessed from the suffix when omitted

        Returns:
            Extracted text content
        """
        path = Path(file_path)
        mime_type = mime_type or SUFFIX_TYPES.get(path.suffix.lower())
        with open(path, "rb") as handle:
            return self._extract(handle, mime_type)

    def extract_text_from_bytes(self, data: bytes, mime_type: str) -> str:
        """Extract text from an object downloaded from storage"""
        return self._extract(io.BytesIO(data), mime_type)

    def _extract(self, stream: BinaryIO, mime_type: Optional[str]) -> str:
        if mime_type in PDF_TYPES:
            return self._extract_from_pdf(stream)
        elif mime_type in DOCX_TYPES:
            return self._extract_from_docx(stream)
        elif mime_type in TEXT_TYPES:
            return self._extract_from_txt(stream)
        else:
            raise ValueError(f"Unsupported file format: {mime_type}")

    def _extract_from_pdf(self, stream: BinaryIO) -> str:
        try:
            pdf_reader = PyPDF2.PdfReader(stream)
            pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except PdfReadError as e:
            raise ValueError(f"Could not read PDF: {e}") from e
        return "\n".join(pages).strip()

    def _extract_from_docx(self, stream: BinaryIO) -> str:
        try:
            doc = Document(stream)
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError) as e:
            raise ValueError(f"Could not read DOCX: {e}") from e
        return "\n".join(paragraph.text for paragraph in doc.paragraphs).strip()

    def _extract_from_txt(self, stream: BinaryIO) -> str:
        return stream.read().decode("utf-8", errors="replace").strip()
