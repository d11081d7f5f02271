import io

import pytest
from docx import Document as DocxDocument

from document_processor import DocumentProcessor

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def processor():
    return DocumentProcessor()


def _docx_bytes(*paragraphs):
    document = DocxDocument()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_supported_types(processor):
    assert processor.supports("application/pdf")
    assert processor.supports("text/plain")
    assert processor.supports(DOCX_TYPE)
    assert not processor.supports("image/png")
    assert not processor.supports(None)


def test_plain_text_is_decoded_and_trimmed(processor):
    assert processor.extract_text_from_bytes("  Loyer: 1 500 €\n".encode("utf-8"), "text/plain") == "Loyer: 1 500 €"


def test_docx_paragraphs_are_joined(processor):
    data = _docx_bytes("First clause.", "Second clause.")
    assert processor.extract_text_from_bytes(data, DOCX_TYPE) == "First clause.\nSecond clause."


def test_unreadable_files_raise_value_error(processor):
    with pytest.raises(ValueError):
        processor.extract_text_from_bytes(b"not a zip archive", DOCX_TYPE)
    with pytest.raises(ValueError):
        processor.extract_text_from_bytes(b"%PDF-1.4 truncated", "application/pdf")
    with pytest.raises(ValueError):
        processor.extract_text_from_bytes(b"GIF89a", "image/gif")


def test_extract_from_disk_guesses_type_from_suffix(processor, tmp_path):
    path = tmp_path / "terms.txt"
    path.write_bytes(b"Terms apply.")
    assert processor.extract_text(path) == "Terms apply."

    docx_path = tmp_path / "terms.docx"
    docx_path.write_bytes(_docx_bytes("Docx terms."))
    assert processor.extract_text(docx_path) == "Docx terms."
