"""CV document storage and text extraction.

Uploaded CVs are written under ``Settings.upload_dir`` and referred to by an
opaque key of the form ``<user_id>/<timestamp>-<hex>.<ext>``. The key is what
the application row stores.
"""
from __future__ import annotations

import io
import time
import uuid
from pathlib import Path
from typing import Optional

import fitz
import structlog
from docx import Document

logger = structlog.get_logger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
}


class UnsupportedDocumentError(ValueError):
    pass


class DocumentNotFoundError(LookupError):
    pass


def extension_for(content_type: Optional[str], filename: Optional[str] = None) -> str:
    """Pick the stored extension from the upload's content type, falling back to its filename."""
    if content_type in CONTENT_TYPE_EXTENSIONS:
        return CONTENT_TYPE_EXTENSIONS[content_type]
    suffix = Path(filename or "").suffix.lower().lstrip(".")
    if suffix in CONTENT_TYPE_EXTENSIONS.values():
        return suffix
    raise UnsupportedDocumentError(f"Unsupported file type: {content_type}")


def _resolve(upload_dir: str, ref: str) -> Path:
    root = Path(upload_dir).resolve()
    path = (root / ref).resolve()
    if root not in path.parents:
        raise DocumentNotFoundError(f"Invalid document reference: {ref}")
    return path


def save_document(upload_dir: str, user_id: int, content: bytes, extension: str) -> str:
    ref = f"{user_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{extension}"
    path = _resolve(upload_dir, ref)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    logger.info("Stored CV document", ref=ref, size=len(content))
    return ref


def read_document(upload_dir: str, ref: str) -> bytes:
    path = _resolve(upload_dir, ref)
    if not path.is_file():
        raise DocumentNotFoundError(f"Document not found: {ref}")
    return path.read_bytes()


def extract_text(content: bytes, extension: str) -> str:
    """Extract text from PDF, DOCX or TXT bytes."""
    if extension == "pdf":
        # Extract text from PDF using PyMuPDF (fitz)
        extracted_text = ""
        with fitz.open(stream=content, filetype="pdf") as doc:
            for page in doc:
                extracted_text += page.get_text() + "\n"
        return extracted_text

    if extension == "docx":
        doc = Document(io.BytesIO(content))
        return "\n".join(para.text for para in doc.paragraphs)

    if extension == "txt":
        return content.decode("utf-8", errors="replace")

    raise UnsupportedDocumentError(f"Unsupported document extension: {extension}")


def load_document_text(upload_dir: str, ref: str) -> str:
    """Read a stored document and return its text."""
    extension = Path(ref).suffix.lower().lstrip(".")
    return extract_text(read_document(upload_dir, ref), extension)


def delete_document(upload_dir: str, ref: str) -> None:
    """Remove a stored document; a missing file is not an error."""
    path = _resolve(upload_dir, ref)
    path.unlink(missing_ok=True)
    logger.info("Deleted CV document", ref=ref)


def media_type_for(ref: str) -> str:
    extension = Path(ref).suffix.lower().lstrip(".")
    for content_type, known in CONTENT_TYPE_EXTENSIONS.items():
        if known == extension:
            return content_type
    return "application/octet-stream"
