"""
Request Builder module for the Financial Statements Drafter.

Assembles a GenerativeRequest: the instruction text first, then one part per
uploaded file in upload order. Files are dispatched on their document kind:
PDFs and images travel as inline bytes, spreadsheets and text as labelled text.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Optional, Union

from .config import MAX_UPLOAD_BYTES
from .document_extractor import spreadsheet_to_csv
from .errors import PayloadTooLargeError, UnsupportedFileTypeError
from .prompts import get_statements_prompt
from .upload_gateway import UploadedFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextPart:
    content: str


@dataclass(frozen=True)
class BinaryPart:
    mime_type: str
    data: bytes


PromptPart = Union[TextPart, BinaryPart]
GenerativeRequest = list[PromptPart]


class DocumentKind(Enum):
    PDF = "pdf"
    IMAGE = "image"
    SPREADSHEET = "spreadsheet"
    TEXT = "text"
    UNSUPPORTED = "unsupported"


MIME_KINDS = {
    "application/pdf": DocumentKind.PDF,
    "image/png": DocumentKind.IMAGE,
    "image/jpeg": DocumentKind.IMAGE,
    "application/vnd.ms-excel": DocumentKind.SPREADSHEET,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": DocumentKind.SPREADSHEET,
    "text/csv": DocumentKind.TEXT,
    "text/plain": DocumentKind.TEXT,
}

EXTENSION_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".csv": "text/csv",
    ".txt": "text/plain",
}

ACCEPTED_MIME_TYPES = sorted(MIME_KINDS)


def guess_mime_type(filename: str) -> str:
    """Infer a MIME type from the file extension when the client did not send one."""
    return EXTENSION_MIME_TYPES.get(PurePath(filename or "").suffix.lower(), "")


def resolve_mime_type(mime_type: str, filename: str) -> str:
    mime_type = (mime_type or "").split(";")[0].strip().lower()
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = guess_mime_type(filename) or mime_type
    return mime_type


def classify_document(mime_type: str, filename: str = "") -> DocumentKind:
    """Map a declared (or extension-inferred) MIME type to a document kind."""
    return MIME_KINDS.get(resolve_mime_type(mime_type, filename), DocumentKind.UNSUPPORTED)


def build_prompt(
    framework: str,
    company_name: str,
    notes: str,
    prior_text: Optional[str] = None,
    tb_parsed: Optional[dict] = None,
    reference_text: Optional[str] = None
) -> TextPart:
    return TextPart(get_statements_prompt(
        framework, company_name, notes,
        prior_text=prior_text,
        tb_parsed=tb_parsed,
        reference_text=reference_text,
    ))


def _file_to_part(f: UploadedFile, kind: DocumentKind, mime_type: str) -> PromptPart:
    if kind in (DocumentKind.PDF, DocumentKind.IMAGE):
        return BinaryPart(mime_type=mime_type, data=f.data)

    if kind == DocumentKind.SPREADSHEET:
        csv_text = spreadsheet_to_csv(f.data, f.name)
        return TextPart(f"SPREADSHEET {f.name} (first sheet, CSV):\n{csv_text}")

    text = f.data.decode("utf-8-sig", errors="replace")
    return TextPart(f"FILE {f.name}:\n{text}")


def build_attachment_parts(
    files: list[UploadedFile],
    max_total_bytes: int = MAX_UPLOAD_BYTES
) -> list[PromptPart]:
    """
    Convert uploaded files into prompt parts, in upload order.

    Every file is classified before any part is built, so an unsupported
    file yields no parts at all. The running size total is checked after
    each file; the file that crosses the ceiling is the one reported.

    Args:
        files: Decoded uploads
        max_total_bytes: Ceiling on the summed decoded size

    Returns:
        List of TextPart/BinaryPart

    Raises:
        UnsupportedFileTypeError: If any file has an unrecognised type
        PayloadTooLargeError: If the files together exceed the ceiling
        ExtractionError: If a spreadsheet cannot be read
    """
    classified = []
    for f in files:
        mime_type = resolve_mime_type(f.mime_type, f.name)
        kind = MIME_KINDS.get(mime_type, DocumentKind.UNSUPPORTED)
        if kind == DocumentKind.UNSUPPORTED:
            raise UnsupportedFileTypeError(
                f"Unsupported file type for {f.name}: {mime_type or 'unknown'}.",
                details={"accepted": ACCEPTED_MIME_TYPES},
            )
        classified.append((f, kind, mime_type))

    parts: list[PromptPart] = []
    total_bytes = 0
    for f, kind, mime_type in classified:
        total_bytes += f.size
        if total_bytes > max_total_bytes:
            raise PayloadTooLargeError(
                f"Total upload too large (~{total_bytes / 1024 / 1024:.1f} MB) after adding {f.name}.",
                details=(
                    f"Requests are limited to about {max_total_bytes / 1024 / 1024:.0f} MB. "
                    "Please compress your PDF, upload only key pages, or reduce file size."
                ),
            )
        parts.append(_file_to_part(f, kind, mime_type))
        logger.debug(f"Attached {f.name} as {kind.value} ({f.size:,} bytes)")

    return parts


def build_request(
    framework: str,
    company_name: str,
    notes: str,
    files: Optional[list[UploadedFile]] = None,
    prior_text: Optional[str] = None,
    tb_parsed: Optional[dict] = None,
    reference_text: Optional[str] = None,
    max_total_bytes: int = MAX_UPLOAD_BYTES
) -> GenerativeRequest:
    """Assemble the full ordered request: instruction text, then attachments."""
    attachments = build_attachment_parts(files or [], max_total_bytes)
    prompt = build_prompt(
        framework, company_name, notes,
        prior_text=prior_text,
        tb_parsed=tb_parsed,
        reference_text=reference_text,
    )
    return [prompt, *attachments]
