"""
Upload Gateway module for the Financial Statements Drafter.

Turns an incoming request body into UploadedFile buffers. Three body shapes
are accepted:

- application/json carrying base64 payloads (``files: [{name, mimeType, base64}]``)
- multipart/form-data, whose outer body may itself arrive base64-encoded
- a raw base64 string or ``data:<mime>;base64,<payload>`` URL

This module is stateless - it works on bytes and returns dataclasses.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from .errors import CorruptPayloadError, ValidationError

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^,]*)?,(?P<payload>.*)$", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class UploadedFile:
    """One uploaded document, alive only for the request that carried it."""
    name: str
    mime_type: str
    data: bytes
    field_name: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class DecodedRequest:
    """Non-file fields and files decoded from one request body."""
    fields: dict[str, Any] = field(default_factory=dict)
    files: list[UploadedFile] = field(default_factory=list)

    def file_for(self, *field_names: str) -> Optional[UploadedFile]:
        """Return the first file uploaded under any of the given field names (case-insensitive)."""
        wanted = {n.lower() for n in field_names}
        for f in self.files:
            if f.field_name.lower() in wanted:
                return f
        return None


# =============================================================================
# BASE64 HELPERS
# =============================================================================

def decode_base64_payload(payload: str, name: str = "upload") -> bytes:
    """
    Strictly decode a base64 payload, rejecting truncated input.

    Args:
        payload: Base64 text, optionally a data URL; whitespace is ignored
        name: File name used in error messages

    Returns:
        Decoded bytes (never empty)

    Raises:
        CorruptPayloadError: If the length is not a multiple of 4 or decoding fails
        ValidationError: If the payload decodes to nothing
    """
    match = _DATA_URL_RE.match(payload.strip())
    if match:
        payload = match.group("payload")

    b64 = _WHITESPACE_RE.sub("", payload)

    if len(b64) % 4 != 0:
        raise CorruptPayloadError(
            f"The uploaded base64 for {name} looks incomplete (length not multiple of 4).",
            details=(
                "This often happens when the file is too large for a single request and got "
                "truncated by the server. Try a smaller file (8-9 MB at most) or split the PDF."
            ),
        )

    try:
        data = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError):
        raise CorruptPayloadError(
            f"Failed to decode file: {name}",
            details="The base64 payload appears invalid or truncated. Try reselecting the file or using a smaller file.",
        )

    if not data:
        raise ValidationError(f"Decoded file is empty: {name}")

    return data


def _lower_headers(headers: Optional[Mapping[str, str]]) -> dict[str, str]:
    return {k.lower(): v for k, v in (headers or {}).items()}


def _as_bytes(body: Union[bytes, str, None]) -> bytes:
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


# =============================================================================
# JSON BODIES
# =============================================================================

def _decode_json(body: bytes) -> DecodedRequest:
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")

    if not isinstance(payload, dict):
        raise ValidationError("JSON body must be an object")

    raw_files = payload.pop("files", None)
    if raw_files is None:
        # Single-file shape: {name, mimeType, base64}
        raw_files = [payload] if "base64" in payload else []
    if not isinstance(raw_files, list):
        raise ValidationError("`files` must be an array")

    files = []
    for i, entry in enumerate(raw_files):
        if not entry:
            continue
        if not isinstance(entry, dict):
            raise ValidationError(f"files[{i}] must be an object")
        for key in ("name", "mimeType", "kind", "field"):
            if entry.get(key) is not None and not isinstance(entry[key], str):
                raise ValidationError(f"files[{i}].{key} must be a string")

        name = entry.get("name") or "unnamed"
        b64 = entry.get("base64")
        if not b64 or not isinstance(b64, str):
            raise ValidationError(f"Missing base64 for file: {name}")

        mime_type = entry.get("mimeType") or ""
        data_url = _DATA_URL_RE.match(b64.strip())
        if data_url and not mime_type:
            mime_type = data_url.group("mime")

        files.append(UploadedFile(
            name=name,
            mime_type=mime_type,
            data=decode_base64_payload(b64, name),
            field_name=entry.get("kind") or entry.get("field") or "",
        ))

    fields = {k: v for k, v in payload.items() if k not in ("base64", "name", "mimeType")}
    return DecodedRequest(fields=fields, files=files)


# =============================================================================
# MULTIPART BODIES
# =============================================================================

class _PartCollector:
    """Callback sink for python-multipart's streaming parser."""

    def __init__(self):
        self.parts: list[tuple[dict[str, bytes], bytes]] = []
        self._headers: dict[str, bytes] = {}
        self._field = b""
        self._value = b""
        self._data = bytearray()

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
        }

    def on_part_begin(self):
        self._headers = {}
        self._data = bytearray()

    def on_part_data(self, data: bytes, start: int, end: int):
        self._data.extend(data[start:end])

    def on_part_end(self):
        self.parts.append((self._headers, bytes(self._data)))

    def on_header_field(self, data: bytes, start: int, end: int):
        self._field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int):
        self._value += data[start:end]

    def on_header_end(self):
        self._headers[self._field.decode("latin-1").lower()] = self._value
        self._field = b""
        self._value = b""


def _decode_multipart(content_type: str, body: bytes, is_base64_encoded: bool) -> DecodedRequest:
    _, params = parse_options_header(content_type)
    boundary = params.get(b"boundary")
    if not boundary:
        raise ValidationError("Missing multipart boundary")

    if is_base64_encoded:
        body = decode_base64_payload(body.decode("ascii", errors="replace"), "request body")

    collector = _PartCollector()
    parser = MultipartParser(boundary, collector.callbacks())
    try:
        parser.write(body)
        parser.finalize()
    except MultipartParseError as e:
        raise ValidationError("Malformed multipart body", details=str(e))

    if not collector.parts:
        raise ValidationError("No multipart parts found")

    decoded = DecodedRequest()
    for headers, data in collector.parts:
        _, options = parse_options_header(headers.get("content-disposition", b""))
        field_name = options.get(b"name", b"").decode("utf-8", errors="replace")
        filename = options.get(b"filename")

        if filename is None:
            decoded.fields[field_name] = data.decode("utf-8", errors="replace")
            continue

        decoded.files.append(UploadedFile(
            name=filename.decode("utf-8", errors="replace") or "unnamed",
            mime_type=headers.get("content-type", b"").decode("latin-1").strip(),
            data=data,
            field_name=field_name,
        ))

    logger.debug(f"Multipart body: {len(decoded.files)} file(s), {len(decoded.fields)} field(s)")
    return decoded


# =============================================================================
# RAW BASE64 / DATA URL BODIES
# =============================================================================

def _decode_raw(headers: dict[str, str], body: bytes) -> DecodedRequest:
    text = body.decode("ascii", errors="replace").strip()
    if not text:
        raise ValidationError("Request body is empty")

    name = headers.get("x-file-name", "upload")
    mime_type = headers.get("x-file-type", "")
    match = _DATA_URL_RE.match(text)
    if match and match.group("mime"):
        mime_type = match.group("mime")

    return DecodedRequest(files=[UploadedFile(
        name=name,
        mime_type=mime_type,
        data=decode_base64_payload(text, name),
    )])


# =============================================================================
# PUBLIC API
# =============================================================================

def decode_form(
    headers: Optional[Mapping[str, str]],
    body: Union[bytes, str, None],
    is_base64_encoded: bool = False
) -> DecodedRequest:
    """
    Decode a request body into form fields and uploaded files.

    Args:
        headers: Request headers (any case)
        body: Raw request body
        is_base64_encoded: Whether the transport base64-encoded the whole body

    Returns:
        DecodedRequest with fields and files in upload order

    Raises:
        ValidationError: Malformed body, missing boundary or empty payload
        CorruptPayloadError: Truncated or invalid base64
    """
    lowered = _lower_headers(headers)
    content_type = lowered.get("content-type", "")
    media_type = content_type.split(";")[0].strip().lower()
    raw = _as_bytes(body)

    if media_type == "multipart/form-data":
        return _decode_multipart(content_type, raw, is_base64_encoded)

    if media_type == "application/json":
        if is_base64_encoded:
            raw = decode_base64_payload(raw.decode("ascii", errors="replace"), "request body")
        return _decode_json(raw)

    return _decode_raw(lowered, raw)


def decode(
    headers: Optional[Mapping[str, str]],
    body: Union[bytes, str, None],
    is_base64_encoded: bool = False
) -> list[UploadedFile]:
    """Decode a request body into the uploaded files it carries."""
    return decode_form(headers, body, is_base64_encoded).files
