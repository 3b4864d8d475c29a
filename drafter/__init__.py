"""
Core module for the Financial Statements Drafter.

This module contains all business logic for drafting financial statements.
The functions here are stateless and do not interact with the file system directly.

Modules:
- config: Settings and constants
- errors: Error taxonomy with HTTP status codes
- registry_client: Companies House profile, search and filing history
- upload_gateway: Request body decoding (JSON/base64, multipart, raw base64)
- document_extractor: PyMuPDF text extraction and trial balance parsing
- prompts: Statement drafting prompt
- request_builder: Prompt parts and file-type dispatch
- ai_engine: Gemini invocation with model-candidate fallback
"""

from .config import (
    COMPANIES_HOUSE_API_KEY,
    GEMINI_API_KEY,
    MODEL_NAME,
    DEFAULT_MODEL_CANDIDATES,
    GEMINI_TIMEOUT_SECONDS,
    DRY_RUN,
    MAX_UPLOAD_BYTES,
    PRIOR_TEXT_LIMIT,
    FILING_PAGE_SIZE,
    DEFAULT_FRAMEWORK,
    REFERENCE_PDF_PATH,
    validate_config,
)

from .errors import (
    DrafterError,
    ValidationError,
    CorruptPayloadError,
    UnsupportedFileTypeError,
    PayloadTooLargeError,
    ExtractionError,
    UpstreamAuthError,
    UpstreamAPIError,
    RegistryError,
    NoTextGeneratedError,
    GenerationTimeoutError,
    ModelUnavailableError,
)

from .registry_client import (
    RegistryClient,
    FilingRecord,
    CompanySearchResult,
    basic_auth_header,
)

from .upload_gateway import (
    UploadedFile,
    DecodedRequest,
    decode,
    decode_form,
    decode_base64_payload,
)

from .document_extractor import (
    extract_text,
    preview_text,
    load_reference_text,
    extract_trial_balance,
    trial_balance_totals,
    spreadsheet_to_csv,
)

from .request_builder import (
    TextPart,
    BinaryPart,
    DocumentKind,
    classify_document,
    build_prompt,
    build_attachment_parts,
    build_request,
)

from .ai_engine import (
    ModelInvoker,
    GenerationResult,
    AttemptOutcome,
    configure_gemini,
    candidate_models,
    list_available_models,
)

__all__ = [
    # Config
    'COMPANIES_HOUSE_API_KEY',
    'GEMINI_API_KEY',
    'MODEL_NAME',
    'DEFAULT_MODEL_CANDIDATES',
    'GEMINI_TIMEOUT_SECONDS',
    'DRY_RUN',
    'MAX_UPLOAD_BYTES',
    'PRIOR_TEXT_LIMIT',
    'FILING_PAGE_SIZE',
    'DEFAULT_FRAMEWORK',
    'REFERENCE_PDF_PATH',
    'validate_config',
    # Errors
    'DrafterError',
    'ValidationError',
    'CorruptPayloadError',
    'UnsupportedFileTypeError',
    'PayloadTooLargeError',
    'ExtractionError',
    'UpstreamAuthError',
    'UpstreamAPIError',
    'RegistryError',
    'NoTextGeneratedError',
    'GenerationTimeoutError',
    'ModelUnavailableError',
    # Registry Client
    'RegistryClient',
    'FilingRecord',
    'CompanySearchResult',
    'basic_auth_header',
    # Upload Gateway
    'UploadedFile',
    'DecodedRequest',
    'decode',
    'decode_form',
    'decode_base64_payload',
    # Document Extractor
    'extract_text',
    'preview_text',
    'load_reference_text',
    'extract_trial_balance',
    'trial_balance_totals',
    'spreadsheet_to_csv',
    # Request Builder
    'TextPart',
    'BinaryPart',
    'DocumentKind',
    'classify_document',
    'build_prompt',
    'build_attachment_parts',
    'build_request',
    # AI Engine
    'ModelInvoker',
    'GenerationResult',
    'AttemptOutcome',
    'configure_gemini',
    'candidate_models',
    'list_available_models',
]
