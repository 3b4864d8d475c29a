"""
Configuration module for the Financial Statements Drafter.

Loads environment variables and defines all constants used across the application.
Both CLI and Server can import settings from here.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# API CONFIGURATION
# =============================================================================

COMPANIES_HOUSE_API_KEY = os.getenv("COMPANIES_HOUSE_API_KEY", os.getenv("COMPANIES_HOUSE_KEY", ""))
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", os.getenv("GOOGLE_API_KEY", ""))

REGISTRY_API_URL = os.getenv(
    "REGISTRY_API_URL",
    "https://api.company-information.service.gov.uk"
)
REGISTRY_DOCUMENT_API_URL = os.getenv(
    "REGISTRY_DOCUMENT_API_URL",
    "https://document-api.company-information.service.gov.uk"
)
REGISTRY_VIEWER_URL = os.getenv(
    "REGISTRY_VIEWER_URL",
    "https://find-and-update.company-information.service.gov.uk"
)

# =============================================================================
# MODEL CONFIGURATION
# =============================================================================

# Optional override, tried before the defaults
MODEL_NAME = os.getenv("GEMINI_MODEL", "")

DEFAULT_MODEL_CANDIDATES = [
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
]

# Host request limit is ~26s; leave a margin for the response
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "20"))

# Skip the Gemini call and echo the received inputs
DRY_RUN = _env_flag("DRY_RUN")

# =============================================================================
# REQUEST LIMITS
# =============================================================================

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
PRIOR_TEXT_LIMIT = int(os.getenv("PRIOR_TEXT_LIMIT", "15000"))
PREVIEW_LENGTH = 1500

FILING_PAGE_SIZE = min(25, max(10, int(os.getenv("FILING_PAGE_SIZE", "10"))))
SEARCH_PAGE_SIZE = 5

DEFAULT_FRAMEWORK = "IFRS"

# =============================================================================
# REFERENCE DOCUMENT
# =============================================================================

# Optional PDF loaded once at startup and quoted in every prompt
REFERENCE_PDF_PATH = os.getenv("REFERENCE_PDF_PATH", "")


def validate_config() -> tuple[bool, list[str]]:
    """
    Validate that required configuration is present.

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    if not GEMINI_API_KEY:
        errors.append("GEMINI_API_KEY environment variable is not set")

    if not COMPANIES_HOUSE_API_KEY:
        errors.append("COMPANIES_HOUSE_API_KEY environment variable is not set")

    return len(errors) == 0, errors
