#!/usr/bin/env python3
"""
Server for the Financial Statements Drafter.

Stateless request handlers: Companies House lookups, document extraction,
and Gemini drafting of financial statements from uploaded material.

Flow (composed by the front-end, one call per step):
1. Look up the company and its accounts filings
2. Extract prior-year PDF text and parse trial balances
3. POST everything to generate-statements and receive the draft

Usage:
    uvicorn server:app --reload --port 8000
"""

import json
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import all core functionality
from drafter import (
    COMPANIES_HOUSE_API_KEY,
    GEMINI_API_KEY,
    MODEL_NAME,
    GEMINI_TIMEOUT_SECONDS,
    DRY_RUN,
    MAX_UPLOAD_BYTES,
    PRIOR_TEXT_LIMIT,
    DEFAULT_FRAMEWORK,
    REFERENCE_PDF_PATH,
    validate_config,
    DrafterError,
    ValidationError,
    UpstreamAuthError,
    UpstreamAPIError,
    RegistryClient,
    FilingRecord,
    CompanySearchResult,
    DecodedRequest,
    decode_form,
    extract_text,
    preview_text,
    load_reference_text,
    extract_trial_balance,
    trial_balance_totals,
    build_request,
    ModelInvoker,
    configure_gemini,
    candidate_models,
    list_available_models,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Financial Statements Drafter",
    description="Companies House lookups, document extraction and AI-drafted financial statements",
    version="1.0.0"
)

# Reference document text, loaded once at startup
_reference_text = ""


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    models: list[str]
    gemini_configured: bool
    registry_configured: bool
    dry_run: bool
    reference_loaded: bool


class SearchResponse(BaseModel):
    items: list[CompanySearchResult]


class FilingHistoryResponse(BaseModel):
    items: list[FilingRecord]


class PriorPdfResponse(BaseModel):
    preview: str
    fullText: str


class TrialBalanceResponse(BaseModel):
    summary: str
    tbParsed: dict[str, dict[str, float]]
    totals: dict[str, float]


class StatementsResponse(BaseModel):
    """Drafted statements and the model that produced them."""
    output: str
    model: str


class PingResponse(BaseModel):
    ok: bool
    model: str
    output: str


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(DrafterError)
async def drafter_error_handler(request: Request, exc: DrafterError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Unexpected server error", "details": str(exc)})


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _registry() -> RegistryClient:
    return RegistryClient(api_key=COMPANIES_HOUSE_API_KEY)


def _build_invoker() -> ModelInvoker:
    return ModelInvoker(timeout=GEMINI_TIMEOUT_SECONDS)


def _require_gemini_key():
    if not GEMINI_API_KEY:
        raise UpstreamAuthError("Missing GEMINI_API_KEY")


async def _decode_request(request: Request) -> DecodedRequest:
    """Decode the body, honouring a transport that base64-encoded the whole body."""
    body = await request.body()
    encoding = request.headers.get("content-transfer-encoding") or request.headers.get("x-body-encoding") or ""
    return decode_form(dict(request.headers), body, is_base64_encoded=encoding.lower() == "base64")


def _parse_balances(value: Any, label: str) -> dict[str, float]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"`tbParsed.{label}` must be an object of account: amount")

    balances = {}
    for name, amount in value.items():
        name = str(name).strip()
        if not name:
            continue
        try:
            balances[name] = float(amount)
        except (TypeError, ValueError):
            raise ValidationError(f"Amount for {name} in `tbParsed.{label}` is not a number")
    return balances


def parse_tb_field(value: Any) -> Optional[dict[str, dict[str, float]]]:
    """Validate the optional `tbParsed` field (an object, or JSON text from a form)."""
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError("`tbParsed` is not valid JSON")
    if not isinstance(value, dict):
        raise ValidationError("`tbParsed` must be an object with `prior` and `current`")

    return {
        "prior": _parse_balances(value.get("prior"), "prior"),
        "current": _parse_balances(value.get("current"), "current"),
    }


def dry_run_output(framework: str, company_name: str, notes: str, decoded: DecodedRequest,
                   prior_text: str, tb_parsed: Optional[dict], part_count: int) -> str:
    """Echo of the received inputs, returned instead of calling Gemini."""
    summary = {
        "framework": framework,
        "companyName": company_name,
        "notes": notes,
        "files": [{"name": f.name, "mimeType": f.mime_type, "bytes": f.size} for f in decoded.files],
        "priorTextChars": len(prior_text),
        "tbAccounts": {k: len(v) for k, v in (tb_parsed or {}).items()},
        "promptParts": part_count,
    }
    return "DRY RUN - Gemini was not called.\n" + json.dumps(summary, indent=2)


# =============================================================================
# STARTUP
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup."""
    global _reference_text

    is_valid, errors = validate_config()
    if not is_valid:
        logger.warning("Configuration incomplete:")
        for error in errors:
            logger.warning(f"  - {error}")

    if GEMINI_API_KEY:
        configure_gemini(GEMINI_API_KEY)
    else:
        logger.warning("⚠️  Gemini not configured - drafting endpoints will return 500")

    _reference_text = load_reference_text(REFERENCE_PDF_PATH)
    logger.info("Server started successfully")


# =============================================================================
# API ENDPOINTS - REGISTRY
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        models=candidate_models(MODEL_NAME),
        gemini_configured=bool(GEMINI_API_KEY),
        registry_configured=bool(COMPANIES_HOUSE_API_KEY),
        dry_run=DRY_RUN,
        reference_loaded=bool(_reference_text),
    )


@app.get("/api/v1/company")
async def company_profile(company: Optional[str] = None):
    """Company profile from Companies House, passed through unchanged."""
    return await _registry().get_company_profile(company or "")


@app.get("/api/v1/search", response_model=SearchResponse)
async def search_companies(q: Optional[str] = None):
    return SearchResponse(items=await _registry().search_companies(q or ""))


@app.get("/api/v1/filing-history", response_model=FilingHistoryResponse)
async def filing_history(company: Optional[str] = None, resolve: bool = False, limit: Optional[int] = None):
    """
    Accounts filings for a company, newest first.

    With `resolve=true` each filing gets a direct PDF link where Companies
    House offers one, otherwise a link to the public viewer page.
    """
    if limit is not None and not 1 <= limit <= 25:
        raise ValidationError("`limit` must be between 1 and 25")

    records = await _registry().get_filing_history(
        company or "",
        page_size=limit,
        resolve_documents=resolve,
    )
    return FilingHistoryResponse(items=records)


# =============================================================================
# API ENDPOINTS - DOCUMENTS
# =============================================================================

@app.post("/api/v1/extract-prior-pdf", response_model=PriorPdfResponse)
async def extract_prior_pdf(request: Request):
    """Extract text from an uploaded prior-year accounts PDF (form field `priorPdf`)."""
    decoded = await _decode_request(request)

    pdf = decoded.file_for("priorPdf")
    if pdf is None:
        pdf = next((f for f in decoded.files if f.name.lower().endswith(".pdf")), None)
    if pdf is None:
        raise ValidationError("No priorPdf file uploaded")

    text = extract_text(pdf.data, pdf.name)
    return PriorPdfResponse(preview=preview_text(text), fullText=text)


@app.post("/api/v1/trial-balances", response_model=TrialBalanceResponse)
async def read_trial_balances(request: Request):
    """Parse prior and current trial balances (fields `tbPrior` and `tbCurrent`)."""
    decoded = await _decode_request(request)

    prior_file = decoded.file_for("tbPrior")
    current_file = decoded.file_for("tbCurrent")
    if prior_file is None or current_file is None:
        raise ValidationError("Both tbPrior and tbCurrent are required")

    prior = extract_trial_balance(prior_file.data, prior_file.name, prior_file.mime_type)
    current = extract_trial_balance(current_file.data, current_file.name, current_file.mime_type)

    return TrialBalanceResponse(
        summary=f"Parsed TBs: Prior {len(prior)} accounts, Current {len(current)} accounts.",
        tbParsed={"prior": prior, "current": current},
        totals={"prior": trial_balance_totals(prior), "current": trial_balance_totals(current)},
    )


# =============================================================================
# API ENDPOINTS - DRAFTING
# =============================================================================

@app.post("/api/v1/generate-statements", response_model=StatementsResponse)
async def generate_statements(request: Request):
    """
    Draft financial statements with Gemini.

    Request body (JSON, or the same fields as multipart/form-data):
    {
        "framework": "IFRS",
        "companyName": "Example Ltd",
        "notes": "...",
        "priorText": "text of last year's accounts",
        "tbParsed": {"prior": {"Cash": 100}, "current": {"Cash": 150}},
        "files": [{"name": "tb.xlsx", "mimeType": "...", "base64": "..."}]
    }

    At least one of files, priorText or tbParsed is required; the others
    fall back to empty defaults.
    """
    decoded = await _decode_request(request)
    fields = decoded.fields

    framework = str(fields.get("framework") or DEFAULT_FRAMEWORK)
    company_name = str(fields.get("companyName") or "")
    notes = str(fields.get("notes") or "")
    prior_text = str(fields.get("priorText") or "")[:PRIOR_TEXT_LIMIT]
    tb_parsed = parse_tb_field(fields.get("tbParsed"))

    if not decoded.files and not prior_text and not tb_parsed:
        raise ValidationError("Please include at least one file, priorText or tbParsed")

    gen_request = build_request(
        framework, company_name, notes,
        files=decoded.files,
        prior_text=prior_text,
        tb_parsed=tb_parsed,
        reference_text=_reference_text,
        max_total_bytes=MAX_UPLOAD_BYTES,
    )

    logger.info(
        f"Drafting {framework} statements for {company_name or 'unnamed company'}: "
        f"{len(decoded.files)} file(s), {len(gen_request)} prompt part(s)"
    )

    if DRY_RUN:
        output = dry_run_output(framework, company_name, notes, decoded, prior_text, tb_parsed, len(gen_request))
        return StatementsResponse(output=output, model="dry-run")

    _require_gemini_key()
    result = await _build_invoker().generate(gen_request, candidate_models(MODEL_NAME))
    return StatementsResponse(output=result.text, model=result.model_used)


@app.get("/api/v1/models")
def gemini_models():
    """List the Gemini models this API key can generate content with."""
    _require_gemini_key()
    try:
        return {"models": list_available_models()}
    except google_exceptions.GoogleAPICallError as e:
        raise UpstreamAPIError("Failed to list Gemini models", details=str(e))


@app.get("/api/v1/ping", response_model=PingResponse)
async def gemini_ping():
    """One short generation to confirm the key and model work."""
    _require_gemini_key()
    result = await _build_invoker().ping(candidate_models(MODEL_NAME))
    return PingResponse(ok=True, model=result.model_used, output=result.text)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Financial Statements Drafter",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": [
            "GET /api/v1/company?company=<number>",
            "GET /api/v1/search?q=<query>",
            "GET /api/v1/filing-history?company=<number>&resolve=true",
            "POST /api/v1/extract-prior-pdf (multipart: priorPdf)",
            "POST /api/v1/trial-balances (multipart: tbPrior, tbCurrent)",
            "POST /api/v1/generate-statements (JSON or multipart)",
            "GET /api/v1/models",
            "GET /api/v1/ping",
        ],
    }


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
