"""
Registry Client module for the Financial Statements Drafter.

Talks to the Companies House public data and document APIs: company
profile, company search, accounts filing history and PDF link resolution.
All calls authenticate with HTTP Basic (API key as username, empty password).
"""

import base64
import logging
from typing import Any, Optional
from urllib.parse import urljoin

import httpx
from pydantic import BaseModel

from .config import (
    COMPANIES_HOUSE_API_KEY,
    REGISTRY_API_URL,
    REGISTRY_DOCUMENT_API_URL,
    REGISTRY_VIEWER_URL,
    FILING_PAGE_SIZE,
    SEARCH_PAGE_SIZE,
)
from .errors import RegistryError, UpstreamAPIError, UpstreamAuthError, ValidationError

logger = logging.getLogger(__name__)

# Raw filings requested before the accounts filter is applied
FILING_FETCH_SIZE = 100


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CompanySearchResult(BaseModel):
    company_number: str
    title: str
    company_status: Optional[str] = None
    address_snippet: Optional[str] = None
    date_of_creation: Optional[str] = None


class FilingRecord(BaseModel):
    """An accounts filing, with a direct PDF link when one could be resolved."""
    date: str = ""
    description: str = ""
    category: Optional[str] = None
    type: Optional[str] = None
    transaction_id: Optional[str] = None
    document_metadata_url: Optional[str] = None
    document_id: Optional[str] = None
    pdf_url: Optional[str] = None
    viewer_url: Optional[str] = None
    downloadable: bool = False


# =============================================================================
# HELPERS
# =============================================================================

def basic_auth_header(api_key: str) -> str:
    """Authorization header value for the registry: base64("<key>:")."""
    token = base64.b64encode(f"{api_key}:".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def is_accounts_filing(item: dict) -> bool:
    return "accounts" in (item.get("description") or "").lower()


def filter_accounts_filings(items: list[dict], page_size: int) -> list[dict]:
    """Keep accounts filings only, newest first, at most page_size of them."""
    accounts = [i for i in items if is_accounts_filing(i)]
    accounts.sort(key=lambda i: i.get("date") or "", reverse=True)
    return accounts[:page_size]


def viewer_url(company_number: str, transaction_id: Optional[str], viewer_base: str = REGISTRY_VIEWER_URL) -> str:
    """Public web page for a filing, used when no direct PDF link is available."""
    if not transaction_id:
        return f"{viewer_base}/company/{company_number}/filing-history"
    return (
        f"{viewer_base}/company/{company_number}/filing-history/"
        f"{transaction_id}/document?format=pdf&download=0"
    )


def to_filing_record(item: dict) -> FilingRecord:
    metadata_url = (item.get("links") or {}).get("document_metadata")
    return FilingRecord(
        date=item.get("date") or "",
        description=item.get("description") or "",
        category=item.get("category"),
        type=item.get("type"),
        transaction_id=item.get("transaction_id"),
        document_metadata_url=metadata_url,
        document_id=metadata_url.rstrip("/").rsplit("/", 1)[-1] if metadata_url else None,
    )


# =============================================================================
# CLIENT
# =============================================================================

class RegistryClient:
    """
    Async client for the Companies House API.

    Non-success responses raise RegistryError with the upstream status and
    body; nothing is retried.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = REGISTRY_API_URL,
        document_api_url: str = REGISTRY_DOCUMENT_API_URL,
        viewer_base_url: str = REGISTRY_VIEWER_URL,
        page_size: int = FILING_PAGE_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else COMPANIES_HOUSE_API_KEY
        self.base_url = base_url.rstrip("/")
        self.document_api_url = document_api_url.rstrip("/")
        self.viewer_base_url = viewer_base_url.rstrip("/")
        self.page_size = page_size
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise UpstreamAuthError("Missing COMPANIES_HOUSE_API_KEY")

        # Bounded only by the host's request deadline
        return httpx.AsyncClient(
            headers={
                "Authorization": basic_auth_header(self.api_key),
                "Accept": "application/json",
            },
            transport=self.transport,
            timeout=None,
            follow_redirects=False,
        )

    async def _get_json(self, client: httpx.AsyncClient, url: str, params: Optional[dict] = None) -> Any:
        try:
            response = await client.get(url, params=params)
        except httpx.RequestError as e:
            logger.error(f"Companies House request failed: {url}: {e}")
            raise UpstreamAPIError("Companies House request failed", details=str(e))

        if not response.is_success:
            logger.error(f"Companies House API error: {response.status_code} {response.text[:200]}")
            raise RegistryError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError:
            raise UpstreamAPIError("Companies House returned invalid JSON", details=response.text[:500])

    # -------------------------------------------------------------------------
    # Company data
    # -------------------------------------------------------------------------

    async def get_company_profile(self, company_number: str) -> dict:
        """Company profile JSON, as returned by the registry."""
        company_number = (company_number or "").strip()
        if not company_number:
            raise ValidationError("Missing company number")

        logger.info(f"Fetching company profile: {company_number}")
        async with self._client() as client:
            return await self._get_json(client, f"{self.base_url}/company/{company_number}")

    async def search_companies(self, query: str, items_per_page: int = SEARCH_PAGE_SIZE) -> list[CompanySearchResult]:
        query = (query or "").strip()
        if not query:
            raise ValidationError("Missing search query")

        async with self._client() as client:
            data = await self._get_json(
                client,
                f"{self.base_url}/search/companies",
                params={"q": query, "items_per_page": items_per_page},
            )

        return [
            CompanySearchResult(
                company_number=item.get("company_number", ""),
                title=item.get("title", ""),
                company_status=item.get("company_status"),
                address_snippet=item.get("address_snippet"),
                date_of_creation=item.get("date_of_creation"),
            )
            for item in data.get("items") or []
        ]

    # -------------------------------------------------------------------------
    # Filing history
    # -------------------------------------------------------------------------

    async def get_filing_history(
        self,
        company_number: str,
        page_size: Optional[int] = None,
        resolve_documents: bool = False
    ) -> list[FilingRecord]:
        """
        Accounts filings for a company, newest first.

        Args:
            company_number: Registry company number
            page_size: Maximum number of filings returned (defaults to the configured size)
            resolve_documents: Also resolve a direct PDF link for each filing

        Returns:
            List of FilingRecord. Filings whose PDF cannot be resolved are kept
            with a viewer link instead.
        """
        company_number = (company_number or "").strip()
        if not company_number:
            raise ValidationError("Company number is required")

        page_size = page_size or self.page_size
        logger.info(f"Fetching filing history for {company_number} (keeping {page_size})")

        async with self._client() as client:
            data = await self._get_json(
                client,
                f"{self.base_url}/company/{company_number}/filing-history",
                params={"items_per_page": FILING_FETCH_SIZE},
            )

            items = filter_accounts_filings(data.get("items") or [], page_size)
            records = [to_filing_record(i) for i in items]

            for record in records:
                record.viewer_url = viewer_url(company_number, record.transaction_id, self.viewer_base_url)
                if resolve_documents:
                    await self._resolve_into(client, record)

        logger.info(f"  {len(records)} accounts filing(s) for {company_number}")
        return records

    async def resolve_document(self, record: FilingRecord, company_number: str) -> FilingRecord:
        """Resolve a direct PDF link for one filing, falling back to the viewer link."""
        record.viewer_url = record.viewer_url or viewer_url(
            company_number, record.transaction_id, self.viewer_base_url
        )
        async with self._client() as client:
            await self._resolve_into(client, record)
        return record

    async def _resolve_into(self, client: httpx.AsyncClient, record: FilingRecord) -> None:
        try:
            record.pdf_url = await self._pdf_location(client, record)
        except UpstreamAPIError as e:
            logger.warning(f"  Could not resolve document for {record.transaction_id}: {e.message}")
            record.pdf_url = None
        record.downloadable = record.pdf_url is not None

    async def _pdf_location(self, client: httpx.AsyncClient, record: FilingRecord) -> Optional[str]:
        if not record.document_metadata_url:
            return None

        metadata_url = urljoin(self.document_api_url + "/", record.document_metadata_url)
        metadata = await self._get_json(client, metadata_url)

        if "application/pdf" not in (metadata.get("resources") or {}):
            logger.debug(f"  No PDF representation for {record.transaction_id}")
            return None

        content_url = (metadata.get("links") or {}).get("document") or f"{metadata_url.rstrip('/')}/content"
        content_url = urljoin(self.document_api_url + "/", content_url)

        try:
            response = await client.get(content_url, headers={"Accept": "application/pdf"})
        except httpx.RequestError as e:
            raise UpstreamAPIError("Companies House document request failed", details=str(e))

        if response.is_redirect and response.headers.get("location"):
            return response.headers["location"]

        logger.debug(f"  Document content returned {response.status_code} without redirect")
        return None
