"""Tests for the Companies House client."""

import asyncio
import base64

import httpx
import pytest

from drafter.errors import RegistryError, UpstreamAuthError, ValidationError
from drafter.registry_client import (
    RegistryClient,
    basic_auth_header,
    filter_accounts_filings,
    to_filing_record,
    viewer_url,
)

API = "https://api.test"
DOCS = "https://docs.test"
VIEWER = "https://viewer.test"


def client_with(handler, page_size: int = 10) -> RegistryClient:
    return RegistryClient(
        api_key="secret",
        base_url=API,
        document_api_url=DOCS,
        viewer_base_url=VIEWER,
        page_size=page_size,
        transport=httpx.MockTransport(handler),
    )


def filing(description, date, tid, metadata=None):
    item = {"description": description, "date": date, "transaction_id": tid, "category": "accounts", "type": "AA"}
    if metadata:
        item["links"] = {"document_metadata": metadata}
    return item


def test_basic_auth_header_uses_key_and_empty_password():
    expected = base64.b64encode(b"secret:").decode()
    assert basic_auth_header("secret") == f"Basic {expected}"


def test_filing_history_keeps_only_accounts():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json={"items": [
            {"description": "Annual accounts", "date": "2023-01-01"},
            {"description": "Change of director", "date": "2023-02-01"},
        ]})

    records = asyncio.run(client_with(handler).get_filing_history("01234567"))

    assert [r.description for r in records] == ["Annual accounts"]
    assert records[0].date == "2023-01-01"
    assert records[0].downloadable is False
    assert seen["auth"] == basic_auth_header("secret")
    assert seen["path"] == "/company/01234567/filing-history"


def test_filter_sorts_newest_first_and_truncates():
    items = [
        {"description": "accounts-with-accounts-type-full", "date": "2020-06-01"},
        {"description": "ACCOUNTS total exemption", "date": "2022-06-01"},
        {"description": "confirmation-statement", "date": "2023-06-01"},
        {"description": "Micro-entity Accounts", "date": "2021-06-01"},
    ]

    kept = filter_accounts_filings(items, page_size=2)

    assert [i["date"] for i in kept] == ["2022-06-01", "2021-06-01"]


def test_non_success_status_surfaces_registry_error():
    def handler(request):
        return httpx.Response(404, text='{"errors":[{"error":"company-profile-not-found"}]}')

    with pytest.raises(RegistryError) as exc:
        asyncio.run(client_with(handler).get_company_profile("99999999"))

    assert exc.value.status == 404
    assert exc.value.status_code == 404
    assert "company-profile-not-found" in exc.value.body


def test_company_profile_passthrough():
    def handler(request):
        assert request.url.path == "/company/01234567"
        return httpx.Response(200, json={"company_name": "EXAMPLE LTD", "company_number": "01234567"})

    profile = asyncio.run(client_with(handler).get_company_profile(" 01234567 "))
    assert profile["company_name"] == "EXAMPLE LTD"


def test_search_normalises_items():
    def handler(request):
        assert request.url.params["q"] == "example"
        assert request.url.params["items_per_page"] == "5"
        return httpx.Response(200, json={"items": [
            {"company_number": "01234567", "title": "EXAMPLE LTD", "company_status": "active",
             "address_snippet": "1 High Street", "kind": "searchresults#company"},
        ]})

    results = asyncio.run(client_with(handler).search_companies("example"))

    assert len(results) == 1
    assert results[0].company_number == "01234567"
    assert results[0].title == "EXAMPLE LTD"
    assert results[0].date_of_creation is None


def test_missing_input_and_key():
    with pytest.raises(ValidationError):
        asyncio.run(client_with(lambda r: httpx.Response(200)).search_companies("  "))

    with pytest.raises(UpstreamAuthError):
        asyncio.run(RegistryClient(api_key="").get_company_profile("01234567"))


def test_document_resolution_with_fallbacks():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/company/01234567/filing-history":
            return httpx.Response(200, json={"items": [
                filing("Full accounts", "2023-09-30", "TX1", f"{DOCS}/document/DOC1"),
                filing("Micro accounts", "2022-09-30", "TX2", f"{DOCS}/document/DOC2"),
                filing("Dormant accounts", "2021-09-30", "TX3", f"{DOCS}/document/DOC3"),
                filing("Abridged accounts", "2020-09-30", "TX4"),
            ]})
        if path == "/document/DOC1":
            return httpx.Response(200, json={
                "resources": {"application/pdf": {}},
                "links": {"document": f"{DOCS}/document/DOC1/content"},
            })
        if path == "/document/DOC1/content":
            assert request.headers["accept"] == "application/pdf"
            return httpx.Response(302, headers={"Location": "https://s3.test/doc1.pdf"})
        if path == "/document/DOC2":
            return httpx.Response(200, json={"resources": {"application/xhtml+xml": {}}})
        if path == "/document/DOC3":
            return httpx.Response(500, text="upstream broke")
        raise AssertionError(f"unexpected request {request.url}")

    records = asyncio.run(client_with(handler).get_filing_history("01234567", resolve_documents=True))

    assert [r.transaction_id for r in records] == ["TX1", "TX2", "TX3", "TX4"]

    assert records[0].downloadable is True
    assert records[0].pdf_url == "https://s3.test/doc1.pdf"
    assert records[0].document_id == "DOC1"

    for record in records[1:]:
        assert record.downloadable is False
        assert record.pdf_url is None
        assert record.viewer_url == viewer_url("01234567", record.transaction_id, VIEWER)


def test_viewer_url_shape():
    assert viewer_url("01234567", "TX9", VIEWER) == (
        f"{VIEWER}/company/01234567/filing-history/TX9/document?format=pdf&download=0"
    )
    assert viewer_url("01234567", None, VIEWER) == f"{VIEWER}/company/01234567/filing-history"


def test_resolve_single_document():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/document/DOC7":
            return httpx.Response(200, json={"resources": {"application/pdf": {}}})
        if request.url.path == "/document/DOC7/content":
            return httpx.Response(302, headers={"Location": "https://s3.test/doc7.pdf"})
        raise AssertionError(f"unexpected request {request.url}")

    record = to_filing_record(filing("Full accounts", "2023-09-30", "TX7", "/document/DOC7"))
    resolved = asyncio.run(client_with(handler).resolve_document(record, "01234567"))

    assert resolved.downloadable is True
    assert resolved.pdf_url == "https://s3.test/doc7.pdf"
    assert resolved.viewer_url == viewer_url("01234567", "TX7", VIEWER)


def test_resolve_single_document_without_metadata_keeps_viewer_link():
    record = to_filing_record(filing("Abridged accounts", "2020-09-30", "TX8"))
    resolved = asyncio.run(client_with(lambda r: httpx.Response(500)).resolve_document(record, "01234567"))

    assert resolved.downloadable is False
    assert resolved.pdf_url is None
    assert resolved.viewer_url == viewer_url("01234567", "TX8", VIEWER)
