"""Tests for the HTTP surface."""

import base64

import httpx
from fastapi.testclient import TestClient

import server
from drafter import GenerationResult, RegistryClient
from drafter.errors import GenerationTimeoutError
from drafter.request_builder import BinaryPart, TextPart

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class FakeInvoker:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def generate(self, request, candidates):
        self.calls.append((request, candidates))
        if self.error:
            raise self.error
        return self.result

    async def ping(self, candidates):
        return await self.generate([TextPart("ping")], candidates)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def use_invoker(monkeypatch, invoker: FakeInvoker):
    monkeypatch.setattr(server, "GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(server, "DRY_RUN", False)
    monkeypatch.setattr(server, "_build_invoker", lambda: invoker)


def test_health(client: TestClient):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_wrong_method_is_405(client: TestClient):
    response = client.get("/api/v1/generate-statements")
    assert response.status_code == 405
    assert response.json() == {"error": "Method Not Allowed"}


def test_generate_statements_success(client: TestClient, monkeypatch, pdf_bytes):
    invoker = FakeInvoker(result=GenerationResult(text="Draft FS", model_used="gemini-2.0-flash"))
    use_invoker(monkeypatch, invoker)

    response = client.post("/api/v1/generate-statements", json={
        "framework": "IFRS",
        "companyName": "Example Ltd",
        "notes": "First year of leases",
        "tbParsed": {"prior": {"Cash": 100}, "current": {"Cash": 150}},
        "files": [{"name": "prior.pdf", "mimeType": "application/pdf", "base64": b64(pdf_bytes)}],
    })

    assert response.status_code == 200
    assert response.json() == {"output": "Draft FS", "model": "gemini-2.0-flash"}

    request, candidates = invoker.calls[0]
    assert "Example Ltd" in request[0].content
    assert "Cash: 150.0" in request[0].content
    assert request[1] == BinaryPart("application/pdf", pdf_bytes)
    assert candidates


def test_generate_statements_unsupported_type(client: TestClient, monkeypatch):
    invoker = FakeInvoker(result=GenerationResult(text="never", model_used="x"))
    use_invoker(monkeypatch, invoker)

    response = client.post("/api/v1/generate-statements", json={
        "files": [{"name": "bundle.zip", "mimeType": "application/zip", "base64": b64(b"PK\x03\x04")}],
    })

    assert response.status_code == 400
    body = response.json()
    assert "bundle.zip" in body["error"]
    assert "application/pdf" in body["details"]["accepted"]
    assert invoker.calls == []


def test_generate_statements_truncated_upload(client: TestClient, monkeypatch):
    use_invoker(monkeypatch, FakeInvoker())

    response = client.post("/api/v1/generate-statements", json={
        "files": [{"name": "big.pdf", "mimeType": "application/pdf", "base64": "QUJDRA="}],
    })

    assert response.status_code == 400
    assert "looks incomplete" in response.json()["error"]
    assert "details" in response.json()


def test_generate_statements_malformed_file_entries(client: TestClient, monkeypatch):
    invoker = FakeInvoker(result=GenerationResult(text="never", model_used="x"))
    use_invoker(monkeypatch, invoker)

    for files in (["abc"], [{"name": "a.pdf", "mimeType": 5, "base64": "QUJD"}]):
        response = client.post("/api/v1/generate-statements", json={"files": files})
        assert response.status_code == 400
        assert response.json()["error"].startswith("files[0]")

    assert invoker.calls == []


def test_generate_statements_requires_some_input(client: TestClient, monkeypatch):
    use_invoker(monkeypatch, FakeInvoker())
    response = client.post("/api/v1/generate-statements", json={"companyName": "Nothing Ltd"})
    assert response.status_code == 400


def test_generate_statements_size_ceiling(client: TestClient, monkeypatch):
    use_invoker(monkeypatch, FakeInvoker())
    monkeypatch.setattr(server, "MAX_UPLOAD_BYTES", 10)

    response = client.post("/api/v1/generate-statements", json={"files": [
        {"name": "a.pdf", "mimeType": "application/pdf", "base64": b64(b"123456")},
        {"name": "b.pdf", "mimeType": "application/pdf", "base64": b64(b"123456")},
    ]})

    assert response.status_code == 400
    assert "b.pdf" in response.json()["error"]


def test_generate_statements_missing_key(client: TestClient, monkeypatch):
    monkeypatch.setattr(server, "GEMINI_API_KEY", "")
    monkeypatch.setattr(server, "DRY_RUN", False)

    response = client.post("/api/v1/generate-statements", json={"priorText": "Last year"})

    assert response.status_code == 500
    assert response.json() == {"error": "Missing GEMINI_API_KEY"}


def test_generate_statements_timeout(client: TestClient, monkeypatch):
    use_invoker(monkeypatch, FakeInvoker(error=GenerationTimeoutError("Gemini request timed out after 20s")))

    response = client.post("/api/v1/generate-statements", json={"priorText": "Last year"})

    assert response.status_code == 504
    assert "timed out" in response.json()["error"]


def test_generate_statements_dry_run(client: TestClient, monkeypatch):
    invoker = FakeInvoker()
    monkeypatch.setattr(server, "_build_invoker", lambda: invoker)
    monkeypatch.setattr(server, "GEMINI_API_KEY", "")
    monkeypatch.setattr(server, "DRY_RUN", True)

    response = client.post("/api/v1/generate-statements", json={
        "companyName": "Echo Ltd",
        "tbParsed": {"prior": {"Cash": 1}, "current": {"Cash": 2, "Bank": 3}},
    })

    assert response.status_code == 200
    body = response.json()
    assert body["model"] == "dry-run"
    assert "Echo Ltd" in body["output"]
    assert invoker.calls == []


def test_generate_statements_multipart(client: TestClient, monkeypatch):
    invoker = FakeInvoker(result=GenerationResult(text="Draft", model_used="m"))
    use_invoker(monkeypatch, invoker)

    response = client.post(
        "/api/v1/generate-statements",
        data={"framework": "US GAAP", "tbParsed": '{"prior": {}, "current": {"Cash": 5}}'},
        files={"tb": ("tb.csv", b"Account,Amount\nCash,5", "text/csv")},
    )

    assert response.status_code == 200
    request, _ = invoker.calls[0]
    assert "US GAAP" in request[0].content
    assert request[1] == TextPart("FILE tb.csv:\nAccount,Amount\nCash,5")


def test_bad_tb_parsed(client: TestClient, monkeypatch):
    use_invoker(monkeypatch, FakeInvoker())
    response = client.post("/api/v1/generate-statements", json={"tbParsed": {"current": {"Cash": "lots"}}})
    assert response.status_code == 400


def test_trial_balances_multipart(client: TestClient):
    response = client.post("/api/v1/trial-balances", files={
        "tbPrior": ("prior.csv", b"Account,Amount\nCash,100\nCash,50", "text/csv"),
        "tbCurrent": ("current.csv", b"Account,Amount\nCash,80\nSales,-20", "text/csv"),
    })

    assert response.status_code == 200
    body = response.json()
    assert body["tbParsed"] == {"prior": {"Cash": 150}, "current": {"Cash": 80, "Sales": -20}}
    assert body["totals"] == {"prior": 150, "current": 60}
    assert body["summary"] == "Parsed TBs: Prior 1 accounts, Current 2 accounts."


def test_trial_balances_requires_both(client: TestClient):
    response = client.post("/api/v1/trial-balances", files={
        "tbPrior": ("prior.csv", b"Account,Amount\nCash,100", "text/csv"),
    })
    assert response.status_code == 400
    assert response.json()["error"] == "Both tbPrior and tbCurrent are required"


def test_trial_balances_unreadable_workbook(client: TestClient):
    response = client.post("/api/v1/trial-balances", files={
        "tbPrior": ("prior.xlsx", b"garbage", XLSX),
        "tbCurrent": ("current.csv", b"Account,Amount\nCash,1", "text/csv"),
    })
    assert response.status_code == 400
    assert "prior.xlsx" in response.json()["error"]


def test_extract_prior_pdf(client: TestClient, pdf_bytes):
    response = client.post("/api/v1/extract-prior-pdf", files={
        "priorPdf": ("accounts.pdf", pdf_bytes, "application/pdf"),
    })

    assert response.status_code == 200
    body = response.json()
    assert "Statement of Financial Position 2023" in body["fullText"]
    assert body["preview"].startswith("Statement of Financial Position")


def test_extract_prior_pdf_without_file(client: TestClient):
    response = client.post("/api/v1/extract-prior-pdf", files={
        "other": ("notes.txt", b"hello", "text/plain"),
    })
    assert response.status_code == 400
    assert response.json()["error"] == "No priorPdf file uploaded"


def test_filing_history_endpoint(client: TestClient, monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": [
            {"description": "Annual accounts", "date": "2023-01-01", "transaction_id": "TX1"},
            {"description": "Change of director", "date": "2023-02-01", "transaction_id": "TX2"},
        ]})

    registry = RegistryClient(api_key="k", transport=httpx.MockTransport(handler))
    monkeypatch.setattr(server, "_registry", lambda: registry)

    response = client.get("/api/v1/filing-history", params={"company": "01234567"})

    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["description"] == "Annual accounts"
    assert items[0]["viewer_url"].endswith("/filing-history/TX1/document?format=pdf&download=0")


def test_registry_errors_pass_status_through(client: TestClient, monkeypatch):
    registry = RegistryClient(
        api_key="k",
        transport=httpx.MockTransport(lambda request: httpx.Response(401, text="Invalid Authorization")),
    )
    monkeypatch.setattr(server, "_registry", lambda: registry)

    response = client.get("/api/v1/company", params={"company": "01234567"})

    assert response.status_code == 401
    assert response.json()["details"] == "Invalid Authorization"


def test_company_requires_number(client: TestClient):
    response = client.get("/api/v1/company")
    assert response.status_code == 400


def test_ping(client: TestClient, monkeypatch):
    use_invoker(monkeypatch, FakeInvoker(result=GenerationResult(text="Hello", model_used="gemini-2.5-flash")))

    response = client.get("/api/v1/ping")

    assert response.json() == {"ok": True, "model": "gemini-2.5-flash", "output": "Hello"}
