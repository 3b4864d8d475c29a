import io
from types import SimpleNamespace

import fitz
import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

import server


def make_xlsx(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def make_pdf(text: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def text_response(text: str, finish_reason: str = "STOP"):
    """Shape of a Gemini GenerateContentResponse, as far as the engine reads it."""
    return SimpleNamespace(
        candidates=[SimpleNamespace(
            content=SimpleNamespace(parts=[SimpleNamespace(text=text)]),
            finish_reason=SimpleNamespace(name=finish_reason),
            safety_ratings=[],
        )],
        prompt_feedback=None,
    )


@pytest.fixture()
def pdf_bytes() -> bytes:
    return make_pdf("Statement of Financial Position 2023")


@pytest.fixture()
def client() -> TestClient:
    return TestClient(server.app)
