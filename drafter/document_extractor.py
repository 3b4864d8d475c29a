"""
Document Extractor module for the Financial Statements Drafter.

Handles PyMuPDF (fitz) text extraction and trial balance parsing from
Excel/CSV uploads. This module is stateless - all functions accept bytes
and return text or plain dicts.
"""

import io
import logging
import math
import numbers
import re
from pathlib import Path
from typing import Any, Optional

import fitz  # PyMuPDF
import pandas as pd

from .config import PREVIEW_LENGTH
from .errors import ExtractionError, ValidationError

logger = logging.getLogger(__name__)

ACCOUNT_HEADER_RE = re.compile(r"account", re.IGNORECASE)
AMOUNT_HEADER_RE = re.compile(r"amount|debit|credit|balance", re.IGNORECASE)

# Only the first N columns are considered when hunting for the amount column
AMOUNT_SCAN_COLUMNS = 5

CSV_MIME_TYPES = {"text/csv", "text/plain", "application/csv"}


# =============================================================================
# PDF TEXT
# =============================================================================

def extract_text(pdf_bytes: bytes, name: str = "document.pdf") -> str:
    """
    Extract the full text of a PDF using PyMuPDF.

    Args:
        pdf_bytes: PDF file content as bytes
        name: File name used in error messages

    Returns:
        Text of every page, pages separated by newlines

    Raises:
        ValidationError: If no bytes were supplied
        ExtractionError: If the PDF cannot be opened
    """
    if not pdf_bytes:
        raise ValidationError(f"No PDF content supplied for {name}")

    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise ExtractionError(f"Failed to parse PDF: {name}", details=str(e))

    try:
        pages = [page.get_text() for page in doc]
    finally:
        doc.close()

    text = "\n".join(p for p in pages if p)
    logger.info(f"Extracted {len(text):,} characters from {name} ({len(pages)} pages)")
    return text


def preview_text(text: str, limit: int = PREVIEW_LENGTH) -> str:
    """Shorten text for a response preview, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def load_reference_text(path: str) -> str:
    """
    Load the optional reference PDF once at startup.

    A missing or unreadable file is logged and yields an empty reference,
    since prompts are built without it in that case.
    """
    if not path:
        return ""

    try:
        pdf_bytes = Path(path).read_bytes()
        text = extract_text(pdf_bytes, Path(path).name)
    except (OSError, ValidationError, ExtractionError) as e:
        logger.error(f"Could not load reference document {path}: {e}")
        return ""

    logger.info(f"Reference document loaded: {path}")
    return text


# =============================================================================
# CELL HELPERS
# =============================================================================

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _to_number(value: Any) -> Optional[float]:
    """Return the numeric value of a cell, or None if it is not numeric-like."""
    if isinstance(value, bool) or _is_blank(value):
        return None

    if isinstance(value, numbers.Number):
        number = float(value)
    else:
        cleaned = re.sub(r"[, ]", "", str(value))
        try:
            number = float(cleaned)
        except ValueError:
            return None

    if not math.isfinite(number):
        return None
    return number


def _cell_text(value: Any) -> str:
    if _is_blank(value):
        return ""
    # xls stores account codes as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _find_header(header: list[Any], pattern: re.Pattern, exclude: Optional[int] = None) -> Optional[int]:
    for idx, cell in enumerate(header):
        if idx != exclude and pattern.search(_cell_text(cell)):
            return idx
    return None


def _most_numeric_column(rows: list[list[Any]], account_col: int) -> Optional[int]:
    """
    Pick the amount column: the one among the first few with the most
    numeric-like data cells. Ties go to the lowest index.
    """
    width = max(len(r) for r in rows)
    best_col = None
    best_score = -1

    for col in range(min(AMOUNT_SCAN_COLUMNS, width)):
        if col == account_col:
            continue
        score = sum(
            1 for row in rows[1:]
            if col < len(row) and _to_number(row[col]) is not None
        )
        if score > best_score:
            best_score = score
            best_col = col

    return best_col


def _accumulate(rows: list[list[Any]], account_col: int, amount_col: int) -> dict[str, float]:
    result: dict[str, float] = {}
    for row in rows[1:]:
        name = _cell_text(row[account_col]) if account_col < len(row) else ""
        if not name:
            continue
        amount = _to_number(row[amount_col]) if amount_col < len(row) else None
        if amount is None:
            continue
        result[name] = result.get(name, 0) + amount
    return result


# =============================================================================
# SPREADSHEETS
# =============================================================================

def _read_first_sheet(data: bytes, name: str) -> pd.DataFrame:
    if not data:
        raise ExtractionError(f"Spreadsheet {name} is empty")

    try:
        return pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object)
    except Exception as e:
        raise ExtractionError(f"Failed to read spreadsheet: {name}", details=str(e))


def _sheet_rows(data: bytes, name: str) -> list[list[Any]]:
    df = _read_first_sheet(data, name)
    rows = [list(r) for r in df.itertuples(index=False, name=None)]
    rows = [r for r in rows if not all(_is_blank(v) for v in r)]
    if len(rows) < 2:
        raise ExtractionError(f"Spreadsheet {name} is empty")
    return rows


def _parse_spreadsheet(data: bytes, name: str) -> dict[str, float]:
    rows = _sheet_rows(data, name)

    account_col = _find_header(rows[0], ACCOUNT_HEADER_RE)
    if account_col is None:
        account_col = 0

    amount_col = _most_numeric_column(rows, account_col)
    if amount_col is None:
        raise ExtractionError(f"Spreadsheet {name} has no amount column")

    logger.debug(f"{name}: account column {account_col}, amount column {amount_col}")
    return _accumulate(rows, account_col, amount_col)


def spreadsheet_to_csv(data: bytes, name: str = "spreadsheet.xlsx") -> str:
    """
    Render the first sheet of a workbook as CSV text for a prompt.

    Raises:
        ExtractionError: If the workbook cannot be read or is empty
    """
    df = _read_first_sheet(data, name).dropna(how="all")
    if df.empty:
        raise ExtractionError(f"Spreadsheet {name} is empty")
    return df.to_csv(index=False, header=False)


# =============================================================================
# CSV
# =============================================================================

def _csv_rows(data: bytes, name: str) -> list[list[str]]:
    if not data:
        raise ExtractionError(f"CSV file {name} is empty")

    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ExtractionError(f"Failed to read CSV: {name}", details=str(e))

    # Plain comma split: quoted commas are not supported
    lines = [line for line in re.split(r"\r?\n", text) if line.strip()]
    rows = [[cell.strip().strip('"').strip() for cell in line.split(",")] for line in lines]
    if len(rows) < 2:
        raise ExtractionError(f"CSV file {name} is empty")
    return rows


def _parse_csv(data: bytes, name: str) -> dict[str, float]:
    rows = _csv_rows(data, name)

    account_col = _find_header(rows[0], ACCOUNT_HEADER_RE)
    if account_col is None:
        account_col = 0

    amount_col = _find_header(rows[0], AMOUNT_HEADER_RE, exclude=account_col)
    if amount_col is None:
        amount_col = 1 if account_col != 1 else 0

    return _accumulate(rows, account_col, amount_col)


# =============================================================================
# TRIAL BALANCES
# =============================================================================

def is_csv(filename_hint: str = "", mime_type: str = "") -> bool:
    return filename_hint.lower().endswith(".csv") or mime_type.lower() in CSV_MIME_TYPES


def extract_trial_balance(data: Optional[bytes], filename_hint: str = "", mime_type: str = "") -> dict[str, float]:
    """
    Parse a trial balance into an account name -> amount mapping.

    CSV files use the header-based amount column; workbooks use the first
    sheet and the most numeric of the first five columns. Repeated account
    names are summed and non-numeric amounts skipped.

    Args:
        data: File content as bytes
        filename_hint: Original file name (selects CSV vs workbook parsing)
        mime_type: Declared MIME type, if any

    Returns:
        Dictionary of account name to amount

    Raises:
        ValidationError: If no file was supplied
        ExtractionError: If the file is empty or unreadable
    """
    name = filename_hint or "trial balance"
    if data is None:
        raise ValidationError(f"Missing trial balance file: {name}")

    if is_csv(filename_hint, mime_type):
        balances = _parse_csv(data, name)
    else:
        balances = _parse_spreadsheet(data, name)

    logger.info(f"Parsed {len(balances)} accounts from {name}")
    return balances


def trial_balance_totals(balances: dict[str, float]) -> float:
    return sum(balances.values())
