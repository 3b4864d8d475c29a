#!/usr/bin/env python3
"""
CLI Runner for the Financial Statements Drafter.

This is THE LOCAL BOSS - handles all file system operations:
- Reading PDFs, spreadsheets and CSVs from disk
- Calling Core modules for extraction and drafting
- Saving the drafted statements to disk

Usage:
    python cli_runner.py FILE [FILE ...] [--company NAME] [--framework IFRS]
                         [--prior-tb PATH --current-tb PATH] [--notes TEXT]
                         [--output PATH]

Examples:
    python cli_runner.py accounts_2023.pdf tb_2024.xlsx --company "Example Ltd"
    python cli_runner.py --prior-tb tb_2023.csv --current-tb tb_2024.csv --framework "US GAAP"
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Import all core functionality
from drafter import (
    MODEL_NAME,
    GEMINI_API_KEY,
    DEFAULT_FRAMEWORK,
    PRIOR_TEXT_LIMIT,
    REFERENCE_PDF_PATH,
    DrafterError,
    UploadedFile,
    configure_gemini,
    candidate_models,
    extract_trial_balance,
    load_reference_text,
    build_request,
    classify_document,
    ModelInvoker,
)
from drafter.request_builder import resolve_mime_type

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


# =============================================================================
# FILE SYSTEM OPERATIONS (CLI-SPECIFIC)
# =============================================================================

def read_upload(path: Path) -> Optional[UploadedFile]:
    """
    Read a file from disk into an UploadedFile.

    Args:
        path: Path to the file

    Returns:
        UploadedFile, or None if the file cannot be read
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.error(f"Error reading {path}: {e}")
        return None
    return UploadedFile(name=path.name, mime_type=resolve_mime_type("", path.name), data=data)


def read_prior_text(path: Path) -> Optional[str]:
    """Read prior-year accounts text, truncated to the prompt limit."""
    try:
        return path.read_text(encoding='utf-8')[:PRIOR_TEXT_LIMIT]
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Error reading {path}: {e}")
        return None


def save_output(text: str, output_path: Path) -> bool:
    """
    Save the drafted statements to disk.

    Returns:
        True if successful, False otherwise
    """
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding='utf-8')
        return True
    except OSError as e:
        logger.error(f"Error saving output to {output_path}: {e}")
        return False


def load_trial_balances(prior_path: Optional[Path], current_path: Optional[Path]) -> Optional[dict]:
    if not prior_path and not current_path:
        return None

    tb_parsed = {}
    for label, path in (("prior", prior_path), ("current", current_path)):
        if path is None:
            tb_parsed[label] = {}
            continue
        upload = read_upload(path)
        tb_parsed[label] = extract_trial_balance(upload.data if upload else None, path.name)
    return tb_parsed


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Draft financial statements with Gemini")
    parser.add_argument("files", nargs="*", type=Path, help="PDF, image, spreadsheet or text attachments")
    parser.add_argument("--company", default="", help="Company name")
    parser.add_argument("--framework", default=DEFAULT_FRAMEWORK, help="Reporting framework")
    parser.add_argument("--notes", default="", help="Free-text notes for the model")
    parser.add_argument("--prior-text", type=Path, help="Text file with prior-year accounts")
    parser.add_argument("--prior-tb", type=Path, help="Prior-year trial balance (xlsx/xls/csv)")
    parser.add_argument("--current-tb", type=Path, help="Current-year trial balance (xlsx/xls/csv)")
    parser.add_argument("--output", type=Path, default=Path("draft_statements.md"), help="Where to save the draft")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for local drafting."""
    args = parse_args(argv)

    logger.info("=" * 60)
    logger.info("Starting Financial Statements Drafter")
    logger.info(f"Models: {', '.join(candidate_models(MODEL_NAME))}")
    logger.info("=" * 60)

    if not (args.files or args.prior_text or args.prior_tb or args.current_tb):
        logger.error("❌ Provide at least one file, --prior-text, or a trial balance")
        return 1

    try:
        configure_gemini(GEMINI_API_KEY)
    except DrafterError as e:
        logger.error(e.message)
        return 1

    uploads = []
    for path in args.files:
        upload = read_upload(path)
        if upload is None:
            return 1
        logger.info(f"  {path.name}: {classify_document(upload.mime_type, upload.name).value}")
        uploads.append(upload)

    prior_text = ""
    if args.prior_text:
        prior_text = read_prior_text(args.prior_text)
        if prior_text is None:
            return 1

    try:
        tb_parsed = load_trial_balances(args.prior_tb, args.current_tb)
        gen_request = build_request(
            args.framework, args.company, args.notes,
            files=uploads,
            prior_text=prior_text,
            tb_parsed=tb_parsed,
            reference_text=load_reference_text(REFERENCE_PDF_PATH),
        )
        result = asyncio.run(ModelInvoker().generate(gen_request, candidate_models(MODEL_NAME)))
    except DrafterError as e:
        logger.error(f"❌ {e.message}")
        if e.details:
            logger.error(f"   {e.details}")
        return 1

    if not save_output(result.text, args.output):
        return 1

    logger.info(f"✓ Draft from {result.model_used} saved to: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
