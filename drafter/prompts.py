"""
Prompts module for the Financial Statements Drafter.

Contains the instruction text sent to Gemini for statement drafting.
"""

from typing import Optional

from .config import DEFAULT_FRAMEWORK

STATEMENT_SECTIONS = [
    "Statement of Profit or Loss (with comparatives)",
    "Statement of Financial Position (with comparatives)",
    "Key accounting policies (brief)",
    "Key notes (revenue, leases, instruments, PPE/intangibles)",
    "Missing disclosures list",
]

# Reference material is quoted, not attached, so keep it short
REFERENCE_TEXT_LIMIT = 8000


def format_trial_balance(balances: Optional[dict]) -> str:
    """Render a trial balance as one `account: amount` line per account."""
    if not balances:
        return "(none provided)"
    return "\n".join(f"{name}: {amount}" for name, amount in balances.items())


def get_statements_prompt(
    framework: str,
    company_name: str,
    notes: str,
    prior_text: Optional[str] = None,
    tb_parsed: Optional[dict] = None,
    reference_text: Optional[str] = None
) -> str:
    """
    Generate the drafting prompt for one company.

    Args:
        framework: Reporting framework, e.g. "IFRS" or "US GAAP"
        company_name: Company the statements are for
        notes: Free-text notes from the user
        prior_text: Text of the prior-year accounts, already truncated
        tb_parsed: {"prior": {...}, "current": {...}} trial balances
        reference_text: Text of the reference document loaded at startup

    Returns:
        The formatted prompt string
    """
    framework = framework or DEFAULT_FRAMEWORK
    sections = "\n".join(f"{i}) {s}" for i, s in enumerate(STATEMENT_SECTIONS, start=1))

    prompt = f"""You are an expert {framework} financial reporting assistant.
Using the supplied material (prior-year accounts and/or current-year trial balance),
generate a professional draft of the current-year financial statements for "{company_name or 'the company'}".
Reflect the structure and tone of the prior report when present. Map amounts from the trial balance where possible.
Show prior-year comparatives wherever the prior-year figures are available.
Clearly flag any missing disclosures required by {framework}.

User notes:
{notes or '(none)'}

Output sections:
{sections}"""

    if tb_parsed:
        prompt += f"""

TRIAL BALANCE - PRIOR YEAR:
{format_trial_balance(tb_parsed.get('prior'))}

TRIAL BALANCE - CURRENT YEAR:
{format_trial_balance(tb_parsed.get('current'))}"""

    if prior_text:
        prompt += f"""

PRIOR-YEAR ACCOUNTS TEXT:
{prior_text}"""

    if reference_text:
        prompt += f"""

REFERENCE DOCUMENT (structure and wording guide only):
{reference_text[:REFERENCE_TEXT_LIMIT]}"""

    return prompt.strip()
