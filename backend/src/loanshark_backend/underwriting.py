from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from loanshark_backend.schemas import UnderwritingAnalysis
from loanshark_backend.settings import Settings

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

DEFAULT_UNDERWRITING_RULE = (
    "Using only the income of the occupying borrower(s) to calculate the DTI ratio, "
    "the maximum allowable DTI ratio is 43%."
)

# ──────────────────────────────────────────────────────────────────────────────
# 1) Prompts. The DTI formula and thresholds live here, never in local code.

UNDERWRITER_SYSTEM = """You are a mortgage underwriter reviewing a loan application. Your task is to determine whether the borrower qualifies based on the following underwriting rule:

Underwriting Rule:

"{rule}"

Use the formula below to calculate the DTI (Debt-to-Income) ratio:
DTI = (Total Monthly Debt Payments / Gross Monthly Income) × 100

Total Monthly Debt Payments must be extracted specifically from the monthlyPayment fields in Sections 2c and 2d of the Uniform Residential Loan Application (URLA), and the total value is the sum of all monthly Payments.

Gross Monthly Income: Use only the income of the occupying borrower(s) (e.g., wages, bonuses, self-employment income).

Evaluation Criteria:
If DTI ≤ 43% → The borrower qualifies.

If 43% < DTI ≤ 50% → The borrower requires further evaluation of compensating factors (e.g., assets, credit history, loan type).

If DTI > 50% → The borrower does not qualify.

Important:
Always present the result in the following format:
Final DTI Value: XX.XX%
[Follow with a clear, professional, and friendly explanation that includes how the DTI was derived and what the result means.]

Example Outputs:
1. Final DTI Value: 39.85%
The borrower qualifies as the DTI is within the acceptable 43% threshold. This means their total monthly debt payments, relative to their gross monthly income, are considered manageable under standard underwriting guidelines.

2. Final DTI Value: 47.25%
The borrower's DTI exceeds the standard 43% limit but remains under 50%. This indicates their monthly debt obligations are moderately high compared to income. The application may still be considered if compensating factors, such as strong credit history or available reserves, are present.

3. Final DTI Value: 52.10%
The borrower does not qualify as the DTI exceeds the 50% limit set by underwriting guidelines. This suggests their debt burden is too high relative to income, posing significant risk unless strong mitigating factors are demonstrated.

Respond with a single JSON object with these keys:
- "dtiValue": number (the final DTI percentage, e.g. 39.85)
- "qualification": one of "QUALIFIED", "REQUIRES_REVIEW", "NOT_QUALIFIED"
- "explanation": string starting with "Final DTI Value: XX.XX%"
- "confidence": number between 0 and 100
- "riskFactors": array of strings
- "recommendations": array of strings
"""


def build_system_prompt(underwriting_rules: Optional[str] = None) -> str:
    rule = (underwriting_rules or "").strip() or DEFAULT_UNDERWRITING_RULE
    return UNDERWRITER_SYSTEM.format(rule=rule)


def create_analysis_prompt(document_data: Any) -> str:
    return json.dumps(document_data, indent=2, ensure_ascii=False)


def fallback_analysis() -> UnderwritingAnalysis:
    return UnderwritingAnalysis(
        dti_value=0,
        qualification="REQUIRES_REVIEW",
        explanation="AI analysis failed. Manual review required.",
        confidence=0,
        risk_factors=["Unable to perform automated analysis"],
        recommendations=["Manual underwriting review required"],
    )


# ──────────────────────────────────────────────────────────────────────────────
# 2) Response parsing

JSON_BLOCK_PATTERN = re.compile(r"\{[\s\S]*\}")


def parse_ai_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pull the model's JSON answer out of a Workers AI envelope.

    Accepts ``{"response": ...}`` and ``{"result": ...}`` (including the REST
    shape ``{"result": {"response": ...}}``). String answers are decoded as
    JSON, falling back to the first ``{...}`` block inside the text.
    """
    if data.get("response") is not None:
        candidate = data["response"]
    elif data.get("result") is not None:
        candidate = data["result"]
        if isinstance(candidate, dict) and "response" in candidate:
            candidate = candidate["response"]
    else:
        raise ValueError("Unexpected response format from Cloudflare AI")

    if isinstance(candidate, dict):
        return candidate

    text = str(candidate)
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("AI response is not plain JSON, searching for an embedded object")
        match = JSON_BLOCK_PATTERN.search(text)
        if not match:
            raise ValueError("No valid JSON found in AI response")
        try:
            obj = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError("Failed to extract JSON from AI response") from e

    if not isinstance(obj, dict):
        raise ValueError("AI response JSON is not an object")
    return obj


# ──────────────────────────────────────────────────────────────────────────────
# 3) Cloudflare Workers AI call

def call_cloudflare_ai(system_prompt: str, prompt: str, settings: Settings) -> Dict[str, Any]:
    if not settings.cloudflare_account_id or not settings.cloudflare_api_token:
        raise RuntimeError("Cloudflare AI credentials are not configured")

    url = (
        f"{CLOUDFLARE_API_BASE}/accounts/{settings.cloudflare_account_id}"
        f"/ai/run/{settings.cloudflare_model}"
    )
    body = {
        "model": settings.cloudflare_model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
        "temperature": 0.3,
        "max_tokens": 1000,
        "response_format": {"type": "json_object"},
    }
    logger.info("Calling Cloudflare AI model %s", settings.cloudflare_model)
    response = requests.post(
        url,
        headers={
            "Authorization": f"Bearer {settings.cloudflare_api_token}",
            "Content-Type": "application/json",
        },
        json=body,
        timeout=settings.cloudflare_timeout,
    )
    logger.info("Cloudflare AI response status: %s", response.status_code)
    if not response.ok:
        logger.error("Cloudflare AI error response: %s", response.text)
        raise RuntimeError(
            f"Cloudflare AI API error: {response.status_code} - {response.reason}"
        )
    return response.json()


def analyze_document(
    document_data: Any,
    settings: Settings,
    underwriting_rules: Optional[str] = None,
) -> UnderwritingAnalysis:
    """Ask the hosted LLM for a DTI verdict; degrade to the fallback analysis on failure."""
    prompt = create_analysis_prompt(document_data)
    logger.debug("Generated prompt: %s", prompt)
    try:
        raw = call_cloudflare_ai(build_system_prompt(underwriting_rules), prompt, settings)
        payload = parse_ai_payload(raw)
        analysis = UnderwritingAnalysis.model_validate(payload)
    except (requests.RequestException, RuntimeError, ValueError, ValidationError) as e:
        logger.error("Cloudflare AI analysis failed, returning fallback: %s", e)
        return fallback_analysis()

    logger.info(
        "AI analysis complete: DTI %.2f%% -> %s", analysis.dti_value, analysis.qualification
    )
    return analysis
