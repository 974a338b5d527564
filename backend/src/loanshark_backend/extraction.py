from __future__ import annotations

import base64
import io
import json
import logging
from pathlib import Path
from typing import Any, Optional

import pdfplumber
from fastapi import HTTPException
from landingai_ade import LandingAIADE
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import RunnableLambda
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_google_genai.chat_models import ChatGoogleGenerativeAIError
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from loanshark_backend.schemas import TaxReturnRecord

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# 1) Prompts

SYSTEM = """You are a meticulous extraction system.
Extract ONLY factual values present in the user's IRS Form 1040 markdown.
- Do NOT invent values. Use null for missing fields.
- Money as plain digits (no $ or commas), kept as text, e.g. "91118".
- Social security numbers as 9 digits without dashes.
- filingStatus is one of: single, married_jointly, married_separately,
  head_household, qualifying_widow (use the box that is checked).
- Yes/no questions and checkboxes as "yes" or "no".
Return ONLY the structured JSON object, no prose.
"""

GEMINI_PDF_PROMPT = "Summarize the content of this PDF as structured JSON."


def message_text(message: Any) -> str:
    """Plain text of a chat message whose content may be a list of parts."""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content)


# ──────────────────────────────────────────────────────────────────────────────
# 2) LLM chain builders

def _extraction_messages(x: dict, instruction: str) -> list:
    return [
        SystemMessage(content=x["sys"]),
        HumanMessage(
            content=(
                f"{instruction}\n\n"
                f"### SOURCE_META\n{json.dumps(x['meta'])}\n\n"
                f"### MARKDOWN\n{x['md']}\n"
            )
        ),
    ]


def build_structured_chain(
    model_name: str = "gemini-2.5-pro",
    temperature: float = 0.0,
    google_api_key: Optional[str] = None,
):
    llm = ChatGoogleGenerativeAI(
        model=model_name, temperature=temperature, google_api_key=google_api_key
    )
    structured_llm = llm.with_structured_output(
        TaxReturnRecord, method="function_calling"
    )
    chain = (
        {
            "sys": RunnableLambda(lambda x: SYSTEM),
            "md": RunnableLambda(lambda x: x["markdown"]),
            "meta": RunnableLambda(lambda x: x.get("meta", {})),
        }
        | RunnableLambda(
            lambda x: _extraction_messages(
                x, "Extract the following Form 1040 markdown into the JSON schema."
            )
        )
        | structured_llm
    )
    return chain


def build_fallback_json_chain(
    model_name: str = "gemini-2.5-pro",
    temperature: float = 0.0,
    google_api_key: Optional[str] = None,
):
    llm = ChatGoogleGenerativeAI(
        model=model_name,
        temperature=temperature,
        google_api_key=google_api_key,
        response_mime_type="application/json",
    )
    keys = ", ".join(TaxReturnRecord.model_json_schema(by_alias=True)["properties"])
    chain = (
        {
            "sys": RunnableLambda(lambda x: SYSTEM),
            "md": RunnableLambda(lambda x: x["markdown"]),
            "meta": RunnableLambda(lambda x: x.get("meta", {})),
        }
        | RunnableLambda(
            lambda x: _extraction_messages(
                x, f"Return ONLY valid JSON with these keys (no prose): {keys}"
            )
        )
        | llm
    )
    return chain


async def extract_tax_record(
    markdown_text: str,
    source_file: Optional[str],
    gemini_model: str,
    google_api_key: Optional[str] = None,
) -> TaxReturnRecord:
    chain_input = {"markdown": markdown_text, "meta": {"source_file": source_file}}
    try:
        chain = build_structured_chain(model_name=gemini_model, google_api_key=google_api_key)
        record = await run_in_threadpool(chain.invoke, chain_input)
        if record is None:
            raise ChatGoogleGenerativeAIError("Structured output returned no record")
        return record
    except ChatGoogleGenerativeAIError as e:
        logger.warning("Structured extraction failed for %s, retrying in JSON mode: %s", source_file, e)
        chain = build_fallback_json_chain(model_name=gemini_model, google_api_key=google_api_key)
        raw = await run_in_threadpool(chain.invoke, chain_input)
        raw_text = message_text(raw)
        try:
            obj = json.loads(raw_text)
        except Exception as e:  # noqa: BLE001
            raise HTTPException(status_code=500, detail=f"Gemini JSON parse failed: {e}") from e
        try:
            return TaxReturnRecord.model_validate(obj)
        except ValidationError as e:
            raise HTTPException(status_code=500, detail=f"Pydantic validation failed: {e}") from e


# ──────────────────────────────────────────────────────────────────────────────
# 3) Document -> Markdown

def document_to_markdown(
    document_path: Path,
    landing_model: str = "dpt-2-latest",
    api_key: Optional[str] = None,
) -> str:
    """LandingAI ADE parse (PDF or image) -> Markdown."""
    client = LandingAIADE(apikey=api_key) if api_key else LandingAIADE()
    response = client.parse(document=document_path, model=landing_model)
    return response.markdown


def pdf_text_to_markdown(pdf_bytes: bytes) -> str:
    """Local text-layer extraction, used when LandingAI is not configured."""
    pages = []
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for number, page in enumerate(pdf.pages, start=1):
            text = page.extract_text() or ""
            pages.append(f"## Page {number}\n\n{text.strip()}\n")
    return "\n".join(pages)


# ──────────────────────────────────────────────────────────────────────────────
# 4) Gemini PDF summary

def summarize_pdf_with_gemini(
    pdf_bytes: bytes,
    model_name: str,
    google_api_key: Optional[str],
    mime_type: str = "application/pdf",
) -> str:
    llm = ChatGoogleGenerativeAI(model=model_name, google_api_key=google_api_key)
    message = HumanMessage(
        content=[
            {"type": "text", "text": GEMINI_PDF_PROMPT},
            {
                "type": "media",
                "mime_type": mime_type,
                "data": base64.b64encode(pdf_bytes).decode("ascii"),
            },
        ]
    )
    return message_text(llm.invoke([message]))
