"""HTTP helpers the Streamlit wizard uses to talk to the API."""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from loanshark_backend.settings import get_settings

FALLBACK_ERROR = "Something went wrong while contacting the server. Please try again."


def api_base_url() -> str:
    return get_settings().api_base_url.rstrip("/")


def check_api_health() -> bool:
    try:
        r = requests.get(f"{api_base_url()}/api/health", timeout=2)
        return r.status_code == 200
    except requests.RequestException:
        return False


def error_detail(exc: requests.RequestException) -> str:
    """Server-provided ``detail`` when there is one, otherwise a generic message."""
    response = getattr(exc, "response", None)
    if response is None:
        return FALLBACK_ERROR
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else FALLBACK_ERROR


def extract_document(name: str, data: bytes, content_type: str, timeout: float = 300) -> Dict[str, Any]:
    files = {"file": (name, data, content_type)}
    r = requests.post(
        f"{api_base_url()}/api/extract",
        files=files,
        params={"include_paths": "false"},
        timeout=timeout,
    )
    r.raise_for_status()
    return r.json()["file"]["json_data"]


def analyze_dti(document_data: Any, underwriting_rules: Optional[str] = None, timeout: float = 120) -> Dict[str, Any]:
    body: Dict[str, Any] = {"documentData": document_data}
    if underwriting_rules:
        body["underwritingRules"] = underwriting_rules
    r = requests.post(f"{api_base_url()}/api/cloudflare-ai/analyze", json=body, timeout=timeout)
    r.raise_for_status()
    return r.json()


def process_document(name: str, data: bytes, content_type: str, timeout: float = 120) -> Dict[str, Any]:
    files = {"file": (name, data, content_type)}
    r = requests.post(f"{api_base_url()}/api/process-document", files=files, timeout=timeout)
    r.raise_for_status()
    return r.json()


def gemini_pdf(name: str, data: bytes, timeout: float = 300) -> Dict[str, Any]:
    files = {"file": (name, data, "application/pdf")}
    r = requests.post(f"{api_base_url()}/api/gemini-pdf", files=files, timeout=timeout)
    r.raise_for_status()
    return r.json()


def download_report(results: Dict[str, Any], analysis: Optional[Dict[str, Any]] = None, timeout: float = 60) -> bytes:
    r = requests.post(
        f"{api_base_url()}/api/report",
        json={"results": results, "analysis": analysis},
        timeout=timeout,
    )
    r.raise_for_status()
    return r.content
