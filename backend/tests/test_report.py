from __future__ import annotations

import io
from datetime import datetime

import pdfplumber

from loanshark_backend.generate_underwriting_report import (
    build_underwriting_report,
    extract_applicant_meta,
    format_money,
)


def report_text(pdf_bytes: bytes) -> str:
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def test_format_money():
    assert format_money("92236") == "$92,236.00"
    assert format_money("$1,104.5") == "$1,104.50"
    assert format_money("") == "—"
    assert format_money("n/a") == "n/a"


def test_extract_applicant_meta(sample_results):
    meta = extract_applicant_meta(sample_results["extractedData"])
    assert meta["applicant"] == "Soledad Garcia"
    assert meta["spouse"] == "—"
    assert meta["address"] == "1600 Pennsylvania Avenue NW Washington, DC 20500"
    assert meta["filing_status"] == "single"
    assert meta["occupation"] == "POTUS"
    assert meta["total_income"] == "$92,236.00"


def test_extract_applicant_meta_for_profile_data():
    meta = extract_applicant_meta({"name": "Ann Lee", "address": "1 Main St", "occupation": "Nurse"})
    assert meta["applicant"] == "Ann Lee"
    assert meta["address"] == "1 Main St"
    assert meta["occupation"] == "Nurse"
    assert extract_applicant_meta(None)["applicant"] == "—"


def test_report_contents(sample_results):
    analysis = {
        "dtiValue": 47.25,
        "qualification": "REQUIRES_REVIEW",
        "explanation": "Final DTI Value: 47.25%",
        "confidence": 80,
        "riskFactors": ["Debt above 43%"],
        "recommendations": ["Check reserves & credit"],
    }
    buffer = io.BytesIO()

    build_underwriting_report(sample_results, analysis, buffer, generated_at=datetime(2024, 5, 1, 9, 30))

    text = report_text(buffer.getvalue())
    assert "Underwriting Evaluation Summary" in text
    assert "Generated At: 2024-05-01 09:30:00" in text
    assert "Soledad Garcia" in text
    assert "REQUIRES REVIEW" in text
    assert "47.25%" in text
    assert "Check reserves & credit" in text
    assert "Information not found" in text


def test_report_without_analysis_or_data():
    buffer = io.BytesIO()
    results = {"totalFiles": 0, "processedFiles": 0, "extractedData": {}, "missingFields": []}

    build_underwriting_report(results, None, buffer)

    text = report_text(buffer.getvalue())
    assert "No AI underwriting analysis was run" in text
    assert "No extracted data." in text


def test_report_to_path(tmp_path, sample_results):
    target = tmp_path / "report.pdf"
    build_underwriting_report(sample_results, None, str(target))
    assert target.read_bytes().startswith(b"%PDF")
