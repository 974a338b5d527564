from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Optional, Union
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from loanshark_backend.forms import field_label, is_empty

logger = logging.getLogger(__name__)


def extract_applicant_meta(extracted_data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    data = extracted_data or {}

    names = [data.get("firstName"), data.get("lastName")]
    applicant = " ".join(n for n in names if n) or data.get("name") or "—"

    spouse_names = [data.get("spouseFirstName"), data.get("spouseLastName")]
    spouse = " ".join(n for n in spouse_names if n) or "—"

    street = data.get("homeAddress") or data.get("address")
    locality = ", ".join(p for p in (data.get("city"), data.get("state")) if p)
    address_parts = [p for p in (street, locality, data.get("zipCode")) if p]
    address = " ".join(address_parts) if address_parts else "—"

    return {
        "applicant": applicant,
        "spouse": spouse,
        "address": address,
        "filing_status": data.get("filingStatus") or "—",
        "occupation": data.get("taxpayerOccupation") or data.get("occupation") or "—",
        "total_income": format_money(data.get("totalIncome")),
        "adjusted_gross_income": format_money(data.get("adjustedGrossIncome")),
    }


# ─────────────────────────────────────────────────────────────
# 1) Styles

styles = getSampleStyleSheet()
H1 = styles["Heading1"]
H2 = styles["Heading2"]
BODY = styles["Normal"]

QUALIFICATION_COLORS = {
    "QUALIFIED": colors.HexColor("#dcfce7"),
    "REQUIRES_REVIEW": colors.HexColor("#fef9c3"),
    "NOT_QUALIFIED": colors.HexColor("#fee2e2"),
}
MISSING_ROW_COLOR = colors.HexColor("#fef9c3")


# ─────────────────────────────────────────────────────────────
# 2) Helper functions

def format_money(value: Any) -> str:
    if is_empty(value):
        return "—"
    try:
        return f"${float(str(value).replace(',', '').replace('$', '')):,.2f}"
    except ValueError:
        return str(value)


def _grid_style(extra: Optional[List[tuple]] = None) -> TableStyle:
    cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("BOX", (0, 0), (-1, -1), 0.5, colors.black),
        ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
    return TableStyle(cmds + (extra or []))


def make_summary_table(meta: Dict[str, str], total_width: float) -> Table:
    rows = [
        ["Applicant", meta.get("applicant", "—")],
        ["Spouse", meta.get("spouse", "—")],
        ["Address", meta.get("address", "—")],
        ["Filing Status", meta.get("filing_status", "—")],
        ["Occupation", meta.get("occupation", "—")],
        ["Total Income", meta.get("total_income", "—")],
        ["Adjusted Gross Income", meta.get("adjusted_gross_income", "—")],
    ]
    table = Table([["Field", "Value"]] + rows, colWidths=[0.3 * total_width, 0.7 * total_width])
    table.setStyle(_grid_style())
    return table


def make_stats_table(results: Dict[str, Any], total_width: float) -> Table:
    rows = [
        ["Document Type", str(results.get("documentType", "—"))],
        ["Files Processed", f"{results.get('processedFiles', 0)} of {results.get('totalFiles', 0)}"],
        ["Extraction Confidence", f"{results.get('confidence', 0)}%"],
        ["Fields Without Information", str(len(results.get("missingFields") or []))],
    ]
    table = Table([["Metric", "Value"]] + rows, colWidths=[0.4 * total_width, 0.6 * total_width])
    table.setStyle(_grid_style())
    return table


def make_verdict_table(analysis: Dict[str, Any], total_width: float) -> Table:
    qualification = analysis.get("qualification", "REQUIRES_REVIEW")
    rows = [
        ["Final DTI Value", f"{float(analysis.get('dtiValue') or 0):.2f}%"],
        ["Qualification", qualification.replace("_", " ")],
        ["Confidence", f"{float(analysis.get('confidence') or 0):.0f}%"],
        ["Explanation", Paragraph(escape(analysis.get("explanation") or "—"), BODY)],
        ["Risk Factors", Paragraph("<br/>".join(escape(r) for r in analysis.get("riskFactors") or ["—"]), BODY)],
        ["Recommendations", Paragraph("<br/>".join(escape(r) for r in analysis.get("recommendations") or ["—"]), BODY)],
    ]
    table = Table([["Item", "Value"]] + rows, colWidths=[0.25 * total_width, 0.75 * total_width])
    highlight = QUALIFICATION_COLORS.get(qualification)
    extra = [("BACKGROUND", (0, 2), (-1, 2), highlight)] if highlight else []
    table.setStyle(_grid_style(extra))
    return table


def make_field_table(results: Dict[str, Any], total_width: float) -> Table:
    extracted = results.get("extractedData") or {}
    missing = set(results.get("missingFields") or [])

    rows: List[List[Any]] = [["Field", "Value"]]
    style_cmds = [("FONTSIZE", (0, 0), (-1, -1), 8), ("LEADING", (0, 0), (-1, -1), 9)]
    for idx, (key, value) in enumerate(extracted.items(), start=1):
        shown = "Information not found" if key in missing or is_empty(value) else str(value)
        rows.append([field_label(key), shown])
        if key in missing:
            style_cmds.append(("BACKGROUND", (0, idx), (-1, idx), MISSING_ROW_COLOR))

    table = Table(rows, colWidths=[0.4 * total_width, 0.6 * total_width], repeatRows=1)
    table.setStyle(_grid_style(style_cmds))
    return table


# ─────────────────────────────────────────────────────────────
# 3) Main report builder

def build_underwriting_report(
    results: Dict[str, Any],
    analysis: Optional[Dict[str, Any]],
    output: Union[str, BinaryIO] = "underwriting_report.pdf",
    generated_at: Optional[datetime] = None,
) -> None:
    """Render the wizard results (and the AI verdict, when present) as a PDF."""
    generated_at = generated_at or datetime.now()

    doc = SimpleDocTemplate(
        output,
        pagesize=LETTER,
        topMargin=0.7 * inch,
        bottomMargin=0.7 * inch,
        leftMargin=0.7 * inch,
        rightMargin=0.7 * inch,
        title="Underwriting Evaluation Summary",
    )
    width = doc.width

    story: List[Any] = []
    story.append(Paragraph("Underwriting Evaluation Summary", H1))
    story.append(Paragraph(f"Generated At: {generated_at:%Y-%m-%d %H:%M:%S}", BODY))
    story.append(Spacer(1, 0.15 * inch))

    story.append(Paragraph("Applicant Summary", H2))
    story.append(make_summary_table(extract_applicant_meta(results.get("extractedData")), width))
    story.append(Spacer(1, 0.2 * inch))

    story.append(Paragraph("Extraction Summary", H2))
    story.append(make_stats_table(results, width))
    story.append(Spacer(1, 0.2 * inch))

    story.append(Paragraph("AI Underwriting Verdict", H2))
    if analysis:
        story.append(make_verdict_table(analysis, width))
    else:
        story.append(Paragraph("No AI underwriting analysis was run for this application.", BODY))
    story.append(Spacer(1, 0.2 * inch))

    story.append(Paragraph("Extracted Fields", H2))
    if results.get("extractedData"):
        story.append(make_field_table(results, width))
    else:
        story.append(Paragraph("No extracted data.", BODY))

    doc.build(story)
    logger.info("Underwriting report created (%d fields)", len(results.get("extractedData") or {}))
