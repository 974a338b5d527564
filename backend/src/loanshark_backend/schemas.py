from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ──────────────────────────────────────────────────────────────────────────────
# Wire models use camelCase keys (the UI and the LLM prompts speak camelCase),
# Python code uses snake_case attributes.


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────────────────────────────────────
# 1) Form 1040 extraction record

class TaxReturnRecord(CamelModel):
    """Fields extracted from an IRS Form 1040. Every value is kept as text."""

    # Taxpayer
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    social_security_number: Optional[str] = None
    spouse_first_name: Optional[str] = None
    spouse_last_name: Optional[str] = None
    spouse_social_security_number: Optional[str] = None

    # Address
    home_address: Optional[str] = None
    apartment_number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    foreign_country: Optional[str] = None
    foreign_province: Optional[str] = None
    foreign_postal_code: Optional[str] = None

    # Filing status
    filing_status: Optional[str] = Field(
        None,
        description="single, married_jointly, married_separately, head_household or qualifying_widow",
    )
    qualifying_person_name: Optional[str] = None
    presidential_campaign_you: Optional[str] = None
    presidential_campaign_spouse: Optional[str] = None

    # Exemptions
    exemption_yourself: Optional[str] = None
    exemption_spouse: Optional[str] = None
    total_exemptions: Optional[str] = None

    # Income
    wages_salaries_tips: Optional[str] = Field(None, description="Line 7")
    taxable_interest: Optional[str] = None
    tax_exempt_interest: Optional[str] = None
    ordinary_dividends: Optional[str] = None
    qualified_dividends: Optional[str] = None
    business_income: Optional[str] = Field(None, description="Line 12")
    rental_real_estate: Optional[str] = Field(None, description="Line 17")
    total_income: Optional[str] = Field(None, description="Line 22")
    adjusted_gross_income: Optional[str] = Field(None, description="Line 37")

    # Tax and credits
    standard_deduction: Optional[str] = Field(None, description="Line 40")
    exemptions_amount: Optional[str] = Field(None, description="Line 42")
    taxable_income: Optional[str] = Field(None, description="Line 43")
    tax: Optional[str] = Field(None, description="Line 44")

    # Payments / refund
    federal_income_tax_withheld: Optional[str] = Field(None, description="Line 64")
    overpaid_amount: Optional[str] = Field(None, description="Line 75")
    refund_amount: Optional[str] = None
    routing_number: Optional[str] = None
    account_type: Optional[str] = Field(None, description="checking or savings")
    account_number: Optional[str] = None

    # Designee / signature
    third_party_designee: Optional[str] = None
    taxpayer_occupation: Optional[str] = None
    spouse_occupation: Optional[str] = None
    daytime_phone: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _numbers_as_text(cls, v):
        # models return money as numbers even when asked for text
        if isinstance(v, bool):
            return "yes" if v else "no"
        if isinstance(v, (int, float)):
            if isinstance(v, float) and v.is_integer():
                return str(int(v))
            return str(v)
        return v

    def to_form_data(self) -> Dict[str, str]:
        """camelCase mapping with empty strings for missing values (form-ready)."""
        return {k: (v if v is not None else "") for k, v in self.model_dump(by_alias=True).items()}


# ──────────────────────────────────────────────────────────────────────────────
# 2) DTI underwriting analysis

Qualification = Literal["QUALIFIED", "REQUIRES_REVIEW", "NOT_QUALIFIED"]


class UnderwritingAnalysis(CamelModel):
    dti_value: float = 0.0
    qualification: Qualification
    explanation: str = ""
    confidence: float = 0.0
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("dti_value", mode="before")
    @classmethod
    def _parse_percent(cls, v):
        if isinstance(v, str):
            cleaned = v.replace("%", "").replace(",", "").strip()
            return float(cleaned) if cleaned else 0.0
        return v

    @field_validator("qualification", mode="before")
    @classmethod
    def _normalize_qualification(cls, v):
        if isinstance(v, str):
            return v.strip().upper().replace(" ", "_").replace("-", "_")
        return v

    @field_validator("risk_factors", "recommendations", mode="before")
    @classmethod
    def _listify(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class AnalyzeRequest(CamelModel):
    document_data: Optional[Any] = None
    underwriting_rules: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# 3) Document AI + Gemini proxy responses

class DocumentPage(CamelModel):
    page_number: Optional[int] = None
    width: Optional[float] = None
    height: Optional[float] = None
    confidence: Optional[float] = None


class DocumentEntity(CamelModel):
    type: Optional[str] = None
    mention_text: Optional[str] = None
    confidence: Optional[float] = None


class ProcessedDocument(CamelModel):
    text: Optional[str] = None
    pages: List[DocumentPage] = Field(default_factory=list)
    entities: List[DocumentEntity] = Field(default_factory=list)


class GeminiPdfResponse(CamelModel):
    summary: str = "PDF analyzed by Gemini"
    file_name: str
    file_size: int
    content_type: Optional[str] = None
    gemini: str


# ──────────────────────────────────────────────────────────────────────────────
# 4) Wizard results + report request

class AnalysisResults(CamelModel):
    total_files: int
    processed_files: int
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    missing_fields: List[str] = Field(default_factory=list)
    confidence: int = 95
    document_type: str = "IRS Form 1040 (2017)"


class ReportRequest(CamelModel):
    results: AnalysisResults
    analysis: Optional[UnderwritingAnalysis] = None
