"""
Form definitions and helpers shared by the Streamlit wizard and the report.

Two kinds of forms are rendered:

* section forms: fixed field sections (Form 1040, applicant profile) with
  simple validation rules;
* the auto-form: any nested JSON value, rendered recursively.
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

PathKey = Union[str, int]
FieldPath = Tuple[PathKey, ...]

LONG_TEXT_THRESHOLD = 60
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    kind: Literal["input", "select"] = "input"
    options: Tuple[Tuple[str, str], ...] = ()
    placeholder: str = ""
    description: str = ""
    min_length: int = 0
    error: str = ""
    email: bool = False


@dataclass(frozen=True)
class FormSection:
    title: str
    fields: Tuple[FormField, ...] = field(default_factory=tuple)


YES_NO = (("yes", "Yes"), ("no", "No"))

# ──────────────────────────────────────────────────────────────────────────────
# 1) Form 1040 sections

TAX_FORM_SECTIONS: Tuple[FormSection, ...] = (
    FormSection(
        "Taxpayer Personal Information",
        (
            FormField("firstName", "First Name", placeholder="e.g., Soledad",
                      description="Taxpayer's first name", min_length=1, error="First name required"),
            FormField("lastName", "Last Name", placeholder="e.g., Garcia",
                      description="Taxpayer's last name", min_length=1, error="Last name required"),
            FormField("socialSecurityNumber", "Social Security Number", placeholder="e.g., 101782547",
                      description="Taxpayer's SSN", min_length=9, error="SSN must have 9 digits"),
            FormField("spouseFirstName", "Spouse First Name", placeholder="Spouse's first name",
                      description="Spouse's first name (if applicable)"),
            FormField("spouseLastName", "Spouse Last Name", placeholder="Spouse's last name",
                      description="Spouse's last name (if applicable)"),
            FormField("spouseSocialSecurityNumber", "Spouse SSN", placeholder="Spouse's SSN",
                      description="Spouse's Social Security Number"),
        ),
    ),
    FormSection(
        "Address",
        (
            FormField("homeAddress", "Home Address", placeholder="e.g., 1600 Pennsylvania Avenue NW",
                      min_length=5, error="Address required"),
            FormField("apartmentNumber", "Apartment Number"),
            FormField("city", "City", placeholder="e.g., Washington", min_length=1, error="City required"),
            FormField("state", "State", placeholder="e.g., DC", min_length=1, error="State required"),
            FormField("zipCode", "ZIP Code", placeholder="e.g., 20500", min_length=5, error="ZIP code required"),
            FormField("foreignCountry", "Foreign Country"),
            FormField("foreignProvince", "Foreign Province/State"),
            FormField("foreignPostalCode", "Foreign Postal Code"),
        ),
    ),
    FormSection(
        "Filing Status",
        (
            FormField(
                "filingStatus",
                "Filing Status",
                kind="select",
                options=(
                    ("single", "Single"),
                    ("married_jointly", "Married Filing Jointly"),
                    ("married_separately", "Married Filing Separately"),
                    ("head_household", "Head of Household"),
                    ("qualifying_widow", "Qualifying Widow(er)"),
                ),
                min_length=1,
                error="Filing status required",
            ),
            FormField("qualifyingPersonName", "Qualifying Person Name"),
            FormField("presidentialCampaignYou", "Presidential Campaign - You", kind="select", options=YES_NO),
            FormField("presidentialCampaignSpouse", "Presidential Campaign - Spouse", kind="select", options=YES_NO),
        ),
    ),
    FormSection(
        "Exemptions",
        (
            FormField("exemptionYourself", "Personal Exemption", kind="select", options=YES_NO),
            FormField("exemptionSpouse", "Spouse Exemption", kind="select", options=YES_NO),
            FormField("totalExemptions", "Total Exemptions"),
        ),
    ),
    FormSection(
        "Income",
        (
            FormField("wagesSalariesTips", "Wages, Salaries, Tips", description="Line 7"),
            FormField("taxableInterest", "Taxable Interest", description="Line 8a"),
            FormField("taxExemptInterest", "Tax-Exempt Interest", description="Line 8b"),
            FormField("ordinaryDividends", "Ordinary Dividends", description="Line 9a"),
            FormField("qualifiedDividends", "Qualified Dividends", description="Line 9b"),
            FormField("businessIncome", "Business Income", description="Line 12"),
            FormField("rentalRealEstate", "Rental Real Estate", description="Line 17"),
            FormField("totalIncome", "Total Income", description="Line 22"),
        ),
    ),
    FormSection(
        "Adjusted Gross Income",
        (FormField("adjustedGrossIncome", "Adjusted Gross Income", description="Line 37"),),
    ),
    FormSection(
        "Tax and Credits",
        (
            FormField("standardDeduction", "Standard Deduction", description="Line 40"),
            FormField("exemptionsAmount", "Exemptions Amount", description="Line 42"),
            FormField("taxableIncome", "Taxable Income", description="Line 43"),
            FormField("tax", "Tax", description="Line 44"),
        ),
    ),
    FormSection(
        "Payments",
        (FormField("federalIncomeTaxWithheld", "Federal Income Tax Withheld", description="Line 64"),),
    ),
    FormSection(
        "Refund or Amount Owed",
        (
            FormField("overpaidAmount", "Overpaid Amount", description="Line 75"),
            FormField("refundAmount", "Refund Amount", description="Line 76a"),
            FormField("routingNumber", "Routing Number"),
            FormField("accountType", "Account Type", kind="select",
                      options=(("checking", "Checking"), ("savings", "Savings"))),
            FormField("accountNumber", "Account Number"),
        ),
    ),
    FormSection(
        "Third Party Designee and Signature",
        (
            FormField("thirdPartyDesignee", "Third Party Designee?", kind="select", options=YES_NO),
            FormField("taxpayerOccupation", "Taxpayer Occupation"),
            FormField("spouseOccupation", "Spouse Occupation"),
            FormField("daytimePhone", "Daytime Phone", placeholder="Daytime phone",
                      description="Daytime phone number"),
        ),
    ),
)

# ──────────────────────────────────────────────────────────────────────────────
# 2) Applicant profile sections

APPLICANT_FORM_SECTIONS: Tuple[FormSection, ...] = (
    FormSection(
        "Personal Information",
        (
            FormField("firstName", "First Name", min_length=2, error="First name must have at least 2 characters"),
            FormField("lastName", "Last Name", min_length=2, error="Last name must have at least 2 characters"),
            FormField("middleName", "Middle Name"),
            FormField("birthDate", "Date of Birth", placeholder="YYYY-MM-DD", min_length=1,
                      error="Select a date of birth"),
            FormField(
                "maritalStatus",
                "Marital Status",
                kind="select",
                options=(
                    ("single", "Single"),
                    ("married", "Married"),
                    ("divorced", "Divorced"),
                    ("widowed", "Widowed"),
                    ("separated", "Separated"),
                ),
                min_length=1,
                error="Select a marital status",
            ),
        ),
    ),
    FormSection(
        "Contact Information",
        (
            FormField("email", "Email Address", min_length=1, error="Enter a valid email", email=True),
            FormField("phone", "Phone Number", min_length=10, error="Phone must have at least 10 digits"),
            FormField("alternatePhone", "Alternate Phone"),
        ),
    ),
    FormSection(
        "Address",
        (
            FormField("address", "Address", min_length=5, error="Address must have at least 5 characters"),
            FormField("city", "City", min_length=2, error="City must have at least 2 characters"),
            FormField("state", "State/Province", min_length=2, error="State must have at least 2 characters"),
            FormField("zipCode", "Postal Code", min_length=3, error="Postal code must have at least 3 characters"),
            FormField(
                "country",
                "Country",
                kind="select",
                options=(("usa", "United States"), ("mexico", "Mexico"), ("canada", "Canada"), ("other", "Other")),
                min_length=1,
                error="Select a country",
            ),
        ),
    ),
    FormSection(
        "Identity Document",
        (
            FormField(
                "documentType",
                "Document Type",
                kind="select",
                options=(
                    ("id_card", "Identity Card"),
                    ("passport", "Passport"),
                    ("drivers_license", "Driver's License"),
                    ("other", "Other"),
                ),
                min_length=1,
                error="Select a document type",
            ),
            FormField("documentNumber", "Document Number", min_length=5,
                      error="Document number must have at least 5 characters"),
            FormField("documentIssueDate", "Issue Date"),
            FormField("documentExpiryDate", "Expiry Date"),
        ),
    ),
    FormSection(
        "Employment",
        (
            FormField("occupation", "Occupation", min_length=2, error="Occupation must have at least 2 characters"),
            FormField("employer", "Employer"),
            FormField("jobTitle", "Job Title"),
            FormField(
                "employmentStatus",
                "Employment Status",
                kind="select",
                options=(
                    ("employed", "Employed"),
                    ("self-employed", "Self-Employed"),
                    ("unemployed", "Unemployed"),
                    ("student", "Student"),
                    ("retired", "Retired"),
                ),
            ),
            FormField("monthlyIncome", "Monthly Income"),
        ),
    ),
)

# Results-step labels for the common identity keys
FIELD_LABELS: Dict[str, str] = {
    "name": "Full Name",
    "email": "Email Address",
    "phone": "Phone Number",
    "address": "Address",
    "documentType": "Document Type",
    "documentNumber": "Document Number",
    "birthDate": "Date of Birth",
    "occupation": "Occupation",
}

# ──────────────────────────────────────────────────────────────────────────────
# 3) Sample Form 1040

SAMPLE_FILE_NAME = "IRS_Form_1040_Sample.pdf"
SAMPLE_FILE_ID = "sample-1040"

SAMPLE_TAX_RETURN: Dict[str, str] = {
    "firstName": "Soledad",
    "lastName": "Garcia",
    "socialSecurityNumber": "101782547",
    "spouseFirstName": "",
    "spouseLastName": "",
    "spouseSocialSecurityNumber": "",
    "homeAddress": "1600 Pennsylvania Avenue NW",
    "apartmentNumber": "",
    "city": "Washington",
    "state": "DC",
    "zipCode": "20500",
    "foreignCountry": "",
    "foreignProvince": "",
    "foreignPostalCode": "",
    "filingStatus": "single",
    "qualifyingPersonName": "",
    "presidentialCampaignYou": "",
    "presidentialCampaignSpouse": "",
    "exemptionYourself": "yes",
    "exemptionSpouse": "",
    "totalExemptions": "1",
    "wagesSalariesTips": "91118",
    "businessIncome": "91118",
    "rentalRealEstate": "1118",
    "totalIncome": "92236",
    "adjustedGrossIncome": "91118",
    "standardDeduction": "12700",
    "exemptionsAmount": "8100",
    "taxableIncome": "70318",
    "tax": "10374",
    "federalIncomeTaxWithheld": "11478",
    "overpaidAmount": "1104",
    "taxpayerOccupation": "POTUS",
}

# ──────────────────────────────────────────────────────────────────────────────
# 4) Helpers


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def humanize_key(key: str) -> str:
    """``wagesSalariesTips`` / ``wages_salaries_tips`` -> ``Wages Salaries Tips``."""
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", key).replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


_SECTION_LABELS: Dict[str, str] = {
    f.name: f.label for section in APPLICANT_FORM_SECTIONS + TAX_FORM_SECTIONS for f in section.fields
}


def field_label(key: str) -> str:
    return FIELD_LABELS.get(key) or _SECTION_LABELS.get(key) or humanize_key(key)


def section_field_names(sections: Sequence[FormSection]) -> List[str]:
    return [f.name for section in sections for f in section.fields]


def initial_values(sections: Sequence[FormSection], data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Form values for ``sections`` pre-filled from ``data``; extra keys in ``data`` are kept."""
    data = data or {}
    values = {k: ("" if v is None else v) for k, v in data.items()}
    for name in section_field_names(sections):
        value = data.get(name)
        values[name] = "" if value is None else str(value)
    return values


def validate_sections(sections: Sequence[FormSection], values: Dict[str, Any]) -> Dict[str, str]:
    """Return ``{field name: error message}`` for every rule that fails."""
    errors: Dict[str, str] = {}
    for section in sections:
        for f in section.fields:
            value = values.get(f.name)
            text = "" if value is None else str(value).strip()
            if f.min_length and len(text) < f.min_length:
                errors[f.name] = f.error or f"{f.label} must have at least {f.min_length} characters"
            elif f.email and text and not EMAIL_PATTERN.match(text):
                errors[f.name] = f.error or "Enter a valid email"
    return errors


def missing_fields(data: Dict[str, Any]) -> List[str]:
    return [key for key, value in data.items() if is_empty(value)]


def non_empty_items(data: Dict[str, Any], limit: int = 12) -> List[Tuple[str, Any]]:
    return [(k, v) for k, v in data.items() if not is_empty(v)][:limit]


def data_digest(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if not data:
        return None
    parts = []
    if data.get("firstName") and data.get("lastName"):
        parts.append(f"{data['firstName']} {data['lastName']}")
    if data.get("totalIncome"):
        parts.append(f"Income: ${data['totalIncome']}")
    if data.get("tax"):
        parts.append(f"Tax: ${data['tax']}")
    return " • ".join(parts) if parts else "Data extracted"


def is_flat_record(data: Any) -> bool:
    """True when every value is a scalar, i.e. the record fits a section form."""
    return isinstance(data, dict) and all(not isinstance(v, (dict, list)) for v in data.values())


# ── auto-form ────────────────────────────────────────────────────────────────

def is_object(value: Any) -> bool:
    return isinstance(value, dict)


def is_long_text(value: Any) -> bool:
    return isinstance(value, str) and len(value) > LONG_TEXT_THRESHOLD


def split_object_keys(data: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    """Object-valued keys first (rendered as sections), then everything else."""
    objects = [k for k, v in data.items() if is_object(v)]
    others = [k for k, v in data.items() if not is_object(v)]
    return objects, others


def path_label(path: FieldPath) -> str:
    out = ""
    for part in path:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else part
    return out


def flatten_value(value: Any, path: FieldPath = ()) -> List[Tuple[FieldPath, Any]]:
    """Leaves of a nested value as ``(path, scalar)`` pairs, in auto-form order."""
    if isinstance(value, dict):
        objects, others = split_object_keys(value)
        leaves: List[Tuple[FieldPath, Any]] = []
        for key in objects + others:
            leaves.extend(flatten_value(value[key], path + (key,)))
        return leaves
    if isinstance(value, list):
        leaves = []
        for idx, item in enumerate(value):
            leaves.extend(flatten_value(item, path + (idx,)))
        return leaves
    return [(path, value)]


def set_at_path(value: Any, path: FieldPath, new: Any) -> Any:
    """Copy of ``value`` with the leaf at ``path`` replaced by ``new``."""
    if not path:
        return new
    updated = copy.copy(value)
    head, rest = path[0], path[1:]
    updated[head] = set_at_path(value[head], rest, new)
    return updated


def coerce_like(original: Any, text: str) -> Any:
    """Turn edited text back into the original scalar's type where possible."""
    if isinstance(original, bool):
        return text.strip().lower() in {"true", "yes", "1"}
    if isinstance(original, int):
        try:
            return int(text)
        except ValueError:
            return text
    if isinstance(original, float):
        try:
            return float(text)
        except ValueError:
            return text
    if original is None and text == "":
        return None
    return text
