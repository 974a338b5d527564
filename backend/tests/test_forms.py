from __future__ import annotations

from loanshark_backend.forms import (
    APPLICANT_FORM_SECTIONS,
    SAMPLE_TAX_RETURN,
    TAX_FORM_SECTIONS,
    coerce_like,
    data_digest,
    field_label,
    flatten_value,
    humanize_key,
    initial_values,
    is_flat_record,
    is_long_text,
    missing_fields,
    non_empty_items,
    path_label,
    section_field_names,
    set_at_path,
    split_object_keys,
    validate_sections,
)


def test_tax_form_sections_in_order():
    assert [s.title for s in TAX_FORM_SECTIONS] == [
        "Taxpayer Personal Information",
        "Address",
        "Filing Status",
        "Exemptions",
        "Income",
        "Adjusted Gross Income",
        "Tax and Credits",
        "Payments",
        "Refund or Amount Owed",
        "Third Party Designee and Signature",
    ]


def test_sample_return_passes_tax_validation():
    values = initial_values(TAX_FORM_SECTIONS, SAMPLE_TAX_RETURN)
    assert validate_sections(TAX_FORM_SECTIONS, values) == {}


def test_tax_validation_rules():
    values = initial_values(TAX_FORM_SECTIONS, {})
    values.update(socialSecurityNumber="1234", homeAddress="1 A", zipCode="205")

    errors = validate_sections(TAX_FORM_SECTIONS, values)

    assert errors == {
        "firstName": "First name required",
        "lastName": "Last name required",
        "socialSecurityNumber": "SSN must have 9 digits",
        "homeAddress": "Address required",
        "city": "City required",
        "state": "State required",
        "zipCode": "ZIP code required",
        "filingStatus": "Filing status required",
    }


def test_whitespace_does_not_satisfy_required_fields():
    values = dict(SAMPLE_TAX_RETURN, firstName="   ")
    assert validate_sections(TAX_FORM_SECTIONS, values) == {"firstName": "First name required"}


def test_applicant_email_rule():
    values = {
        "firstName": "Soledad",
        "lastName": "Garcia",
        "birthDate": "1980-01-01",
        "maritalStatus": "single",
        "email": "not-an-email",
        "phone": "2025550100",
        "address": "1600 Pennsylvania Ave",
        "city": "Washington",
        "state": "DC",
        "zipCode": "20500",
        "country": "usa",
        "documentType": "passport",
        "documentNumber": "X1234567",
        "occupation": "POTUS",
    }
    assert validate_sections(APPLICANT_FORM_SECTIONS, values) == {"email": "Enter a valid email"}

    values["email"] = "soledad@example.com"
    assert validate_sections(APPLICANT_FORM_SECTIONS, values) == {}


def test_initial_values_fill_every_field_and_keep_extra_keys():
    values = initial_values(TAX_FORM_SECTIONS, {"firstName": "Ann", "custom": 5, "city": None})
    assert set(section_field_names(TAX_FORM_SECTIONS)) <= set(values)
    assert values["firstName"] == "Ann"
    assert values["city"] == ""
    assert values["lastName"] == ""
    assert values["custom"] == 5


def test_missing_fields_in_insertion_order():
    assert missing_fields({"a": "x", "b": "", "c": None, "d": 0, "e": " "}) == ["b", "c", "e"]


def test_non_empty_items_limit():
    items = non_empty_items(SAMPLE_TAX_RETURN)
    assert len(items) == 12
    assert items[0] == ("firstName", "Soledad")
    assert all(value for _, value in items)


def test_data_digest():
    assert data_digest(SAMPLE_TAX_RETURN) == "Soledad Garcia • Income: $92236 • Tax: $10374"
    assert data_digest({"firstName": "Ann"}) == "Data extracted"
    assert data_digest({}) is None
    assert data_digest(None) is None


def test_field_labels():
    assert field_label("email") == "Email Address"
    assert field_label("wagesSalariesTips") == "Wages, Salaries, Tips"
    assert field_label("zipCode") == "ZIP Code"
    assert field_label("someUnknownKey") == "Some Unknown Key"
    assert humanize_key("snake_case_key") == "Snake Case Key"


def test_is_long_text_threshold():
    assert is_long_text("x" * 61) is True
    assert is_long_text("x" * 60) is False
    assert is_long_text(12345) is False


def test_is_flat_record():
    assert is_flat_record(SAMPLE_TAX_RETURN) is True
    assert is_flat_record({"a": {"b": 1}}) is False
    assert is_flat_record(["a"]) is False


def test_flatten_value_puts_objects_first_and_indexes_lists():
    value = {
        "name": "Ann",
        "debts": [{"monthlyPayment": 100}, {"monthlyPayment": 250}],
        "employer": {"name": "Acme", "years": 4},
    }

    objects, others = split_object_keys(value)
    assert objects == ["employer"]
    assert others == ["name", "debts"]

    leaves = flatten_value(value)
    assert [path_label(p) for p, _ in leaves] == [
        "employer.name",
        "employer.years",
        "name",
        "debts[0].monthlyPayment",
        "debts[1].monthlyPayment",
    ]
    assert leaves[-1][1] == 250


def test_set_at_path_does_not_mutate():
    original = {"employer": {"name": "Acme"}, "debts": [{"monthlyPayment": 100}]}

    updated = set_at_path(original, ("debts", 0, "monthlyPayment"), 175)

    assert updated["debts"][0]["monthlyPayment"] == 175
    assert original["debts"][0]["monthlyPayment"] == 100
    assert updated["employer"] == {"name": "Acme"}


def test_coerce_like():
    assert coerce_like(4, "12") == 12
    assert coerce_like(4, "twelve") == "twelve"
    assert coerce_like(1.5, "2.25") == 2.25
    assert coerce_like(True, "no") is False
    assert coerce_like(None, "") is None
    assert coerce_like("a", "b") == "b"
