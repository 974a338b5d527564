from __future__ import annotations

import json

import pytest
import requests

from conftest import make_settings
from loanshark_backend import underwriting
from loanshark_backend.schemas import UnderwritingAnalysis
from loanshark_backend.underwriting import (
    DEFAULT_UNDERWRITING_RULE,
    analyze_document,
    build_system_prompt,
    call_cloudflare_ai,
    create_analysis_prompt,
    fallback_analysis,
    parse_ai_payload,
)

VERDICT = {
    "dtiValue": 39.85,
    "qualification": "QUALIFIED",
    "explanation": "Final DTI Value: 39.85%\nThe borrower qualifies.",
    "confidence": 88,
    "riskFactors": [],
    "recommendations": ["Proceed to closing"],
}


class FakeResponse:
    def __init__(self, payload=None, status_code=200, reason="OK", text=""):
        self._payload = payload
        self.status_code = status_code
        self.reason = reason
        self.text = text or json.dumps(payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


def test_system_prompt_carries_the_default_rule_and_thresholds():
    prompt = build_system_prompt()
    assert DEFAULT_UNDERWRITING_RULE in prompt
    assert "DTI = (Total Monthly Debt Payments / Gross Monthly Income) × 100" in prompt
    assert "Sections 2c and 2d" in prompt
    assert "Final DTI Value: XX.XX%" in prompt
    assert "If DTI > 50% → The borrower does not qualify." in prompt
    assert '"riskFactors"' in prompt


def test_custom_rules_replace_the_default_rule():
    prompt = build_system_prompt("Maximum DTI is 36% for jumbo loans.")
    assert "Maximum DTI is 36% for jumbo loans." in prompt
    assert DEFAULT_UNDERWRITING_RULE not in prompt
    assert build_system_prompt("   ") == build_system_prompt()


def test_analysis_prompt_is_pretty_printed_json():
    data = {"income": {"monthly": 8000}, "debts": [1, 2]}
    assert create_analysis_prompt(data) == json.dumps(data, indent=2)


@pytest.mark.parametrize(
    "envelope",
    [
        {"response": VERDICT},
        {"response": json.dumps(VERDICT)},
        {"result": VERDICT},
        {"result": {"response": json.dumps(VERDICT)}},
        {"result": {"response": "Here you go:\n" + json.dumps(VERDICT) + "\nThanks"}},
    ],
)
def test_parse_ai_payload_shapes(envelope):
    assert parse_ai_payload(envelope) == VERDICT


@pytest.mark.parametrize(
    "envelope,message",
    [
        ({}, "Unexpected response format"),
        ({"response": "no json here"}, "No valid JSON"),
        ({"response": "{not: valid}"}, "Failed to extract JSON"),
        ({"response": "[1, 2]"}, "not an object"),
    ],
)
def test_parse_ai_payload_errors(envelope, message):
    with pytest.raises(ValueError, match=message):
        parse_ai_payload(envelope)


def test_analysis_model_normalizes_loose_values():
    analysis = UnderwritingAnalysis.model_validate(
        {
            "dtiValue": "47.25%",
            "qualification": "requires review",
            "riskFactors": "High revolving debt",
            "recommendations": None,
        }
    )
    assert analysis.dti_value == 47.25
    assert analysis.qualification == "REQUIRES_REVIEW"
    assert analysis.risk_factors == ["High revolving debt"]
    assert analysis.recommendations == []


def test_call_cloudflare_ai_request(monkeypatch, tmp_path):
    calls = {}

    def fake_post(url, headers, json, timeout):
        calls.update(url=url, headers=headers, body=json, timeout=timeout)
        return FakeResponse({"result": {"response": "{}"}, "success": True})

    monkeypatch.setattr(underwriting.requests, "post", fake_post)
    settings = make_settings(tmp_path)

    call_cloudflare_ai("system", "prompt", settings)

    assert calls["url"] == (
        "https://api.cloudflare.com/client/v4/accounts/acct-123"
        "/ai/run/@hf/meta-llama/meta-llama-3-8b-instruct"
    )
    assert calls["headers"]["Authorization"] == "Bearer cf-token"
    body = calls["body"]
    assert body["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "prompt"},
    ]
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 1000
    assert body["response_format"] == {"type": "json_object"}


def test_call_cloudflare_ai_needs_credentials(tmp_path):
    settings = make_settings(tmp_path, cloudflare_api_token=None)
    with pytest.raises(RuntimeError, match="credentials"):
        call_cloudflare_ai("system", "prompt", settings)


def test_call_cloudflare_ai_error_status(monkeypatch, tmp_path):
    monkeypatch.setattr(
        underwriting.requests,
        "post",
        lambda *a, **kw: FakeResponse({"errors": ["nope"]}, status_code=401, reason="Unauthorized"),
    )
    with pytest.raises(RuntimeError, match="401 - Unauthorized"):
        call_cloudflare_ai("system", "prompt", make_settings(tmp_path))


def test_analyze_document_returns_the_model_verdict(monkeypatch, tmp_path):
    seen = {}

    def fake_call(system_prompt, prompt, settings):
        seen["system"] = system_prompt
        seen["prompt"] = prompt
        return {"result": {"response": json.dumps(VERDICT)}}

    monkeypatch.setattr(underwriting, "call_cloudflare_ai", fake_call)

    analysis = analyze_document({"income": 8000}, make_settings(tmp_path), "Max DTI 40%.")

    assert analysis.qualification == "QUALIFIED"
    assert analysis.dti_value == pytest.approx(39.85)
    assert analysis.recommendations == ["Proceed to closing"]
    assert "Max DTI 40%." in seen["system"]
    assert json.loads(seen["prompt"]) == {"income": 8000}


@pytest.mark.parametrize(
    "failure",
    [
        requests.ConnectionError("down"),
        RuntimeError("Cloudflare AI API error: 500 - Server Error"),
        ValueError("No valid JSON found in AI response"),
    ],
)
def test_analyze_document_falls_back(monkeypatch, tmp_path, failure):
    def fake_call(*args):
        raise failure

    monkeypatch.setattr(underwriting, "call_cloudflare_ai", fake_call)

    assert analyze_document({"income": 1}, make_settings(tmp_path)) == fallback_analysis()


def test_analyze_document_falls_back_on_invalid_verdict(monkeypatch, tmp_path):
    monkeypatch.setattr(
        underwriting,
        "call_cloudflare_ai",
        lambda *a: {"response": {"qualification": "MAYBE"}},
    )
    result = analyze_document({"income": 1}, make_settings(tmp_path))
    assert result.model_dump(by_alias=True) == {
        "dtiValue": 0.0,
        "qualification": "REQUIRES_REVIEW",
        "explanation": "AI analysis failed. Manual review required.",
        "confidence": 0.0,
        "riskFactors": ["Unable to perform automated analysis"],
        "recommendations": ["Manual underwriting review required"],
    }
