from __future__ import annotations

import pytest
import requests

from loanshark_backend import client
from loanshark_backend.settings import Settings


class FakeResponse:
    def __init__(self, payload=None, status_code=200, content=b""):
        self._payload = payload
        self.status_code = status_code
        self.content = content

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


@pytest.fixture(autouse=True)
def api_settings(monkeypatch):
    monkeypatch.setattr(client, "get_settings", lambda: Settings(_env_file=None, api_base_url="http://api.test/"))


@pytest.fixture
def recorder(monkeypatch):
    calls = []

    def install(method, response):
        def fake(url, **kwargs):
            calls.append({"url": url, **kwargs})
            return response
        monkeypatch.setattr(client.requests, method, fake)
        return calls

    return install


def test_check_api_health(recorder):
    calls = recorder("get", FakeResponse({"status": "healthy"}))
    assert client.check_api_health() is True
    assert calls[0]["url"] == "http://api.test/api/health"


def test_check_api_health_when_down(monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(client.requests, "get", refuse)
    assert client.check_api_health() is False


def test_extract_document(recorder):
    calls = recorder("post", FakeResponse({"file": {"source_file": "a.pdf", "json_data": {"firstName": "Ann"}}}))

    data = client.extract_document("a.pdf", b"%PDF", "application/pdf")

    assert data == {"firstName": "Ann"}
    assert calls[0]["url"] == "http://api.test/api/extract"
    assert calls[0]["files"] == {"file": ("a.pdf", b"%PDF", "application/pdf")}
    assert calls[0]["params"] == {"include_paths": "false"}


def test_analyze_dti_body(recorder):
    calls = recorder("post", FakeResponse({"qualification": "QUALIFIED"}))

    assert client.analyze_dti({"income": 1}, "Max 40%") == {"qualification": "QUALIFIED"}
    assert calls[0]["json"] == {"documentData": {"income": 1}, "underwritingRules": "Max 40%"}

    client.analyze_dti({"income": 1})
    assert calls[1]["json"] == {"documentData": {"income": 1}}


def test_http_errors_carry_the_server_detail(recorder):
    recorder("post", FakeResponse({"detail": "Document data is required"}, status_code=400))

    with pytest.raises(requests.HTTPError) as exc:
        client.analyze_dti(None)

    assert client.error_detail(exc.value) == "Document data is required"


def test_error_detail_fallbacks():
    assert client.error_detail(requests.ConnectionError("refused")) == client.FALLBACK_ERROR
    no_json = requests.HTTPError("500", response=FakeResponse(None, status_code=500))
    assert client.error_detail(no_json) == client.FALLBACK_ERROR


def test_download_report(recorder):
    calls = recorder("post", FakeResponse(content=b"%PDF-1.4"))

    assert client.download_report({"totalFiles": 1}, None) == b"%PDF-1.4"
    assert calls[0]["url"] == "http://api.test/api/report"
    assert calls[0]["json"] == {"results": {"totalFiles": 1}, "analysis": None}


def test_document_ai_and_gemini_helpers(recorder):
    calls = recorder("post", FakeResponse({"text": "hello"}))

    assert client.process_document("a.png", b"png", "image/png") == {"text": "hello"}
    assert client.gemini_pdf("a.pdf", b"%PDF") == {"text": "hello"}
    assert [c["url"] for c in calls] == [
        "http://api.test/api/process-document",
        "http://api.test/api/gemini-pdf",
    ]
    assert calls[1]["files"]["file"][2] == "application/pdf"
