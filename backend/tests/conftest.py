from __future__ import annotations

import io

import pytest
from fastapi.testclient import TestClient
from reportlab.lib.pagesizes import LETTER
from reportlab.pdfgen import canvas

from loanshark_backend.forms import SAMPLE_TAX_RETURN
from loanshark_backend.main import app
from loanshark_backend.settings import Settings, get_settings


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        google_api_key="test-google-key",
        landingai_api_key=None,
        cloudflare_account_id="acct-123",
        cloudflare_api_token="cf-token",
        google_cloud_project="demo-project",
        google_cloud_location="us",
        document_ai_processor_id="proc-1",
        storage_dir=str(tmp_path / "storage"),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def client(settings):
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def text_pdf() -> bytes:
    """A one-page PDF with a real text layer."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=LETTER)
    pdf.drawString(72, 720, "Form 1040 U.S. Individual Income Tax Return")
    pdf.drawString(72, 700, "Soledad Garcia")
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


@pytest.fixture
def sample_results():
    data = dict(SAMPLE_TAX_RETURN)
    return {
        "totalFiles": 1,
        "processedFiles": 1,
        "extractedData": data,
        "missingFields": [k for k, v in data.items() if not v],
        "confidence": 95,
        "documentType": "IRS Form 1040 (2017)",
    }
