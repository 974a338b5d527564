from __future__ import annotations

from types import SimpleNamespace

import pytest

from conftest import make_settings
from loanshark_backend import document_ai
from loanshark_backend.document_ai import DocumentAIConfigError, process_document


class FakeDocumentAIClient:
    instances = []

    def __init__(self, client_options=None):
        self.client_options = client_options
        self.requests = []
        FakeDocumentAIClient.instances.append(self)

    def processor_path(self, project, location, processor):
        return f"projects/{project}/locations/{location}/processors/{processor}"

    def process_document(self, request):
        self.requests.append(request)
        page = SimpleNamespace(
            page_number=1,
            dimension=SimpleNamespace(width=612.0, height=792.0),
            layout=SimpleNamespace(confidence=0.97),
        )
        entity = SimpleNamespace(type_="total_income", mention_text="92236", confidence=0.88)
        return SimpleNamespace(document=SimpleNamespace(text="Form 1040", pages=[page], entities=[entity]))


def test_missing_configuration(tmp_path):
    settings = make_settings(tmp_path, document_ai_processor_id=None)
    with pytest.raises(DocumentAIConfigError, match="Missing required environment variables"):
        process_document(b"%PDF", "application/pdf", settings)


def test_process_document_maps_pages_and_entities(monkeypatch, tmp_path):
    FakeDocumentAIClient.instances.clear()
    monkeypatch.setattr(document_ai.documentai, "DocumentProcessorServiceClient", FakeDocumentAIClient)
    settings = make_settings(tmp_path, google_cloud_location="eu")

    result = process_document(b"%PDF", "application/pdf", settings)

    assert result.text == "Form 1040"
    assert result.pages[0].page_number == 1
    assert result.pages[0].confidence == pytest.approx(0.97)
    assert result.entities[0].type == "total_income"
    assert result.entities[0].mention_text == "92236"

    fake = FakeDocumentAIClient.instances[0]
    assert fake.client_options.api_endpoint == "eu-documentai.googleapis.com"
    request = fake.requests[0]
    assert request.name == "projects/demo-project/locations/eu/processors/proc-1"
    assert request.skip_human_review is True
    assert request.raw_document.mime_type == "application/pdf"
    assert request.raw_document.content == b"%PDF"
