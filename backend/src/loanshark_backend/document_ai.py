from __future__ import annotations

import logging
from typing import Dict, List

from google.api_core.client_options import ClientOptions
from google.cloud import documentai

from loanshark_backend.schemas import DocumentEntity, DocumentPage, ProcessedDocument
from loanshark_backend.settings import Settings

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES: Dict[str, List[str]] = {
    "application/pdf": [".pdf"],
    "image/jpeg": [".jpg", ".jpeg"],
    "image/png": [".png"],
}


class DocumentAIConfigError(RuntimeError):
    pass


def process_document(content: bytes, mime_type: str, settings: Settings) -> ProcessedDocument:
    """Run a raw document through the configured Document AI processor."""
    project_id = settings.google_cloud_project
    processor_id = settings.document_ai_processor_id
    location = settings.google_cloud_location or "us"
    if not project_id or not processor_id:
        raise DocumentAIConfigError("Missing required environment variables")

    client = documentai.DocumentProcessorServiceClient(
        client_options=ClientOptions(api_endpoint=f"{location}-documentai.googleapis.com")
    )
    request = documentai.ProcessRequest(
        name=client.processor_path(project_id, location, processor_id),
        raw_document=documentai.RawDocument(content=content, mime_type=mime_type),
        skip_human_review=True,
    )
    logger.info("Sending %d bytes (%s) to Document AI processor %s", len(content), mime_type, processor_id)
    result = client.process_document(request=request)
    document = result.document

    return ProcessedDocument(
        text=document.text,
        pages=[
            DocumentPage(
                page_number=page.page_number,
                width=page.dimension.width,
                height=page.dimension.height,
                confidence=page.layout.confidence,
            )
            for page in document.pages
        ],
        entities=[
            DocumentEntity(
                type=entity.type_,
                mention_text=entity.mention_text,
                confidence=entity.confidence,
            )
            for entity in document.entities
        ],
    )
