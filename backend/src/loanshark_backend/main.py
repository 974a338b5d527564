from __future__ import annotations

import io
import json
import logging
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError
from starlette.concurrency import run_in_threadpool

from loanshark_backend import document_ai
from loanshark_backend.extraction import (
    document_to_markdown,
    extract_tax_record,
    pdf_text_to_markdown,
    summarize_pdf_with_gemini,
)
from loanshark_backend.generate_underwriting_report import build_underwriting_report
from loanshark_backend.schemas import (
    AnalyzeRequest,
    GeminiPdfResponse,
    ProcessedDocument,
    ReportRequest,
    UnderwritingAnalysis,
)
from loanshark_backend.settings import Settings, get_settings
from loanshark_backend.underwriting import analyze_document
from loanshark_backend.wizard import ACCEPTED_TYPES, guess_content_type

# Load environment variables (provider SDKs read them directly)
load_dotenv()

logger = logging.getLogger(__name__)

SERVICE_NAME = "LoanShark Underwriting API"
SERVICE_VERSION = "1.0.0"


# ──────────────────────────────────────────────────────────────────────────────
# 1) Persistence helpers

def ensure_storage_dir(storage_dir: str) -> Path:
    storage = Path(storage_dir).resolve()
    storage.mkdir(parents=True, exist_ok=True)
    return storage


SAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def has_document_data(value: Any) -> bool:
    # empty objects and lists still count as data; empty scalars do not
    if value is None:
        return False
    if isinstance(value, (str, int, float, bool)):
        return bool(value)
    return True


def safe_stem(filename: str) -> str:
    stem = Path(filename).stem
    stem = SAFE_CHARS.sub("_", stem).strip("_")
    if not stem:
        stem = "document"
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{stem}-{ts}"


def count_pdf_pages(pdf_bytes: bytes) -> Optional[int]:
    try:
        return len(PdfReader(io.BytesIO(pdf_bytes), strict=False).pages)
    except (PdfReadError, ValueError) as e:
        logger.warning("Could not read PDF page count: %s", e)
        return None


async def read_upload(file: Optional[UploadFile], settings: Settings, missing_detail: str) -> bytes:
    if file is None:
        raise HTTPException(status_code=400, detail=missing_detail)
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail=missing_detail)
    if len(payload) > settings.max_upload_bytes:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB")
    return payload


# ──────────────────────────────────────────────────────────────────────────────
# 2) Extraction pipeline (document -> Markdown -> Form 1040 JSON)

async def process_file(
    file: UploadFile,
    settings: Settings,
    save_markdown: bool,
) -> dict:
    payload = await read_upload(file, settings, "No file provided")
    filename = file.filename or "document.pdf"
    content_type = guess_content_type(filename, file.content_type)
    if content_type not in ACCEPTED_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type")

    storage = ensure_storage_dir(settings.storage_dir)
    base = safe_stem(filename)
    suffix = Path(filename).suffix.lower() or ACCEPTED_TYPES[content_type][0]
    upload_path = storage / f"{base}{suffix}"
    upload_path.write_bytes(payload)

    is_pdf = content_type == "application/pdf"
    page_count = count_pdf_pages(payload) if is_pdf else 1

    # 1) Document -> Markdown
    if settings.landingai_api_key or not is_pdf:
        method = "landingai"
        with tempfile.TemporaryDirectory() as tmpdir:
            document_path = Path(tmpdir) / f"{base}{suffix}"
            document_path.write_bytes(payload)
            markdown_text = await run_in_threadpool(
                document_to_markdown,
                document_path,
                settings.landing_model,
                settings.landingai_api_key,
            )
    else:
        method = "pdfplumber"
        logger.info("LANDINGAI_API_KEY not set, using local text extraction for %s", filename)
        markdown_text = await run_in_threadpool(pdf_text_to_markdown, payload)

    if not markdown_text.strip():
        raise HTTPException(
            status_code=422, detail=f"No text could be extracted from {filename}"
        )

    # 2) Markdown -> JSON
    record = await extract_tax_record(
        markdown_text=markdown_text,
        source_file=filename,
        gemini_model=settings.gemini_model,
        google_api_key=settings.google_api_key,
    )
    data = record.to_form_data()

    # 3) Persist outputs
    json_path = storage / f"{base}.json"
    json_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    md_path = None
    if save_markdown:
        md_path = storage / f"{base}.md"
        md_path.write_text(markdown_text, encoding="utf-8")

    logger.info("Extracted %s via %s (%s pages)", filename, method, page_count)
    return {
        "source_file": filename,
        "content_type": content_type,
        "page_count": page_count,
        "extraction_method": method,
        "json_data": data,
        "json_path": str(json_path),
        "markdown_path": str(md_path) if md_path else None,
        "upload_path": str(upload_path),
    }


# ──────────────────────────────────────────────────────────────────────────────
# 3) FastAPI app

app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
@app.get("/api/health")
async def root():
    """Health check endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "healthy",
    }


@app.post("/api/process-document", response_model=ProcessedDocument)
async def process_document_endpoint(
    file: Optional[UploadFile] = File(None, description="PDF, JPEG or PNG document"),
    settings: Settings = Depends(get_settings),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    mime_type = file.content_type or ""
    if mime_type not in document_ai.SUPPORTED_MIME_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type")

    payload = await file.read()
    if len(payload) > settings.max_upload_bytes:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB")

    try:
        return await run_in_threadpool(document_ai.process_document, payload, mime_type, settings)
    except (google_exceptions.Unauthenticated, google_auth_exceptions.DefaultCredentialsError) as e:
        logger.error("Document AI authentication failed: %s", e)
        raise HTTPException(
            status_code=401,
            detail="Authentication error. Please check your Google Cloud credentials.",
        ) from e
    except google_exceptions.PermissionDenied as e:
        logger.error("Document AI permission denied: %s", e)
        raise HTTPException(
            status_code=403,
            detail="Permission denied. Please check your Google Cloud permissions.",
        ) from e
    except Exception as e:  # noqa: BLE001
        logger.exception("Error processing document")
        raise HTTPException(status_code=500, detail="Failed to process document") from e


@app.post("/api/gemini-pdf", response_model=GeminiPdfResponse)
async def gemini_pdf_endpoint(
    file: Optional[UploadFile] = File(None, description="PDF file"),
    settings: Settings = Depends(get_settings),
):
    payload = await read_upload(file, settings, "No PDF file uploaded")
    if not settings.google_api_key:
        raise HTTPException(status_code=500, detail="GEMINI_API_KEY is not set in environment")

    try:
        text = await run_in_threadpool(
            summarize_pdf_with_gemini,
            payload,
            settings.gemini_pdf_model,
            settings.google_api_key,
        )
    except Exception as e:  # noqa: BLE001
        logger.exception("Error in Gemini analysis")
        raise HTTPException(status_code=500, detail="Error processing PDF with Gemini") from e

    return GeminiPdfResponse(
        file_name=file.filename or "uploaded.pdf",
        file_size=len(payload),
        content_type=file.content_type,
        gemini=text,
    )


@app.post("/api/cloudflare-ai/analyze", response_model=UnderwritingAnalysis)
async def cloudflare_analyze_endpoint(
    request: AnalyzeRequest,
    settings: Settings = Depends(get_settings),
):
    if not has_document_data(request.document_data):
        raise HTTPException(status_code=400, detail="Document data is required")

    try:
        return await run_in_threadpool(
            analyze_document,
            request.document_data,
            settings,
            request.underwriting_rules,
        )
    except Exception as e:  # noqa: BLE001
        logger.exception("Error in AI analysis")
        raise HTTPException(status_code=500, detail="Failed to analyze document") from e


@app.post("/api/extract", response_class=JSONResponse)
async def extract_endpoint(
    file: Optional[UploadFile] = File(None, description="Form 1040 as PDF or image"),
    save_markdown: bool = Query(True, description="Persist markdown alongside JSON"),
    include_paths: bool = Query(True, description="Return saved file paths"),
    settings: Settings = Depends(get_settings),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    try:
        result = await process_file(file, settings, save_markdown)
    except HTTPException:
        raise
    except Exception as e:  # noqa: BLE001
        logger.exception("Extraction failed for %s", file.filename)
        raise HTTPException(status_code=500, detail=str(e)) from e

    payload = {
        "meta": {
            "pipeline": f"{result['extraction_method']}_to_md -> gemini_md_to_json",
            "landing_model": settings.landing_model,
            "gemini_model": settings.gemini_model,
            "saved_to": settings.storage_dir,
        },
        "file": result
        if include_paths
        else {"source_file": result["source_file"], "json_data": result["json_data"]},
    }
    return JSONResponse(payload)


@app.post("/api/report")
async def report_endpoint(request: ReportRequest):
    buffer = io.BytesIO()
    try:
        await run_in_threadpool(
            build_underwriting_report,
            request.results.model_dump(by_alias=True),
            request.analysis.model_dump(by_alias=True) if request.analysis else None,
            buffer,
        )
    except Exception as e:  # noqa: BLE001
        logger.exception("Report generation failed")
        raise HTTPException(status_code=500, detail=f"Report generation failed: {e}") from e

    filename = f"underwriting_report_{datetime.now():%Y%m%d-%H%M%S}.pdf"
    return Response(
        content=buffer.getvalue(),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ──────────────────────────────────────────────────────────────────────────────
# 4) Main entry point (for running with uvicorn)

def main():
    """
    Main entry point for the LoanShark API server.
    Reads configuration from environment variables / .env.
    """
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.api_log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "loanshark_backend.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.api_log_level,
    )


if __name__ == "__main__":
    main()
