from __future__ import annotations
import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _find_env_file() -> Optional[str]:
    """
    Find backend/.env robustly:
    - LOANSHARK_ENV_PATH (explicit override) wins
    - CWD/.env or CWD/backend/.env
    - Paths relative to this file, so it works from site-packages too
    """
    override = os.getenv("LOANSHARK_ENV_PATH")
    if override and Path(override).is_file():
        return override

    cwd = Path.cwd()
    candidates = [
        cwd / ".env",
        cwd / "backend" / ".env",
    ]
    here = Path(__file__).resolve()
    candidates += [
        here.parent.parent.parent / ".env",        # .../backend/.env (dev layout)
        here.parent.parent.parent.parent / ".env", # project root .env
    ]
    for p in candidates:
        if p.is_file():
            return str(p)
    return None  # fall back to pure environment variables


class Settings(BaseSettings):
    # Gemini (PDF summaries + Markdown -> JSON extraction)
    google_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-pro"
    gemini_pdf_model: str = "gemini-2.5-flash"

    # LandingAI ADE (document -> Markdown)
    landingai_api_key: Optional[str] = None
    landing_model: str = "dpt-2-latest"

    # Cloudflare Workers AI (DTI qualification)
    cloudflare_account_id: Optional[str] = None
    cloudflare_api_token: Optional[str] = None
    cloudflare_model: str = "@hf/meta-llama/meta-llama-3-8b-instruct"
    cloudflare_timeout: float = 60.0

    # Google Document AI (OCR)
    google_cloud_project: Optional[str] = None
    google_cloud_location: str = "us"
    document_ai_processor_id: Optional[str] = None

    storage_dir: str = "./storage"
    cors_allow_origins: str = "http://localhost:8501,http://localhost:3000"
    max_upload_bytes: int = MAX_UPLOAD_BYTES

    # Streamlit UI -> API
    api_base_url: str = "http://localhost:8000"

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False
    api_log_level: str = "info"

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
