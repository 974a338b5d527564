"""
In-memory state for the upload → analysis → file-manager → results wizard.

Everything here is UI-framework agnostic; ``streamlit_app`` keeps one
``WizardState`` in ``st.session_state`` and renders views over it.
"""
from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any, Callable, Dict, List, Literal, Optional

import requests

from loanshark_backend.client import error_detail
from loanshark_backend.forms import (
    SAMPLE_FILE_ID,
    SAMPLE_FILE_NAME,
    SAMPLE_TAX_RETURN,
    TAX_FORM_SECTIONS,
    initial_values,
    missing_fields,
)
from loanshark_backend.schemas import AnalysisResults
from loanshark_backend.settings import MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

FileStatus = Literal["uploading", "complete", "error"]

ACCEPTED_TYPES: Dict[str, List[str]] = {
    "application/pdf": [".pdf"],
    "image/jpeg": [".jpg", ".jpeg"],
    "image/png": [".png"],
    "image/webp": [".webp"],
}
ACCEPTED_EXTENSIONS = sorted({ext for exts in ACCEPTED_TYPES.values() for ext in exts})
REJECTED_MESSAGE = "Please check file type and size (max 10MB)."


class Step(str, Enum):
    UPLOAD = "upload"
    ANALYSIS = "analysis"
    FILE_MANAGER = "file-manager"
    RESULTS = "results"


STEPS: List[Step] = [Step.UPLOAD, Step.ANALYSIS, Step.FILE_MANAGER, Step.RESULTS]

STEP_INFO: Dict[Step, Dict[str, str]] = {
    Step.UPLOAD: {"label": "Upload Documents", "description": "Load your files"},
    Step.ANALYSIS: {"label": "Analysis", "description": "AI Processing"},
    Step.FILE_MANAGER: {"label": "File Manager", "description": "Manage extracted data"},
    Step.RESULTS: {"label": "Results", "description": "Final summary"},
}


class AnalysisStage(str, Enum):
    READY = "ready"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    EDITING = "editing"


class AnalysisView(str, Enum):
    DOCUMENTS = "documents"
    ANALYSIS = "analysis"
    AI_RESULTS = "ai-results"


class UploadRejected(ValueError):
    pass


class PreviewStore:
    """Preview handles for image uploads; a revoked handle no longer resolves."""

    def __init__(self) -> None:
        self._previews: Dict[str, bytes] = {}

    def create(self, data: bytes) -> str:
        handle = f"preview:{uuid.uuid4()}"
        self._previews[handle] = data
        return handle

    def get(self, handle: Optional[str]) -> Optional[bytes]:
        if handle is None:
            return None
        return self._previews.get(handle)

    def revoke(self, handle: Optional[str]) -> None:
        if handle is not None:
            self._previews.pop(handle, None)

    def __len__(self) -> int:
        return len(self._previews)


@dataclass
class FileDescriptor:
    id: str
    name: str
    size: int
    content_type: str
    data: bytes = field(default=b"", repr=False)
    progress: int = 0
    status: FileStatus = "uploading"
    preview_handle: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    analysis_results: Optional[Dict[str, Any]] = None

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def size_mb(self) -> float:
        return self.size / 1024 / 1024


def is_accepted(name: str, content_type: Optional[str], size: int, max_bytes: int = MAX_UPLOAD_BYTES) -> bool:
    if size > max_bytes:
        return False
    if content_type in ACCEPTED_TYPES:
        return True
    return PurePath(name).suffix.lower() in ACCEPTED_EXTENSIONS


def guess_content_type(name: str, content_type: Optional[str]) -> str:
    if content_type in ACCEPTED_TYPES:
        return content_type
    suffix = PurePath(name).suffix.lower()
    for mime, extensions in ACCEPTED_TYPES.items():
        if suffix in extensions:
            return mime
    return content_type or "application/octet-stream"


def build_analysis_results(files: List[FileDescriptor], form_data: Dict[str, Any]) -> Dict[str, Any]:
    results = AnalysisResults(
        total_files=len(files),
        processed_files=len(files),
        extracted_data=dict(form_data),
        missing_fields=missing_fields(form_data),
    )
    return results.model_dump(by_alias=True)


@dataclass
class WizardState:
    files: List[FileDescriptor] = field(default_factory=list)
    current_step: Step = Step.UPLOAD
    analysis_stage: AnalysisStage = AnalysisStage.READY
    analysis_view: AnalysisView = AnalysisView.DOCUMENTS
    extracted_data: Optional[Dict[str, Any]] = None
    analysis_results: Optional[Dict[str, Any]] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    previews: PreviewStore = field(default_factory=PreviewStore)

    # ── navigation ──────────────────────────────────────────────────────────

    @staticmethod
    def step_index(step: Step) -> int:
        return STEPS.index(step)

    @property
    def current_index(self) -> int:
        return self.step_index(self.current_step)

    def next_step(self) -> Step:
        if self.current_index < len(STEPS) - 1:
            self._enter(STEPS[self.current_index + 1])
        return self.current_step

    def can_visit(self, step: Step) -> bool:
        return self.step_index(step) <= self.current_index

    def go_to(self, step: Step) -> bool:
        """Breadcrumb navigation: only already-reached steps are allowed."""
        if not self.can_visit(step):
            return False
        if step != self.current_step:
            self._enter(step)
        return True

    def _enter(self, step: Step) -> None:
        # the analysis step starts over each time it is entered
        if step == Step.ANALYSIS:
            self.analysis_stage = AnalysisStage.READY
            self.analysis_view = AnalysisView.DOCUMENTS
        self.current_step = step

    def restart(self) -> None:
        # uploaded files survive a restart
        self.current_step = Step.UPLOAD
        self.analysis_stage = AnalysisStage.READY
        self.analysis_view = AnalysisView.DOCUMENTS
        self.analysis_results = None
        self.extracted_data = None

    # ── uploads ─────────────────────────────────────────────────────────────

    def add_file(
        self,
        name: str,
        content_type: Optional[str],
        data: bytes,
        max_bytes: int = MAX_UPLOAD_BYTES,
    ) -> FileDescriptor:
        if not is_accepted(name, content_type, len(data), max_bytes):
            raise UploadRejected(REJECTED_MESSAGE)
        mime = guess_content_type(name, content_type)
        descriptor = FileDescriptor(
            id=str(uuid.uuid4()),
            name=name,
            size=len(data),
            content_type=mime,
            data=data,
        )
        if descriptor.is_image:
            descriptor.preview_handle = self.previews.create(data)
        self.files.append(descriptor)
        logger.debug("Added %s (%d bytes) as %s", name, len(data), descriptor.id)
        return descriptor

    def get_file(self, file_id: str) -> Optional[FileDescriptor]:
        return next((f for f in self.files if f.id == file_id), None)

    def advance_upload(self, file_id: str, increment: float) -> int:
        descriptor = self.get_file(file_id)
        if descriptor is None or descriptor.status != "uploading":
            return descriptor.progress if descriptor else 0
        progress = descriptor.progress + increment
        if progress >= 100:
            descriptor.progress = 100
            descriptor.status = "complete"
        else:
            descriptor.progress = round(progress)
        return descriptor.progress

    def mark_error(self, file_id: str) -> None:
        descriptor = self.get_file(file_id)
        if descriptor is not None:
            descriptor.status = "error"

    def remove_file(self, file_id: str) -> None:
        descriptor = self.get_file(file_id)
        if descriptor is None:
            return
        self.previews.revoke(descriptor.preview_handle)
        self.files = [f for f in self.files if f.id != file_id]

    def clear_files(self) -> None:
        for descriptor in self.files:
            self.previews.revoke(descriptor.preview_handle)
        self.files = []

    def discard(self) -> None:
        """Drop every file and start a fresh session."""
        self.clear_files()
        self.restart()
        self.ai_analysis = None

    @property
    def completed_files(self) -> List[FileDescriptor]:
        return [f for f in self.files if f.status == "complete"]

    @property
    def can_proceed(self) -> bool:
        return len(self.completed_files) > 0

    @property
    def analysis_targets(self) -> List[FileDescriptor]:
        # failed files stay eligible so a second run retries them
        return [f for f in self.files if f.status in ("complete", "error")]

    def load_sample_data(self) -> FileDescriptor:
        sample = self.get_file(SAMPLE_FILE_ID)
        if sample is None:
            sample = FileDescriptor(
                id=SAMPLE_FILE_ID,
                name=SAMPLE_FILE_NAME,
                size=len(b"sample"),
                content_type="application/pdf",
                data=b"sample",
                progress=100,
                status="complete",
                extracted_data=dict(SAMPLE_TAX_RETURN),
            )
            self.files.append(sample)

        self.extracted_data = dict(SAMPLE_TAX_RETURN)
        self.analysis_results = AnalysisResults(
            total_files=1,
            processed_files=1,
            extracted_data=dict(SAMPLE_TAX_RETURN),
            missing_fields=missing_fields(SAMPLE_TAX_RETURN),
            document_type="IRS Form 1040 (2017) - Sample",
        ).model_dump(by_alias=True)
        self.analysis_stage = AnalysisStage.COMPLETE
        self.analysis_view = AnalysisView.ANALYSIS
        self.current_step = Step.ANALYSIS
        return sample

    # ── analysis ────────────────────────────────────────────────────────────

    @property
    def has_analysis_data(self) -> bool:
        return any(f.extracted_data or f.analysis_results for f in self.files)

    def record_extraction(self, file_id: str, data: Dict[str, Any]) -> None:
        descriptor = self.get_file(file_id)
        if descriptor is not None:
            descriptor.extracted_data = data
        self.extracted_data = data

    def complete_analysis(self, form_data: Dict[str, Any]) -> Dict[str, Any]:
        """Save the reviewed form: build results and attach them to every file."""
        self.extracted_data = dict(form_data)
        results = build_analysis_results(self.files, form_data)
        self.analysis_results = results
        for descriptor in self.files:
            descriptor.extracted_data = results["extractedData"]
            descriptor.analysis_results = results
        return results

    def finish_analysis(self) -> Step:
        """Continue without editing: accept the extracted data as it is."""
        if self.analysis_results is None:
            self.complete_analysis(initial_values(TAX_FORM_SECTIONS, self.extracted_data))
        self.analysis_stage = AnalysisStage.COMPLETE
        return self.next_step()

    def ai_document_data(self) -> Optional[Any]:
        if not self.has_analysis_data:
            return None
        if self.extracted_data:
            return self.extracted_data
        return next((f.extracted_data for f in self.files if f.extracted_data), None)

    def update_file_data(self, file_id: str, data: Any) -> None:
        descriptor = self.get_file(file_id)
        if descriptor is not None:
            descriptor.extracted_data = data


def simulate_upload(
    state: WizardState,
    file_id: str,
    interval: float = 0.2,
    rng: Optional[random.Random] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Optional[Callable[[int], None]] = None,
) -> int:
    """Timer-driven progress: +5..20 points every ``interval`` seconds until complete."""
    rng = rng or random.Random()
    descriptor = state.get_file(file_id)
    while descriptor is not None and descriptor.status == "uploading":
        progress = state.advance_upload(file_id, rng.random() * 15 + 5)
        if on_progress is not None:
            on_progress(progress)
        if descriptor.status == "uploading":
            sleep(interval)
    return descriptor.progress if descriptor else 0


def run_analysis(
    state: WizardState,
    extract: Callable[[str, bytes, str], Dict[str, Any]],
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> List[str]:
    """Extract every analysis target that has no data yet.

    A failing file is marked ``error`` and reported; the remaining files are
    still processed. Returns the failure messages.
    """
    targets = state.analysis_targets
    failures: List[str] = []
    state.analysis_stage = AnalysisStage.ANALYZING
    state.analysis_results = None
    state.extracted_data = None
    latest: Optional[Dict[str, Any]] = None

    for idx, descriptor in enumerate(targets, start=1):
        if descriptor.extracted_data is None:
            try:
                data = extract(descriptor.name, descriptor.data, descriptor.content_type)
            except requests.RequestException as e:
                state.mark_error(descriptor.id)
                failures.append(f"Could not analyze {descriptor.name}: {error_detail(e)}")
                logger.warning("Extraction failed for %s: %s", descriptor.name, e)
            else:
                descriptor.status = "complete"
                state.record_extraction(descriptor.id, data)
                latest = data
        if on_progress is not None:
            on_progress(idx, len(targets))

    if latest is None:
        latest = next((f.extracted_data for f in targets if f.extracted_data), None)
    state.extracted_data = latest
    state.analysis_stage = AnalysisStage.COMPLETE
    return failures
