import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import requests
import streamlit as st

from loanshark_backend import client
from loanshark_backend.forms import (
    APPLICANT_FORM_SECTIONS,
    TAX_FORM_SECTIONS,
    FormSection,
    coerce_like,
    data_digest,
    field_label,
    flatten_value,
    humanize_key,
    initial_values,
    is_empty,
    is_flat_record,
    is_long_text,
    non_empty_items,
    path_label,
    set_at_path,
    validate_sections,
)
from loanshark_backend.wizard import (
    ACCEPTED_EXTENSIONS,
    STEP_INFO,
    STEPS,
    AnalysisStage,
    AnalysisView,
    FileDescriptor,
    Step,
    UploadRejected,
    WizardState,
    run_analysis,
    simulate_upload,
)

VIEW_LABELS = {
    AnalysisView.DOCUMENTS: "Documents",
    AnalysisView.ANALYSIS: "Tax Analysis",
    AnalysisView.AI_RESULTS: "AI Underwriting",
}

QUALIFICATION_BANNERS = {
    "QUALIFIED": st.success,
    "REQUIRES_REVIEW": st.warning,
    "NOT_QUALIFIED": st.error,
}


def get_state() -> WizardState:
    if "wizard" not in st.session_state:
        st.session_state["wizard"] = WizardState()
        st.session_state["seen_uploads"] = set()
        st.session_state["form_version"] = 0
    return st.session_state["wizard"]


def show_request_error(prefix: str, exc: requests.RequestException) -> None:
    st.error(f"{prefix}: {client.error_detail(exc)}")


def new_uploads(uploads: Sequence[Any], seen: set) -> List[Any]:
    """Uploader entries not handled yet, keyed on the widget's per-upload ``file_id``."""
    fresh = []
    for upload in uploads:
        if upload.file_id in seen:
            continue
        seen.add(upload.file_id)
        fresh.append(upload)
    return fresh


# ──────────────────────────────────────────────────────────────────────────────
# Shared renderers

def render_breadcrumb(state: WizardState) -> None:
    cols = st.columns(len(STEPS))
    for idx, (col, step) in enumerate(zip(cols, STEPS)):
        info = STEP_INFO[step]
        marker = "✅" if idx < state.current_index else ("➡️" if step == state.current_step else "⬜")
        with col:
            if st.button(
                f"{marker} {idx + 1}. {info['label']}",
                key=f"crumb_{step.value}",
                disabled=not state.can_visit(step),
                help=info["description"],
                use_container_width=True,
            ):
                state.go_to(step)
                st.rerun()


def render_file_row(state: WizardState, descriptor: FileDescriptor, removable: bool = True) -> None:
    c1, c2, c3 = st.columns([1, 4, 1])
    with c1:
        preview = state.previews.get(descriptor.preview_handle)
        if preview is not None:
            st.image(preview, width=64)
        else:
            st.markdown("📄")
    with c2:
        st.markdown(f"**{descriptor.name}** · {descriptor.size_mb:.2f} MB · `{descriptor.status}`")
        if descriptor.status == "uploading":
            st.progress(descriptor.progress / 100)
    with c3:
        if removable and st.button("Remove", key=f"remove_{descriptor.id}"):
            state.remove_file(descriptor.id)
            st.rerun()


def render_section_form(
    sections: Sequence[FormSection],
    values: Dict[str, Any],
    key_prefix: str,
    errors: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Render field sections (inside an ``st.form``) and return the edited values."""
    errors = errors or {}
    edited = dict(values)
    for section in sections:
        st.markdown(f"#### {section.title}")
        cols = st.columns(2)
        for idx, f in enumerate(section.fields):
            current = "" if values.get(f.name) is None else str(values.get(f.name))
            with cols[idx % 2]:
                if f.kind == "select":
                    option_values = [""] + [value for value, _ in f.options]
                    labels = {"": "Select…", **dict(f.options)}
                    if current not in option_values:
                        option_values.append(current)
                    edited[f.name] = st.selectbox(
                        f.label,
                        option_values,
                        index=option_values.index(current),
                        format_func=lambda v, labels=labels: labels.get(v, v),
                        key=f"{key_prefix}_{f.name}",
                        help=f.description or None,
                    )
                else:
                    edited[f.name] = st.text_input(
                        f.label,
                        value=current,
                        placeholder=f.placeholder,
                        key=f"{key_prefix}_{f.name}",
                        help=f.description or None,
                    )
                if f.name in errors:
                    st.caption(f":red[{errors[f.name]}]")
    return edited


def render_auto_form(value: Any, key_prefix: str) -> Any:
    """Render any JSON value as inputs; objects first, list items as ``key[i]``."""
    edited = value
    section = None
    for path, leaf in flatten_value(value):
        if len(path) > 1 and path[0] != section:
            section = path[0]
            st.markdown(f"#### {humanize_key(str(section))}")
        label = path_label(path) or "value"
        text = "" if leaf is None else str(leaf)
        key = f"{key_prefix}_{label}"
        if is_long_text(leaf):
            new_text = st.text_area(label, value=text, key=key)
        else:
            new_text = st.text_input(label, value=text, key=key)
        if new_text != text:
            edited = set_at_path(edited, path, coerce_like(leaf, new_text))
    return edited


def render_tax_editor(data: Dict[str, Any], key_prefix: str) -> Optional[Dict[str, Any]]:
    """Form 1040 editor; returns the saved values once they validate."""
    version = st.session_state.get("form_version", 0)
    errors = st.session_state.get(f"{key_prefix}_errors", {})
    prefix = f"{key_prefix}_v{version}"

    with st.form(prefix):
        values = render_section_form(TAX_FORM_SECTIONS, initial_values(TAX_FORM_SECTIONS, data), prefix, errors)
        c1, c2 = st.columns(2)
        saved = c1.form_submit_button("Save", type="primary")
        reset = c2.form_submit_button("Reset")

    if reset:
        st.session_state["form_version"] = version + 1
        st.session_state[f"{key_prefix}_errors"] = {}
        st.rerun()
    if saved:
        errors = validate_sections(TAX_FORM_SECTIONS, values)
        st.session_state[f"{key_prefix}_errors"] = errors
        if errors:
            st.error(f"Please fix {len(errors)} field(s) before saving.")
            return None
        return values
    return None


# ──────────────────────────────────────────────────────────────────────────────
# Step 1: upload

def render_upload_step(state: WizardState) -> None:
    st.subheader("Upload Documents")
    st.caption("PDF, JPG, PNG or WEBP · max 10MB per file")

    uploads = st.file_uploader(
        "Drop your files here",
        type=[ext.lstrip(".") for ext in ACCEPTED_EXTENSIONS],
        accept_multiple_files=True,
        key=f"uploader_{st.session_state.get('uploader_version', 0)}",
    )
    for upload in new_uploads(uploads or [], st.session_state["seen_uploads"]):
        try:
            descriptor = state.add_file(upload.name, upload.type, upload.getvalue())
        except UploadRejected as e:
            st.error(f"{upload.name}: {e}")
            continue
        bar = st.progress(0, text=f"Uploading {descriptor.name}")
        simulate_upload(state, descriptor.id, on_progress=lambda p, bar=bar: bar.progress(p / 100))
        bar.empty()

    if state.files:
        st.markdown("---")
        for descriptor in list(state.files):
            render_file_row(state, descriptor)
        if st.button("Clear all"):
            state.clear_files()
            st.session_state["seen_uploads"] = set()
            st.session_state["uploader_version"] = st.session_state.get("uploader_version", 0) + 1
            st.rerun()

    st.markdown("---")
    c1, c2 = st.columns(2)
    with c1:
        if st.button(
            f"Continue ({len(state.completed_files)})",
            type="primary",
            disabled=not state.can_proceed,
        ):
            state.next_step()
            st.rerun()
    with c2:
        if st.button("Load sample data"):
            state.load_sample_data()
            st.rerun()


# ──────────────────────────────────────────────────────────────────────────────
# Step 2: analysis

def run_tax_analysis(state: WizardState) -> None:
    bar = st.progress(0, text="Analyzing documents…")
    st.session_state["analysis_errors"] = run_analysis(
        state,
        client.extract_document,
        on_progress=lambda done, total: bar.progress(done / total, text=f"Analyzed {done} of {total}"),
    )


def render_document_tools(descriptor: FileDescriptor) -> None:
    ocr_key = f"ocr_{descriptor.id}"
    summary_key = f"gemini_{descriptor.id}"
    c1, c2 = st.columns(2)
    if c1.button("OCR text", key=f"{ocr_key}_run"):
        with st.spinner(f"Running OCR on {descriptor.name}…"):
            try:
                st.session_state[ocr_key] = client.process_document(
                    descriptor.name, descriptor.data, descriptor.content_type
                )
            except requests.RequestException as e:
                show_request_error("OCR failed", e)
    if descriptor.content_type == "application/pdf" and c2.button("Gemini summary", key=f"{summary_key}_run"):
        with st.spinner(f"Summarizing {descriptor.name} with Gemini…"):
            try:
                st.session_state[summary_key] = client.gemini_pdf(descriptor.name, descriptor.data)
            except requests.RequestException as e:
                show_request_error("Gemini summary failed", e)

    ocr = st.session_state.get(ocr_key)
    if ocr:
        with st.expander(f"OCR text · {len(ocr.get('pages') or [])} page(s)"):
            st.text(ocr.get("text") or "")
            if ocr.get("entities"):
                st.dataframe(pd.DataFrame(ocr["entities"]), use_container_width=True, hide_index=True)
    summary = st.session_state.get(summary_key)
    if summary:
        with st.expander("Gemini summary"):
            st.markdown(summary.get("gemini") or "")


def render_documents_view(state: WizardState) -> None:
    if not state.files:
        st.info("No documents uploaded.")
        return
    for descriptor in state.files:
        render_file_row(state, descriptor, removable=False)
        render_document_tools(descriptor)


def render_tax_view(state: WizardState) -> None:
    stage = state.analysis_stage

    if stage == AnalysisStage.READY:
        st.write(f"{len(state.analysis_targets)} document(s) ready for analysis.")
        if st.button("Start Tax Analysis", type="primary", disabled=not state.analysis_targets):
            state.analysis_stage = AnalysisStage.ANALYZING
            st.rerun()

    elif stage == AnalysisStage.ANALYZING:
        run_tax_analysis(state)
        st.rerun()

    elif stage == AnalysisStage.COMPLETE:
        for message in st.session_state.get("analysis_errors", []):
            st.error(message)
        digest = data_digest(state.extracted_data)
        if digest:
            st.success(digest)
        else:
            st.warning("No data could be extracted. You can still fill in the form manually.")
        c1, c2, c3 = st.columns(3)
        if c1.button("Review and Edit", type="primary"):
            state.analysis_stage = AnalysisStage.EDITING
            st.rerun()
        if c2.button("Continue"):
            state.finish_analysis()
            st.rerun()
        if any(f.status == "error" for f in state.files) and c3.button("Retry failed"):
            state.analysis_stage = AnalysisStage.ANALYZING
            st.rerun()

    elif stage == AnalysisStage.EDITING:
        saved = render_tax_editor(state.extracted_data or {}, "tax_form")
        if saved is not None:
            state.complete_analysis(saved)
            state.analysis_stage = AnalysisStage.COMPLETE
            state.next_step()
            st.rerun()


def render_verdict(analysis: Dict[str, Any]) -> None:
    qualification = analysis.get("qualification", "REQUIRES_REVIEW")
    banner = QUALIFICATION_BANNERS.get(qualification, st.info)
    banner(f"{qualification.replace('_', ' ')} · Final DTI Value: {float(analysis.get('dtiValue') or 0):.2f}%")

    c1, c2 = st.columns(2)
    c1.metric("DTI", f"{float(analysis.get('dtiValue') or 0):.2f}%")
    c2.metric("Confidence", f"{float(analysis.get('confidence') or 0):.0f}%")
    st.write(analysis.get("explanation") or "")

    c1, c2 = st.columns(2)
    with c1:
        st.markdown("**Risk factors**")
        for item in analysis.get("riskFactors") or []:
            st.markdown(f"- {item}")
    with c2:
        st.markdown("**Recommendations**")
        for item in analysis.get("recommendations") or []:
            st.markdown(f"- {item}")


def render_ai_view(state: WizardState) -> None:
    if not state.has_analysis_data:
        st.info("No Analysis Data Available")
        return

    document_data = state.ai_document_data()
    rules = st.text_area("Underwriting rules (optional)", placeholder="Defaults to the 43% DTI rule")
    if st.button("Run AI Underwriting", type="primary"):
        with st.spinner("Analyzing debt-to-income ratio…"):
            try:
                state.ai_analysis = client.analyze_dti(document_data, rules or None)
            except requests.RequestException as e:
                show_request_error("AI analysis failed", e)

    if state.ai_analysis:
        render_verdict(state.ai_analysis)


def render_analysis_step(state: WizardState) -> None:
    st.subheader("Analysis")
    views = list(VIEW_LABELS)
    choice = st.radio(
        "View",
        views,
        index=views.index(state.analysis_view),
        format_func=VIEW_LABELS.get,
        horizontal=True,
        label_visibility="collapsed",
    )
    if choice != state.analysis_view:
        state.analysis_view = choice
        st.rerun()

    if state.analysis_view == AnalysisView.DOCUMENTS:
        render_documents_view(state)
    elif state.analysis_view == AnalysisView.ANALYSIS:
        render_tax_view(state)
    else:
        render_ai_view(state)


# ──────────────────────────────────────────────────────────────────────────────
# Step 3: file manager

def render_file_manager_step(state: WizardState) -> None:
    st.subheader("File Manager")
    processed = [f for f in state.files if f.extracted_data]
    c1, c2 = st.columns(2)
    c1.metric("Total files", len(state.files))
    c2.metric("Processed", len(processed))

    if not state.files:
        st.info("No files uploaded.")
    else:
        names = {f.id: f.name for f in state.files}
        file_id = st.selectbox("File", list(names), format_func=names.get)
        descriptor = state.get_file(file_id)
        data = descriptor.extracted_data if descriptor else None

        if not data:
            st.info("This file hasn't been processed yet")
        else:
            mode = st.radio("Mode", ["view", "edit", "profile"], horizontal=True,
                            format_func=lambda m: {"view": "View", "edit": "Edit", "profile": "Applicant profile"}[m])
            if mode == "view":
                st.markdown(f"**{data_digest(data) if isinstance(data, dict) else 'Data extracted'}**")
                if isinstance(data, dict):
                    rows = [{"Field": field_label(k), "Value": v} for k, v in non_empty_items(data)]
                    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)
                else:
                    st.json(data)
            elif mode == "edit" and is_flat_record(data):
                saved = render_tax_editor(data, f"fm_{file_id}")
                if saved is not None:
                    state.update_file_data(file_id, saved)
                    st.success("Saved")
            elif mode == "edit":
                with st.form(f"auto_{file_id}"):
                    edited = render_auto_form(data, f"auto_{file_id}")
                    if st.form_submit_button("Save", type="primary"):
                        state.update_file_data(file_id, edited)
                        st.success("Saved")
            else:
                render_profile_form(state, file_id, data)

    st.markdown("---")
    if st.button("Continue to Results", type="primary"):
        state.next_step()
        st.rerun()


def render_profile_form(state: WizardState, file_id: str, data: Any) -> None:
    base = data if isinstance(data, dict) else {}
    errors = st.session_state.get(f"profile_{file_id}_errors", {})
    with st.form(f"profile_{file_id}"):
        values = render_section_form(
            APPLICANT_FORM_SECTIONS, initial_values(APPLICANT_FORM_SECTIONS, base), f"profile_{file_id}", errors
        )
        submitted = st.form_submit_button("Save profile", type="primary")
    if submitted:
        errors = validate_sections(APPLICANT_FORM_SECTIONS, values)
        st.session_state[f"profile_{file_id}_errors"] = errors
        if errors:
            st.error(f"Please fix {len(errors)} field(s) before saving.")
        else:
            state.update_file_data(file_id, {**base, **values})
            st.success("Profile saved")


# ──────────────────────────────────────────────────────────────────────────────
# Step 4: results

def render_results_step(state: WizardState) -> None:
    st.subheader("Results")
    results = state.analysis_results
    if not results:
        st.info("No analysis results yet. Run the analysis step first.")
    else:
        st.markdown(
            f"Information extracted from **{results['processedFiles']} of {results['totalFiles']}** "
            f"documents with **{results['confidence']}%** confidence"
        )
        st.caption(results["documentType"])
        missing: List[str] = results.get("missingFields") or []
        if missing:
            st.warning(f"Found {len(missing)} fields without information")

        cols = st.columns(2)
        for idx, (key, value) in enumerate((results.get("extractedData") or {}).items()):
            shown = "Information not found" if key in missing or is_empty(value) else value
            cols[idx % 2].text_input(field_label(key), value=str(shown), disabled=True, key=f"res_{key}")

        if st.button("Generate PDF report"):
            try:
                st.session_state["report_pdf"] = client.download_report(results, state.ai_analysis)
            except requests.RequestException as e:
                show_request_error("Report generation failed", e)
        if st.session_state.get("report_pdf"):
            st.download_button(
                "Download underwriting summary",
                data=st.session_state["report_pdf"],
                file_name="underwriting_report.pdf",
                mime="application/pdf",
            )

    st.markdown("---")
    c1, c2 = st.columns(2)
    if c1.button("Upload New Documents", type="primary"):
        state.restart()
        st.session_state.pop("report_pdf", None)
        st.rerun()
    if c2.button("Discard session"):
        state.discard()
        st.session_state.pop("report_pdf", None)
        st.session_state["seen_uploads"] = set()
        st.session_state["uploader_version"] = st.session_state.get("uploader_version", 0) + 1
        st.rerun()


RENDERERS = {
    Step.UPLOAD: render_upload_step,
    Step.ANALYSIS: render_analysis_step,
    Step.FILE_MANAGER: render_file_manager_step,
    Step.RESULTS: render_results_step,
}


def main():
    st.set_page_config(
        page_title="LoanShark - Mortgage Underwriting",
        page_icon="🦈",
        layout="wide",
        initial_sidebar_state="collapsed",
    )
    st.title("🦈 LoanShark - Document Analysis & DTI Underwriting")

    if not client.check_api_health():
        st.error("API is not running! Please start the FastAPI server first.")
        st.code("uv run loanshark-api", language="bash")
        st.stop()

    state = get_state()
    render_breadcrumb(state)
    st.markdown("---")
    RENDERERS[state.current_step](state)


def launch():
    """Console entry point: ``streamlit run`` this file."""
    subprocess.run([
        sys.executable, "-m", "streamlit", "run",
        str(Path(__file__).resolve()),
        "--server.port", "8501",
        "--server.address", "localhost",
    ])


if __name__ == "__main__":
    main()
