import os
import time

import streamlit as st

from docshift.client import ApiError, DocshiftClient

API_BASE = os.getenv("DOC_SERVICE_API_BASE", "http://localhost:8080").rstrip("/")
POLL_SECONDS = float(os.getenv("DOC_SERVICE_POLL_SECONDS", "1.5"))

UPLOAD_TYPES = ["pdf", "docx", "doc", "pptx", "ppt", "xlsx", "xls", "csv", "txt", "jpg", "jpeg", "png"]
JOB_KEYS = ("job_id", "token", "job", "download", "error")


def _client() -> DocshiftClient:
    if "client" not in st.session_state:
        st.session_state["client"] = DocshiftClient(API_BASE)
    return st.session_state["client"]


def _clear_job() -> None:
    for key in JOB_KEYS:
        st.session_state.pop(key, None)
    # a fresh key gives an empty uploader widget
    st.session_state["uploader_gen"] = st.session_state.get("uploader_gen", 0) + 1


def _choose_conversion():
    uploaded = st.file_uploader(
        "Upload a document, spreadsheet or image",
        type=UPLOAD_TYPES,  # type: ignore[arg-type]
        key=f"uploader-{st.session_state.setdefault('uploader_gen', 0)}",
    )
    if uploaded is None:
        return None, None
    try:
        targets = _client().targets_for(uploaded.name)
    except ApiError as e:
        st.error(str(e))
        return uploaded, None
    if not targets:
        st.warning("No conversions are available for this file.")
        return uploaded, None
    return uploaded, st.selectbox("Convert to", targets)


def _submit(uploaded, target: str) -> None:
    with st.spinner(f"Uploading {uploaded.name}..."):
        try:
            job_id, token = _client().start_job(uploaded.name, uploaded.getvalue(), uploaded.type, target)
        except ApiError as e:
            st.session_state["error"] = str(e)
            return
    st.session_state["job_id"] = job_id
    st.session_state["token"] = token


def _track(job_id: str, token: str) -> dict[str, object] | None:
    with st.status(f"Converting (job {job_id[:8]})", expanded=True) as box:
        line = st.empty()
        bar = st.progress(0)
        while True:
            try:
                job = _client().job(job_id, token)
            except ApiError as e:
                st.session_state["error"] = str(e)
                box.update(label="Lost track of the job", state="error")
                return None
            state = str(job.get("status", "unknown"))
            line.write(f"Status: {state}")
            bar.progress(min(max(int(job.get("progress") or 0), 0), 100))  # type: ignore[arg-type]
            if state == "succeeded":
                box.update(label="Done", state="complete")
                return job
            if state == "failed":
                code = job.get("error_code") or "error"
                st.session_state["error"] = f"Conversion failed ({code}): {job.get('error')}"
                box.update(label="Failed", state="error")
                return job
            time.sleep(POLL_SECONDS)


def main() -> None:
    st.set_page_config(page_title="docshift", layout="centered")
    st.title("docshift")
    st.caption(f"API: {API_BASE}")

    if st.button("Start over", type="secondary"):
        _clear_job()
        st.rerun()

    if "job_id" not in st.session_state:
        uploaded, target = _choose_conversion()
        if uploaded is not None and target and st.button("Convert", type="primary"):
            _submit(uploaded, target)

    job_id = st.session_state.get("job_id")
    token = st.session_state.get("token")
    if job_id and token and "job" not in st.session_state:
        job = _track(job_id, token)
        if job is not None:
            st.session_state["job"] = job

    job = st.session_state.get("job") or {}
    if job.get("status") == "succeeded" and "download" not in st.session_state:
        try:
            st.session_state["download"] = _client().download(job_id, token)
        except ApiError as e:
            st.session_state["error"] = str(e)

    result = st.session_state.get("download")
    if result is not None:
        st.success(f"Converted {job.get('resolved_source')} to {job.get('output_format')}")
        st.download_button(
            label=f"Download {result.filename}",
            data=result.content,
            file_name=result.filename,
            mime=result.media_type,
        )

    if error := st.session_state.get("error"):
        st.error(error)


if __name__ == "__main__":
    main()
