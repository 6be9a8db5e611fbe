"""Streamlit web UI for holofood-grabber."""

import os
import sys
from pathlib import Path

# Ensure the src/ directory is on the Python path so that
# holofood_grabber is importable on Streamlit Community Cloud
# (which doesn't pip-install the package itself).
_src_dir = str(Path(__file__).resolve().parent.parent)
if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)

import streamlit as st

from holofood_grabber.cli import parse_filters
from holofood_grabber.core import HoloFoodGrabber
from holofood_grabber.entities import ENTITY_TYPES
from holofood_grabber.errors import HoloFoodError
from holofood_grabber.output import table_to_bytes
from holofood_grabber.transport import DEFAULT_BASE_URL


def main():
    st.set_page_config(page_title="HoloFood Grabber", layout="wide")
    st.title("HoloFood Data Grabber")
    st.markdown(
        "Search **HoloFood** animals, samples and catalogues, or retrieve "
        "records by accession, and download them as TSV/CSV."
    )

    with st.sidebar:
        st.header("Settings")
        api_url = st.text_input(
            "API base URL",
            value=os.environ.get("HOLOFOOD_API_URL", DEFAULT_BASE_URL),
        )
        output_format = st.selectbox("Output format", ["TSV", "CSV"])
        max_hits = st.number_input("Max hits (0 = all)", min_value=0, value=100, step=10)

    mode = st.radio("Mode", ["Search", "By accession"], horizontal=True)
    entity_type = st.selectbox("Entity type", sorted(ENTITY_TYPES))

    if mode == "Search":
        filter_text = st.text_area(
            "Filters (KEY=VALUE, one per line)",
            placeholder="system=salmon",
            height=100,
        )
        accessions = []
    else:
        accession_text = st.text_area(
            "Enter accessions (one per line or comma-separated)",
            placeholder="SAMEA112904734\nSAMEA112905149",
            height=150,
        )
        accessions = _parse_accessions(accession_text)
        filter_text = ""
        if accessions:
            st.caption(f"{len(accessions)} accession(s) detected: {', '.join(accessions)}")

    disabled = mode == "By accession" and not accessions
    if st.button("Fetch", type="primary", disabled=disabled):
        grabber = HoloFoodGrabber(base_url=api_url)
        try:
            with st.spinner("Querying HoloFood..."):
                if mode == "Search":
                    filters = parse_filters(
                        [line.strip() for line in filter_text.splitlines() if line.strip()]
                    )
                    table = grabber.search(entity_type, filters, int(max_hits) or None)
                else:
                    table = grabber.fetch_by_accession(entity_type, accessions, flatten=True)
        except (HoloFoodError, ValueError) as exc:
            st.error(str(exc))
            return
        st.session_state["table"] = table
        st.session_state["output_format"] = output_format

    if "table" in st.session_state:
        table = st.session_state["table"]
        fmt = st.session_state.get("output_format", output_format)

        col1, col2 = st.columns(2)
        col1.metric("Records", len(table))
        col2.metric("Columns", table.shape[1])
        missing = table.attrs.get("not_found") or []
        if missing:
            st.warning(f"Not found: {', '.join(missing)}")

        st.dataframe(table, use_container_width=True)

        fmt_lower = fmt.lower()
        st.download_button(
            label=f"Download {fmt.upper()}",
            data=table_to_bytes(table, fmt=fmt_lower),
            file_name=f"holofood_{entity_type}.{fmt_lower}",
            mime="text/tab-separated-values" if fmt_lower == "tsv" else "text/csv",
        )


def _parse_accessions(text: str) -> list:
    accessions = []
    if text:
        for line in text.strip().split("\n"):
            for item in line.split(","):
                item = item.strip()
                if item and not item.startswith("#"):
                    accessions.append(item)
    return accessions


if __name__ == "__main__":
    main()
