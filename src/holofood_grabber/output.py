"""Write result tables to TSV/CSV files."""

import io
import os
from typing import Dict, Mapping

import pandas as pd

_DELIMITERS = {"tsv": "\t", "csv": ","}


def write_tsv(table: pd.DataFrame, filepath: str) -> None:
    _write(table, filepath, delimiter="\t")


def write_csv(table: pd.DataFrame, filepath: str) -> None:
    _write(table, filepath, delimiter=",")


def write_table_set(
    tables: Mapping[str, pd.DataFrame], directory: str, fmt: str = "tsv"
) -> Dict[str, str]:
    """Write one file per table into ``directory``. Returns name -> path."""
    delimiter = _delimiter(fmt)
    os.makedirs(directory, exist_ok=True)
    paths = {}
    for name, table in tables.items():
        path = os.path.join(directory, f"{name}.{fmt}")
        _write(table, path, delimiter)
        paths[name] = path
    return paths


def table_to_bytes(table: pd.DataFrame, fmt: str = "tsv") -> bytes:
    """Serialize a table to bytes (for the Streamlit download button)."""
    buf = io.StringIO()
    _prepare(table).to_csv(buf, sep=_delimiter(fmt))
    return buf.getvalue().encode("utf-8")


def _write(table: pd.DataFrame, filepath: str, delimiter: str) -> None:
    with open(filepath, "w", newline="", encoding="utf-8") as fh:
        _prepare(table).to_csv(fh, sep=delimiter)


def _prepare(table: pd.DataFrame) -> pd.DataFrame:
    """Render list-valued cells as ``a; b`` strings."""
    out = table.copy()
    for column in out.columns:
        if out[column].map(lambda v: isinstance(v, list)).any():
            out[column] = out[column].map(_join)
    return out


def _join(value) -> str:
    if isinstance(value, list):
        return "; ".join("" if v is None or v is pd.NA else str(v) for v in value)
    return value


def _delimiter(fmt: str) -> str:
    try:
        return _DELIMITERS[fmt]
    except KeyError:
        raise ValueError(f"Unsupported format {fmt!r}; use one of {sorted(_DELIMITERS)}") from None
