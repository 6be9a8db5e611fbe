import csv

import pandas as pd
import pytest

from holofood_grabber.output import table_to_bytes, write_csv, write_table_set, write_tsv


def _sample_table():
    return pd.DataFrame(
        {
            "system": ["salmon", "chicken"],
            "has_samples": [True, False],
            "samples.sample_type": [["fatty_acids", "iodine"], []],
            "weight": [2600, pd.NA],
        },
        index=pd.Index(["SAMEA1", "SAMEA2"], name="accession"),
    )


def test_write_tsv(tmp_path):
    path = tmp_path / "animals.tsv"
    write_tsv(_sample_table(), str(path))

    with open(path, newline="") as fh:
        rows = list(csv.DictReader(fh, delimiter="\t"))
    assert len(rows) == 2
    assert rows[0]["accession"] == "SAMEA1"
    assert rows[0]["samples.sample_type"] == "fatty_acids; iodine"
    assert rows[1]["samples.sample_type"] == ""
    assert rows[1]["weight"] == ""


def test_write_csv(tmp_path):
    path = tmp_path / "animals.csv"
    write_csv(_sample_table(), str(path))

    with open(path, newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert list(rows[0].keys()) == ["accession", "system", "has_samples", "samples.sample_type", "weight"]


def test_write_table_set(tmp_path):
    paths = write_table_set(
        {"animals": _sample_table(), "samples": pd.DataFrame({"a": [1]})}, str(tmp_path / "out"), "csv"
    )
    assert sorted(paths) == ["animals", "samples"]
    assert paths["samples"].endswith("samples.csv")


def test_table_to_bytes_tsv():
    data = table_to_bytes(_sample_table(), fmt="tsv")
    lines = data.decode("utf-8").strip().split("\n")
    assert len(lines) == 3  # header + 2 rows
    assert lines[0].startswith("accession\t")


def test_unknown_format_rejected():
    with pytest.raises(ValueError):
        table_to_bytes(_sample_table(), fmt="xlsx")
