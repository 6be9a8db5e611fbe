import warnings

import pandas as pd
import pytest

from holofood_grabber.errors import MergeCoverageWarning
from holofood_grabber.merge import SOURCE_ID_COLUMN, CrossSourceMerger, id_map_to_dict
from holofood_grabber.models import TableSet


@pytest.fixture
def primary():
    return TableSet({
        "samples": pd.DataFrame(
            {"sample_type": ["metagenomic_assembly", "metagenomic_assembly"]},
            index=pd.Index(["SAMEA1", "SAMEA2"], name="accession"),
        ),
    })


@pytest.fixture
def analyses():
    return {
        "analyses": pd.DataFrame(
            {"pipeline_version": ["5.0", "5.0", "5.0"], "shannon": [2.1, 3.4, 1.8]},
            index=pd.Index(["ERS01", "ERS02", "ERS99"], name="ena_sample"),
        ),
    }


ID_MAP = {"ERS01": "SAMEA1", "ERS02": "SAMEA2"}


def test_rekeys_mapped_identifiers(primary, analyses):
    with pytest.warns(MergeCoverageWarning):
        merged = CrossSourceMerger().merge(primary, analyses, ID_MAP)

    table = merged["analyses"]
    assert list(table.index) == ["SAMEA1", "SAMEA2"]
    assert table.index.name == "accession"
    assert list(table[SOURCE_ID_COLUMN]) == ["ERS01", "ERS02"]
    assert list(table["shannon"]) == [2.1, 3.4]


def test_unmapped_identifiers_are_reported_not_merged(primary, analyses):
    with pytest.warns(MergeCoverageWarning) as record:
        merged = CrossSourceMerger().merge(primary, analyses, ID_MAP)

    warning = record[0].message
    assert warning.dropped == ["ERS99"]
    assert merged.warnings == [warning]
    for frame in merged.values():
        assert "ERS99" not in frame.index
        assert "ERS99" not in frame.to_numpy().ravel().tolist()


def test_full_coverage_is_silent(primary, analyses):
    complete = dict(ID_MAP, ERS99="SAMEA3")
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        merged = CrossSourceMerger().merge(primary, analyses, complete)
    assert len(merged["analyses"]) == 3
    assert merged.warnings == []


def test_name_collision_gets_suffix(primary):
    secondary = {
        "samples": pd.DataFrame({"biome": ["gut"]}, index=["ERS01"]),
    }
    merged = CrossSourceMerger().merge(primary, secondary, ID_MAP)

    assert list(merged) == ["samples", "samples_external"]
    pd.testing.assert_frame_equal(merged["samples"], primary["samples"])
    assert list(merged["samples_external"].index) == ["SAMEA1"]


def test_repeated_collisions_are_numbered(primary):
    primary["samples_external"] = pd.DataFrame()
    secondary = {"samples": pd.DataFrame({"biome": ["gut"]}, index=["ERS01"])}
    merged = CrossSourceMerger().merge(primary, secondary, ID_MAP)
    assert "samples_external_2" in merged


def test_many_to_one_first_match_wins(primary):
    secondary = {
        "analyses": pd.DataFrame({"shannon": [1.0, 2.0]}, index=["ERS01", "ERS01b"]),
    }
    id_map = {"ERS01": "SAMEA1", "ERS01b": "SAMEA1"}
    with pytest.warns(MergeCoverageWarning) as record:
        merged = CrossSourceMerger().merge(primary, secondary, id_map)

    assert list(merged["analyses"]["shannon"]) == [1.0]
    assert record[0].message.collisions == ["ERS01b"]
    assert record[0].message.dropped == []


def test_repeated_foreign_id_keeps_first_row(primary):
    secondary = {
        "analyses": pd.DataFrame({"shannon": [1.0, 2.0, 3.0]}, index=["ERS01", "ERS01", "ERS02"]),
    }
    with pytest.warns(MergeCoverageWarning) as record:
        merged = CrossSourceMerger().merge(primary, secondary, ID_MAP)

    analyses = merged["analyses"]
    assert analyses.index.is_unique
    assert list(analyses.index) == ["SAMEA1", "SAMEA2"]
    assert list(analyses["shannon"]) == [1.0, 3.0]
    assert record[0].message.collisions == ["ERS01"]


def test_column_keyed_tables(primary):
    abundance = {
        "taxonomy": pd.DataFrame(
            {"ERS01": [10, 0], "ERS02": [3, 7], "ERS99": [1, 1]},
            index=["Bacteroides", "Prevotella"],
        ),
    }
    with pytest.warns(MergeCoverageWarning):
        merged = CrossSourceMerger().merge(primary, abundance, ID_MAP, column_keyed=["taxonomy"])

    table = merged["taxonomy"]
    assert list(table.columns) == ["SAMEA1", "SAMEA2"]
    assert list(table.index) == ["Bacteroides", "Prevotella"]
    assert table.loc["Prevotella", "SAMEA2"] == 7


def test_primary_is_not_mutated(primary, analyses):
    with pytest.warns(MergeCoverageWarning):
        CrossSourceMerger().merge(primary, analyses, ID_MAP)
    assert list(primary) == ["samples"]
    assert primary.warnings == []


def test_id_map_forms():
    expected = {"ERS01": "SAMEA1", "ERS02": "SAMEA2"}
    assert id_map_to_dict(pd.Series(expected)) == expected
    frame = pd.DataFrame({"ena": ["ERS01", "ERS02", "ERS01"], "acc": ["SAMEA1", "SAMEA2", "SAMEA9"]})
    assert id_map_to_dict(frame) == expected
    with pytest.raises(TypeError):
        id_map_to_dict(["ERS01"])
