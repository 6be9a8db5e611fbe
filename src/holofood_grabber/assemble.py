"""Build the value handed back to callers from the accumulated tables."""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from holofood_grabber.accessions import flatten_tables
from holofood_grabber.entities import METAGENOMIC_SAMPLE_TYPES
from holofood_grabber.errors import EmptyResultError
from holofood_grabber.merge import SOURCE_ID_COLUMN
from holofood_grabber.models import TableSet

logger = logging.getLogger(__name__)

POLICIES = ("flatten", "structured")

FEATURE_COLUMN = "marker_name"
SAMPLE_COLUMN = "sample_accession"
VALUE_COLUMN = "measurement"


@dataclass
class SampleTypeExperiment:
    """Measurements of one sample type: features on rows, samples on columns."""

    assay: pd.DataFrame
    row_data: pd.DataFrame
    col_data: pd.DataFrame
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def shape(self):
        return self.assay.shape

    @property
    def samples(self) -> List[str]:
        return list(self.assay.columns)


@dataclass
class ExperimentContainer:
    """Sample-type experiments sharing one sample axis.

    ``col_data`` annotates every sample (with its animal's attributes);
    ``sample_map`` lists, per experiment, which sample and animal each
    assay column belongs to.
    """

    experiments: Dict[str, SampleTypeExperiment]
    col_data: pd.DataFrame
    sample_map: pd.DataFrame
    tables: TableSet = field(default_factory=TableSet)
    warnings: List[Warning] = field(default_factory=list)

    @classmethod
    def blank(cls, tables: Optional[TableSet] = None) -> "ExperimentContainer":
        return cls(
            experiments={},
            col_data=pd.DataFrame(index=pd.Index([], name="accession")),
            sample_map=pd.DataFrame(columns=["assay", "primary", "colname"]),
            tables=tables if tables is not None else TableSet(),
        )

    @property
    def empty(self) -> bool:
        return not self.experiments and self.col_data.empty

    def names(self) -> List[str]:
        return list(self.experiments)

    def __getitem__(self, name: str) -> SampleTypeExperiment:
        return self.experiments[name]

    def __contains__(self, name: str) -> bool:
        return name in self.experiments

    def __len__(self) -> int:
        return len(self.experiments)


class ContainerAssembler:
    def __init__(self, policy: str = "structured"):
        if policy not in POLICIES:
            raise ValueError(f"policy must be one of {POLICIES}")
        self.policy = policy

    def assemble(
        self, tables: TableSet, entity_type: str, policy: Optional[str] = None
    ) -> Union[pd.DataFrame, TableSet]:
        """``flatten``: one wide frame for ``entity_type``; ``structured``: the table set."""
        policy = policy or self.policy
        if policy not in POLICIES:
            raise ValueError(f"policy must be one of {POLICIES}")

        main = tables.get(entity_type)
        if main is None or main.empty:
            _warn_empty(tables, EmptyResultError(entity_type))

        if policy == "flatten":
            return flatten_tables(tables, entity_type)
        return tables

    def assemble_experiment(
        self, tables: TableSet, external: Iterable[str] = ()
    ) -> ExperimentContainer:
        """Wind sample tables into an :class:`ExperimentContainer`.

        Every sample type with structured measurements becomes one
        experiment. Tables named in ``external`` (already re-keyed to
        sample accessions) add numeric experiments or sample annotations.
        """
        samples = tables.get("samples")
        if samples is None or samples.empty:
            container = ExperimentContainer.blank(tables)
            _warn_empty(container, EmptyResultError("samples"))
            return container

        col_data = self._shared_col_data(tables, samples)
        experiments: Dict[str, SampleTypeExperiment] = {}

        long = tables.get("sample_structured_metadata")
        if "sample_type" in samples.columns:
            for sample_type in samples["sample_type"].dropna().unique():
                ids = list(samples.index[samples["sample_type"] == sample_type])
                rows = None
                if long is not None and SAMPLE_COLUMN in long.columns:
                    rows = long[long[SAMPLE_COLUMN].isin(ids)]
                if rows is None or rows.empty or FEATURE_COLUMN not in rows.columns:
                    if sample_type not in METAGENOMIC_SAMPLE_TYPES:
                        logger.info("No measurements for %s samples", sample_type)
                    continue
                experiments[sample_type] = self._build_experiment(rows, ids)

        for name in external:
            frame = tables.get(name)
            if frame is None:
                continue
            frame = frame[frame.index.isin(col_data.index)]
            numeric = frame.select_dtypes("number")
            annotations = frame.drop(columns=numeric.columns)
            if numeric.shape[1]:
                experiments[name] = SampleTypeExperiment(
                    assay=numeric.T,
                    row_data=pd.DataFrame(index=numeric.columns),
                    col_data=annotations,
                    metadata={"source": name},
                )
            else:
                extra = annotations.drop(columns=[SOURCE_ID_COLUMN], errors="ignore")
                col_data = col_data.join(extra.add_prefix(f"{name}_"), how="left")

        animal_column = "animal" if "animal" in col_data.columns else None
        entries = []
        for name, experiment in experiments.items():
            for sample in experiment.samples:
                primary = sample
                if animal_column is not None and sample in col_data.index:
                    value = col_data.at[sample, animal_column]
                    if isinstance(value, str):
                        primary = value
                entries.append({"assay": name, "primary": primary, "colname": sample})
        sample_map = pd.DataFrame(entries, columns=["assay", "primary", "colname"])

        container = ExperimentContainer(experiments, col_data, sample_map, tables)
        container.warnings.extend(getattr(tables, "warnings", []))
        return container

    @staticmethod
    def _shared_col_data(tables: TableSet, samples: pd.DataFrame) -> pd.DataFrame:
        col_data = samples.copy()
        animals = tables.get("animals")
        link = "animal" if "animal" in col_data.columns else "animal_accession"
        if animals is None or animals.empty or link not in col_data.columns:
            return col_data

        attributes = animals[[c for c in animals.columns if _is_scalar_column(animals[c])]]
        attributes = attributes.drop(
            columns=[c for c in attributes.columns if c.startswith("has_")]
        )
        animal_metadata = tables.get("animal_structured_metadata")
        if animal_metadata is not None and {
            "animal_accession", FEATURE_COLUMN, VALUE_COLUMN
        } <= set(animal_metadata.columns):
            wide = (
                animal_metadata.drop_duplicates(["animal_accession", FEATURE_COLUMN])
                .pivot(index="animal_accession", columns=FEATURE_COLUMN, values=VALUE_COLUMN)
            )
            wide.columns.name = None
            attributes = attributes.join(wide, how="left")
        attributes = attributes.add_prefix("animal_")
        attributes = attributes.drop(columns=[c for c in attributes.columns if c in col_data.columns])
        return col_data.join(attributes, on=link)

    def _build_experiment(self, rows: pd.DataFrame, ids: List[str]) -> SampleTypeExperiment:
        features = list(rows[FEATURE_COLUMN].dropna().unique())
        samples = [s for s in ids if s in set(rows[SAMPLE_COLUMN])]
        assay = (
            rows.drop_duplicates([FEATURE_COLUMN, SAMPLE_COLUMN])
            .pivot(index=FEATURE_COLUMN, columns=SAMPLE_COLUMN, values=VALUE_COLUMN)
            .reindex(index=features, columns=samples)
        )
        assay.columns.name = None
        assay = _coerce_numeric(assay)

        row_data = pd.DataFrame(index=pd.Index(features, name=FEATURE_COLUMN))
        col_data = pd.DataFrame(index=pd.Index(samples, name="accession"))
        metadata: Dict[str, Any] = {}
        for column in rows.columns:
            if column in (FEATURE_COLUMN, SAMPLE_COLUMN, VALUE_COLUMN):
                continue
            values = rows[column]
            if _hashable(values).nunique(dropna=False) <= 1:
                metadata[column] = values.iloc[0] if len(values) else None
            elif _constant_within(rows, FEATURE_COLUMN, column):
                row_data[column] = rows.groupby(FEATURE_COLUMN, sort=False)[column].first()
            elif _constant_within(rows, SAMPLE_COLUMN, column):
                col_data[column] = rows.groupby(SAMPLE_COLUMN, sort=False)[column].first()
            else:
                logger.debug("Column %s varies per measurement; not kept", column)
        return SampleTypeExperiment(assay, row_data, col_data, metadata)


def _warn_empty(target, warning: EmptyResultError) -> None:
    logger.info("%s", warning)
    if hasattr(target, "warnings"):
        target.warnings.append(warning)
    warnings.warn(warning, stacklevel=3)


def _hashable(values: pd.Series) -> pd.Series:
    return values.map(lambda v: tuple(v) if isinstance(v, list) else v)


def _constant_within(rows: pd.DataFrame, by: str, column: str) -> bool:
    keyed = rows[[by]].assign(_value=_hashable(rows[column]))
    return bool(keyed.groupby(by)["_value"].nunique(dropna=False).le(1).all())


def _is_scalar_column(values: pd.Series) -> bool:
    return not values.map(lambda v: isinstance(v, (list, dict))).any()


def _coerce_numeric(assay: pd.DataFrame) -> pd.DataFrame:
    """Convert to numbers when every present value parses as one."""
    converted = assay.apply(pd.to_numeric, errors="coerce")
    if int(converted.isna().sum().sum()) == int(assay.isna().sum().sum()):
        return converted
    return assay
