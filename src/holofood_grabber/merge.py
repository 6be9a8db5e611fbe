"""Re-key tables from a secondary source onto HoloFood accessions."""

import logging
import warnings
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Set, Tuple, Union

import pandas as pd

from holofood_grabber.errors import MergeCoverageWarning
from holofood_grabber.models import TableSet

logger = logging.getLogger(__name__)

IdMap = Union[Mapping[Hashable, str], pd.Series, pd.DataFrame]

SOURCE_ID_COLUMN = "source_id"


def id_map_to_dict(id_map: IdMap) -> Dict[str, str]:
    """Normalize an id map to ``{foreign id: internal accession}``.

    Accepts a mapping, a Series indexed by foreign id, or a frame whose
    first two columns are (foreign id, internal accession). A foreign id
    listed twice keeps its first internal accession.
    """
    if isinstance(id_map, pd.DataFrame):
        if id_map.shape[1] < 2:
            raise ValueError("An id-map frame needs (foreign id, accession) columns")
        pairs: Iterable[Tuple[Any, Any]] = zip(id_map.iloc[:, 0], id_map.iloc[:, 1])
    elif isinstance(id_map, pd.Series):
        pairs = id_map.items()
    elif isinstance(id_map, Mapping):
        pairs = id_map.items()
    else:
        raise TypeError(f"Unsupported id map type: {type(id_map).__name__}")

    mapping: Dict[str, str] = {}
    for foreign, internal in pairs:
        if foreign is None or internal is None or pd.isna(foreign) or pd.isna(internal):
            continue
        foreign = str(foreign)
        if foreign in mapping:
            if mapping[foreign] != str(internal):
                logger.warning(
                    "Id %s maps to both %s and %s; keeping %s",
                    foreign, mapping[foreign], internal, mapping[foreign],
                )
            continue
        mapping[foreign] = str(internal)
    return mapping


class CrossSourceMerger:
    """Append a secondary table set to a primary one under internal accessions.

    Tables are keyed by their index (foreign ids on rows); names listed in
    ``column_keyed`` carry foreign ids on their columns instead, as
    feature-by-sample abundance tables do.
    """

    def __init__(self, suffix: str = "external"):
        self.suffix = suffix

    def merge(
        self,
        primary: Mapping[str, pd.DataFrame],
        secondary: Mapping[str, pd.DataFrame],
        id_map: IdMap,
        column_keyed: Iterable[str] = (),
    ) -> TableSet:
        mapping = id_map_to_dict(id_map)
        column_keyed = set(column_keyed)

        merged = primary.copy() if isinstance(primary, TableSet) else TableSet(primary)
        dropped: List[str] = []
        collisions: List[str] = []

        for name, frame in secondary.items():
            by_columns = name in column_keyed
            source = frame.T if by_columns else frame
            rekeyed, table_dropped, table_collisions = self._rekey(
                source, mapping, keep_source_ids=not by_columns
            )
            if by_columns:
                rekeyed = rekeyed.T
            _extend_unique(dropped, table_dropped)
            _extend_unique(collisions, table_collisions)

            target = self._free_name(name, merged)
            if target != name:
                logger.info("Table %s already present; merged as %s", name, target)
            merged[target] = rekeyed

        if dropped or collisions:
            warning = MergeCoverageWarning(dropped, collisions)
            logger.warning("%s", warning)
            merged.warnings.append(warning)
            warnings.warn(warning, stacklevel=2)
        return merged

    @staticmethod
    def _rekey(
        frame: pd.DataFrame, mapping: Mapping[str, str], keep_source_ids: bool = True
    ) -> Tuple[pd.DataFrame, List[str], List[str]]:
        positions: List[int] = []
        accessions: List[str] = []
        source_ids: List[str] = []
        claimed: Set[str] = set()  # internal accessions already filled
        dropped: List[str] = []
        collisions: List[str] = []

        for position, foreign in enumerate(frame.index):
            foreign = str(foreign)
            internal = mapping.get(foreign)
            if internal is None:
                _extend_unique(dropped, [foreign])
                continue
            if internal in claimed:
                # Many-to-one remap or a repeated row: the first row wins.
                _extend_unique(collisions, [foreign])
                continue
            claimed.add(internal)
            positions.append(position)
            accessions.append(internal)
            source_ids.append(foreign)

        rekeyed = frame.iloc[positions].copy()
        rekeyed.index = pd.Index(accessions, name="accession")
        if keep_source_ids and SOURCE_ID_COLUMN not in rekeyed.columns:
            rekeyed.insert(0, SOURCE_ID_COLUMN, source_ids)
        return rekeyed, dropped, collisions

    def _free_name(self, name: str, tables: Mapping[str, Any]) -> str:
        if name not in tables:
            return name
        candidate = f"{name}_{self.suffix}"
        counter = 2
        while candidate in tables:
            candidate = f"{name}_{self.suffix}_{counter}"
            counter += 1
        return candidate


def _extend_unique(target: List[str], values: Iterable[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)
