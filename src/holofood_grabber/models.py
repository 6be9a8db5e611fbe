"""Query, page and table types shared by the walker, normalizer and resolver."""

from collections import OrderedDict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Union

import pandas as pd

from holofood_grabber.entities import get_entity_type
from holofood_grabber.errors import InvalidQueryError

# Marker stored for attributes a record never reported.
MISSING = pd.NA

DEFAULT_PAGE_SIZE = 50

_SCALAR_TYPES = (str, int, float, bool)


@dataclass(frozen=True)
class Query:
    """One validated request against an entity type. Consumed once per call."""

    entity_type: str
    filters: Mapping[str, Any] = field(default_factory=dict)
    max_hits: Optional[int] = None  # None means unbounded
    page_size: int = DEFAULT_PAGE_SIZE
    accession: Optional[str] = None
    use_cache: bool = False
    # With an accession on a catalogue type: page through members (True)
    # or read the catalogue detail record (False).
    members: bool = True

    def __post_init__(self) -> None:
        entity = get_entity_type(self.entity_type)
        unknown = sorted(set(self.filters) - entity.filter_keys)
        if unknown:
            allowed = ", ".join(sorted(entity.filter_keys)) or "none"
            raise InvalidQueryError(
                f"Unknown filter(s) for {self.entity_type}: {', '.join(unknown)} "
                f"(allowed: {allowed})",
                entity_type=self.entity_type,
            )
        for key, value in self.filters.items():
            values = value if isinstance(value, (list, tuple)) else [value]
            if not all(isinstance(v, _SCALAR_TYPES) for v in values):
                raise InvalidQueryError(
                    f"Filter {key!r} must be a string, number or boolean, got {value!r}",
                    entity_type=self.entity_type,
                )
        if self.max_hits is not None and (
            isinstance(self.max_hits, bool)
            or not isinstance(self.max_hits, int)
            or self.max_hits < 1
        ):
            raise InvalidQueryError(
                f"max_hits must be a positive integer or None, got {self.max_hits!r}",
                entity_type=self.entity_type,
            )
        if not isinstance(self.page_size, int) or self.page_size < 1:
            raise InvalidQueryError(
                f"page_size must be a positive integer, got {self.page_size!r}",
                entity_type=self.entity_type,
            )
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))

    def params(self) -> Dict[str, Any]:
        """Filters encoded for the query string."""
        encoded: Dict[str, Any] = {}
        for key, value in self.filters.items():
            if isinstance(value, bool):
                encoded[key] = "true" if value else "false"
            elif isinstance(value, (list, tuple)):
                encoded[key] = [str(v) for v in value]
            else:
                encoded[key] = value
        return encoded


@dataclass
class RawPage:
    records: List[dict]
    next_cursor: Optional[str] = None
    total_count: Optional[int] = None

    def truncated(self, limit: int) -> "RawPage":
        return RawPage(self.records[:limit], self.next_cursor, self.total_count)


@dataclass
class Inlined:
    """Relation whose child entities were embedded in the parent record."""

    children: List["NormalizedRecord"]

    def __len__(self) -> int:
        return len(self.children)


@dataclass
class Reference:
    """Relation that only lists child accessions; needs a separate fetch."""

    entity_type: str
    ids: List[str]

    def __len__(self) -> int:
        return len(self.ids)


Relation = Union[Inlined, Reference]


@dataclass
class NormalizedRecord:
    table: str
    key: Hashable
    row: Dict[str, Any]
    relations: Dict[str, Relation] = field(default_factory=dict)
    presence: Dict[str, bool] = field(default_factory=dict)


class NormalizedTable:
    """Rows of one entity type, in first-seen order, with an evolving column set.

    Columns are the union of every attribute observed; rows that never
    reported a column get ``MISSING`` when the table is materialized.
    """

    def __init__(self, name: str):
        self.name = name
        self._rows: "OrderedDict[Hashable, Dict[str, Any]]" = OrderedDict()
        self._columns: List[str] = []
        self._column_set = set()
        self.presence_columns = set()
        self.conflicts = 0

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._rows

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    def keys(self) -> List[Hashable]:
        return list(self._rows)

    def get(self, key: Hashable) -> Optional[Dict[str, Any]]:
        row = self._rows.get(key)
        return dict(row) if row is not None else None

    def add(
        self, key: Hashable, row: Mapping[str, Any], presence: Iterable[str] = ()
    ) -> str:
        """Insert a row. Returns "added", "duplicate" or "merged"."""
        self.presence_columns.update(presence)
        for col in row:
            if col not in self._column_set:
                self._column_set.add(col)
                self._columns.append(col)

        existing = self._rows.get(key)
        if existing is None:
            self._rows[key] = dict(row)
            return "added"
        if existing == row:
            return "duplicate"

        changed = False
        for col, value in row.items():
            if col not in existing:
                existing[col] = value
                changed = True
            elif not _same(existing[col], value):
                self.conflicts += 1
        return "merged" if changed else "duplicate"

    def merge(self, other: "NormalizedTable") -> None:
        for key, row in other._rows.items():
            self.add(key, row, other.presence_columns)

    @property
    def keyed_by_accession(self) -> bool:
        return bool(self._rows) and all(isinstance(k, str) for k in self._rows)

    def to_frame(self) -> pd.DataFrame:
        records = []
        for row in self._rows.values():
            record = {}
            for col in self._columns:
                value = row.get(col)
                if value is None:
                    value = False if col in self.presence_columns else MISSING
                record[col] = value
            records.append(record)
        if self.keyed_by_accession:
            index = pd.Index(list(self._rows), name="accession")
            return pd.DataFrame(records, index=index, columns=self._columns)
        frame = pd.DataFrame(records, columns=self._columns)
        if not self._rows:
            frame.index.name = "accession"
        elif any(isinstance(k, str) for k in self._rows):
            # Mixed keys: rows without an accession get MISSING.
            frame.insert(
                0,
                "accession",
                [k if isinstance(k, str) else MISSING for k in self._rows],
            )
        return frame


class TableSet(dict):
    """Mapping of table name -> ``pandas.DataFrame`` plus the fetch report."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.malformed = None
        self.not_found: List[str] = []
        self.warnings: List[Warning] = []

    def copy(self) -> "TableSet":
        clone = TableSet(self)
        clone.malformed = self.malformed
        clone.not_found = list(self.not_found)
        clone.warnings = list(self.warnings)
        return clone


def _same(a: Any, b: Any) -> bool:
    try:
        if pd.isna(a) and pd.isna(b):
            return True
    except (TypeError, ValueError):
        pass
    return a == b
