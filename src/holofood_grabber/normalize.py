"""Flatten nested HoloFood JSON records into rows plus typed child tables."""

import logging
from collections import OrderedDict
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

from holofood_grabber.entities import ENTITY_TYPES, SAMPLE_TYPES, singular_of
from holofood_grabber.models import (
    Inlined,
    NormalizedRecord,
    NormalizedTable,
    Reference,
    Relation,
    TableSet,
)

logger = logging.getLogger(__name__)

KEY_FIELDS = ("accession", "id")


def presence_column(relation: str) -> str:
    return f"has_{relation}"


def sample_type_presence_column(sample_type: str) -> str:
    return f"has_{sample_type}_samples"


def child_table_name(parent_table: str, relation: str) -> str:
    """Relations named after an entity type share that type's table."""
    if relation in ENTITY_TYPES:
        return relation
    return f"{singular_of(parent_table)}_{relation}"


class RecordNormalizer:
    """Turn one raw entity into a :class:`NormalizedRecord`.

    Scalars become row attributes, nested objects are flattened into
    ``parent_child`` columns, lists of objects become inlined relations and
    lists of accessions under an entity-type name become references.
    Reference relations are never followed here.
    """

    def normalize(
        self,
        raw: Mapping[str, Any],
        table: str,
        fallback_key: Optional[Hashable] = None,
        parent: Optional[Tuple[str, Hashable]] = None,
    ) -> NormalizedRecord:
        row: Dict[str, Any] = {}
        raw_relations: "OrderedDict[str, list]" = OrderedDict()
        self._flatten(raw, "", row, raw_relations)

        key: Optional[Hashable] = None
        for field in KEY_FIELDS:
            if row.get(field) is not None:
                key = str(row.pop(field))
                break
        if key is None:
            key = fallback_key if fallback_key is not None else (None, table, 0)

        if parent is not None:
            parent_table, parent_key = parent
            if isinstance(parent_key, str):
                row[f"{singular_of(parent_table)}_accession"] = parent_key

        relations: Dict[str, Relation] = OrderedDict()
        for name, items in raw_relations.items():
            relations[name] = self._relation(table, key, name, items)
            if isinstance(relations[name], Reference):
                row[name] = list(relations[name].ids)

        presence = self._presence(relations)
        row.update(presence)
        return NormalizedRecord(table, key, row, relations, presence)

    def _flatten(
        self,
        raw: Mapping[str, Any],
        prefix: str,
        row: Dict[str, Any],
        raw_relations: Dict[str, list],
    ) -> None:
        for field, value in raw.items():
            name = f"{prefix}{field}"
            if isinstance(value, Mapping):
                self._flatten(value, f"{name}_", row, raw_relations)
            elif isinstance(value, list):
                if not value or any(isinstance(v, Mapping) for v in value):
                    raw_relations[name] = value
                elif name in ENTITY_TYPES and all(isinstance(v, str) for v in value):
                    raw_relations[name] = value
                else:
                    row[name] = list(value)
            else:
                row[name] = value

    def _relation(
        self, table: str, key: Hashable, name: str, items: List[Any]
    ) -> Relation:
        if items and all(isinstance(v, str) for v in items):
            return Reference(name, list(items))
        child_table = child_table_name(table, name)
        children = []
        for position, item in enumerate(items):
            if not isinstance(item, Mapping):
                item = {"value": item}
            children.append(
                self.normalize(
                    item,
                    child_table,
                    fallback_key=(key, name, position),
                    parent=(table, key),
                )
            )
        return Inlined(children)

    @staticmethod
    def _presence(relations: Mapping[str, Relation]) -> Dict[str, bool]:
        presence = {presence_column(name): len(rel) > 0 for name, rel in relations.items()}
        samples = relations.get("samples")
        if isinstance(samples, Inlined):
            found = {child.row.get("sample_type") for child in samples.children}
            for sample_type in SAMPLE_TYPES:
                presence[sample_type_presence_column(sample_type)] = sample_type in found
        return presence


class TableAccumulator:
    """Per-type tables accumulated across the pages and fetches of one call."""

    def __init__(self):
        self.tables: "OrderedDict[str, NormalizedTable]" = OrderedDict()

    def table(self, name: str) -> NormalizedTable:
        if name not in self.tables:
            self.tables[name] = NormalizedTable(name)
        return self.tables[name]

    def add(self, record: NormalizedRecord) -> None:
        self.table(record.table).add(record.key, record.row, record.presence)
        for relation in record.relations.values():
            if isinstance(relation, Inlined):
                for child in relation.children:
                    self.add(child)

    def add_all(self, records: Iterable[NormalizedRecord]) -> None:
        for record in records:
            self.add(record)

    def merge(self, other: "TableAccumulator") -> None:
        for name, table in other.tables.items():
            self.table(name).merge(table)

    def __len__(self) -> int:
        return len(self.tables)

    def to_table_set(self) -> TableSet:
        tables = TableSet()
        for name, table in self.tables.items():
            if table.conflicts:
                logger.warning(
                    "%s: %d attribute value(s) disagreed between fetches; "
                    "first observed values kept", name, table.conflicts,
                )
            tables[name] = table.to_frame()
        return tables


def normalize_records(
    records: Iterable[Mapping[str, Any]],
    table: str,
    normalizer: Optional[RecordNormalizer] = None,
    offset: int = 0,
) -> List[NormalizedRecord]:
    normalizer = normalizer or RecordNormalizer()
    return [
        normalizer.normalize(raw, table, fallback_key=(None, table, offset + i))
        for i, raw in enumerate(records)
    ]
