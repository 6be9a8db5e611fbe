"""Bulk retrieval of HoloFood entities by accession."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Optional, Tuple, Union

import pandas as pd

from holofood_grabber.entities import ENTITY_TYPES, get_entity_type, lookup
from holofood_grabber.entities.base import EntityType
from holofood_grabber.errors import MalformedAccessionError, RequestRejectedError
from holofood_grabber.models import DEFAULT_PAGE_SIZE, Query, TableSet
from holofood_grabber.normalize import RecordNormalizer, TableAccumulator
from holofood_grabber.pagination import PaginationWalker

logger = logging.getLogger(__name__)

_ON_MALFORMED = ("warn", "raise")


@dataclass
class Resolution:
    """Tables accumulated for one bulk fetch, plus what could not be fetched."""

    entity_type: str
    accumulator: TableAccumulator
    fetched: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    malformed: Optional[MalformedAccessionError] = None
    # Main-table keys produced by the requested accessions.
    row_keys: List[Hashable] = field(default_factory=list)

    def table_set(self) -> TableSet:
        tables = self.accumulator.to_table_set()
        tables.malformed = self.malformed
        tables.not_found = list(self.not_found)
        self._drop_unrequested(tables)
        for name, missing in dangling_references(tables).items():
            logger.warning(
                "%s references %d accession(s) missing from the fetched tables: %s",
                name, len(missing), ", ".join(missing[:10]),
            )
        return tables

    def _drop_unrequested(self, tables: TableSet) -> None:
        """Keep only the requested rows of the main table.

        Expanded entities may inline siblings of the requested records (an
        animal lists all of its samples); those rows and their child rows
        are removed.
        """
        main = tables.get(self.entity_type)
        if main is None or main.index.name != "accession":
            return
        requested = set(self.row_keys)
        extra = [key for key in main.index if key not in requested]
        if not extra:
            return
        logger.debug("Dropping %d %s row(s) added by expansion", len(extra), self.entity_type)
        tables[self.entity_type] = main[~main.index.isin(extra)]
        fk = f"{get_entity_type(self.entity_type).singular}_accession"
        for name, frame in list(tables.items()):
            if name != self.entity_type and fk in frame.columns:
                tables[name] = frame[~frame[fk].isin(extra)]


def partition_accessions(
    entity: EntityType, accessions: Iterable[str]
) -> Tuple[List[str], List[str]]:
    """Split into (valid, invalid), stripping whitespace and dropping repeats."""
    valid: List[str] = []
    invalid: List[str] = []
    for raw in accessions:
        accession = str(raw).strip()
        if not accession:
            continue
        target = valid if entity.is_valid_accession(accession) else invalid
        if accession not in target:
            target.append(accession)
    return valid, invalid


class AccessionResolver:
    def __init__(
        self,
        walker: PaginationWalker,
        normalizer: Optional[RecordNormalizer] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_workers: int = 1,
    ):
        self._walker = walker
        self._normalizer = normalizer or RecordNormalizer()
        self.page_size = page_size
        self.max_workers = max(1, max_workers)

    def resolve(
        self,
        entity_type: str,
        accessions: Union[str, Iterable[str]],
        on_malformed: str = "warn",
        cancel: Optional[threading.Event] = None,
        use_cache: bool = False,
    ) -> Resolution:
        """Fetch every well-formed accession and union the results.

        Malformed accessions are never sent to the API. With
        ``on_malformed="raise"`` (or when nothing valid is left) a
        :class:`MalformedAccessionError` is raised before any request.
        """
        if on_malformed not in _ON_MALFORMED:
            raise ValueError(f"on_malformed must be one of {_ON_MALFORMED}")
        entity = get_entity_type(entity_type)
        if isinstance(accessions, str):
            accessions = [accessions]
        valid, invalid = partition_accessions(entity, accessions)

        malformed = None
        if invalid:
            malformed = MalformedAccessionError(entity_type, invalid, valid)
            if on_malformed == "raise" or not valid:
                raise malformed
            logger.warning("Skipping %s", malformed)

        combined = TableAccumulator()
        combined.table(entity_type)
        resolution = Resolution(entity_type, combined, malformed=malformed)

        for accession, tables in self._fetch_all(entity, valid, cancel, use_cache):
            if tables is None:
                resolution.not_found.append(accession)
                continue
            combined.merge(tables)
            resolution.fetched.append(accession)
            for key in tables.table(entity_type).keys():
                if key not in resolution.row_keys:
                    resolution.row_keys.append(key)

        logger.info(
            "Fetched %d of %d %s accession(s)",
            len(resolution.fetched), len(valid), entity_type,
        )
        return resolution

    def expand_references(
        self,
        resolution: Resolution,
        table: str,
        relation: str,
        cancel: Optional[threading.Event] = None,
        use_cache: bool = False,
    ) -> Resolution:
        """Fetch the entities a table only references and add them in place.

        ``relation`` is either a reference list column named after an entity
        type (``samples``) or a scalar column holding a singular entity name
        (``animal``).
        """
        target = _reference_target(relation)
        source = resolution.accumulator.tables.get(table)
        if source is None:
            return resolution

        parents: Dict[str, str] = {}
        for key in source.keys():
            value = source.get(key).get(relation)
            ids = value if isinstance(value, list) else [value]
            for ref in ids:
                if isinstance(ref, str) and ref and ref not in parents:
                    parents[ref] = key
        if not parents:
            return resolution

        fetched = self.resolve(
            target.name, list(parents), cancel=cancel, use_cache=use_cache
        )
        if relation == target.name:
            # Referenced children point back at the first parent listing them.
            fk = f"{get_entity_type(table).singular}_accession" if table in ENTITY_TYPES else None
            if fk:
                children = fetched.accumulator.table(target.name)
                for child_key in children.keys():
                    if child_key in parents:
                        children.add(child_key, {fk: parents[child_key]})
        resolution.accumulator.merge(fetched.accumulator)
        resolution.not_found.extend(fetched.not_found)
        return resolution

    def _fetch_all(
        self,
        entity: EntityType,
        accessions: List[str],
        cancel: Optional[threading.Event],
        use_cache: bool,
    ) -> List[Tuple[str, Optional[TableAccumulator]]]:
        def fetch(accession: str) -> Tuple[str, Optional[TableAccumulator]]:
            return accession, self._fetch_one(entity, accession, cancel, use_cache)

        if self.max_workers > 1 and len(accessions) > 1:
            # Each worker builds its own tables; merging happens afterwards, in order.
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                return list(pool.map(fetch, accessions))
        return [fetch(accession) for accession in accessions]

    def _fetch_one(
        self,
        entity: EntityType,
        accession: str,
        cancel: Optional[threading.Event],
        use_cache: bool,
    ) -> Optional[TableAccumulator]:
        if entity.member_path is not None:
            return self._fetch_catalogue(entity, accession, cancel, use_cache)

        query = Query(
            entity.name,
            page_size=self.page_size,
            accession=accession,
            use_cache=use_cache,
        )
        try:
            records = list(self._walker.records(query, cancel))
        except RequestRejectedError as exc:
            if exc.status == 404:
                logger.warning("%s %s not found", entity.name, accession)
                return None
            raise

        if not records:
            logger.warning("%s %s returned no record", entity.name, accession)
            return None
        tables = TableAccumulator()
        for position, raw in enumerate(records):
            raw = dict(raw)
            raw.setdefault("accession", accession)
            tables.add(
                self._normalizer.normalize(
                    raw, entity.name, fallback_key=(accession, entity.name, position)
                )
            )
        return tables

    def _fetch_catalogue(
        self,
        entity: EntityType,
        accession: str,
        cancel: Optional[threading.Event],
        use_cache: bool,
    ) -> Optional[TableAccumulator]:
        """Catalogue detail record with its paged members inlined under it."""
        detail_query = Query(
            entity.name, accession=accession, use_cache=use_cache, members=False
        )
        member_query = Query(
            entity.name,
            page_size=self.page_size,
            accession=accession,
            use_cache=use_cache,
        )
        try:
            details = list(self._walker.records(detail_query, cancel))
            members = list(self._walker.records(member_query, cancel))
        except RequestRejectedError as exc:
            if exc.status == 404:
                logger.warning("%s %s not found", entity.name, accession)
                return None
            raise

        catalogue = dict(details[0]) if details else {}
        if "accession" not in catalogue and "id" not in catalogue:
            catalogue["accession"] = accession
        catalogue[entity.member_path] = members
        tables = TableAccumulator()
        tables.add(self._normalizer.normalize(catalogue, entity.name))
        return tables


def flatten_tables(tables: TableSet, entity_type: str) -> pd.DataFrame:
    """Join child tables onto the ``entity_type`` table as list-valued columns.

    A child table takes part when it carries the main type's foreign-key
    column; its columns appear as ``<table>.<column>`` holding one list per
    main row (empty when the row has no children).
    """
    entity = get_entity_type(entity_type)
    main = tables.get(entity_type)
    if main is None:
        main = pd.DataFrame(index=pd.Index([], name="accession"))
    flat = main.copy()
    fk = entity.foreign_key

    for name, frame in tables.items():
        if name == entity_type or fk not in frame.columns:
            continue
        child = frame.reset_index() if frame.index.name == "accession" else frame
        value_columns = [c for c in child.columns if c != fk]
        if not value_columns:
            continue
        grouped = child.dropna(subset=[fk]).groupby(fk, sort=False)[value_columns].agg(list)
        grouped.columns = [f"{name}.{c}" for c in value_columns]
        flat = flat.join(grouped, how="left")
        for column in grouped.columns:
            flat[column] = [v if isinstance(v, list) else [] for v in flat[column]]

    flat.attrs["malformed_accessions"] = (
        list(tables.malformed.invalid) if getattr(tables, "malformed", None) else []
    )
    flat.attrs["not_found"] = list(getattr(tables, "not_found", []))
    return flat


def dangling_references(tables: TableSet) -> Dict[str, List[str]]:
    """Foreign keys whose target type was fetched but lacks the key.

    Keys are ``"<table>.<column>"``; only types present in ``tables`` count.
    """
    by_column = {}
    for entity in ENTITY_TYPES.values():
        if entity.name in tables:
            by_column[entity.foreign_key] = entity.name
            by_column[entity.singular] = entity.name

    dangling: Dict[str, List[str]] = {}
    for name, frame in tables.items():
        for column in frame.columns:
            target = by_column.get(column)
            if target is None or target == name:
                continue
            known = set(tables[target].index)
            missing = []
            for value in frame[column]:
                if isinstance(value, str) and value not in known and value not in missing:
                    missing.append(value)
            if missing:
                dangling[f"{name}.{column}"] = missing
    return dangling


def _reference_target(relation: str) -> EntityType:
    entity = lookup(relation)
    if entity is not None:
        return entity
    for candidate in ENTITY_TYPES.values():
        if candidate.singular == relation:
            return candidate
    raise ValueError(f"{relation!r} does not name an entity type")
