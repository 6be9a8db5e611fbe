"""Orchestrator — the public entry points for searching and retrieving HoloFood data."""

import logging
import threading
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

import pandas as pd
import requests

from holofood_grabber.accessions import AccessionResolver
from holofood_grabber.assemble import ContainerAssembler, ExperimentContainer
from holofood_grabber.cache import ResponseCache
from holofood_grabber.merge import CrossSourceMerger, IdMap
from holofood_grabber.models import DEFAULT_PAGE_SIZE, NormalizedRecord, Query, TableSet
from holofood_grabber.normalize import RecordNormalizer, TableAccumulator, normalize_records
from holofood_grabber.pagination import PaginationWalker
from holofood_grabber.rate_limiter import RateLimiter
from holofood_grabber.transport import DEFAULT_BASE_URL, HoloFoodTransport

logger = logging.getLogger(__name__)


class HoloFoodGrabber:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        backoff_max: float = 10.0,
        timeout: float = 30,
        requests_per_second: float = 10.0,
        cache_dir: Optional[str] = None,
        max_workers: int = 1,
        transport=None,
    ):
        if transport is None:
            self._session = requests.Session()
            transport = HoloFoodTransport(
                base_url,
                session=self._session,
                rate_limiter=RateLimiter(requests_per_second),
                timeout=timeout,
                cache=ResponseCache(cache_dir),
            )
        self._transport = transport
        self.page_size = page_size

        self._walker = PaginationWalker(
            transport,
            max_attempts=max_attempts,
            backoff_multiplier=backoff_multiplier,
            backoff_max=backoff_max,
        )
        self._normalizer = RecordNormalizer()
        self._resolver = AccessionResolver(
            self._walker, self._normalizer, page_size=page_size, max_workers=max_workers
        )
        self._merger = CrossSourceMerger()
        self._assembler = ContainerAssembler()

    def iter_records(
        self,
        entity_type: str,
        filters: Optional[Mapping[str, Any]] = None,
        max_hits: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
        use_cache: bool = False,
    ) -> Iterator[NormalizedRecord]:
        """Lazily yield normalized records for a search."""
        query = Query(entity_type, filters or {}, max_hits, self.page_size, use_cache=use_cache)
        offset = 0
        for page in self._walker.pages(query, cancel):
            yield from normalize_records(page.records, entity_type, self._normalizer, offset)
            offset += len(page.records)

    def search(
        self,
        entity_type: str,
        filters: Optional[Mapping[str, Any]] = None,
        max_hits: Optional[int] = None,
        flatten: bool = True,
        cancel: Optional[threading.Event] = None,
        use_cache: bool = False,
    ) -> Union[pd.DataFrame, TableSet]:
        """Search an entity type.

        Returns the presence/absence summary table when ``flatten`` is true,
        otherwise the table set with every nested relation table.
        """
        tables = TableAccumulator()
        tables.table(entity_type)
        for record in self.iter_records(entity_type, filters, max_hits, cancel, use_cache):
            tables.add(record)
        logger.info("Search of %s matched %d record(s)", entity_type, len(tables.table(entity_type)))

        result = self._assembler.assemble(
            tables.to_table_set(), entity_type, "structured"
        )
        return result[entity_type] if flatten else result

    def fetch_by_accession(
        self,
        entity_type: str,
        accessions: Union[str, Iterable[str]],
        flatten: bool = False,
        on_malformed: str = "warn",
        expand: Iterable[str] = (),
        cancel: Optional[threading.Event] = None,
        use_cache: bool = False,
    ) -> Union[TableSet, pd.DataFrame]:
        """Retrieve full records for each accession.

        ``expand`` names reference relations to fetch as well (e.g.
        ``["animal"]`` for samples). With ``flatten`` the child tables are
        joined onto one wide table as list-valued columns.
        """
        resolution = self._resolver.resolve(
            entity_type, accessions, on_malformed=on_malformed, cancel=cancel, use_cache=use_cache
        )
        for relation in expand:
            self._resolver.expand_references(
                resolution, entity_type, relation, cancel=cancel, use_cache=use_cache
            )
        return self._assembler.assemble(
            resolution.table_set(), entity_type, "flatten" if flatten else "structured"
        )

    def assemble_result(
        self,
        accessions: Union[str, Iterable[str]],
        use_cache: bool = False,
        include_animals: bool = True,
        external: Optional[Mapping[str, pd.DataFrame]] = None,
        id_map: Optional[IdMap] = None,
        column_keyed: Iterable[str] = (),
        on_malformed: str = "warn",
        cancel: Optional[threading.Event] = None,
    ) -> ExperimentContainer:
        """Retrieve samples and wind them into an :class:`ExperimentContainer`.

        ``external`` is a table set from another source (e.g. metagenomic
        analyses) keyed by foreign ids; ``id_map`` translating those ids to
        sample accessions is then required.
        """
        if external is not None and id_map is None:
            raise ValueError("id_map is required to merge external tables")

        resolution = self._resolver.resolve(
            "samples", accessions, on_malformed=on_malformed, cancel=cancel, use_cache=use_cache
        )
        if include_animals:
            self._resolver.expand_references(
                resolution, "samples", "animal", cancel=cancel, use_cache=use_cache
            )
        tables = resolution.table_set()

        external_names = []
        if external is not None:
            merged = self._merger.merge(tables, external, id_map, column_keyed)
            external_names = [name for name in merged if name not in tables]
            tables = merged
        return self._assembler.assemble_experiment(tables, external_names)

    def merge_external(
        self,
        primary: Mapping[str, pd.DataFrame],
        secondary: Mapping[str, pd.DataFrame],
        id_map: IdMap,
        column_keyed: Iterable[str] = (),
    ) -> TableSet:
        return self._merger.merge(primary, secondary, id_map, column_keyed)
