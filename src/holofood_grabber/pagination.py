"""Walk a paginated HoloFood listing one page request at a time."""

import logging
import threading
from typing import Iterator, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from holofood_grabber.errors import (
    QueryCancelledError,
    RemoteFetchError,
    RequestRejectedError,
    TransientTransportError,
)
from holofood_grabber.models import Query, RawPage

logger = logging.getLogger(__name__)


class PaginationWalker:
    """Yield the pages of a query, retrying transient failures per page.

    ``transport`` is anything with a ``fetch(entity_type, params, cursor,
    accession=..., use_cache=..., members=...) -> RawPage`` method.
    """

    def __init__(
        self,
        transport,
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        backoff_max: float = 10.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._transport = transport
        self.max_attempts = max_attempts
        self.backoff_multiplier = backoff_multiplier
        self.backoff_max = backoff_max

    def pages(
        self, query: Query, cancel: Optional[threading.Event] = None
    ) -> Iterator[RawPage]:
        cursor: Optional[str] = None
        seen = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise QueryCancelledError(
                    f"Fetch of {query.entity_type} cancelled after {seen} record(s)"
                )
            page = self._fetch_page(query, cursor)
            if not page.records:
                return

            if query.max_hits is not None:
                remaining = query.max_hits - seen
                if len(page.records) > remaining:
                    page = page.truncated(remaining)
            seen += len(page.records)
            logger.debug(
                "%s: page at cursor %r gave %d record(s), %d so far (total %s)",
                query.entity_type, cursor, len(page.records), seen, page.total_count,
            )
            yield page

            if query.max_hits is not None and seen >= query.max_hits:
                return
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    def records(
        self, query: Query, cancel: Optional[threading.Event] = None
    ) -> Iterator[dict]:
        for page in self.pages(query, cancel):
            yield from page.records

    def _fetch_page(self, query: Query, cursor: Optional[str]) -> RawPage:
        params = query.params()
        params["page_size"] = query.page_size
        if query.max_hits is not None:
            params["page_size"] = min(query.page_size, query.max_hits)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_multiplier, max=self.backoff_max
            ),
            retry=retry_if_exception_type(TransientTransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(
                self._transport.fetch,
                query.entity_type,
                params,
                cursor,
                accession=query.accession,
                use_cache=query.use_cache,
                members=query.members,
            )
        except RequestRejectedError as exc:
            if exc.entity_type is None:
                exc.entity_type = query.entity_type
            if exc.accession is None:
                exc.accession = query.accession
            raise
        except TransientTransportError as exc:
            attempts = retrying.statistics.get("attempt_number", self.max_attempts)
            raise RemoteFetchError(
                query.entity_type,
                cursor,
                exc.status,
                attempts,
                accession=query.accession,
            ) from exc
