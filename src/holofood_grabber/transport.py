"""HTTP client for the HoloFood REST API.

The transport performs exactly one HTTP request per call and classifies
failures; retrying is the pagination walker's job.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import requests

from holofood_grabber.cache import ResponseCache
from holofood_grabber.entities import get_entity_type
from holofood_grabber.errors import (
    MalformedRequestError,
    RequestRejectedError,
    TransientTransportError,
)
from holofood_grabber.models import DEFAULT_PAGE_SIZE, RawPage
from holofood_grabber.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.holofooddata.org/api"
USER_AGENT = "holofoodGrabber/0.1.0"


class HoloFoodTransport:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 30,
        cache: Optional[ResponseCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self._limiter = rate_limiter or RateLimiter(10.0)
        self.timeout = timeout
        self.cache = cache

    def fetch(
        self,
        entity_type: str,
        params: Mapping[str, Any],
        cursor: Optional[str] = None,
        accession: Optional[str] = None,
        use_cache: bool = False,
        members: bool = True,
    ) -> RawPage:
        """Fetch one page of ``entity_type`` records.

        With ``accession`` set, entity types that have a detail endpoint
        return a single-record page. Catalogue types page through their
        members unless ``members`` is False, which reads the catalogue
        detail record instead.
        """
        entity = get_entity_type(entity_type)
        if accession is not None and (entity.member_path is None or not members):
            record = self.get_json(f"{entity_type}/{accession}", use_cache=use_cache)
            if not isinstance(record, dict):
                raise MalformedRequestError(
                    f"Expected an object for {entity_type}/{accession}",
                    entity_type=entity_type,
                    accession=accession,
                )
            return RawPage([record], None, 1)

        if accession is not None:
            path = f"{entity_type}/{accession}/{entity.member_path}"
        else:
            path = entity_type

        page_size = int(params.get("page_size", DEFAULT_PAGE_SIZE))
        if cursor and cursor.startswith(("http://", "https://")):
            # The API handed us a ready-made next link.
            payload = self._get(cursor, None, use_cache)
            page = None
        else:
            page = int(cursor) if cursor else 1
            query = dict(params)
            query["page"] = page
            query.setdefault("page_size", page_size)
            payload = self._get(self._url(path), query, use_cache)
        return self._parse_page(payload, page, page_size)

    def get_json(self, path: str, use_cache: bool = False) -> Any:
        return self._get(self._url(path), None, use_cache)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get(self, url: str, params: Optional[Dict[str, Any]], use_cache: bool) -> Any:
        if use_cache and self.cache is not None:
            cached = self.cache.get(url, params)
            if cached is not None:
                logger.debug("Cache hit for %s %s", url, params)
                return cached

        self._limiter.acquire()
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientTransportError(f"{type(exc).__name__}: {exc}") from exc

        status = resp.status_code
        if status == 429:
            raise TransientTransportError("Rate limited (429)", status=status)
        if status >= 500:
            raise TransientTransportError(f"Server error ({status}) for {url}", status=status)
        if status in (400, 422):
            raise MalformedRequestError(
                f"Request rejected as malformed ({status}): {_detail(resp)}", status=status
            )
        if status >= 400:
            raise RequestRejectedError(
                f"Request rejected ({status}): {_detail(resp)}", status=status
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedRequestError(
                f"Response from {url} is not JSON", status=status
            ) from exc

        if use_cache and self.cache is not None:
            self.cache.put(url, params, payload)
        return payload

    @staticmethod
    def _parse_page(payload: Any, page: Optional[int], page_size: int) -> RawPage:
        if isinstance(payload, list):
            return RawPage(list(payload), None, len(payload))
        if not isinstance(payload, dict):
            raise MalformedRequestError(
                f"Unexpected page payload type: {type(payload).__name__}"
            )

        items = payload.get("items")
        if items is None:
            items = payload.get("results", [])
        count = payload.get("count")

        next_cursor = payload.get("next") or None
        if next_cursor is None and page is not None and items:
            if count is not None:
                if page * page_size < count:
                    next_cursor = str(page + 1)
            elif len(items) >= page_size:
                next_cursor = str(page + 1)
        return RawPage(list(items), next_cursor, count)


def _detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)[:200]
