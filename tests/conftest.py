"""Shared fixtures for holofood-grabber tests."""

import pytest
import requests

from holofood_grabber.entities import get_entity_type
from holofood_grabber.errors import RequestRejectedError, TransientTransportError
from holofood_grabber.models import RawPage
from holofood_grabber.pagination import PaginationWalker
from holofood_grabber.rate_limiter import RateLimiter
from holofood_grabber.transport import HoloFoodTransport

API_URL = "https://www.holofooddata.org/api"


class StubTransport:
    """In-process stand-in for HoloFoodTransport.

    ``listings`` maps entity type -> records served by the list endpoint,
    ``details`` maps (entity type, accession) -> a record. A catalogue
    record keeps its members under the member path and serves them paged.
    The first ``failures`` calls raise ``failure``; ``failures=-1`` fails
    forever.
    """

    def __init__(self, listings=None, details=None, failures=0, failure=None):
        self.listings = listings or {}
        self.details = details or {}
        self.failures = failures
        self.failure = failure or TransientTransportError("Server error (503)", status=503)
        self.calls = []

    def fetch(
        self, entity_type, params, cursor=None, accession=None, use_cache=False, members=True
    ):
        self.calls.append((entity_type, dict(params), cursor, accession))
        if self.failures:
            if self.failures > 0:
                self.failures -= 1
            raise self.failure

        if accession is not None:
            if (entity_type, accession) not in self.details:
                raise RequestRejectedError("Not Found", status=404)
            found = self.details[(entity_type, accession)]
            member_path = get_entity_type(entity_type).member_path
            if member_path is None:
                return RawPage([found], None, 1)
            if not members:
                detail = {k: v for k, v in found.items() if k != member_path}
                return RawPage([detail], None, 1)
            return _paginate(found.get(member_path, []), params, cursor)
        return _paginate(self.listings.get(entity_type, []), params, cursor)

    def accessions_requested(self):
        return [call[3] for call in self.calls if call[3] is not None]


def _paginate(items, params, cursor):
    size = int(params.get("page_size", 50))
    page = int(cursor) if cursor else 1
    chunk = items[(page - 1) * size: page * size]
    next_cursor = str(page + 1) if page * size < len(items) else None
    return RawPage(list(chunk), next_cursor, len(items))


@pytest.fixture
def fast_limiter():
    """Rate limiter that never blocks (high rate)."""
    return RateLimiter(10_000)


@pytest.fixture
def session():
    return requests.Session()


@pytest.fixture
def transport(session, fast_limiter):
    return HoloFoodTransport(API_URL, session=session, rate_limiter=fast_limiter)


@pytest.fixture
def make_walker():
    def _make(transport, max_attempts=3):
        return PaginationWalker(transport, max_attempts=max_attempts, backoff_multiplier=0)
    return _make


# --- Mock API payloads ---

def _sample_summary(accession, sample_type, animal):
    return {
        "accession": accession,
        "title": f"{animal}.{sample_type}",
        "sample_type": sample_type,
        "animal": animal,
        "canonical_url": f"https://www.ebi.ac.uk/biosamples/samples/{accession}",
    }


@pytest.fixture
def salmon_animals():
    """Three salmon as served by the animals listing, samples inlined."""
    return [
        {
            "accession": "SAMEA112904734",
            "system": "salmon",
            "canonical_url": "https://www.ebi.ac.uk/biosamples/samples/SAMEA112904734",
            "samples": [
                _sample_summary("SAMEA112905149", "fatty_acids", "SAMEA112904734"),
                _sample_summary("SAMEA112905150", "metagenomic_assembly", "SAMEA112904734"),
            ],
        },
        {
            "accession": "SAMEA112904735",
            "system": "salmon",
            "canonical_url": "https://www.ebi.ac.uk/biosamples/samples/SAMEA112904735",
            "samples": [],
        },
        {
            "accession": "SAMEA112904736",
            "system": "salmon",
            "canonical_url": "https://www.ebi.ac.uk/biosamples/samples/SAMEA112904736",
            "samples": [
                _sample_summary("SAMEA112905151", "iodine", "SAMEA112904736"),
            ],
        },
    ]


def _marker(name, marker_type, measurement, units):
    return {
        "marker": {
            "name": name,
            "type": marker_type,
            "canonical_url": f"https://www.holofooddata.org/markers/{name}",
        },
        "measurement": measurement,
        "units": units,
    }


@pytest.fixture
def animal_detail(salmon_animals):
    detail = dict(salmon_animals[0])
    detail["structured_metadata"] = [
        _marker("Weight", "Animal", "2600", "g"),
        _marker("Sex", "Animal", "female", None),
    ]
    return detail


@pytest.fixture
def fatty_acid_samples():
    """Sample detail payloads for two fatty-acid samples of different animals."""
    first = _sample_summary("SAMEA112905149", "fatty_acids", "SAMEA112904734")
    first["structured_metadata"] = [
        _marker("C16:0", "Fatty acids", "12.5", "%"),
        _marker("C18:1", "Fatty acids", "30.1", "%"),
    ]
    second = _sample_summary("SAMEA112905152", "fatty_acids", "SAMEA112904736")
    second["structured_metadata"] = [
        _marker("C16:0", "Fatty acids", "11.0", "%"),
        _marker("C18:1", "Fatty acids", "28.4", "%"),
    ]
    return [first, second]


@pytest.fixture
def metagenomic_sample():
    sample = _sample_summary("SAMEA112905150", "metagenomic_assembly", "SAMEA112904734")
    sample["structured_metadata"] = []
    return sample
