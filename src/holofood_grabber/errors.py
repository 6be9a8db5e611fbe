"""Error and warning types raised by holofood-grabber."""

from typing import List, Optional, Sequence


class HoloFoodError(Exception):
    """Base class for all holofood-grabber errors."""


class RequestRejectedError(HoloFoodError):
    """The API refused the request (bad filter or parameter). Never retried."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        entity_type: Optional[str] = None,
        accession: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.entity_type = entity_type
        self.accession = accession


class MalformedRequestError(RequestRejectedError):
    """The request was syntactically invalid (HTTP 400/422) or the reply was not JSON."""


class InvalidQueryError(RequestRejectedError, ValueError):
    """A query failed local validation before any network call."""


class TransientTransportError(HoloFoodError):
    """Retryable transport failure: rate limiting, 5xx, timeout or dropped connection."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RemoteFetchError(HoloFoodError):
    """A page request kept failing after every retry attempt."""

    def __init__(
        self,
        entity_type: str,
        cursor: Optional[str],
        status: Optional[int],
        attempts: int,
        accession: Optional[str] = None,
    ):
        target = f"{entity_type}/{accession}" if accession else entity_type
        super().__init__(
            f"Fetching {target} (cursor={cursor!r}) failed after {attempts} "
            f"attempt(s), last status: {status if status is not None else 'n/a'}"
        )
        self.entity_type = entity_type
        self.cursor = cursor
        self.status = status
        self.attempts = attempts
        self.accession = accession


class QueryCancelledError(HoloFoodError):
    """The caller cancelled a paginated fetch between two page requests."""


class MalformedAccessionError(HoloFoodError, ValueError):
    """Report of accessions that do not match their entity type's pattern."""

    def __init__(
        self, entity_type: str, invalid: Sequence[str], valid: Sequence[str] = ()
    ):
        self.entity_type = entity_type
        self.invalid: List[str] = list(invalid)
        self.valid: List[str] = list(valid)
        super().__init__(
            f"{len(self.invalid)} malformed {entity_type} accession(s): "
            + ", ".join(self.invalid)
        )


class HoloFoodWarning(UserWarning):
    """Base class for non-fatal conditions."""


class MergeCoverageWarning(HoloFoodWarning):
    """Foreign identifiers were dropped while re-keying a secondary data source."""

    def __init__(self, dropped: Sequence[str], collisions: Sequence[str] = ()):
        self.dropped: List[str] = list(dropped)
        self.collisions: List[str] = list(collisions)
        parts = []
        if self.dropped:
            parts.append(
                f"{len(self.dropped)} identifier(s) without mapping dropped: "
                + ", ".join(self.dropped)
            )
        if self.collisions:
            parts.append(
                f"{len(self.collisions)} identifier(s) mapped onto an already used "
                "accession dropped: " + ", ".join(self.collisions)
            )
        super().__init__("; ".join(parts))


class EmptyResultError(HoloFoodWarning):
    """Zero records matched. Issued as a warning; an empty result is returned."""

    def __init__(self, entity_type: str, detail: str = ""):
        self.entity_type = entity_type
        message = f"No {entity_type} records matched"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
