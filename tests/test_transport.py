import pytest
import requests
import responses

from holofood_grabber.cache import ResponseCache
from holofood_grabber.errors import (
    MalformedRequestError,
    RequestRejectedError,
    TransientTransportError,
)
from holofood_grabber.models import Query
from holofood_grabber.transport import HoloFoodTransport

API_URL = "https://www.holofooddata.org/api"


@responses.activate
def test_list_page_sets_next_cursor_from_count(transport):
    responses.add(
        responses.GET, f"{API_URL}/animals",
        json={"items": [{"accession": "SAMEA1"}, {"accession": "SAMEA2"}], "count": 5},
        status=200,
    )
    page = transport.fetch("animals", {"system": "salmon", "page_size": 2})

    assert [r["accession"] for r in page.records] == ["SAMEA1", "SAMEA2"]
    assert page.next_cursor == "2"
    assert page.total_count == 5
    request = responses.calls[0].request
    assert "system=salmon" in request.url
    assert "page=1" in request.url
    assert "page_size=2" in request.url


@responses.activate
def test_last_page_has_no_cursor(transport):
    responses.add(
        responses.GET, f"{API_URL}/animals",
        json={"items": [{"accession": "SAMEA5"}], "count": 5},
        status=200,
    )
    page = transport.fetch("animals", {"page_size": 2}, cursor="3")
    assert page.next_cursor is None
    assert "page=3" in responses.calls[0].request.url


@responses.activate
def test_next_link_is_followed_verbatim(transport):
    next_url = f"{API_URL}/samples?page=2&page_size=1"
    responses.add(
        responses.GET, f"{API_URL}/samples",
        json={"items": [{"accession": "SAMEA9"}], "count": 2, "next": next_url},
        status=200,
    )
    first = transport.fetch("samples", {"page_size": 1})
    assert first.next_cursor == next_url

    transport.fetch("samples", {"page_size": 1}, cursor=first.next_cursor)
    assert responses.calls[1].request.url == next_url


@responses.activate
def test_detail_endpoint_returns_single_record_page(transport, animal_detail):
    responses.add(
        responses.GET, f"{API_URL}/animals/SAMEA112904734", json=animal_detail, status=200
    )
    page = transport.fetch("animals", {}, accession="SAMEA112904734")
    assert len(page.records) == 1
    assert page.records[0]["system"] == "salmon"
    assert page.next_cursor is None


@responses.activate
def test_catalogue_accession_pages_through_members(transport):
    responses.add(
        responses.GET, f"{API_URL}/genome-catalogues/hf-salmon-mags-v1/genomes",
        json={"items": [{"accession": "MGYG000000001", "taxonomy": "d__Bacteria"}], "count": 1},
        status=200,
    )
    page = transport.fetch("genome-catalogues", {"page_size": 10}, accession="hf-salmon-mags-v1")
    assert page.records[0]["accession"] == "MGYG000000001"
    assert page.next_cursor is None


@responses.activate
def test_catalogue_detail_without_members(transport):
    responses.add(
        responses.GET, f"{API_URL}/viral-catalogues/hf-salmon-vir-v1",
        json={"id": "hf-salmon-vir-v1", "title": "Salmon viral catalogue"},
        status=200,
    )
    page = transport.fetch(
        "viral-catalogues", {}, accession="hf-salmon-vir-v1", members=False
    )
    assert page.records == [{"id": "hf-salmon-vir-v1", "title": "Salmon viral catalogue"}]
    assert page.next_cursor is None
    assert responses.calls[0].request.url == f"{API_URL}/viral-catalogues/hf-salmon-vir-v1"


@pytest.mark.parametrize("status", [429, 500, 503])
@responses.activate
def test_transient_statuses(transport, status):
    responses.add(responses.GET, f"{API_URL}/animals", status=status)
    with pytest.raises(TransientTransportError) as excinfo:
        transport.fetch("animals", {})
    assert excinfo.value.status == status


@responses.activate
def test_connection_error_is_transient(transport):
    responses.add(
        responses.GET, f"{API_URL}/animals", body=requests.ConnectionError("reset")
    )
    with pytest.raises(TransientTransportError):
        transport.fetch("animals", {})


@responses.activate
def test_timeout_is_transient(transport):
    responses.add(
        responses.GET, f"{API_URL}/animals", body=requests.Timeout("read timed out")
    )
    with pytest.raises(TransientTransportError) as excinfo:
        transport.fetch("animals", {})
    assert "Timeout" in str(excinfo.value)


@responses.activate
def test_timeout_is_retried_by_walker(transport, make_walker):
    responses.add(
        responses.GET, f"{API_URL}/animals", body=requests.Timeout("read timed out")
    )
    responses.add(
        responses.GET, f"{API_URL}/animals",
        json={"items": [{"accession": "SAMEA1"}], "count": 1},
        status=200,
    )
    records = list(make_walker(transport).records(Query("animals")))
    assert [r["accession"] for r in records] == ["SAMEA1"]


@pytest.mark.parametrize("status", [400, 422])
@responses.activate
def test_bad_request_is_malformed(transport, status):
    responses.add(
        responses.GET, f"{API_URL}/samples", json={"detail": "bad sample_type"}, status=status
    )
    with pytest.raises(MalformedRequestError) as excinfo:
        transport.fetch("samples", {"sample_type": "nope"})
    assert "bad sample_type" in str(excinfo.value)


@responses.activate
def test_not_found_is_rejected(transport):
    responses.add(
        responses.GET, f"{API_URL}/samples/SAMEA0", json={"detail": "Not Found"}, status=404
    )
    with pytest.raises(RequestRejectedError) as excinfo:
        transport.fetch("samples", {}, accession="SAMEA0")
    assert excinfo.value.status == 404
    assert not isinstance(excinfo.value, MalformedRequestError)


@responses.activate
def test_non_json_body_is_malformed(transport):
    responses.add(responses.GET, f"{API_URL}/animals", body="<html>oops</html>", status=200)
    with pytest.raises(MalformedRequestError):
        transport.fetch("animals", {})


@responses.activate
def test_cache_serves_repeat_requests(session, fast_limiter, tmp_path):
    responses.add(
        responses.GET, f"{API_URL}/animals/SAMEA1", json={"accession": "SAMEA1"}, status=200
    )
    cached = HoloFoodTransport(
        API_URL, session=session, rate_limiter=fast_limiter,
        cache=ResponseCache(str(tmp_path)),
    )
    cached.fetch("animals", {}, accession="SAMEA1", use_cache=True)
    cached.fetch("animals", {}, accession="SAMEA1", use_cache=True)
    assert len(responses.calls) == 1
    assert list(tmp_path.glob("*.json"))

    cached.fetch("animals", {}, accession="SAMEA1", use_cache=False)
    assert len(responses.calls) == 2


def test_response_cache_reads_back_from_disk(tmp_path):
    ResponseCache(str(tmp_path)).put("https://x/animals", {"page": 1}, {"items": []})
    fresh = ResponseCache(str(tmp_path))
    assert fresh.get("https://x/animals", {"page": 1}) == {"items": []}
    assert fresh.get("https://x/animals", {"page": 2}) is None
