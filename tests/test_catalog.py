"""Tests for the museum catalog client and image cache (httpx mock transport)."""

import httpx
import pytest

from artimport.catalog import CatalogError, MetCatalogClient, SearchCriteria
from artimport.images import ImageCache, ImageFetchError
from artimport.ratelimit import MET, RateGovernor, RateLimitExceeded, ServiceBudget

BASE = "https://collection.example.org/v1"


def _client(handler, governor):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return MetCatalogClient(governor, base_url=BASE, client=http)


def test_search_params():
    params = SearchCriteria(q="cats", department_id=11, date_begin=1800).to_params()
    assert params == {
        "q": "cats",
        "hasImages": "true",
        "departmentId": 11,
        "dateBegin": 1800,
        "dateEnd": 3000,
    }
    assert SearchCriteria(q="", has_images=False).to_params() == {"q": "*"}


def test_search_returns_ids(governor):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"total": 2, "objectIDs": [436535, 437984]})

    ids = _client(handler, governor).search(SearchCriteria(q="sunflowers", is_highlight=True))
    assert ids == [436535, 437984]
    assert seen[0].url.path == "/v1/search"
    assert seen[0].url.params["q"] == "sunflowers"
    assert seen[0].url.params["isHighlight"] == "true"


def test_search_null_ids_is_empty(governor):
    client = _client(lambda r: httpx.Response(200, json={"total": 0, "objectIDs": None}), governor)
    assert client.search(SearchCriteria()) == []


def test_search_server_error(governor):
    client = _client(lambda r: httpx.Response(502), governor)
    with pytest.raises(CatalogError):
        client.search(SearchCriteria())


def test_get_details_and_not_found(governor):
    def handler(request):
        if request.url.path.endswith("/objects/1"):
            return httpx.Response(200, json={"objectID": 1, "title": "Irises"})
        return httpx.Response(404, json={"message": "ObjectID not found"})

    client = _client(handler, governor)
    assert client.get_details(1)["title"] == "Irises"
    assert client.get_details(2) is None


def test_429_throttles_governor(governor):
    client = _client(lambda r: httpx.Response(429, headers={"Retry-After": "30"}), governor)
    with pytest.raises(RateLimitExceeded) as exc:
        client.get_details(1)
    assert exc.value.retry_after == 30
    assert governor.status(MET)["throttled"] is True

    # The next call fails fast without reaching the network
    with pytest.raises(RateLimitExceeded):
        client.search(SearchCriteria())


def test_budget_exhaustion_stops_before_request(clock):
    calls = []
    governor = RateGovernor({MET: ServiceBudget(capacity=1, period=60.0)}, clock=clock)

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"objectIDs": []})

    client = _client(handler, governor)
    client.search(SearchCriteria())
    with pytest.raises(RateLimitExceeded):
        client.search(SearchCriteria())
    assert len(calls) == 1


def test_transport_error_becomes_catalog_error(governor):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(CatalogError):
        _client(handler, governor).search(SearchCriteria())


def test_image_cache_downloads_once(tmp_path, governor):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"\xff\xd8jpeg")

    cache = ImageCache(tmp_path / "images", governor, client=httpx.Client(transport=httpx.MockTransport(handler)))
    path = cache.fetch_or_get_cached("https://images.example.org/1.jpg", 1)
    assert path == tmp_path / "images" / "1.jpg"
    assert path.read_bytes() == b"\xff\xd8jpeg"

    assert cache.fetch_or_get_cached("https://images.example.org/1.jpg", 1) == path
    assert len(calls) == 1


def test_image_cache_errors(tmp_path, governor):
    def handler(request):
        if request.url.path.endswith("/1.jpg"):
            return httpx.Response(500)
        return httpx.Response(429, headers={"Retry-After": "12"})

    cache = ImageCache(tmp_path / "images", governor, client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(ImageFetchError):
        cache.fetch_or_get_cached("https://images.example.org/1.jpg", 1)
    assert not cache.path_for(1).exists()

    with pytest.raises(RateLimitExceeded) as exc:
        cache.fetch_or_get_cached("https://images.example.org/2.jpg", 2)
    assert exc.value.retry_after == 12
