import httpx
import pytest

from libdash.dispatcher import MockApiDispatcher
from libdash.errors import TransportError
from libdash.services.api_client import ApiClient, DispatcherTransport, HttpTransport


def _http_client(responses):
    calls = []

    def handler(request):
        calls.append(request)
        status, body = responses[min(len(calls), len(responses)) - 1]
        return httpx.Response(status, json=body)

    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://testserver")
    return HttpTransport(base_url="http://testserver", client=client), calls


def test_http_transport_success():
    transport, calls = _http_client([(200, [{"id": 1}])])
    with ApiClient(transport, retries=3, backoff=0) as api:
        assert api.get("/api/books") == [{"id": 1}]
    assert calls[0].url.path == "/api/books"


def test_server_errors_are_retried():
    transport, calls = _http_client([(500, {"detail": "boom"}), (503, {"detail": "busy"}), (200, {"ok": True})])
    api = ApiClient(transport, retries=3, backoff=0)
    assert api.post("/api/books", {"name": "Dune"}) == {"ok": True}
    assert len(calls) == 3


def test_retries_exhausted():
    transport, calls = _http_client([(500, {"detail": "boom"})])
    api = ApiClient(transport, retries=3, backoff=0)
    with pytest.raises(TransportError) as excinfo:
        api.get("/api/books")
    assert excinfo.value.status_code == 500
    assert len(calls) == 3


def test_client_errors_are_not_retried():
    transport, calls = _http_client([(404, {"detail": "Book not found."})])
    api = ApiClient(transport, retries=3, backoff=0)
    with pytest.raises(TransportError) as excinfo:
        api.get("/api/books/1")
    assert excinfo.value.is_client_error
    assert "Book not found." in str(excinfo.value)
    assert len(calls) == 1


def test_dispatcher_transport(store):
    api = ApiClient(DispatcherTransport(MockApiDispatcher(store)), retries=3, backoff=0)
    created = api.post("/api/books", {"name": "Dune"})
    assert api.get(f"/api/books/{created['id']}") == created
    assert api.get("/api/borrowers", params={"category": "graduate"}) == []


def test_dispatcher_error_envelope_raises(store):
    api = ApiClient(DispatcherTransport(MockApiDispatcher(store)), retries=3, backoff=0)
    with pytest.raises(TransportError) as excinfo:
        api.post("/api/books")
    assert excinfo.value.status_code == 400
    assert excinfo.value.endpoint == "/api/books"
