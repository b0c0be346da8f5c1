import logging
import time
from typing import Any, Dict, Optional

import httpx

from libdash.config import settings
from libdash.dispatcher import MockApiDispatcher
from libdash.errors import TransportError

logger = logging.getLogger(__name__)


class HttpTransport:
    """Sends requests to a running libdash API server over HTTP."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url or f"http://{settings.api_host}:{settings.api_port}"
        timeout = timeout if timeout is not None else settings.request_timeout
        self._client = client or httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            follow_redirects=True,
        )

    def send(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self._client.request(method, path, json=body, params=params)
        except httpx.RequestError as e:
            raise TransportError(f"Request failed: {e}", endpoint=path) from e
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise TransportError(f"{response.status_code}: {detail}", status_code=response.status_code, endpoint=path)
        return response.json()

    def close(self) -> None:
        self._client.close()


class DispatcherTransport:
    """Routes requests to an in-process MockApiDispatcher."""

    def __init__(self, dispatcher: MockApiDispatcher):
        self.dispatcher = dispatcher

    def send(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        result = self.dispatcher.handle(method, path, body, params)
        if isinstance(result, dict) and result.get("error") is True:
            # Envelope errors come from rejected input, so they are not retried
            raise TransportError(result.get("message", "Request failed"), status_code=400, endpoint=path)
        return result

    def close(self) -> None:
        pass


class ApiClient:
    """Request helper with exponential backoff. Client errors (4xx) are raised immediately."""

    def __init__(self, transport, retries: Optional[int] = None, backoff: float = 0.5):
        self.transport = transport
        self.retries = max(1, retries if retries is not None else settings.request_retries)
        self.backoff = backoff

    def request(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        for attempt in range(self.retries):
            try:
                return self.transport.send(method.upper(), path, body, params)
            except TransportError as e:
                if e.is_client_error or attempt == self.retries - 1:
                    raise
                wait_time = self.backoff * (2 ** attempt)
                logger.warning("%s %s failed (%s), retrying in %.1fs", method.upper(), path, e, wait_time)
                time.sleep(wait_time)
        raise TransportError("No attempts made", endpoint=path)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any = None) -> Any:
        return self.request("POST", path, body)

    def put(self, path: str, body: Any = None) -> Any:
        return self.request("PUT", path, body)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def close(self) -> None:
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
