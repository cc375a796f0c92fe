import asyncio
import copy
import json
import logging
import time

from .mock_item import merge_headers
from .mock_logger import status_text

logger = logging.getLogger("MockEngine")


class _Passthrough:
    """Returned by MockResponder.respond when no rule matched"""

    def __bool__(self):
        return False

    def __repr__(self):
        return "PASSTHROUGH"


PASSTHROUGH = _Passthrough()


class MockRequest:
    def __init__(self, url, method="GET", headers=None, body=None):
        self.url = url
        self.method = str(method or "GET").upper()
        self.headers = dict(headers or {})
        self.body = body

    @classmethod
    def coerce(cls, request):
        if isinstance(request, cls):
            return request
        if isinstance(request, dict):
            return cls(request["url"], request.get("method"), request.get("headers"), request.get("body"))
        raise TypeError(f"cannot build a request from {type(request).__name__}")

    def to_dict(self):
        return {"url": self.url, "method": self.method, "headers": self.headers, "body": self.body}

    def __repr__(self):
        return f"MockRequest({self.method} {self.url})"


class MockResponse:
    def __init__(self, status=200, headers=None, body="", rule=None):
        self.status = status
        self.headers = dict(headers or {})
        self.body = body
        self.rule = rule

    @property
    def status_text(self):
        return status_text(self.status)

    @property
    def content(self) -> bytes:
        body = self.body
        if body is None:
            return b""
        if isinstance(body, bytes):
            return body
        if isinstance(body, str):
            return body.encode("utf-8")
        return json.dumps(body).encode("utf-8")

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if isinstance(self.body, (dict, list)):
            return self.body
        return json.loads(self.text)

    def to_bytes(self) -> bytes:
        """Render the response as an HTTP/1.1 message"""
        headers = dict(self.headers)
        names = {k.lower() for k in headers}
        if not isinstance(self.body, (str, bytes, type(None))) and "content-type" not in names:
            headers["Content-Type"] = "application/json"
        payload = self.content
        if "content-length" not in names:
            headers["Content-Length"] = str(len(payload))
        if "connection" not in names:
            headers["Connection"] = "close"

        response_line = f"HTTP/1.1 {self.status} {self.status_text}\r\n"
        header_lines = "".join(f"{k}: {v}\r\n" for k, v in headers.items())
        return f"{response_line}{header_lines}\r\n".encode("utf-8") + payload

    def __repr__(self):
        return f"MockResponse(status={self.status})"


class MockResponder:
    """Turns a matched rule into a response.

    respond() reserves a use of the matched rule, waits out its delay, then
    consumes the use and records the exchange. A cancelled delay gives the
    use back.
    """

    def __init__(self, engine, mock_logger=None):
        self.engine = engine
        self.mock_logger = mock_logger or engine.mock_logger

    async def respond(self, request):
        try:
            request = MockRequest.coerce(request)
        except (KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed request descriptor: {e}")
            return PASSTHROUGH

        started = time.perf_counter()
        item = self.engine.acquire(request.url, request.method)
        if item is None:
            return PASSTHROUGH

        consumed = False
        try:
            if item.delay > 0:
                await asyncio.sleep(item.delay / 1000)
            response = self.build_response(item, request)
            self.engine.consume(item)
            consumed = True
        except Exception:
            logger.exception(f"Failed to build mock response for {request.url}")
            return PASSTHROUGH
        finally:
            if not consumed:
                self.engine.release(item)

        spent = round((time.perf_counter() - started) * 1000, 3)
        self.mock_logger.record(spent, response.body, request, item)
        return response

    def respond_sync(self, request):
        return asyncio.run(self.respond(request))

    def build_response(self, item, request):
        if request.method == "HEAD" or item.method == "head":
            body = ""
        else:
            body = copy.deepcopy(item.body)
        return MockResponse(item.status, merge_headers(item.header), body, rule=item)
