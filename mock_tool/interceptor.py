import json
import logging

import aiohttp

from .responder import PASSTHROUGH, MockRequest, MockResponder, MockResponse

logger = logging.getLogger("MockEngine")


class MockSession:
    """aiohttp client that answers from a MockEngine before going to the network.

    Every call returns a MockResponse. Unmatched requests are sent with
    aiohttp and the real status, headers and body are wrapped (rule is None).
    """

    def __init__(self, engine, responder=None, timeout=30):
        self.engine = engine
        self.responder = responder or MockResponder(engine)
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session = None

    async def _ensure_session(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def request(self, method, url, headers=None, json_body=None, data=None):
        item = self.engine.match(url, method)
        if item is not None and item.proxy:
            logger.debug(f"{method} {url} is marked for forwarding, calling the network")
        else:
            body = json_body if json_body is not None else data
            mocked = await self.responder.respond(MockRequest(url, method, headers, body))
            if mocked is not PASSTHROUGH:
                return mocked
            logger.debug(f"No mock for {method} {url}, calling the network")

        return await self._send(method, url, headers, json_body, data)

    async def _send(self, method, url, headers, json_body, data):
        await self._ensure_session()
        async with self.session.request(method, url, headers=headers, json=json_body, data=data) as resp:
            content = await resp.read()
            return MockResponse(resp.status, dict(resp.headers), _decode(content, resp.content_type))

    async def get(self, url, **kwargs):
        return await self.request("GET", url, **kwargs)

    async def post(self, url, **kwargs):
        return await self.request("POST", url, **kwargs)

    async def put(self, url, **kwargs):
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url, **kwargs):
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url, **kwargs):
        return await self.request("DELETE", url, **kwargs)

    async def head(self, url, **kwargs):
        return await self.request("HEAD", url, **kwargs)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()


def _decode(content, content_type):
    if content_type == "application/json" and content:
        try:
            return json.loads(content)
        except ValueError:
            return content
    return content
