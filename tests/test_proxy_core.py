
import asyncio
import socket
import threading

import pytest
import requests

from mock_tool.mock_engine import MockEngine
from mock_tool.proxy_core import ProxyServer, parse_head, split_host


@pytest.fixture
def proxy(tmp_path):
    engine = MockEngine(log=False)
    server = ProxyServer(engine, port=0, cert_dir=str(tmp_path / "certs"))
    state = {"heads": []}

    async def upstream_handler(reader, writer):
        state["heads"].append(await reader.readuntil(b"\r\n\r\n"))
        writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: 8\r\nConnection: close\r\n\r\nupstream")
        await writer.drain()
        writer.close()

    async def serve():
        state["loop"] = asyncio.get_running_loop()
        upstream = await asyncio.start_server(upstream_handler, "127.0.0.1", 0)
        state["upstream"] = f"http://127.0.0.1:{upstream.sockets[0].getsockname()[1]}"
        await server.start()

    def run():
        try:
            asyncio.run(serve())
        except asyncio.CancelledError:
            pass

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert server.started.wait(5)

    yield engine, server, state

    state["loop"].call_soon_threadsafe(server.stop)
    thread.join(5)


def _get(server, url, method="GET", **kwargs):
    session = requests.Session()
    session.trust_env = False
    proxy_url = f"http://127.0.0.1:{server.port}"
    return session.request(method, url, proxies={"http": proxy_url, "https": proxy_url}, timeout=10, **kwargs)


def test_parse_head():
    method, target, headers = parse_head(
        b"get http://h/a HTTP/1.1\r\nHost: h\r\nContent-Length: 2\r\nBroken\r\n\r\n"
    )
    assert method == "GET"
    assert target == "http://h/a"
    assert headers == {"Host": "h", "Content-Length": "2"}

    with pytest.raises(ValueError):
        parse_head(b"\r\n\r\n")


def test_split_host():
    assert split_host("example.com:8443", 443) == ("example.com", 8443)
    assert split_host("example.com", 443) == ("example.com", 443)


def test_matched_request_is_mocked(proxy):
    engine, server, _ = proxy
    engine.get("/api/user", {"id": 1}, header={"X-Env": "test"})

    resp = _get(server, "http://api.test/api/user")
    assert resp.status_code == 200
    assert resp.json() == {"id": 1}
    assert resp.headers["x-powered-by"] == "mock-tool"
    assert resp.headers["X-Env"] == "test"


def test_request_body_is_read_before_answering(proxy):
    engine, server, _ = proxy
    engine.post("/submit", "created", status=201)

    resp = _get(server, "http://api.test/submit", method="POST", data="payload")
    assert resp.status_code == 201
    assert resp.text == "created"


def test_unmatched_request_goes_upstream(proxy):
    _, server, state = proxy
    resp = _get(server, f"{state['upstream']}/real")
    assert resp.text == "upstream"
    assert state["heads"][0].startswith(b"GET http://127.0.0.1:")


def test_exhausted_rule_falls_back_to_upstream(proxy):
    engine, server, state = proxy
    engine.get("/once", "mocked", times=1)

    assert _get(server, f"{state['upstream']}/once").text == "mocked"
    assert _get(server, f"{state['upstream']}/once").text == "upstream"
    assert engine.get_rule("/once-get").times == 0


def test_rule_marked_for_forwarding_goes_upstream(proxy):
    engine, server, state = proxy
    engine.register({"url": "/payments", "method": "any", "proxy": True, "times": 1})

    assert _get(server, f"{state['upstream']}/payments").text == "upstream"
    assert engine.get_rule("/payments-any").times == 1


def test_unreachable_upstream_is_bad_gateway(proxy):
    _, server, _ = proxy
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        dead_port = sock.getsockname()[1]

    assert _get(server, f"http://127.0.0.1:{dead_port}/x").status_code == 502


def test_https_request_is_mocked_with_local_ca(proxy):
    engine, server, _ = proxy
    engine.get("/secure", {"ok": True})

    resp = _get(server, "https://secure.test/secure", verify=server.cert_manager.ca_cert_path)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
