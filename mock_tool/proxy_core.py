import asyncio
import logging
import ssl
import threading
from urllib.parse import urlparse

from rich.markup import escape

from .cert_manager import CertManager
from .responder import PASSTHROUGH, MockRequest, MockResponder

# Setup Logging
logger = logging.getLogger("ProxyCore")

BAD_GATEWAY = b"HTTP/1.1 502 Bad Gateway\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"


def parse_head(head):
    """Split a raw request head into (method, target, headers)"""
    lines = head.decode("latin-1").split("\r\n")
    parts = lines[0].split()
    if len(parts) < 2:
        raise ValueError(f"Malformed request line: {lines[0]!r}")

    headers = {}
    for line in lines[1:]:
        if not line:
            break
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip()] = value.strip()
    return parts[0].upper(), parts[1], headers


def header_value(headers, name):
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def split_host(authority, default_port):
    host, sep, port = authority.rpartition(":")
    if not sep or not port.isdigit():
        return authority, default_port
    return host, int(port)


class ProxyServer:
    """HTTP(S) forward proxy answering matched requests from a MockEngine.

    Unmatched requests, and matched rules marked with proxy=True, are relayed
    to the real host. HTTPS is intercepted with certificates issued by a
    local CA (see CertManager).
    """

    def __init__(self, engine, host='127.0.0.1', port=8080, responder=None,
                 cert_manager=None, cert_dir="certs"):
        self.host = host
        self.port = port
        self.engine = engine
        self.responder = responder or MockResponder(engine)
        self.cert_dir = cert_dir
        self._cert_manager = cert_manager
        self.server = None
        self.running = False
        self.started = threading.Event()
        self.log_queue = None # Can be set by TUI

    @property
    def cert_manager(self):
        if self._cert_manager is None:
            self._cert_manager = CertManager(self.cert_dir)
        return self._cert_manager

    def log(self, message):
        logger.info(message)
        if self.log_queue:
            self.log_queue.put_nowait(escape(message))

    async def start(self):
        self.running = True
        self.server = await asyncio.start_server(
            self.handle_client, self.host, self.port
        )
        self.port = self.server.sockets[0].getsockname()[1]
        self.log(f"Proxy listening on {self.host}:{self.port}")
        self.started.set()
        async with self.server:
            await self.server.serve_forever()

    def stop(self):
        self.running = False
        self.started.clear()
        if self.server:
            self.server.close()

    async def handle_client(self, reader, writer):
        try:
            head = await self.read_head(reader)
            if not head:
                writer.close()
                return

            method, target, headers = parse_head(head)
            if method == 'CONNECT':
                await self.handle_https(reader, writer, target)
            else:
                await self.handle_http(reader, writer, method, target, headers, head)

        except Exception as e:
            self.log(f"Error handling client: {e}")
            writer.close()

    async def read_head(self, reader):
        try:
            return await reader.readuntil(b"\r\n\r\n")
        except asyncio.IncompleteReadError as e:
            return e.partial

    async def read_body(self, reader, headers):
        length = header_value(headers, "content-length")
        if not length or not length.isdigit() or int(length) == 0:
            return b""
        return await reader.readexactly(int(length))

    async def answer(self, writer, method, url, headers, body):
        """Write a mocked response; False when the request must go upstream"""
        item = self.engine.match(url, method)
        if item is None:
            return False
        if item.proxy:
            self.log(f"[FORWARD] {method} {url} is marked for forwarding")
            return False

        response = await self.responder.respond(MockRequest(url, method, headers, body or None))
        if response is PASSTHROUGH:
            return False

        writer.write(response.to_bytes())
        await writer.drain()
        writer.close()
        self.log(f"[MOCK] {method} {url} -> {response.status}")
        return True

    async def handle_http(self, client_reader, client_writer, method, url, headers, head):
        parsed = urlparse(url)
        target_host = parsed.hostname
        target_port = parsed.port or 80

        # Origin-form request line, take the target from the Host header
        if not target_host:
            host = header_value(headers, "host")
            if host:
                target_host, target_port = split_host(host, 80)
                url = f"http://{host}{url}"

        if not target_host:
            self.log("Could not determine target host")
            client_writer.close()
            return

        body = await self.read_body(client_reader, headers)
        self.log(f"HTTP {method} {url}")
        if await self.answer(client_writer, method, url, headers, body):
            return

        try:
            upstream_reader, upstream_writer = await self.connect_upstream(target_host, target_port, tls=False)
        except OSError as e:
            self.log(f"Failed to connect upstream {target_host}:{target_port}: {e}")
            client_writer.write(BAD_GATEWAY)
            await client_writer.drain()
            client_writer.close()
            return

        upstream_writer.write(head + body)
        await upstream_writer.drain()
        await self.relay(client_reader, client_writer, upstream_reader, upstream_writer)

    async def handle_https(self, client_reader, client_writer, target):
        target_host, target_port = split_host(target, 443)
        self.log(f"HTTPS CONNECT to {target_host}:{target_port}")

        client_writer.write(b"HTTP/1.1 200 Connection Established\r\n\r\n")
        await client_writer.drain()

        cert_path, key_path = self.cert_manager.get_certificate(target_host)
        ssl_ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ssl_ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)
        try:
            await client_writer.start_tls(ssl_ctx)
        except (ssl.SSLError, OSError) as e:
            self.log(f"SSL handshake failed: {e}")
            client_writer.close()
            return

        head = await self.read_head(client_reader)
        if not head:
            client_writer.close()
            return
        method, path, headers = parse_head(head)
        body = await self.read_body(client_reader, headers)

        netloc = target_host if target_port == 443 else f"{target_host}:{target_port}"
        url = f"https://{netloc}{path}"
        self.log(f"HTTPS {method} {url}")
        if await self.answer(client_writer, method, url, headers, body):
            return

        try:
            upstream_reader, upstream_writer = await self.connect_upstream(target_host, target_port, tls=True)
        except (ssl.SSLError, OSError) as e:
            self.log(f"Failed to connect upstream {target_host}: {e}")
            client_writer.write(BAD_GATEWAY)
            await client_writer.drain()
            client_writer.close()
            return

        upstream_writer.write(head + body)
        await upstream_writer.drain()
        await self.relay(client_reader, client_writer, upstream_reader, upstream_writer)

    async def connect_upstream(self, host, port, tls):
        if tls:
            return await asyncio.open_connection(
                host, port, ssl=ssl.create_default_context(), server_hostname=host
            )
        return await asyncio.open_connection(host, port)

    async def relay(self, client_r, client_w, upstream_r, upstream_w):
        async def pipe(reader, writer):
            try:
                while True:
                    data = await reader.read(4096)
                    if not data:
                        break
                    writer.write(data)
                    await writer.drain()
            except OSError as e:
                logger.debug(f"Relay closed: {e}")
            finally:
                writer.close()

        await asyncio.gather(pipe(client_r, upstream_w), pipe(upstream_r, client_w))
