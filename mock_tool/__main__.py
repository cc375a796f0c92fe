
import argparse
import asyncio
import logging
import os
import sys

# Allow running as "python mock_tool/" by adding parent to path
if __package__ is None and not hasattr(sys, "frozen"):
    path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    sys.path.insert(0, path)

from mock_tool.config import settings
from mock_tool.mock_engine import MockEngine
from mock_tool.proxy_core import ProxyServer
from mock_tool.tui import MockConsole


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="mock_tool", description="HTTP request mocking proxy and console")
    parser.add_argument("--rules", default=settings.rules_file, help="JSON rules file")
    parser.add_argument("--host", default=settings.proxy_host)
    parser.add_argument("--port", type=int, default=settings.proxy_port)
    parser.add_argument("--headless", action="store_true", help="run the proxy without the console")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    engine = MockEngine(args.rules, enabled=settings.enabled, log=settings.log, verbose=settings.verbose)

    if args.headless:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
        server = ProxyServer(engine, host=args.host, port=args.port, cert_dir=settings.cert_dir)
        try:
            asyncio.run(server.start())
        except KeyboardInterrupt:
            pass
        return

    app = MockConsole(engine, rules_file=args.rules, host=args.host, port=args.port)
    app.run()


if __name__ == "__main__":
    main()
