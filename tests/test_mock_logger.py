
import asyncio
import logging

import pytest

from mock_tool.mock_engine import MockEngine
from mock_tool.mock_item import MockItem
from mock_tool.mock_logger import MockLogger
from mock_tool.responder import MockRequest, MockResponder


@pytest.fixture
def info_logs(caplog):
    caplog.set_level(logging.INFO, logger="MockEngine")
    return caplog


def test_record_groups_summary_request_response_rule(info_logs):
    sink = MockLogger(enabled=True, verbose=True)
    rule = MockItem("/api/user", method="get", body={"id": 1}, status=201, header={"A": "b"})
    sink.record(1.5, {"id": 1}, MockRequest("http://h/api/user", "GET"), rule)

    assert len(info_logs.records) == 1
    lines = info_logs.records[0].getMessage().split("\n")
    assert lines[0].startswith("[mock] ")
    assert lines[0].endswith("GET http://h/api/user (201)")
    assert lines[1].strip().startswith("Request: ")
    assert "'status_text': 'Created'" in lines[2]
    assert "'x-powered-by': 'mock-tool'" in lines[2]
    assert "'spent': 1.5" in lines[2]
    assert "'body': {'id': 1}" in lines[3]


def test_minimal_rule_snapshot(info_logs):
    sink = MockLogger(enabled=True, verbose=False)
    rule = MockItem("/a", method="get", body="secret-body", times=3)
    sink.record(0, "secret-body", MockRequest("/a"), rule)

    mock_item_line = info_logs.records[0].getMessage().split("\n")[3]
    assert "secret-body" not in mock_item_line
    assert "'times': 3" in mock_item_line


def test_disabled_sink_emits_nothing(info_logs):
    queue = asyncio.Queue()
    sink = MockLogger(enabled=False, log_queue=queue)
    sink.record(0, "", MockRequest("/a"), MockItem("/a"))
    sink.info("hello")

    assert info_logs.records == []
    assert queue.empty()


def test_no_capable_sink_is_a_no_op(caplog):
    caplog.set_level(logging.WARNING, logger="MockEngine")
    sink = MockLogger(enabled=True)
    assert sink.can_group() is False
    sink.record(0, "", MockRequest("/a"), MockItem("/a"))
    assert caplog.records == []


def test_queue_receives_colour_markup():
    queue = asyncio.Queue()
    sink = MockLogger(enabled=True, log_queue=queue)
    sink.record(0, "", MockRequest("/a[1]"), MockItem("/a", status=500))

    message = queue.get_nowait()
    assert "[red]500[/red]" in message
    assert "\\[mock]" in message


def test_record_never_raises(info_logs):
    class Broken:
        method = "GET"
        url = "/a"

        def to_dict(self):
            raise RuntimeError("boom")

    MockLogger(enabled=True).record(0, "", Broken(), MockItem("/a"))
    assert info_logs.records == []


def test_responder_records_each_mocked_exchange(info_logs):
    engine = MockEngine(log=True, verbose=False)
    engine.get("/a", "ok")
    responder = MockResponder(engine)
    info_logs.clear()

    responder.respond_sync({"url": "/a"})
    responder.respond_sync({"url": "/unmatched"})

    summaries = [r.getMessage().split("\n")[0] for r in info_logs.records]
    assert len(summaries) == 1
    assert summaries[0].endswith("GET /a (200)")


def test_lifecycle_lines(info_logs):
    engine = MockEngine(log=True)
    engine.disable()
    engine.enable()
    messages = [r.getMessage() for r in info_logs.records]
    assert messages == ["[mock] engine is loaded.", "[mock] is disabled.", "[mock] is enabled."]

    info_logs.clear()
    engine.disable_log()
    engine.disable()
    assert [r.getMessage() for r in info_logs.records] == ["[mock] logging is off."]
