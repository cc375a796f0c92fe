import logging
from datetime import datetime
from http import HTTPStatus

from rich.markup import escape
from rich.text import Text

from .mock_item import merge_headers

logger = logging.getLogger("MockEngine")

TAG = escape("[mock]")


def status_text(status):
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


class MockLogger:
    """Grouped diagnostic records for mocked request/response cycles.

    Records go to the "MockEngine" logger with markup stripped and, when a
    log_queue is attached (the console sets one), to the queue as rich markup.
    Nothing is emitted when disabled or when no sink would show the record.
    Emission never raises.
    """

    def __init__(self, enabled=True, verbose=True, log_queue=None):
        self.enabled = enabled
        self.verbose = verbose
        self.log_queue = log_queue

    def can_group(self):
        if not self.enabled:
            return False
        return self.log_queue is not None or logger.isEnabledFor(logging.INFO)

    def group(self, lines):
        if not self.can_group():
            return
        try:
            message = "\n".join([lines[0]] + [f"    {line}" for line in lines[1:]])
            logger.info(Text.from_markup(message, emoji=False).plain)
            if self.log_queue is not None:
                self.log_queue.put_nowait(message)
        except Exception as e:
            logger.debug(f"Dropped mock log record: {e}")

    def info(self, message):
        self.group([message])

    def record(self, spent, body, request, rule):
        if not self.can_group():
            return
        try:
            colour = "green" if rule.status < 300 else "red"
            summary = (
                f"{TAG} {datetime.now().strftime('%H:%M:%S.%f')[:-3]} "
                f"{escape(str(request.method))} {escape(str(request.url))} "
                f"([{colour}]{rule.status}[/{colour}])"
            )
            response = {
                "body": body,
                "spent": spent,
                "headers": merge_headers(rule.header),
                "status": rule.status,
                "status_text": status_text(rule.status),
            }
            self.group([
                summary,
                f"Request: {escape(repr(request.to_dict()))}",
                f"Response: {escape(repr(response))}",
                f"MockItem: {escape(repr(rule.snapshot(self.verbose)))}",
            ])
        except Exception as e:
            logger.debug(f"Dropped mock log record: {e}")
