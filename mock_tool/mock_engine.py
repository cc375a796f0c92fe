import json
import logging
import os
import threading

from pydantic import ValidationError

from .mock_item import NO_KEY, MatchResult, MockItem, RuleSpec
from .mock_logger import TAG, MockLogger

logger = logging.getLogger("MockEngine")


class MockEngine:
    """Ordered registry of mock rules and the matcher that selects one.

    Rules are keyed by url matcher + method. Re-registering a key replaces
    the rule in place; the first rule in registration order that matches a
    request wins. Mutation, matching and usage accounting share one lock.
    """

    def __init__(self, rules_file=None, enabled=True, log=True, verbose=True, mock_logger=None):
        self.rules_file = rules_file
        self.disabled = not enabled
        self.mock_logger = mock_logger or MockLogger(enabled=log, verbose=verbose)
        self._items = {}
        self._lock = threading.RLock()
        self.mock_logger.info(f"{TAG} engine is [bold]loaded[/bold].")
        if rules_file:
            self.load_rules()

    @property
    def log(self):
        return self.mock_logger.enabled

    @property
    def rules(self):
        with self._lock:
            return list(self._items.values())

    def get_rule(self, key):
        with self._lock:
            return self._items.get(key)

    def __len__(self):
        with self._lock:
            return len(self._items)

    def load_rules(self, rules_file=None):
        """Replace the current rules with the ones in a JSON file"""
        path = rules_file or self.rules_file
        self.reset()
        if not path or not os.path.exists(path):
            logger.info(f"No mock rules file at {path}")
            return self
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load mock rules: {e}")
            return self

        if isinstance(data, list):
            data = {str(i): spec for i, spec in enumerate(data)}
        if not isinstance(data, dict):
            logger.warning(f"Mock rules file {path} must hold an object or a list")
            return self
        self.set_mock_data(data)
        logger.info(f"Loaded {len(self)} mock rules from {path}")
        return self

    def set_mock_data(self, mock_data):
        """Register every spec of a name -> spec mapping, in mapping order"""
        for name, spec in mock_data.items():
            if not self.register(spec):
                logger.warning(f"Skipped mock rule {name!r}: invalid or without url")
        return self

    def register(self, spec):
        """Validate a rule spec and add it; returns the MockItem or NO_KEY

        A MockItem is revalidated and registered as a fresh copy, so its
        usage state is never shared with another registry.
        """
        try:
            if isinstance(spec, MockItem):
                spec = spec.spec_fields()
            if not isinstance(spec, RuleSpec):
                spec = RuleSpec.model_validate(spec)
            item = MockItem.from_spec(spec)
        except (ValidationError, TypeError, ValueError, OverflowError) as e:
            logger.debug(f"Rejected mock rule {spec!r}: {e}")
            return NO_KEY

        if not item.key:
            return NO_KEY
        with self._lock:
            self._items[item.key] = item
        return item

    mock = register

    def reset(self):
        with self._lock:
            self._items = {}
        return self

    def enable(self):
        self.disabled = False
        self.mock_logger.info(f"{TAG} is [bold green]enabled[/bold green].")
        return self

    def disable(self):
        self.disabled = True
        self.mock_logger.info(f"{TAG} is [bold red]disabled[/bold red].")
        return self

    def enable_log(self):
        self.mock_logger.enabled = True
        self.mock_logger.info(f"{TAG} logging is [bold]on[/bold].")
        return self

    def disable_log(self):
        self.mock_logger.info(f"{TAG} logging is [bold]off[/bold].")
        self.mock_logger.enabled = False
        return self

    def _add(self, method, url, body, delay=0, status=200, times=None, header=None):
        self.register({
            "url": url,
            "method": method,
            "body": body,
            "delay": delay,
            "status": status,
            "times": times,
            "header": header or {},
        })
        return self

    def get(self, url, body="", **opts):
        return self._add("get", url, body, **opts)

    def post(self, url, body="", **opts):
        return self._add("post", url, body, **opts)

    def put(self, url, body="", **opts):
        return self._add("put", url, body, **opts)

    def patch(self, url, body="", **opts):
        return self._add("patch", url, body, **opts)

    def delete(self, url, body="", **opts):
        return self._add("delete", url, body, **opts)

    def head(self, url, **opts):
        # Responses to HEAD never carry a body.
        return self._add("head", url, "", **opts)

    def any(self, url, body="", **opts):
        return self._add("any", url, body, **opts)

    def match(self, url, method=None):
        """Return the first enabled, non-exhausted rule matching the request, or None"""
        with self._lock:
            return self._match(url, method)

    def _match(self, url, method):
        if self.disabled:
            return None
        method = method or "get"
        for item in self._items.values():
            result = item.evaluate(url, method)
            if result is MatchResult.MATCH:
                return item
            if result is MatchResult.ERROR:
                logger.debug(f"Skipping mock rule {item.key} for {url}")
        return None

    def acquire(self, url, method=None):
        """Match and reserve one use of the rule until consume() or release()"""
        with self._lock:
            item = self._match(url, method)
            if item is not None:
                item._reserve()
            return item

    def consume(self, item):
        with self._lock:
            item._consume()

    def release(self, item):
        with self._lock:
            item._release()

