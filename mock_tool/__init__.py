from .mock_engine import MockEngine
from .mock_item import NO_KEY, MatchResult, MockItem, RuleSpec
from .mock_logger import MockLogger
from .responder import PASSTHROUGH, MockRequest, MockResponder, MockResponse

__all__ = [
    "MockEngine",
    "MockItem",
    "RuleSpec",
    "MatchResult",
    "NO_KEY",
    "MockLogger",
    "MockResponder",
    "MockRequest",
    "MockResponse",
    "PASSTHROUGH",
]
