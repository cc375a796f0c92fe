import enum
import logging
import math
import re
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger("MockEngine")

METHODS = ("get", "post", "put", "patch", "delete", "head", "any")

# Marker header added to every mocked response; rule headers cannot override it.
POWERED_BY = ("x-powered-by", "mock-tool")

_FLAG_LETTERS = ((re.IGNORECASE, "i"), (re.MULTILINE, "m"), (re.DOTALL, "s"), (re.VERBOSE, "x"))


class MatchResult(enum.Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    ERROR = "error"


class _NoKey:
    """Failure value returned when a rule spec has no usable url"""

    def __bool__(self):
        return False

    def __repr__(self):
        return "NO_KEY"


NO_KEY = _NoKey()


class RuleSpec(BaseModel):
    """Loosely-typed rule input, as found in rule files or passed to register()"""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="ignore")

    url: Any = None
    pattern: Optional[str] = None
    method: str = "any"
    body: Any = ""
    status: int = 200
    header: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("header", "headers"))
    delay: float = 0
    times: Optional[int] = None
    disable: bool = False
    proxy: bool = False

    @model_validator(mode="before")
    @classmethod
    def flatten_response(cls, data):
        # {"pattern": ..., "response": {"status": ..., "headers": ..., "body": ...}}
        if isinstance(data, dict) and isinstance(data.get("response"), dict):
            merged = dict(data["response"])
            merged.update({k: v for k, v in data.items() if k != "response"})
            return merged
        return data

    @field_validator("url")
    @classmethod
    def url_must_be_text_or_regex(cls, value):
        if value is None or isinstance(value, (str, re.Pattern)):
            return value
        raise ValueError(f"url must be a string or a compiled regex, got {type(value).__name__}")

    @field_validator("method", mode="before")
    @classmethod
    def method_must_be_known(cls, value):
        method = str(value or "any").strip().lower()
        if method not in METHODS:
            raise ValueError(f"unsupported method {value!r}")
        return method

    @field_validator("status")
    @classmethod
    def status_must_be_http(cls, value):
        if not 100 <= value <= 599:
            raise ValueError(f"status must be 100-599, got {value}")
        return value

    @field_validator("delay")
    @classmethod
    def delay_must_be_non_negative(cls, value):
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"delay must be a finite number >= 0, got {value}")
        return value

    @field_validator("times", mode="before")
    @classmethod
    def times_must_be_count(cls, value):
        if isinstance(value, float) and math.isinf(value) and value > 0:
            return None
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"times must be a count >= 0, got {value}")
        if value is not None and int(value) < 0:
            raise ValueError(f"times must be >= 0, got {value}")
        return value

    @field_validator("header")
    @classmethod
    def header_values_as_text(cls, value):
        return {str(k): str(v) for k, v in value.items()}


def rule_key(url, method, is_regex=False):
    """Derive the registry key for a url matcher + method, or None"""
    if isinstance(url, re.Pattern):
        flags = "".join(letter for flag, letter in _FLAG_LETTERS if url.flags & flag)
        return f"/{url.pattern}/{flags}-{method}"
    if not url:
        return None
    if is_regex:
        return f"/{url}/-{method}"
    return f"{url}-{method}"


def merge_headers(header):
    headers = {k: v for k, v in (header or {}).items() if k.lower() != POWERED_BY[0]}
    headers[POWERED_BY[0]] = POWERED_BY[1]
    return headers


class MockItem:
    """A registered mock rule: match criteria plus the response template"""

    def __init__(self, url, method="any", body="", status=200, header=None,
                 delay=0, times=None, disable=False, proxy=False, is_regex=False):
        self.url = url
        self.is_regex = is_regex or isinstance(url, re.Pattern)
        self.method = method
        self.body = "" if method == "head" else body
        self.status = status
        self.header = dict(header or {})
        self.delay = delay
        self.disable = disable
        self.proxy = proxy
        self._times = times
        self._pending = 0
        self.key = rule_key(url, method, self.is_regex)

    @classmethod
    def from_spec(cls, spec: RuleSpec) -> "MockItem":
        url, is_regex = spec.url, False
        if url is None and spec.pattern:
            url, is_regex = spec.pattern, True
        return cls(
            url,
            method=spec.method,
            body=spec.body,
            status=spec.status,
            header=spec.header,
            delay=spec.delay,
            times=spec.times,
            disable=spec.disable,
            proxy=spec.proxy,
            is_regex=is_regex,
        )

    def spec_fields(self) -> Dict[str, Any]:
        """The rule's template as RuleSpec input, without usage state"""
        regex_text = self.is_regex and not isinstance(self.url, re.Pattern)
        return {
            "url": None if regex_text else self.url,
            "pattern": self.url if regex_text else None,
            "method": self.method,
            "body": self.body,
            "status": self.status,
            "header": self.header,
            "delay": self.delay,
            "times": self._times,
            "disable": self.disable,
            "proxy": self.proxy,
        }

    @property
    def times(self) -> Optional[int]:
        """Remaining uses, None when unbounded"""
        return self._times

    @property
    def available(self) -> Optional[int]:
        if self._times is None:
            return None
        return self._times - self._pending

    @property
    def url_text(self) -> str:
        if isinstance(self.url, re.Pattern):
            return f"/{self.url.pattern}/"
        if self.is_regex:
            return f"/{self.url}/"
        return self.url

    def evaluate(self, url, method) -> MatchResult:
        try:
            if self.disable:
                return MatchResult.NO_MATCH
            available = self.available
            if available is not None and available <= 0:
                return MatchResult.NO_MATCH
            if self.method != "any" and self.method != str(method).lower():
                return MatchResult.NO_MATCH

            if isinstance(self.url, re.Pattern):
                hit = self.url.search(url) is not None
            elif self.is_regex:
                hit = re.search(self.url, url) is not None
            else:
                hit = self.url in url
            return MatchResult.MATCH if hit else MatchResult.NO_MATCH
        except Exception as e:
            logger.debug(f"Rule {self.key} could not be evaluated: {e}")
            return MatchResult.ERROR

    # Usage accounting, called by MockEngine while it holds its lock.

    def _reserve(self):
        if self._times is not None:
            self._pending += 1

    def _release(self):
        if self._times is not None and self._pending > 0:
            self._pending -= 1

    def _consume(self):
        if self._times is None:
            return
        self._release()
        self._times = max(self._times - 1, 0)

    def snapshot(self, verbose=True) -> Dict[str, Any]:
        times = "∞" if self._times is None else self._times
        if not verbose:
            return {
                "url": self.url_text,
                "method": self.method,
                "delay": self.delay,
                "times": times,
                "status": self.status,
                "disable": self.disable,
            }
        return {
            "key": self.key,
            "url": self.url_text,
            "method": self.method,
            "body": self.body,
            "status": self.status,
            "header": dict(self.header),
            "delay": self.delay,
            "times": times,
            "disable": self.disable,
            "proxy": self.proxy,
        }

    def __repr__(self):
        return f"MockItem({self.method.upper()} {self.url_text}, status={self.status}, times={self._times})"
