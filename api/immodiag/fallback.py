"""
Multi-candidate fetch with fallback.

A logical lookup ("risks for commune X") is described by an ordered list of
``Candidate`` endpoints. ``FallbackFetcher.fetch_first_success`` tries them in
order, each admitted by the shared rate limiter and bounded by its own timeout,
and returns the first well-formed success. Exhausting the list is an outcome,
not an exception: callers get ``data=None`` plus the last error and decide how
to degrade.
"""
import gzip
import json
import logging
import time
import zlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .config import REQUEST_TIMEOUT
from .errors import UpstreamError, truncate
from .rate_limiter import RateLimiter

JSON_HEADERS = {"Accept": "application/json"}


def any_json(data: Any) -> bool:
    return data is not None


def is_list(data: Any) -> bool:
    return isinstance(data, list)


def is_feature_collection(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("features"), list)


def has_key(name: str) -> Callable[[Any], bool]:
    def check(data: Any) -> bool:
        return isinstance(data, dict) and data.get(name) is not None
    return check


@dataclass(frozen=True)
class Candidate:
    """One endpoint able to answer a logical lookup."""
    name: str
    url: str
    params: Optional[Dict[str, Any]] = None
    method: str = "GET"
    json_body: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    timeout: float = REQUEST_TIMEOUT
    accepts: Callable[[Any], bool] = any_json
    # Upstream schema tag, used to pick the field mapping for normalization.
    schema: str = ""
    # Waits before each retry on HTTP 429; empty means a 429 fails the candidate.
    backoffs_429: Tuple[float, ...] = ()

    def describe(self) -> str:
        return f"{self.name} ({self.method} {self.url})"


@dataclass
class Attempt:
    candidate: str
    status: Optional[int]
    error: Optional[str] = None
    elapsed_ms: Optional[int] = None


@dataclass
class FetchOutcome:
    data: Any = None
    used: Optional[Candidate] = None
    error: Optional[UpstreamError] = None
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.used is not None

    @property
    def used_url(self) -> Optional[str]:
        return self.used.url if self.used else None

    @property
    def error_hint(self) -> Optional[str]:
        return self.error.hint if (self.error and not self.ok) else None


def decode_body(response: requests.Response) -> Any:
    """JSON body, including per-commune files served as raw ``.json.gz``."""
    content = response.content or b""
    if content[:2] == b"\x1f\x8b":
        try:
            content = gzip.decompress(content)
        except (OSError, EOFError, zlib.error) as e:
            raise ValueError(f"corrupt gzip body: {e}") from e
    if not content.strip():
        return None
    return json.loads(content.decode("utf-8"))


class FallbackFetcher:
    def __init__(self,
                 session: requests.Session,
                 limiter: RateLimiter,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.session = session
        self.limiter = limiter
        self._sleep = sleep
        self._clock = clock

    def _request(self, candidate: Candidate) -> requests.Response:
        self.limiter.admit()
        headers = dict(JSON_HEADERS)
        if candidate.headers:
            headers.update(candidate.headers)
        return self.session.request(
            candidate.method,
            candidate.url,
            params=candidate.params,
            json=candidate.json_body,
            headers=headers,
            timeout=candidate.timeout,
        )

    def fetch_one(self, candidate: Candidate, attempts: Optional[List[Attempt]] = None) -> Any:
        """Single candidate, honouring its 429 backoffs. Raises UpstreamError on failure."""
        attempts = attempts if attempts is not None else []
        backoffs = list(candidate.backoffs_429)
        while True:
            started = self._clock()
            try:
                resp = self._request(candidate)
            except requests.exceptions.Timeout as e:
                attempts.append(Attempt(candidate.name, None, "timeout"))
                raise UpstreamError(f"{candidate.name} timed out after {candidate.timeout}s",
                                    details=truncate(e), url=candidate.url)
            except requests.exceptions.RequestException as e:
                attempts.append(Attempt(candidate.name, None, "transport"))
                raise UpstreamError(f"Fetch to {candidate.name} failed", details=truncate(e), url=candidate.url)

            elapsed_ms = int((self._clock() - started) * 1000)
            if resp.status_code == 429 and backoffs:
                attempts.append(Attempt(candidate.name, 429, "throttled", elapsed_ms))
                wait = backoffs.pop(0)
                logging.warning("⚠️ %s answered 429, retrying in %.1fs", candidate.name, wait)
                self._sleep(wait)
                continue

            if not resp.ok:
                attempts.append(Attempt(candidate.name, resp.status_code, "http", elapsed_ms))
                raise UpstreamError(f"{candidate.name} returned HTTP {resp.status_code}",
                                    status=resp.status_code, details=truncate(resp.text or ""), url=candidate.url,
                                    upstream_status=resp.status_code)

            if candidate.method == "HEAD":
                attempts.append(Attempt(candidate.name, resp.status_code, None, elapsed_ms))
                return {"status": resp.status_code}

            try:
                data = decode_body(resp)
            except (ValueError, OSError) as e:
                attempts.append(Attempt(candidate.name, resp.status_code, "undecodable", elapsed_ms))
                raise UpstreamError(f"{candidate.name} returned a non-JSON body", details=truncate(e),
                                    url=candidate.url, upstream_status=resp.status_code)

            if not candidate.accepts(data):
                attempts.append(Attempt(candidate.name, resp.status_code, "unexpected shape", elapsed_ms))
                raise UpstreamError(f"{candidate.name} returned an unexpected payload",
                                    details=truncate(json.dumps(data)[:200] if data is not None else "null"),
                                    url=candidate.url, upstream_status=resp.status_code)

            attempts.append(Attempt(candidate.name, resp.status_code, None, elapsed_ms))
            return data

    def fetch_first_success(self, candidates: Sequence[Candidate]) -> FetchOutcome:
        outcome = FetchOutcome()
        for candidate in candidates:
            try:
                outcome.data = self.fetch_one(candidate, outcome.attempts)
            except UpstreamError as e:
                logging.warning("✗ %s failed: %s", candidate.name, e.message)
                outcome.error = e
                continue
            outcome.used = candidate
            outcome.error = None
            logging.info("✓ %s answered", candidate.name)
            return outcome

        if outcome.error is None:
            outcome.error = UpstreamError("No candidate endpoints to try")
        return outcome
