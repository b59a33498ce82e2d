"""
Shared fixtures: a manual clock and a scripted HTTP session.

The session answers ``request()`` calls with real ``requests.Response``
objects, picked by the longest registered URL fragment that the requested URL
contains. Unregistered URLs answer 404.
"""
import gzip
import json
import threading
from typing import Any, Dict, List, Optional

import pytest
import requests

from immodiag.config import Settings
from immodiag.services import Services


class FakeClock:
    """Monotonic clock that only moves when something sleeps or a test advances it."""

    def __init__(self, start: float = 1000.0):
        self.current = start
        self.sleeps: List[float] = []
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self.current

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.current += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.current += seconds


def make_response(status: int = 200, payload: Any = None, content: Optional[bytes] = None,
                  headers: Optional[Dict[str, str]] = None, url: str = "https://example.test/") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    if content is None:
        content = b"" if payload is None else json.dumps(payload).encode("utf-8")
    resp._content = content
    resp.headers.update(headers or {"Content-Type": "application/json"})
    resp.url = url
    resp.encoding = "utf-8"
    return resp


def gzipped(payload: Any) -> bytes:
    return gzip.compress(json.dumps(payload).encode("utf-8"))


class FakeSession:
    """Stand-in for ``requests.Session``; every call is recorded in ``calls``."""

    def __init__(self):
        self.routes: Dict[str, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, fragment: str, *answers: Any) -> "FakeSession":
        """
        Script answers for URLs containing ``fragment``. An answer is a
        ``requests.Response``, an exception instance to raise, or a
        ``(status, payload)`` tuple. The last answer repeats once the others are used.
        """
        self.routes[fragment] = list(answers)
        return self

    def _answer(self, url: str) -> Any:
        matches = [f for f in self.routes if f in url]
        if not matches:
            return make_response(404, {"message": "not found"}, url=url)
        queue = self.routes[max(matches, key=len)]
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, tuple):
            answer = make_response(answer[0], answer[1], url=url)
        return answer

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        with self._lock:
            self.calls.append({"method": method, "url": url, "params": params,
                               "json": json, "headers": headers, "timeout": timeout})
            answer = self._answer(url)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]


PARIS = {
    "nom": "Paris",
    "code": "75056",
    "codesPostaux": ["75001", "75002"],
    "centre": {"type": "Point", "coordinates": [2.347, 48.8589]},
    "departement": {"code": "75", "nom": "Paris"},
    "population": 2133111,
}

SAINT_DENIS = [
    {"nom": "Saint-Denis", "code": "93066", "codesPostaux": ["93200"],
     "departement": {"code": "93", "nom": "Seine-Saint-Denis"}, "population": 113942},
    {"nom": "Saint-Denis", "code": "97411", "codesPostaux": ["97400"],
     "departement": {"code": "974", "nom": "La Réunion"}, "population": 153810},
]


def dvf_feature(value, surface, year, kind):
    return {"type": "Feature", "properties": {
        "valeur_fonciere": value, "surface_reelle_bati": surface,
        "date_mutation": f"{year}-06-15", "type_local": kind}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def services(clock, session):
    return Services.create(Settings(), session=session, clock=clock.now, sleep=clock.sleep)
