"""
Unit tests for the multi-candidate fallback fetcher.
"""
import pytest
import requests

from conftest import gzipped, make_response
from immodiag.errors import UpstreamError
from immodiag.fallback import (Candidate, FallbackFetcher, decode_body, has_key,
                               is_feature_collection, is_list)
from immodiag.rate_limiter import RateLimiter


@pytest.fixture
def fetcher(clock, session):
    limiter = RateLimiter(clock=clock.now, sleep=clock.sleep)
    return FallbackFetcher(session, limiter, sleep=clock.sleep, clock=clock.now)


def candidates(*names, **kwargs):
    return [Candidate(name, f"https://{name}.test/api", **kwargs) for name in names]


class TestFirstSuccess:
    """Ordered fallback."""

    def test_third_candidate_wins(self, fetcher, session):
        """A and B fail, C answers: C's data is returned and reported."""
        session.add("a.test", (500, {"err": 1}))
        session.add("b.test", requests.exceptions.ConnectionError("refused"))
        session.add("c.test", (200, {"value": 42}))

        outcome = fetcher.fetch_first_success(candidates("a", "b", "c"))

        assert outcome.ok
        assert outcome.data == {"value": 42}
        assert outcome.used.name == "c"
        assert outcome.used_url == "https://c.test/api"
        assert outcome.error is None
        assert [a.candidate for a in outcome.attempts] == ["a", "b", "c"]

    def test_stops_at_first_success(self, fetcher, session):
        """Later candidates are not called once one succeeds."""
        session.add("a.test", (200, [1, 2]))
        session.add("b.test", (200, [3]))
        outcome = fetcher.fetch_first_success(candidates("a", "b"))
        assert outcome.data == [1, 2]
        assert session.urls() == ["https://a.test/api"]

    def test_all_failing_returns_last_error(self, fetcher, session):
        """Exhausting the list is an outcome, not an exception."""
        session.add("a.test", (500, {}))
        session.add("b.test", (503, {}))

        outcome = fetcher.fetch_first_success(candidates("a", "b"))

        assert not outcome.ok
        assert outcome.data is None
        assert outcome.used_url is None
        assert outcome.error.upstream_status == 503
        assert outcome.error_hint == "Last error: HTTP 503"

    def test_empty_candidate_list(self, fetcher):
        """No candidates means no data and an explanatory error."""
        outcome = fetcher.fetch_first_success([])
        assert not outcome.ok
        assert outcome.error is not None

    def test_every_call_goes_through_the_limiter(self, fetcher, session, clock):
        """Each attempt is admitted by the shared rate limiter."""
        session.add("a.test", (500, {}))
        session.add("b.test", (500, {}))
        session.add("c.test", (200, {}))
        fetcher.fetch_first_success(candidates("a", "b", "c"))
        assert len(fetcher.limiter.recent_calls()) == 3
        assert clock.sleeps == [1.0, 1.0]


class TestFetchOne:
    """Single-candidate behaviour."""

    def test_timeout_is_upstream_error(self, fetcher, session):
        """A timeout fails the candidate with a clear message."""
        session.add("a.test", requests.exceptions.ReadTimeout("slow"))
        with pytest.raises(UpstreamError, match="timed out"):
            fetcher.fetch_one(candidates("a", timeout=3)[0])

    def test_timeout_is_passed_to_the_session(self, fetcher, session):
        """The per-candidate timeout bounds the request."""
        session.add("a.test", (200, {}))
        fetcher.fetch_one(candidates("a", timeout=5)[0])
        assert session.calls[0]["timeout"] == 5

    def test_wrong_shape_fails_candidate(self, fetcher, session):
        """A body that fails the shape check counts as a failure."""
        session.add("a.test", (200, {"not": "a list"}))
        session.add("b.test", (200, ["ok"]))
        outcome = fetcher.fetch_first_success(candidates("a", "b", accepts=is_list))
        assert outcome.used.name == "b"
        assert outcome.attempts[0].error == "unexpected shape"

    def test_non_json_body_fails_candidate(self, fetcher, session):
        """HTML error pages with a 200 status are rejected."""
        session.add("a.test", make_response(200, content=b"<html>maintenance</html>"))
        with pytest.raises(UpstreamError, match="non-JSON"):
            fetcher.fetch_one(candidates("a")[0])

    def test_gzip_body_is_decoded(self, fetcher, session):
        """Raw .json.gz files are decompressed before parsing."""
        payload = {"type": "FeatureCollection", "features": []}
        session.add("a.test", make_response(200, content=gzipped(payload)))
        data = fetcher.fetch_one(candidates("a", accepts=is_feature_collection)[0])
        assert data == payload

    def test_head_returns_status(self, fetcher, session):
        """HEAD candidates succeed on any 2xx without a body."""
        session.add("a.test", make_response(200, content=b""))
        assert fetcher.fetch_one(candidates("a", method="HEAD")[0]) == {"status": 200}
        assert session.calls[0]["method"] == "HEAD"

    def test_post_body_and_headers(self, fetcher, session):
        """JSON body and extra headers are forwarded."""
        session.add("a.test", (200, {"candidates": []}))
        fetcher.fetch_one(candidates("a", method="POST", json_body={"x": 1},
                                     headers={"x-key": "secret"}, accepts=has_key("candidates"))[0])
        call = session.calls[0]
        assert call["json"] == {"x": 1}
        assert call["headers"]["x-key"] == "secret"
        assert call["headers"]["Accept"] == "application/json"


class TestThrottling:
    """HTTP 429 backoff."""

    def test_429_is_retried_after_backoff(self, fetcher, session, clock):
        """One 429 then success: the candidate wins after the configured wait."""
        session.add("a.test", (429, {}), (200, {"ok": True}))
        outcome = fetcher.fetch_first_success(candidates("a", backoffs_429=(1.2,)))
        assert outcome.data == {"ok": True}
        assert 1.2 in clock.sleeps
        assert [a.status for a in outcome.attempts] == [429, 200]

    def test_429_without_backoffs_fails_fast(self, fetcher, session):
        """Candidates with no backoff treat 429 as an ordinary failure."""
        session.add("a.test", (429, {}))
        session.add("b.test", (200, {"ok": True}))
        outcome = fetcher.fetch_first_success(candidates("a", "b"))
        assert outcome.used.name == "b"
        assert len([c for c in session.calls if "a.test" in c["url"]]) == 1

    def test_backoffs_are_used_in_order_then_give_up(self, fetcher, session, clock):
        """After the last backoff the 429 becomes the error."""
        session.add("a.test", (429, {}))
        outcome = fetcher.fetch_first_success(candidates("a", backoffs_429=(2.0, 4.0)))
        assert not outcome.ok
        assert outcome.error.upstream_status == 429
        assert [s for s in clock.sleeps if s in (2.0, 4.0)] == [2.0, 4.0]
        assert len(session.calls) == 3


class TestDecodeBody:
    """Body decoding helper."""

    def test_empty_body_is_none(self):
        """An empty body decodes to None."""
        assert decode_body(make_response(200, content=b"  ")) is None

    def test_plain_json(self):
        """Plain JSON passes straight through."""
        assert decode_body(make_response(200, {"a": "é"})) == {"a": "é"}


class TestCorruptBodies:
    """Damaged compressed bodies fail the candidate, never the lookup."""

    def test_corrupt_gzip_moves_to_next_candidate(self, fetcher, session):
        """A body with the gzip magic but garbage after it falls through to B."""
        session.add("a.test", make_response(200, content=b"\x1f\x8b\x08\x00garbage-not-deflate"))
        session.add("b.test", (200, {"type": "FeatureCollection", "features": []}))

        outcome = fetcher.fetch_first_success(candidates("a", "b", accepts=is_feature_collection))

        assert outcome.used.name == "b"
        assert outcome.attempts[0].error == "undecodable"

    def test_truncated_gzip_is_a_value_error(self):
        """A gzip stream cut short is reported as an undecodable body."""
        content = gzipped({"features": list(range(200))})[:20]
        with pytest.raises(ValueError, match="corrupt gzip"):
            decode_body(make_response(200, content=content))
