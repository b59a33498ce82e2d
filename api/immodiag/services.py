import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

import requests

from .aggregator import Aggregator
from .config import Settings
from .fallback import FallbackFetcher
from .llm import LetterWriter
from .lookups import Lookups
from .rate_limiter import RateLimiter
from .ttl_cache import TTLCache

USER_AGENT = "immodiag/1.0"


@dataclass
class Services:
    """Process-wide state, built once by the function app and handed to every handler."""
    settings: Settings
    limiter: RateLimiter
    cache: TTLCache
    fetcher: FallbackFetcher
    lookups: Lookups
    aggregator: Aggregator
    letters: LetterWriter

    @classmethod
    def create(cls,
               settings: Optional[Settings] = None,
               session: Optional[requests.Session] = None,
               clock: Callable[[], float] = time.monotonic,
               sleep: Callable[[float], None] = time.sleep) -> "Services":
        settings = settings or Settings.from_env()
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT

        limiter = RateLimiter(min_interval=settings.rate_min_interval_seconds,
                              max_calls=settings.rate_max_calls,
                              window=settings.rate_window_seconds,
                              clock=clock, sleep=sleep)
        cache = TTLCache(ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries, clock=clock)
        fetcher = FallbackFetcher(session, limiter, sleep=sleep, clock=clock)
        lookups = Lookups(fetcher, settings)
        return cls(
            settings=settings,
            limiter=limiter,
            cache=cache,
            fetcher=fetcher,
            lookups=lookups,
            aggregator=Aggregator(lookups, cache, workers=settings.fanout_workers),
            letters=LetterWriter(fetcher),
        )

    def remember(self, key: str, compute: Callable[[], Any]) -> Tuple[Any, bool]:
        """Cached value for ``key`` or compute and store it. Returns ``(value, was_cached)``."""
        hit = self.cache.get(key)
        if hit is not None:
            return hit, True
        value = compute()
        self.cache.set(key, value)
        return value, False
