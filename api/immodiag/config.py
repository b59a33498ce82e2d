import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError

# --- Defaults (overridable through app settings / local.settings.json) ---
CACHE_TTL_SECONDS = 10 * 60
CACHE_MAX_ENTRIES = 200
RATE_MIN_INTERVAL_SECONDS = 1.0
RATE_MAX_CALLS = 8
RATE_WINDOW_SECONDS = 60.0
REQUEST_TIMEOUT = 8
GEOCODE_TIMEOUT = 10
ENVINFO_TIMEOUT = 12
RETRY_429_BACKOFF_SECONDS = 1.2
LLM_429_BACKOFFS = (2.0, 4.0)
FANOUT_WORKERS = 4

GEMINI_KEY_ENV = "GEMINI_API_KEY"


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Setting {name} must be a number, got {raw!r}")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    return int(_env_float(env, name, default))


@dataclass(frozen=True)
class Settings:
    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    cache_max_entries: int = CACHE_MAX_ENTRIES
    rate_min_interval_seconds: float = RATE_MIN_INTERVAL_SECONDS
    rate_max_calls: int = RATE_MAX_CALLS
    rate_window_seconds: float = RATE_WINDOW_SECONDS
    request_timeout: float = REQUEST_TIMEOUT
    geocode_timeout: float = GEOCODE_TIMEOUT
    envinfo_timeout: float = ENVINFO_TIMEOUT
    retry_429_backoff_seconds: float = RETRY_429_BACKOFF_SECONDS
    fanout_workers: int = FANOUT_WORKERS

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            cache_ttl_seconds=_env_float(env, "CACHE_TTL_SECONDS", CACHE_TTL_SECONDS),
            cache_max_entries=max(1, _env_int(env, "CACHE_MAX_ENTRIES", CACHE_MAX_ENTRIES)),
            rate_min_interval_seconds=_env_float(env, "RATE_MIN_INTERVAL_SECONDS", RATE_MIN_INTERVAL_SECONDS),
            rate_max_calls=max(1, _env_int(env, "RATE_MAX_CALLS", RATE_MAX_CALLS)),
            rate_window_seconds=_env_float(env, "RATE_WINDOW_SECONDS", RATE_WINDOW_SECONDS),
            request_timeout=_env_float(env, "REQUEST_TIMEOUT", REQUEST_TIMEOUT),
            geocode_timeout=_env_float(env, "GEOCODE_TIMEOUT", GEOCODE_TIMEOUT),
            envinfo_timeout=_env_float(env, "ENVINFO_TIMEOUT", ENVINFO_TIMEOUT),
            retry_429_backoff_seconds=_env_float(env, "RETRY_429_BACKOFF_SECONDS", RETRY_429_BACKOFF_SECONDS),
            fanout_workers=max(1, _env_int(env, "FANOUT_WORKERS", FANOUT_WORKERS)),
        )


def gemini_api_key(env: Optional[Mapping[str, str]] = None) -> str:
    """Read the LLM key at call time; a missing key is a configuration error."""
    env = os.environ if env is None else env
    key = (env.get(GEMINI_KEY_ENV) or "").strip()
    if not key:
        raise ConfigurationError(f"Server misconfiguration: {GEMINI_KEY_ENV} is not set.")
    return key
