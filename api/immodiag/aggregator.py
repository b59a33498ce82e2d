"""
Due-diligence summary for one location.

Resolve (commune) strictly precedes the fan-out; the four fan-out branches run
on a small thread pool and share the process rate limiter. A branch that raises
or comes back empty degrades to ``None`` with a note; it never fails the whole
summary.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from . import sources
from .errors import truncate
from .lookups import Lookups
from .normalize import risk_flags
from .ttl_cache import TTLCache, make_cache_key

AMBIGUOUS_NOTE = "No unique commune found; refine the city and/or postcode."


@dataclass(frozen=True)
class LocationQuery:
    city: str = ""
    postcode: str = ""
    insee: str = ""
    parcel_id: str = ""

    def cache_key(self) -> str:
        return make_cache_key("summary", city=self.city, postcode=self.postcode,
                              insee=self.insee, parcel_id=self.parcel_id)

    def as_input(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}


@dataclass
class AggregateResult:
    commune: Any = None
    risks: Optional[Dict[str, Any]] = None
    zoning: Optional[Dict[str, Any]] = None
    documents: Optional[Dict[str, Any]] = None
    sale_stats: Optional[Dict[str, Any]] = None
    links: Dict[str, Optional[str]] = field(default_factory=dict)
    generated_at: str = ""
    note: Optional[str] = None
    notes: Dict[str, str] = field(default_factory=dict)
    sources: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Aggregator:
    def __init__(self, lookups: Lookups, cache: TTLCache, workers: int = 4,
                 now: Callable[[], str] = _now_iso):
        self.lookups = lookups
        self.cache = cache
        self.workers = workers
        self._now = now

    def cached(self, query: LocationQuery) -> Optional[Dict[str, Any]]:
        return self.cache.get(query.cache_key())

    def aggregate(self, query: LocationQuery) -> Dict[str, Any]:
        resolved = self.lookups.search_communes(query.city, query.postcode, query.insee)
        commune = resolved.get("commune")
        if not commune or not commune.get("insee"):
            result = AggregateResult(commune=resolved, links=dict(sources.GENERAL_LINKS),
                                     generated_at=self._now(), note=AMBIGUOUS_NOTE)
        else:
            result = self._fan_out(commune, query)

        payload = result.to_dict()
        self.cache.set(query.cache_key(), payload)
        return payload

    def _fan_out(self, commune: Dict[str, Any], query: LocationQuery) -> AggregateResult:
        insee = commune["insee"]
        department = (commune.get("department") or {}).get("code") or sources.department_from_insee(insee)
        branches = {
            "risks": lambda: self._risks(insee),
            "zoning": lambda: self._zoning(insee),
            "documents": lambda: self._documents(insee),
            "sale_stats": lambda: self._sales(insee, query.parcel_id, department),
        }
        result = AggregateResult(commune=commune, links=sources.summary_links(insee, department),
                                 generated_at=self._now())

        logging.info("🔍 Fan-out for INSEE %s (%s)", insee, commune.get("name"))
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {name: pool.submit(fn) for name, fn in branches.items()}
            for name, future in futures.items():
                try:
                    value, used, note = future.result()
                except Exception as e:
                    logging.exception("Branch %s failed for %s", name, insee)
                    value, used, note = None, None, f"Lookup failed: {truncate(e, 200)}"
                setattr(result, name, value)
                result.sources[name] = used
                if value is None:
                    result.notes[name] = note or "Upstream unavailable; use the reference links."
        return result

    # Each branch returns (normalized value or None, used endpoint, note).

    def _risks(self, insee: str):
        out = self.lookups.risks(insee)
        if out["summary"] is None:
            return None, None, out.get("note")
        value = {"summary": out["summary"], "flags": risk_flags(out["summary"]), "links": out["links"]}
        return value, out["used_endpoint"], None

    def _zoning(self, insee: str):
        out = self.lookups.zoning(insee)
        if out["zones"] is None:
            return None, None, out.get("note")
        value = {"zones": out["zones"], "feature_count": out["feature_count"], "links": out["links"]}
        return value, out["used_endpoint"], None

    def _documents(self, insee: str):
        out = self.lookups.documents(insee)
        if out["documents"] is None:
            return None, None, out.get("note")
        return {"documents": out["documents"], "links": out["links"]}, out["used_endpoint"], None

    def _sales(self, insee: str, parcel_id: str, department: str):
        out = self.lookups.sale_stats(insee, parcel_id=parcel_id, department=department)
        if out["sale_stats"] is None:
            return None, None, out.get("note")
        value = dict(out["sale_stats"])
        value["links"] = out["links"]
        return value, out["used_endpoint"], None
