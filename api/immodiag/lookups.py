"""
One function per logical lookup. Each builds its CandidateList, runs it through
the fallback fetcher and normalizes the winner. Only commune resolution raises;
every other lookup degrades to ``None`` plus a note and reference links.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from . import normalize, sources
from .config import Settings
from .errors import UpstreamError
from .fallback import FallbackFetcher, FetchOutcome


def _degraded(outcome: FetchOutcome, note: str) -> Dict[str, Any]:
    return {
        "used_endpoint": outcome.used_url,
        "note": note,
        "error_hint": outcome.error_hint,
    }


class Lookups:
    def __init__(self, fetcher: FallbackFetcher, settings: Settings):
        self.fetcher = fetcher
        self.settings = settings

    # === COMMUNES ===

    def search_communes(self, city: str = "", postcode: str = "", insee: str = "") -> Dict[str, Any]:
        """Resolve a commune by INSEE code or by name/postcode. Raises UpstreamError when unreachable."""
        if insee:
            candidates = sources.commune_by_code_candidates(self.settings, insee)
        else:
            candidates = sources.commune_search_candidates(self.settings, city, postcode)
        outcome = self.fetcher.fetch_first_success(candidates)
        if not outcome.ok:
            err = outcome.error
            if err is not None and err.upstream_status == 404:
                # Unknown code or name: no match, not an outage.
                return {"source": None, "count": 0, "matches": [], "commune": None}
            raise UpstreamError("Commune lookup failed on every source.",
                                details={"last_error": err.message, "upstream": err.details} if err else None)

        schema = outcome.used.schema
        matches = [normalize.normalize_commune(r, schema)
                   for r in normalize.commune_records(outcome.data, schema)]
        matches = [m for m in matches if m["insee"]]
        return {
            "source": outcome.used.name,
            "count": len(matches),
            "matches": matches,
            "commune": matches[0] if len(matches) == 1 else None,
        }

    def commune_details(self, insee: str) -> Tuple[Optional[Dict[str, Any]], FetchOutcome]:
        outcome = self.fetcher.fetch_first_success(
            sources.commune_by_code_candidates(self.settings, insee, timeout=self.settings.envinfo_timeout))
        if not outcome.ok:
            return None, outcome
        return normalize.normalize_commune(outcome.data, outcome.used.schema), outcome

    def commune_at(self, lat: str, lon: str) -> Tuple[Optional[Dict[str, Any]], FetchOutcome]:
        outcome = self.fetcher.fetch_first_success(sources.commune_by_point_candidates(self.settings, lat, lon))
        if not outcome.ok:
            return None, outcome
        return normalize.normalize_commune(outcome.data[0], outcome.used.schema), outcome

    def department_for(self, insee: str) -> str:
        commune, _ = self.commune_details(insee)
        code = (commune or {}).get("department", {}).get("code")
        return code or sources.department_from_insee(insee)

    # === ADDRESSES ===

    def verify_address(self, q: str, city: str = "", postcode: str = "", limit: int = 5) -> Dict[str, Any]:
        outcome = self.fetcher.fetch_first_success(sources.address_candidates(self.settings, q, limit))
        hits: List[Dict[str, Any]] = []
        if outcome.ok:
            hits = [normalize.normalize_address_hit(f) for f in outcome.data.get("features", [])]
        best = hits[0] if hits else None
        out = {
            "hits": hits,
            "best_hit": best,
            "mismatch_hints": normalize.address_mismatch_hints(best, city, postcode),
            "used_endpoint": outcome.used_url,
        }
        if not outcome.ok:
            out.update(_degraded(outcome, "Address services unavailable; try again shortly."))
        return out

    # === RISKS ===

    def risks(self, insee: str) -> Dict[str, Any]:
        outcome = self.fetcher.fetch_first_success(sources.risk_candidates(self.settings, insee))
        out: Dict[str, Any] = {
            "source": "georisques.gouv.fr",
            "insee": insee,
            "summary": normalize.summarize_risks(outcome.data) if outcome.ok else None,
            "links": sources.risk_links(insee),
            "used_endpoint": outcome.used_url,
        }
        if not outcome.ok:
            out.update(_degraded(outcome, "No risk overview received from Géorisques; use the links."))
        return out

    # === ZONING ===

    def zoning(self, insee: str) -> Dict[str, Any]:
        outcome = self.fetcher.fetch_first_success(sources.zoning_candidates(self.settings, insee))
        out: Dict[str, Any] = {
            "source": "apicarto.ign.fr (GPU)",
            "insee": insee,
            "zones": None,
            "feature_count": None,
            "links": sources.zoning_links(insee),
            "used_endpoint": outcome.used_url,
        }
        if outcome.ok:
            out.update(normalize.summarize_zones(outcome.data, outcome.used.schema))
        else:
            out.update(_degraded(outcome, "No zoning received from the GPU; use the links."))
        return out

    # === DOCUMENTS ===

    def documents(self, insee: str) -> Dict[str, Any]:
        outcome = self.fetcher.fetch_first_success(sources.document_candidates(self.settings, insee))
        out: Dict[str, Any] = {
            "source": "apicarto.ign.fr (GPU documents)",
            "insee": insee,
            "documents": normalize.summarize_documents(outcome.data) if outcome.ok else None,
            "links": sources.document_links(insee),
            "used_endpoint": outcome.used_url,
        }
        if not outcome.ok:
            out.update(_degraded(outcome, "No document API response received; use the links for manual navigation."))
        return out

    # === SALES ===

    def sale_stats(self, insee: str, parcel_id: str = "", department: Optional[str] = None) -> Dict[str, Any]:
        """Parcel-level sales when a parcel id is known, otherwise (or when empty) the commune-wide file."""
        department = department or self.department_for(insee)
        links = sources.sale_links(insee, department)

        path = None
        outcome = None
        if parcel_id:
            outcome = self.fetcher.fetch_first_success(sources.parcel_sale_candidates(self.settings, parcel_id))
            if outcome.ok:
                path = "parcel"
            else:
                logging.info("No parcel-level sales for %s, falling back to commune file", parcel_id)
        if path is None:
            outcome = self.fetcher.fetch_first_success(sources.commune_sale_candidates(self.settings, insee))
            if outcome.ok:
                path = "commune"

        out: Dict[str, Any] = {
            "source": "api.dvf.etalab.gouv.fr" if path == "parcel" else "files.data.gouv.fr/geo-dvf",
            "insee": insee,
            "sale_stats": None,
            "links": links,
            "used_endpoint": outcome.used_url,
        }
        if path:
            stats = normalize.summarize_sales(outcome.data)
            stats["path"] = path
            out["sale_stats"] = stats
        else:
            out.update(_degraded(outcome, "No per-commune DVF data found; use the links "
                                          "(the department file is large)."))
        return out

    def sale_availability(self, insee: str) -> Dict[str, Any]:
        links = sources.sale_links(insee, sources.department_from_insee(insee))
        head = self.fetcher.fetch_first_success(sources.commune_sale_head_candidates(self.settings, insee))
        available = head.ok
        transactions_count = None
        if available:
            body = self.fetcher.fetch_first_success(sources.commune_sale_candidates(self.settings, insee)[:1])
            if body.ok:
                transactions_count = len(body.data["features"])
        return {
            "insee": insee,
            "links": links,
            "summary": {
                "available": available,
                "transactions_count": transactions_count,
                "note": ("Commune file available; further aggregation can run client- or server-side."
                         if available else
                         "No per-commune DVF GeoJSON found. Use the department files or the Etalab app."),
            },
        }

    # === ENVIRONMENT ===

    def heritage(self, lat: Optional[float], lon: Optional[float]) -> List[Dict[str, Any]]:
        if lat is None or lon is None:
            return []
        outcome = self.fetcher.fetch_first_success(sources.heritage_candidates(self.settings, lat, lon))
        if not outcome.ok:
            return []
        return [normalize.normalize_heritage(r) for r in outcome.data.get("records") or []]
