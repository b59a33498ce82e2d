"""
HTTP handlers shared by the Azure function app and the local flask server.

Every handler takes ``(req, services)`` and returns a ``func.HttpResponse``.
The ``endpoint`` decorator owns the boilerplate: CORS preflight, ``?ping=1``,
method checks, and the conversion of errors into the JSON error envelope.
"""
import functools
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import azure.functions as func

from . import sources
from .aggregator import LocationQuery
from .errors import (ImmodiagError, InputError, MethodNotAllowed, NotFoundError,
                     UpstreamError, truncate)
from .llm import ROLE_LABELS
from .services import Services
from .ttl_cache import make_cache_key

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

MODEL_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.\-]{0,63}$")

Handler = Callable[[func.HttpRequest, Services], func.HttpResponse]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_response(payload: Dict[str, Any], status_code: int = 200,
                  headers: Optional[Mapping[str, str]] = None) -> func.HttpResponse:
    all_headers = dict(CORS_HEADERS)
    if headers:
        all_headers.update(headers)
    return func.HttpResponse(
        json.dumps(payload, ensure_ascii=False, default=str),
        status_code=status_code,
        mimetype="application/json",
        charset="utf-8",
        headers=all_headers,
    )


def _clean(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def read_input(req: func.HttpRequest) -> Dict[str, str]:
    """Query parameters for GET, JSON object body for POST; values trimmed to strings."""
    if req.method == "POST":
        try:
            body = req.get_json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return {k: _clean(v) for k, v in body.items()}
    return {k: _clean(v) for k, v in req.params.items()}


def envelope(inputs: Dict[str, Any], payload: Dict[str, Any], cached: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {"ok": True, "cached": cached, "input": inputs}
    out.update(payload)
    meta = dict(payload.get("meta") or {})
    meta["timestamp"] = _timestamp()
    out["meta"] = meta
    return out


def endpoint(methods: Sequence[str] = ("GET", "POST")):
    allowed = ", ".join(methods)

    def decorate(fn: Callable[[func.HttpRequest, Services, Dict[str, str]], func.HttpResponse]) -> Handler:
        @functools.wraps(fn)
        def wrapper(req: func.HttpRequest, services: Services) -> func.HttpResponse:
            if req.method == "OPTIONS":
                return func.HttpResponse(status_code=200, headers=CORS_HEADERS)
            try:
                if req.method == "GET" and req.params.get("ping"):
                    return json_response({"ok": True, "pong": True, "timestamp": _timestamp()})
                if req.method not in methods:
                    raise MethodNotAllowed(allowed)
                return fn(req, services, read_input(req))
            except MethodNotAllowed as e:
                return json_response(e.to_payload(), e.status, headers={"Allow": e.allowed})
            except ImmodiagError as e:
                if e.status >= 500:
                    logging.warning("%s failed: %s", fn.__name__, e.message)
                return json_response(e.to_payload(), e.status)
            except Exception as e:
                logging.exception("❌ %s failed", fn.__name__)
                return json_response({"ok": False, "error": "Server error", "details": truncate(e)}, 500)
        return wrapper
    return decorate


def _require_insee(inputs: Dict[str, str]) -> str:
    insee = inputs.get("insee", "")
    if not insee:
        raise InputError("Bad Request: use GET ?insee=XXXXX or POST { insee }.")
    return insee


# === HEALTH ===

def health(req: func.HttpRequest, services: Services) -> func.HttpResponse:
    return json_response({
        "status": "ok",
        "ts": _timestamp(),
        "cache": {"entries": len(services.cache), "max_entries": services.cache.max_entries},
        "rate_limiter": {"calls_last_window": len(services.limiter.recent_calls()),
                         "max_calls": services.limiter.max_calls},
    })


# === SUMMARY ===

@endpoint()
def summary(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    query = LocationQuery(city=inputs.get("city", ""), postcode=inputs.get("postcode", ""),
                          insee=inputs.get("insee", ""), parcel_id=inputs.get("parcel_id", ""))
    if not (query.city or query.postcode or query.insee):
        raise InputError("Bad Request: at least one of 'city', 'postcode' or 'insee' is required.")

    cached = services.aggregator.cached(query)
    if cached is not None:
        logging.info("✅ Using cached summary for %s", query.cache_key())
        return json_response(envelope(query.as_input(), cached, True))
    result = services.aggregator.aggregate(query)
    return json_response(envelope(query.as_input(), result, False))


# === COMMUNE ===

@endpoint()
def commune(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    city, postcode = inputs.get("city", ""), inputs.get("postcode", "")
    if not city and not postcode:
        raise InputError("Bad Request: at least one of 'city' or 'postcode' is required.")
    key = make_cache_key("commune", city=city, postcode=postcode)
    out, cached = services.remember(key, lambda: services.lookups.search_communes(city, postcode))
    return json_response(envelope({"city": city, "postcode": postcode}, out, cached))


# === ADDRESS ===

@endpoint()
def address(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    street, housenr = inputs.get("street", ""), inputs.get("housenr", "")
    postcode, city = inputs.get("postcode", ""), inputs.get("city", "")
    q = inputs.get("q") or " ".join(v for v in (housenr, street, postcode, city) if v)
    if not q:
        raise InputError("Bad Request: give ?q= or (street, housenr, postcode, city).")
    try:
        limit = max(1, min(int(inputs.get("limit") or 5), 20))
    except ValueError:
        limit = 5

    key = make_cache_key("address", q=q, limit=limit, city=city, postcode=postcode)
    out, cached = services.remember(key, lambda: services.lookups.verify_address(q, city, postcode, limit))
    query = {"q": q, "street": street, "housenr": housenr, "postcode": postcode, "city": city, "limit": limit}
    return json_response(envelope(query, out, cached))


# === PER-INSEE DATA ===

def _per_insee(namespace: str, compute: Callable[[Services, str], Dict[str, Any]]):
    def handler(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
        insee = _require_insee(inputs)
        out, cached = services.remember(make_cache_key(namespace, insee=insee),
                                        lambda: compute(services, insee))
        return json_response(envelope({"insee": insee}, out, cached))
    handler.__name__ = namespace
    return endpoint()(handler)


georisques = _per_insee("georisques", lambda s, insee: s.lookups.risks(insee))
gpu = _per_insee("gpu", lambda s, insee: s.lookups.zoning(insee))
gpu_doc = _per_insee("gpu_doc", lambda s, insee: s.lookups.documents(insee))


@endpoint()
def dvf(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    insee = _require_insee(inputs)
    parcel_id = inputs.get("parcel_id", "")
    key = make_cache_key("dvf", insee=insee, parcel_id=parcel_id)
    out, cached = services.remember(key, lambda: services.lookups.sale_stats(insee, parcel_id=parcel_id))
    inputs_echo = {"insee": insee}
    if parcel_id:
        inputs_echo["parcel_id"] = parcel_id
    return json_response(envelope(inputs_echo, out, cached))


@endpoint()
def dvf_insights(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    if len(inputs.get("insee", "")) < 5:
        raise InputError("Bad Request: give ?insee=XXXXX.")
    insee = inputs["insee"]
    out, cached = services.remember(make_cache_key("dvf_insights", insee=insee),
                                    lambda: services.lookups.sale_availability(insee))
    return json_response(envelope({"insee": insee}, out, cached))


# === ENVIRONMENT ===

def _environment(services: Services, insee: str, lat: str, lon: str) -> Dict[str, Any]:
    if insee:
        commune_info, outcome = services.lookups.commune_details(insee)
    else:
        commune_info, outcome = services.lookups.commune_at(lat, lon)

    if commune_info is None or not commune_info.get("insee"):
        last = outcome.error
        if last is None or last.upstream_status == 404 or (not insee and last.upstream_status == 200):
            raise NotFoundError("Commune not found.")
        raise UpstreamError("Commune lookup failed.", details=last.message)

    heritage = services.lookups.heritage(commune_info["lat"], commune_info["lon"])
    return {
        "insee": commune_info["insee"],
        "commune": commune_info,
        "around": {"heritage": heritage, "coast_km": None, "ski": None},
        "links": sources.environment_links(commune_info["insee"], commune_info["lat"], commune_info["lon"]),
    }


@endpoint()
def envinfo(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    insee, lat, lon = inputs.get("insee", ""), inputs.get("lat", ""), inputs.get("lon", "")
    if not insee and not (lat and lon):
        raise InputError("Bad Request: give ?insee= or ?lat=&lon=.")
    key = make_cache_key("envinfo", insee=insee, lat=lat, lon=lon)
    out, cached = services.remember(key, lambda: _environment(services, insee, lat, lon))
    return json_response(envelope({"insee": insee, "lat": lat, "lon": lon}, out, cached))


# === LETTERS ===

@endpoint(methods=("POST",))
def compose(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    role, dossier = inputs.get("role", ""), inputs.get("dossier", "")
    if role not in ROLE_LABELS:
        raise InputError(f"Bad Request: 'role' is required and must be one of [{', '.join(ROLE_LABELS)}].")
    if not dossier:
        raise InputError("Bad Request: field 'dossier' is required.")
    out = services.letters.compose(role, dossier)
    out["meta"] = {"received_chars": len(dossier)}
    return json_response(envelope({"role": role}, out, False))


@endpoint(methods=("POST",))
def ping_llm(req: func.HttpRequest, services: Services, inputs: Dict[str, str]) -> func.HttpResponse:
    model = inputs.get("model", "")
    if model and not MODEL_NAME.match(model):
        raise InputError("Bad Request: 'model' must look like 'gemini-2.0-flash'.")
    out = services.letters.ping(inputs.get("prompt", ""), model)
    return json_response(envelope({"model": model}, out, False))
