"""
Reduce upstream payloads to small stable shapes.

Upstream field names drift between mirrors and API versions, so every schema is
described as data: an ordered tuple of ``(canonical_field, (path, path, ...))``.
``normalize_record`` walks the paths in order and keeps the first usable value.
Supporting a renamed field is a change to one of these tables, not to the code.
"""
import json
import math
import re
import statistics
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

FieldMap = Tuple[Tuple[str, Tuple[str, ...]], ...]

# --- Communes (geo.api.gouv.fr / api-adresse municipality search) ---
COMMUNE_FIELDS: Dict[str, FieldMap] = {
    "geo-api": (
        ("insee", ("code",)),
        ("name", ("nom",)),
        ("postcodes", ("codesPostaux",)),
        ("department_code", ("departement.code", "codeDepartement")),
        ("department_name", ("departement.nom",)),
        ("population", ("population",)),
        ("lon", ("centre.coordinates.0",)),
        ("lat", ("centre.coordinates.1",)),
    ),
    "adresse-municipality": (
        ("insee", ("properties.citycode",)),
        ("name", ("properties.city", "properties.name")),
        ("postcodes", ("properties.postcode",)),
        ("department_code", ("properties.context",)),
        ("department_name", ()),
        ("population", ("properties.population",)),
        ("lon", ("geometry.coordinates.0",)),
        ("lat", ("geometry.coordinates.1",)),
    ),
}

# --- Address candidates (api-adresse.data.gouv.fr and data.geopf.fr share a schema) ---
ADDRESS_FIELDS: FieldMap = (
    ("label", ("properties.label",)),
    ("city", ("properties.city", "properties.citycode", "properties.context")),
    ("postcode", ("properties.postcode",)),
    ("score", ("properties.score",)),
    ("insee", ("properties.citycode", "properties.insee")),
    ("parcel_id", ("properties.cadastral_parcel_id", "properties.id_parcelle")),
    ("lon", ("geometry.coordinates.0",)),
    ("lat", ("geometry.coordinates.1",)),
)

# --- GPU zoning features (CNIG attribute names vary) ---
ZONE_FIELDS: Dict[str, FieldMap] = {
    "gpu-zone-urba": (
        ("code", ("code", "CODE", "idZone", "IDZONE", "id", "nom", "NOM")),
        ("label", ("libelle", "LIBELLE", "nom", "NOM", "lib_zone", "LIB_ZONE", "lib", "LIB")),
    ),
    "gpu-secteur-cc": (
        ("code", ("typesect", "TYPESECT", "code", "CODE")),
        ("label", ("libelle", "LIBELLE", "libelong", "LIBELONG")),
    ),
}

# --- GPU documents ---
DOCUMENT_FIELDS: FieldMap = (
    ("type", ("type", "typeDocument", "typologie", "categorie", "du_type")),
    ("title", ("title", "titre", "nom", "intitule", "label", "grid_title")),
    ("url", ("url", "href", "lien", "link", "downloadUrl", "download")),
    ("date", ("date", "datePublication", "millesime", "millésime", "updated", "update_date")),
)
DOCUMENT_CONTAINERS = ("documents", "results", "resultats", "features")

# --- DVF sale records (geo-dvf GeoJSON properties or mutation API rows) ---
SALE_FIELDS: FieldMap = (
    ("value", ("valeur_fonciere", "valeurFonciere", "valeur")),
    ("surface", ("surface_reelle_bati", "surface_relle_bati", "surface_relle", "surface", "surface_bati")),
    ("year", ("annee_mutation", "annee", "date_mutation")),
    ("type", ("type_local", "typeLocal", "nature_mutation")),
)
SALE_TYPES = ("Maison", "Appartement")
OTHER_SALE_TYPE = "Autre"
UNKNOWN_YEAR = "inconnu"

# --- Heritage records (data.culture.gouv.fr, opendatasoft v1) ---
HERITAGE_FIELDS: FieldMap = (
    ("title", ("fields.tico", "fields.titre", "fields.appellation_courante")),
    ("commune", ("fields.com", "fields.commune")),
    ("record_id", ("recordid",)),
)

# --- Natural/technological risk categories, detected by term presence ---
RISK_CATEGORIES: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("flood", "Flooding (inondation)", ("inondation", "crue", "submersion", "pluvial")),
    ("clay", "Clay shrink-swell / ground movement (argiles)", ("argile", "retrait-gonflement", "mouvement de terrain")),
    ("seismic", "Seismic (séisme)", ("seisme", "séisme", "sismique")),
    ("radon", "Radon", ("radon",)),
    ("industrial", "Industrial / technological (ICPE)", ("icpe", "technologique", "industriel")),
    ("coastal", "Coastal (submersion marine, trait de côte)", ("côte", "trait de cote", "submersion marine", "littoral")),
    ("forestfire", "Forest fire (feu de forêt)", ("feu de foret", "feu de forêt", "incendie de foret")),
)


def probe(record: Any, path: str) -> Any:
    """Follow a dotted path through dicts and lists; ``None`` when any step is missing."""
    current = record
    for step in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(step)
        elif isinstance(current, (list, tuple)) and step.isdigit():
            index = int(step)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def normalize_record(record: Any, mapping: FieldMap) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for canonical, paths in mapping:
        value = None
        for path in paths:
            candidate = probe(record, path)
            if candidate is None or (isinstance(candidate, str) and not candidate.strip()):
                continue
            value = candidate.strip() if isinstance(candidate, str) else candidate
            break
        out[canonical] = value
    return out


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def median(values: Iterable[Any]) -> Optional[float]:
    """Sorted-midpoint median over the finite values; ``None`` when there are none."""
    clean = sorted(n for n in (to_number(v) for v in values) if n is not None)
    if not clean:
        return None
    return statistics.median(clean)


# === COMMUNES / ADDRESSES ===

def _department_from_context(context: Any) -> Optional[str]:
    # api-adresse context looks like "75, Paris, Île-de-France"
    if not isinstance(context, str):
        return None
    head = context.split(",")[0].strip()
    return head or None


def normalize_commune(record: Any, schema: str = "geo-api") -> Dict[str, Any]:
    fields = normalize_record(record, COMMUNE_FIELDS[schema])
    postcodes = fields["postcodes"]
    if isinstance(postcodes, str):
        postcodes = [postcodes]
    if schema == "adresse-municipality":
        fields["department_code"] = _department_from_context(fields["department_code"])
    population = fields["population"]
    return {
        "insee": fields["insee"],
        "name": fields["name"],
        "postcodes": list(postcodes or []),
        "department": {"code": fields["department_code"], "name": fields["department_name"]},
        "population": population if isinstance(population, int) else None,
        "lat": to_number(fields["lat"]),
        "lon": to_number(fields["lon"]),
    }


def commune_records(raw: Any, schema: str) -> List[Any]:
    if schema == "adresse-municipality":
        return list(raw.get("features") or []) if isinstance(raw, Mapping) else []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, Mapping) and raw.get("code"):
        return [raw]
    return []


def normalize_address_hit(feature: Any) -> Dict[str, Any]:
    fields = normalize_record(feature, ADDRESS_FIELDS)
    score = fields["score"]
    return {
        "label": fields["label"] or "",
        "city": str(fields["city"] or ""),
        "postcode": str(fields["postcode"] or ""),
        "score": score if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
        "insee": fields["insee"],
        "parcel_id": fields["parcel_id"],
        "lat": to_number(fields["lat"]),
        "lon": to_number(fields["lon"]),
    }


def address_mismatch_hints(best: Optional[Mapping[str, Any]], city: str, postcode: str) -> List[str]:
    hints: List[str] = []
    if not best:
        return hints
    label = str(best.get("label") or "")
    if city and label and city.lower() not in label.lower():
        hints.append("Best hit label does not mention the requested city.")
    if postcode and best.get("postcode") and str(best["postcode"]) != str(postcode):
        hints.append("Best hit postcode differs from the requested postcode.")
    return hints


# === RISKS ===

def summarize_risks(raw: Any) -> List[Dict[str, Any]]:
    """Category presence flags from whatever shape the risk API returned."""
    text = json.dumps(raw, ensure_ascii=False).lower() if raw is not None else ""
    summary = []
    for key, label, terms in RISK_CATEGORIES:
        present = bool(text) and any(term in text for term in terms)
        summary.append({"key": key, "label": label, "present": present})
    return summary


def risk_flags(summary: Optional[Sequence[Mapping[str, Any]]]) -> Dict[str, bool]:
    return {item["key"]: bool(item.get("present")) for item in (summary or [])}


# === ZONING ===

def summarize_zones(geojson: Any, schema: str = "gpu-zone-urba") -> Dict[str, Any]:
    features = geojson.get("features") if isinstance(geojson, Mapping) else None
    if not isinstance(features, list):
        return {"zones": [], "feature_count": 0}

    mapping = ZONE_FIELDS.get(schema, ZONE_FIELDS["gpu-zone-urba"])
    tally: Dict[str, Dict[str, Any]] = {}
    for feature in features:
        props = feature.get("properties") if isinstance(feature, Mapping) else None
        fields = normalize_record(props or {}, mapping)
        code = str(fields["code"]) if fields["code"] is not None else ""
        label = str(fields["label"] or code or "Unknown zone")
        key = (code or label).upper()
        row = tally.setdefault(key, {"code": code or None, "label": label, "count": 0})
        row["count"] += 1

    zones = sorted(tally.values(), key=lambda z: (z["code"] or z["label"] or "").lower())
    return {"zones": zones, "feature_count": len(features)}


# === DOCUMENTS ===

def _document_items(raw: Any) -> Iterable[Any]:
    if isinstance(raw, list):
        yield from raw
        return
    if not isinstance(raw, Mapping):
        return
    seen_keys = set()
    for key in DOCUMENT_CONTAINERS:
        if isinstance(raw.get(key), list):
            seen_keys.add(key)
            yield from raw[key]
    for key, value in raw.items():
        if key not in seen_keys and isinstance(value, list):
            yield from value


def summarize_documents(raw: Any) -> List[Dict[str, Optional[str]]]:
    docs: List[Dict[str, Optional[str]]] = []
    seen = set()
    for item in _document_items(raw):
        if not isinstance(item, Mapping):
            continue
        if isinstance(item.get("properties"), Mapping):
            item = item["properties"]
        fields = normalize_record(item, DOCUMENT_FIELDS)
        doc = {k: (str(v) if v is not None else None) for k, v in fields.items()}
        if not (doc["type"] or doc["title"] or doc["url"]):
            continue
        marker = tuple(doc.values())
        if marker in seen:
            continue
        seen.add(marker)
        docs.append(doc)
    return docs


# === SALES (DVF) ===

def sale_records(raw: Any) -> List[Any]:
    if isinstance(raw, Mapping):
        for key in ("features", "mutations", "results", "data"):
            if isinstance(raw.get(key), list):
                return raw[key]
        return []
    return raw if isinstance(raw, list) else []


def _sale_row(record: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(record, Mapping):
        return None
    props = record["properties"] if isinstance(record.get("properties"), Mapping) else record
    fields = normalize_record(props, SALE_FIELDS)
    value = to_number(fields["value"])
    if value is None:
        return None
    surface = to_number(fields["surface"])
    year = str(fields["year"] or "")[:4]
    return {
        "value": value,
        "price_m2": value / surface if surface else None,
        "year": year if re.fullmatch(r"\d{4}", year) else UNKNOWN_YEAR,
        "type": str(fields["type"] or "").strip(),
    }


def _stats(rows: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        "count": len(rows),
        "median_price": median(r["value"] for r in rows),
        "median_eur_m2": median(r["price_m2"] for r in rows),
    }


def summarize_sales(raw: Any) -> Dict[str, Any]:
    records = sale_records(raw)
    rows = [row for row in (_sale_row(r) for r in records) if row is not None]

    buckets: Dict[str, List[Dict[str, Any]]] = {t: [] for t in SALE_TYPES}
    buckets[OTHER_SALE_TYPE] = []
    by_year: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        buckets[row["type"] if row["type"] in SALE_TYPES else OTHER_SALE_TYPE].append(row)
        by_year.setdefault(row["year"], []).append(row)

    years = []
    for year in sorted(by_year):
        entry = {"year": year}
        entry.update(_stats(by_year[year]))
        years.append(entry)

    return {
        "total": _stats(rows),
        "per_type": {name: _stats(bucket) for name, bucket in buckets.items()},
        "years": years,
        "counts": {"records": len(records), "valid_rows": len(rows)},
    }


# === HERITAGE ===

def normalize_heritage(record: Any) -> Dict[str, Any]:
    fields = normalize_record(record, HERITAGE_FIELDS)
    record_id = fields["record_id"]
    return {
        "title": fields["title"] or "Monument",
        "commune": fields["commune"],
        "url": ("https://data.culture.gouv.fr/explore/dataset/base-des-monuments-historiques/record/"
                f"?id={record_id}") if record_id else None,
    }
