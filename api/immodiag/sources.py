"""Candidate endpoint lists and reference links for each French open-data source."""
import re
from typing import Dict, List, Optional
from urllib.parse import quote

from .config import Settings
from .fallback import Candidate, has_key, is_feature_collection, is_list

GEO_API = "https://geo.api.gouv.fr/communes"
ADRESSE_API = "https://api-adresse.data.gouv.fr/search/"
GEOPF_GEOCODE = "https://data.geopf.fr/geocodage/search"
GEORISQUES = "https://www.georisques.gouv.fr/api"
APICARTO_GPU = "https://apicarto.ign.fr/api/gpu"
GEO_DVF = "https://files.data.gouv.fr/geo-dvf/latest"
DVF_API = "https://api.dvf.etalab.gouv.fr/api/latest"
HERITAGE_DATASET = "https://data.culture.gouv.fr/api/records/1.0/search/"

COMMUNE_FIELDS = "nom,code,codesPostaux,centre,departement,population"

GENERAL_LINKS = {
    "georisques": "https://www.georisques.gouv.fr/",
    "dvf": "https://app.dvf.etalab.gouv.fr/",
    "gpu": "https://www.geoportail-urbanisme.gouv.fr/map/",
}


def _q(value: str) -> str:
    return quote(str(value), safe="")


def is_non_empty_list(data) -> bool:
    return isinstance(data, list) and len(data) > 0


def has_mutations(data) -> bool:
    return isinstance(data, dict) and bool(data.get("mutations"))


def department_from_insee(insee: str) -> str:
    """Department code from a 5-character INSEE code (Corsica and overseas aware)."""
    code = (insee or "").strip().upper()
    if code.startswith(("2A", "2B")):
        return code[:2]
    m97 = re.match(r"^(97\d)", code)
    if m97:
        return m97.group(1)
    return code[:2]


# === COMMUNES ===

def commune_search_candidates(settings: Settings, city: str, postcode: str) -> List[Candidate]:
    params = {"fields": COMMUNE_FIELDS, "boost": "population", "limit": "10",
              "format": "json", "geometry": "centre"}
    if city:
        params["nom"] = city
    if postcode:
        params["codePostal"] = postcode
    fallback_q = " ".join(p for p in (postcode, city) if p)
    return [
        Candidate("geo.api.gouv.fr communes", GEO_API, params=params,
                  timeout=settings.request_timeout, accepts=is_list, schema="geo-api"),
        Candidate("api-adresse municipality search", ADRESSE_API,
                  params={"q": fallback_q, "type": "municipality", "limit": "10"},
                  timeout=settings.geocode_timeout, accepts=is_feature_collection,
                  schema="adresse-municipality",
                  backoffs_429=(settings.retry_429_backoff_seconds,)),
    ]


def commune_by_code_candidates(settings: Settings, insee: str,
                               timeout: Optional[float] = None) -> List[Candidate]:
    return [
        Candidate("geo.api.gouv.fr commune", f"{GEO_API}/{_q(insee)}",
                  params={"fields": COMMUNE_FIELDS, "format": "json", "geometry": "centre"},
                  timeout=timeout or settings.request_timeout, accepts=has_key("code"), schema="geo-api"),
    ]


def commune_by_point_candidates(settings: Settings, lat: str, lon: str) -> List[Candidate]:
    return [
        Candidate("geo.api.gouv.fr commune by point", GEO_API,
                  params={"lat": lat, "lon": lon, "fields": COMMUNE_FIELDS,
                          "format": "json", "geometry": "centre"},
                  timeout=settings.envinfo_timeout, accepts=is_non_empty_list, schema="geo-api"),
    ]


# === ADDRESSES ===

def address_candidates(settings: Settings, q: str, limit: int) -> List[Candidate]:
    backoffs = (settings.retry_429_backoff_seconds,)
    return [
        Candidate("api-adresse search", ADRESSE_API,
                  params={"q": q, "limit": str(limit), "autocomplete": "1"},
                  timeout=settings.geocode_timeout, accepts=is_feature_collection, backoffs_429=backoffs),
        Candidate("geopf geocodage search", GEOPF_GEOCODE,
                  params={"q": q, "limit": str(limit), "index": "address"},
                  timeout=settings.geocode_timeout, accepts=is_feature_collection, backoffs_429=backoffs),
    ]


# === RISKS ===

def risk_candidates(settings: Settings, insee: str) -> List[Candidate]:
    code = _q(insee)
    return [
        Candidate("georisques risques/commune", f"{GEORISQUES}/risques/commune/{code}",
                  timeout=settings.request_timeout),
        Candidate("georisques v1 risques/commune", f"{GEORISQUES}/v1/risques/commune/{code}",
                  timeout=settings.request_timeout),
        Candidate("georisques v1 communes/risques", f"{GEORISQUES}/v1/communes/{code}/risques",
                  timeout=settings.request_timeout),
        Candidate("georisques v1 gaspar/risques", f"{GEORISQUES}/v1/gaspar/risques",
                  params={"code_insee": insee}, timeout=settings.request_timeout,
                  accepts=has_key("data")),
    ]


def risk_links(insee: str) -> Dict[str, str]:
    return {
        "commune": f"https://www.georisques.gouv.fr/commune/{_q(insee)}",
        "search": f"https://www.georisques.gouv.fr/rechercher?insee={_q(insee)}",
    }


# === ZONING (GPU) ===

def zoning_candidates(settings: Settings, insee: str) -> List[Candidate]:
    partition = f"DU_{insee}"
    return [
        Candidate("apicarto gpu zone-urba", f"{APICARTO_GPU}/zone-urba", params={"partition": partition},
                  timeout=settings.request_timeout, accepts=is_feature_collection, schema="gpu-zone-urba"),
        Candidate("apicarto gpu secteur-cc", f"{APICARTO_GPU}/secteur-cc", params={"partition": partition},
                  timeout=settings.request_timeout, accepts=is_feature_collection, schema="gpu-secteur-cc"),
    ]


def zoning_links(insee: str) -> Dict[str, str]:
    return {
        "gpu_site_commune": f"https://www.geoportail-urbanisme.gouv.fr/recherche?insee={_q(insee)}",
        "apicarto_zone_urba": f"{APICARTO_GPU}/zone-urba?partition=DU_{_q(insee)}",
    }


# === DOCUMENTS (GPU) ===

def document_candidates(settings: Settings, insee: str) -> List[Candidate]:
    params = {"partition": f"DU_{insee}"}
    return [
        Candidate(f"apicarto gpu {path}", f"{APICARTO_GPU}/{path}", params=params,
                  timeout=settings.request_timeout)
        for path in ("document", "documents", "doc")
    ]


def document_links(insee: str) -> Dict[str, str]:
    return {
        "gpu_recherche": f"https://www.geoportail-urbanisme.gouv.fr/recherche?insee={_q(insee)}",
        "apicarto_partition": f"{APICARTO_GPU}/document?partition=DU_{_q(insee)}",
    }


# === SALES (DVF) ===

def parcel_sale_candidates(settings: Settings, parcel_id: str) -> List[Candidate]:
    return [
        Candidate("dvf mutations by parcel", f"{DVF_API}/mutations",
                  params={"parcelle_id": parcel_id, "around": "500", "limit": "50"},
                  timeout=settings.request_timeout, accepts=has_mutations, schema="dvf-mutations"),
    ]


def commune_sale_candidates(settings: Settings, insee: str) -> List[Candidate]:
    base = f"{GEO_DVF}/communes/{_q(insee)}"
    return [
        Candidate("geo-dvf commune json", f"{base}.json", timeout=settings.request_timeout,
                  accepts=is_feature_collection, schema="geo-dvf"),
        Candidate("geo-dvf commune json.gz", f"{base}.json.gz", timeout=settings.request_timeout,
                  accepts=is_feature_collection, schema="geo-dvf"),
    ]


def commune_sale_head_candidates(settings: Settings, insee: str) -> List[Candidate]:
    return [
        Candidate("geo-dvf commune json (HEAD)", f"{GEO_DVF}/communes/{_q(insee)}.json", method="HEAD",
                  timeout=settings.request_timeout, backoffs_429=(settings.retry_429_backoff_seconds,)),
    ]


def sale_links(insee: str, department: Optional[str]) -> Dict[str, Optional[str]]:
    dep = _q(department) if department else None
    return {
        "etalab_app": "https://app.dvf.etalab.gouv.fr/",
        "data_gouv_dep_csv": f"{GEO_DVF}/csv/{dep}.csv.gz" if dep else None,
        "data_gouv_dep_parquet": f"{GEO_DVF}/parquet/{dep}.parquet" if dep else None,
        "data_gouv_commune_json": f"{GEO_DVF}/communes/{_q(insee)}.json",
    }


# === ENVIRONMENT ===

def heritage_candidates(settings: Settings, lat: float, lon: float) -> List[Candidate]:
    return [
        Candidate("culture monuments historiques", HERITAGE_DATASET,
                  params={"dataset": "base-des-monuments-historiques", "rows": "5",
                          "geofilter.distance": f"{lat},{lon},10000"},
                  timeout=settings.envinfo_timeout, accepts=has_key("records")),
    ]


def environment_links(insee: str, lat: Optional[float], lon: Optional[float]) -> Dict[str, Optional[str]]:
    return {
        "commune": f"https://www.geoportail.gouv.fr/carte?c={lon},{lat}&z=12" if lat is not None and lon is not None else None,
        "geoportail": f"https://www.geoportail-urbanisme.gouv.fr/recherche?insee={_q(insee)}",
        "georisques": f"https://www.georisques.gouv.fr/commune/{_q(insee)}",
        "dvf_app": "https://app.dvf.etalab.gouv.fr/",
    }


def summary_links(insee: str, department: Optional[str]) -> Dict[str, Optional[str]]:
    links: Dict[str, Optional[str]] = dict(GENERAL_LINKS)
    links.update({
        "georisques_commune": risk_links(insee)["commune"],
        "gpu_commune": zoning_links(insee)["gpu_site_commune"],
        "dvf_dep_csv": sale_links(insee, department)["data_gouv_dep_csv"],
    })
    return links
