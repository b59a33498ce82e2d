#!/usr/bin/env python3
"""
Quick check of what each upstream candidate actually returns for one commune.
Useful when a source starts degrading: shows status codes and top-level keys.

Usage: python scripts/probe_upstreams.py 75056 [parcel_id]
"""

import json
import os
import sys

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'api'))

from immodiag import sources
from immodiag.config import Settings
from immodiag.fallback import decode_body

def describe(data):
    if isinstance(data, dict):
        return f"keys: {list(data.keys())[:12]}"
    if isinstance(data, list):
        return f"list of {len(data)}"
    return f"{type(data).__name__}"

def probe(candidate):
    print(f"{candidate.name}")
    print(f"  {candidate.method} {candidate.url} {candidate.params or ''}")
    try:
        r = requests.request(candidate.method, candidate.url, params=candidate.params,
                             headers={"Accept": "application/json"}, timeout=candidate.timeout)
    except requests.exceptions.RequestException as e:
        print(f"  Error: {e}")
        return
    print(f"  Status: {r.status_code}")
    if r.status_code != 200 or candidate.method == "HEAD":
        print(f"  Body: {r.text[:200]}")
        return
    try:
        data = decode_body(r)
    except ValueError:
        print(f"  Non-JSON body: {r.text[:200]}")
        return
    print(f"  Shape ok: {candidate.accepts(data)} ({describe(data)})")
    print(f"  Sample: {json.dumps(data, ensure_ascii=False)[:300]}")

def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    insee = sys.argv[1]
    parcel_id = sys.argv[2] if len(sys.argv) > 2 else ""
    settings = Settings.from_env()

    groups = [
        ("COMMUNE", sources.commune_by_code_candidates(settings, insee)),
        ("RISKS", sources.risk_candidates(settings, insee)),
        ("ZONING", sources.zoning_candidates(settings, insee)),
        ("DOCUMENTS", sources.document_candidates(settings, insee)),
        ("SALES", sources.commune_sale_head_candidates(settings, insee)),
    ]
    if parcel_id:
        groups.append(("PARCEL SALES", sources.parcel_sale_candidates(settings, parcel_id)))

    for title, candidates in groups:
        print("\n" + "="*70)
        print(f"{title} ({insee})")
        print("="*70)
        for candidate in candidates:
            probe(candidate)

if __name__ == "__main__":
    main()
