# etl/import_listings.py
import os
import math
import re
import time
from typing import Dict, Any, List, Optional

import requests
from pymongo import MongoClient
from dotenv import load_dotenv
from html import unescape

load_dotenv()

# === Config via .env ===
MONGODB_URI     = os.getenv("MONGODB_URI")           # ex: mongodb+srv://...
DB_NAME         = os.getenv("DB_NAME")
COLLECTION_NAME = os.getenv("COLLECTION_NAME")
CATALOG_API_URL = os.getenv("CATALOG_API_URL", "http://127.0.0.1:8000")
ADMIN_TOKEN     = os.getenv("ADMIN_TOKEN")           # access token of an admin session
PRINT_EVERY     = int(os.getenv("PRINT_EVERY", "100"))

ACTIVE_STATUSES = {"active", "activo", "activa", "disponible", "for_sale", "for_rent"}
INACTIVE_STATUSES = {"sold": "sold", "vendido": "sold", "vendida": "sold",
                     "rented": "rented", "alquilado": "rented", "alquilada": "rented"}

# === Helpers ===
def strip_html(s: Optional[str]) -> str:
    if not s:
        return ""
    s = unescape(s)
    s = re.sub(r"<br\s*/?>", "\n", s, flags=re.I)
    s = re.sub(r"<[^>]+>", " ", s)
    return re.sub(r"\s+", " ", s).strip()

def _clean_value(v: Any):
    if isinstance(v, dict):
        return {k: _clean_value(vv) for k, vv in v.items()}
    if isinstance(v, list):
        return [_clean_value(x) for x in v]
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return v if math.isfinite(v) else None
    return v

def _number(v: Any):
    if v is None or v == "":
        return None
    try:
        return float(str(v).replace(",", ""))
    except ValueError:
        return None

def normalize_status(raw: Any) -> str:
    s = str(raw or "").lower().strip()
    if s in ACTIVE_STATUSES:
        return "active"
    return INACTIVE_STATUSES.get(s, "inactive")

def build_property(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Legacy listing document -> body for POST /api/admin/properties."""
    bedrooms = _number(doc.get("bedrooms"))
    payload = {
        "title": (doc.get("title") or "").strip() or "Propiedad sin título",
        "description": strip_html(doc.get("description")),
        "property_type": doc.get("propertyType"),
        "district": doc.get("district") or doc.get("neighborhood"),
        "location": doc.get("address") or doc.get("street"),
        "price": _number(doc.get("price")),
        "currency": doc.get("currency") or "PEN",
        "area": _number(doc.get("usableArea") or doc.get("totalArea")),
        "bedrooms": int(bedrooms) if bedrooms is not None else None,
        "bathrooms": _number(doc.get("bathrooms")),
        "parking_spots": doc.get("parkingSpaces"),
        "featured": bool(doc.get("featured")),
        "status": normalize_status(doc.get("status")),
        "images": [u for u in [doc.get("imageUrl")] if u] + list(doc.get("images") or []),
        "features": list(doc.get("amenities") or []),
    }
    return {k: v for k, v in _clean_value(payload).items() if v is not None}

# === Catalog API ===
def post_property(session: requests.Session, body: Dict[str, Any]):
    resp = session.post(f"{CATALOG_API_URL}/api/admin/properties", json=body, timeout=30)
    if not resp.ok:
        try:
            detail = resp.json()
        except Exception:
            detail = resp.text
        raise RuntimeError(f"Catalog {resp.status_code}: {detail}")
    return resp.json()

# === Main ===
def main():
    if not all([MONGODB_URI, DB_NAME, COLLECTION_NAME, ADMIN_TOKEN]):
        raise SystemExit("[error] Variables .env faltantes: revise MONGODB_URI, DB_NAME, COLLECTION_NAME, ADMIN_TOKEN")

    client = MongoClient(MONGODB_URI)
    coll = client[DB_NAME][COLLECTION_NAME]

    session = requests.Session()
    session.headers["Authorization"] = f"Bearer {ADMIN_TOKEN}"

    cursor = coll.find({}, batch_size=500)

    created = 0
    failed = 0
    failures: List[str] = []

    print("[start] import listings -> catalog")
    t0 = time.time()

    for doc in cursor:
        body = build_property(doc)
        try:
            post_property(session, body)
            created += 1
        except Exception as e:
            print(f"[warn] falló _id={doc.get('_id')}: {e}")
            time.sleep(1.0)
            try:
                post_property(session, body)
                created += 1
            except Exception as e2:
                failed += 1
                failures.append(str(doc.get("_id")))
                print(f"[error] falló nuevamente _id={doc.get('_id')}: {e2}")
                continue

        if created % PRINT_EVERY == 0:
            elapsed = time.time() - t0
            print(f"[info] importadas={created} | fallidas={failed} | {elapsed:.1f}s")

    elapsed = time.time() - t0
    print(f"[done] importadas={created} | fallidas={failed} | tiempo={elapsed:.1f}s")
    if failures:
        print(f"[done] _ids fallidos: {', '.join(failures[:50])}")

if __name__ == "__main__":
    main()
