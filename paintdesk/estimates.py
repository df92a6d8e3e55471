# paintdesk/estimates.py
"""
Estimate arithmetic and the material lists derived from an estimate.

Money is stored in integer cents; `cost_per_unit` on a material is a
dollar figure as entered, so line totals are converted on the way in.
"""
import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from .db import fetch_all, now_iso

logger = logging.getLogger(__name__)

DEFAULT_BRAND = "Sherwin Williams"

# Product lines that read as "<brand> <line>" when the line item names no brand
KNOWN_PRODUCT_LINES = ("Duration", "Emerald", "SuperPaint", "ProClassic", "Cashmere", "Harmony", "Captivate")

# Checklist seeded on an accepted job when the estimate carries no materials
SERVICE_MATERIALS: Dict[str, List[str]] = {
    "interior_walls": ["Paint (gallons)", "Primer", "Rollers", "Brushes", "Tape", "Drop cloths"],
    "ceilings": ["Ceiling paint", "Extension pole", "Rollers", "Tape"],
    "trim_doors": ["Trim paint", "Brushes", "Sandpaper", "Tape"],
    "cabinets": ["Cabinet paint", "Primer", "Brushes", "Sandpaper", "Degreaser"],
    "prep_work": ["Spackle", "Sandpaper", "Caulk", "Primer"],
    "repairs": ["Spackle", "Drywall patch", "Joint compound", "Sandpaper"],
    "deck_fence": ["Stain/Paint", "Pressure washer", "Brushes", "Rollers"],
    "touchups": ["Touch-up paint", "Small brushes", "Spackle"],
}

_COLOR_CODE_RE = re.compile(r"[A-Z]{1,3}\s*\d+", re.IGNORECASE)
_TAG_RE = {tag: re.compile(rf"{tag}:([^|]+)") for tag in ("BRAND", "PRODUCT_LINE", "NOTES")}


def _sum(rows: Iterable[dict], column: str) -> int:
    return sum((row.get(column) or 0) for row in rows)


def to_cents(amount) -> int:
    """Dollars (float, str or Decimal) to integer cents, half-up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def material_line_total(quantity: float, cost_per_unit: Optional[float]) -> Optional[int]:
    """quantity × unit cost in cents; None when the material has no price."""
    if cost_per_unit is None:
        return None
    return to_cents(Decimal(str(quantity)) * Decimal(str(cost_per_unit)))


def recalculate_estimate_totals(client: Client, estimate_id: str) -> Dict[str, int]:
    """Sum line items into labor_total and materials into materials_total."""
    line_items = (
        client.table("estimate_line_items").select("price").eq("estimate_id", estimate_id).execute().data or []
    )
    materials = (
        client.table("estimate_materials").select("line_total").eq("estimate_id", estimate_id).execute().data or []
    )

    totals = {
        "labor_total": _sum(line_items, "price"),
        "materials_total": _sum(materials, "line_total"),
    }
    client.table("estimates").update({**totals, "updated_at": now_iso()}).eq("id", estimate_id).execute()
    return totals


# ──────────────────────────────────────────────────────────────────────────────
# Materials generated from line items
# ──────────────────────────────────────────────────────────────────────────────
def _tag(description: Optional[str], tag: str) -> Optional[str]:
    if not description:
        return None
    match = _TAG_RE[tag].search(description)
    return match.group(1) if match else None


def _has_paint_details(item: Dict[str, Any]) -> bool:
    description = item.get("description") or ""
    return bool(
        item.get("product_line")
        or item.get("paint_color_name_or_code")
        or item.get("sheen")
        or "BRAND:" in description
        or "PRODUCT_LINE:" in description
    )


def paint_product(brand: Optional[str], product_line: Optional[str]) -> Optional[str]:
    if product_line:
        if product_line in KNOWN_PRODUCT_LINES:
            return f"{brand or DEFAULT_BRAND} {product_line}"
        return product_line
    return brand


def material_from_line_item(estimate_id: str, item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Build an auto-generated estimate material row, or None for non-paint items."""
    if not _has_paint_details(item):
        return None

    color = item.get("paint_color_name_or_code")
    code_match = _COLOR_CODE_RE.search(color) if color else None
    color_code = code_match.group(0) if code_match else None
    color_name = (color.replace(color_code, "").strip() or None) if color_code else color

    description = item.get("description")
    brand = _tag(description, "BRAND")
    product_line = _tag(description, "PRODUCT_LINE") or item.get("product_line")
    product = paint_product(brand, product_line)
    gallons = item.get("gallons_estimate")

    return {
        "estimate_id": estimate_id,
        "estimate_line_item_id": item.get("id"),
        "name": f"{product or 'Paint'} - {item.get('name')}",
        "paint_product": product,
        "product_line": product_line,
        "color_name": color_name,
        "color_code": color_code,
        "sheen": item.get("sheen"),
        "area_description": item.get("name"),
        "quantity": gallons,
        "unit": "gal" if gallons else None,
        # informational only, so unpriced
        "cost_per_unit": None,
        "line_total": None,
        "vendor_sku": item.get("vendor_sku"),
        "notes": _tag(description, "NOTES"),
        "is_auto_generated": True,
    }


def regenerate_estimate_materials(client: Client, estimate_id: str) -> List[Dict[str, Any]]:
    """Replace the auto-generated materials of an estimate with fresh ones."""
    client.table("estimate_materials").delete().eq("estimate_id", estimate_id).eq("is_auto_generated", True).execute()

    line_items = fetch_all(client, "estimate_line_items", "*", estimate_id=estimate_id)
    rows = [m for m in (material_from_line_item(estimate_id, item) for item in line_items) if m]
    if not rows:
        return []
    return client.table("estimate_materials").insert(rows).execute().data or []


# ──────────────────────────────────────────────────────────────────────────────
# Job checklist on acceptance
# ──────────────────────────────────────────────────────────────────────────────
def _job_material_from_estimate(job_id: str, material: Dict[str, Any]) -> Dict[str, Any]:
    parts = [
        material.get("paint_product"),
        material.get("color_name"),
        material.get("color_code") and f"({material['color_code']})",
        material.get("sheen"),
        material.get("area_description") and f"- {material['area_description']}",
    ]
    quantity = material.get("quantity")
    return {
        "job_id": job_id,
        "name": material["name"],
        "checked": False,
        "notes": " • ".join(p for p in parts if p) or None,
        "cost_per_unit": material.get("cost_per_unit"),
        "quantity_decimal": quantity,
        "unit": (material.get("unit") or "gal") if quantity else None,
        "vendor_sku": material.get("vendor_sku"),
    }


def _job_materials_from_services(job_id: str, line_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    names: List[str] = []
    for item in line_items:
        candidates = list(SERVICE_MATERIALS.get(item.get("service_key") or "", []))
        if item.get("paint_color_name_or_code") or item.get("product_line"):
            gallons = item.get("gallons_estimate")
            candidates.append(" ".join(p for p in (
                item.get("product_line"),
                item.get("paint_color_name_or_code"),
                item.get("sheen"),
                f"({gallons} gal)" if gallons else None,
            ) if p))
        for name in candidates:
            if name and name not in seen:
                seen.add(name)
                names.append(name)
    return [{"job_id": job_id, "name": name, "checked": False} for name in names]


def copy_materials_to_job(client: Client, estimate_id: str, job_id: str) -> int:
    """
    Seed the job's material checklist from an accepted estimate.

    Uses the estimate's materials when it has any, otherwise the stock
    list for each service on its line items. A failed insert is logged
    and reported as zero rows; acceptance itself has already happened.
    """
    materials = fetch_all(client, "estimate_materials", "*", estimate_id=estimate_id)
    if materials:
        rows = [_job_material_from_estimate(job_id, m) for m in materials]
    else:
        rows = _job_materials_from_services(job_id, fetch_all(client, "estimate_line_items", "*", estimate_id=estimate_id))
    if not rows:
        return 0

    try:
        client.table("job_materials").insert(rows).execute()
    except APIError as e:
        logger.error("Copying materials from estimate %s to job %s failed: %s", estimate_id, job_id, e.message)
        return 0
    return len(rows)
