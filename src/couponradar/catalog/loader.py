"""
Coupon/business catalog loader.

The catalog is owned by an external service; locally it is a JSON file (default:
`data/catalogs/catalog.json`) with `businesses` and `coupons` arrays. We validate it
into typed Pydantic models so the engine can assume a consistent shape.
"""

from __future__ import annotations

import json
from pathlib import Path

from couponradar.core.env import resolve_project_path
from couponradar.domain.models import BusinessLocation, Catalog


def load_catalog(path: str | Path) -> Catalog:
    """Load and validate a catalog JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return Catalog.model_validate(payload)


def businesses_by_id(businesses: list[BusinessLocation]) -> dict[str, BusinessLocation]:
    """Index businesses by id; a later duplicate id replaces an earlier one."""
    return {b.id: b for b in businesses}
