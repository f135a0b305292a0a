#!/usr/bin/env python3
"""
XLSX Catalog Loader - rule tables maintained as an Excel workbook

Operators keep the catalog in a workbook with one sheet per table. This module
reads such a workbook into the same structure as catalog_v1.json, and can
export a catalog structure back into a workbook to bootstrap a new version.

Sheets (row 1 holds the headers):
- meta: key, value
- services: service, default_tier, aliases, bag_types
- tiers: service, tier, payout, duration, processing_hours, public, display_name, aliases, implies
- addons: service, addon, payout, duration, per_unit, eco, aliases
- vehicle_multipliers: vehicle_type, multiplier
- property_discounts: property_type, discount
- duration_overrides: service, tier, bedrooms, bathrooms, property_type, minutes
- photo_requirements: service, scope, target, requirement
- perks: service, tier, rule, perk

List-valued cells are separated by "|".
"""

from pathlib import Path
from typing import Dict, Any, List, Optional
import logging

import openpyxl

logger = logging.getLogger(__name__)

LIST_SEPARATOR = "|"

SHEET_HEADERS = {
    "meta": ["key", "value"],
    "services": ["service", "default_tier", "aliases", "bag_types"],
    "tiers": ["service", "tier", "payout", "duration", "processing_hours", "public",
              "display_name", "aliases", "implies"],
    "addons": ["service", "addon", "payout", "duration", "per_unit", "eco", "aliases"],
    "vehicle_multipliers": ["vehicle_type", "multiplier"],
    "property_discounts": ["property_type", "discount"],
    "duration_overrides": ["service", "tier", "bedrooms", "bathrooms", "property_type", "minutes"],
    "photo_requirements": ["service", "scope", "target", "requirement"],
    "perks": ["service", "tier", "rule", "perk"],
}

# meta keys that live in nested sections of the catalog structure
_NESTED_META = {
    "per_extra_bedroom": ("structural", "per_extra_bedroom"),
    "per_extra_bathroom": ("structural", "per_extra_bathroom"),
    "nearing_ratio": ("duration_status", "nearing_ratio"),
    "solo_max": ("crew_sizing", "solo_max"),
    "large_property_solo_max": ("crew_sizing", "large_property_solo_max"),
    "dual_max": ("crew_sizing", "dual_max"),
    "team_max": ("crew_sizing", "team_max"),
    "large_bedrooms": ("crew_sizing", "large_bedrooms"),
    "large_bathrooms": ("crew_sizing", "large_bathrooms"),
}


def _parse_sheet(sheet) -> List[Dict[str, Any]]:
    """Map each non-empty data row to a dict keyed by the header row"""
    if sheet.max_row < 1:
        return []

    headers = []
    for col in range(1, sheet.max_column + 1):
        cell_value = sheet.cell(1, col).value
        headers.append(str(cell_value).strip().lower() if cell_value is not None else f"col_{col}")

    rows = []
    for row in range(2, sheet.max_row + 1):
        row_data = {}
        for col, header in enumerate(headers, start=1):
            value = sheet.cell(row, col).value
            if isinstance(value, str):
                value = value.strip()
            if value is not None and value != "":
                row_data[header] = value

        # Skip empty rows
        if row_data:
            rows.append(row_data)

    return rows


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "ja", "y", "x")


def _to_list(value: Any) -> List[str]:
    if value is None:
        return []
    return [part.strip() for part in str(value).split(LIST_SEPARATOR) if part.strip()]


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(float(value))


def _to_text(value: Any) -> str:
    """Numeric cells come back as floats; keep money exact by going through str"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def read_catalog_workbook(path: Path) -> Dict[str, Any]:
    """Read a catalog workbook into the catalog dict structure"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog workbook not found: {path}")

    wb = openpyxl.load_workbook(path, data_only=True)
    missing = [name for name in ("meta", "services", "tiers", "addons") if name not in wb.sheetnames]
    if missing:
        raise ValueError(f"Catalog workbook {path.name} is missing sheets: {missing}")

    def rows(name: str) -> List[Dict[str, Any]]:
        return _parse_sheet(wb[name]) if name in wb.sheetnames else []

    data: Dict[str, Any] = {
        "structural": {},
        "duration_status": {},
        "crew_sizing": {},
        "services": {},
        "vehicle_multipliers": {},
        "property_type_discounts": {},
        "duration_overrides": [],
    }

    for row in rows("meta"):
        key = str(row.get("key", "")).strip()
        if not key:
            continue
        value = row.get("value")
        if key in _NESTED_META:
            section, nested_key = _NESTED_META[key]
            data[section][nested_key] = _to_text(value)
        else:
            data[key] = _to_text(value)

    for row in rows("services"):
        data["services"][row["service"]] = {
            "default_tier": row.get("default_tier", ""),
            "aliases": _to_list(row.get("aliases")),
            "bag_types": _to_list(row.get("bag_types")),
            "tiers": {},
            "addons": {},
            "photo_requirements": {},
            "perks": {},
        }

    def service_entry(row: Dict[str, Any], sheet_name: str) -> Dict[str, Any]:
        service = row.get("service")
        if service not in data["services"]:
            raise ValueError(f"Sheet {sheet_name} references service '{service}' missing from the services sheet")
        return data["services"][service]

    for row in rows("tiers"):
        tier: Dict[str, Any] = {
            "payout": _to_text(row.get("payout", "0")),
            "public": _to_bool(row.get("public", True)),
            "aliases": _to_list(row.get("aliases")),
            "implies": _to_list(row.get("implies")),
        }
        if row.get("duration") is not None:
            tier["duration"] = _to_int(row["duration"])
        if row.get("processing_hours") is not None:
            tier["processing_hours"] = _to_int(row["processing_hours"])
        if row.get("display_name"):
            tier["display_name"] = row["display_name"]
        service_entry(row, "tiers")["tiers"][row["tier"]] = tier

    for row in rows("addons"):
        service_entry(row, "addons")["addons"][row["addon"]] = {
            "payout": _to_text(row.get("payout", "0")),
            "duration": _to_int(row.get("duration")) or 0,
            "per_unit": _to_bool(row.get("per_unit")),
            "eco": _to_bool(row.get("eco")),
            "aliases": _to_list(row.get("aliases")),
        }

    for row in rows("vehicle_multipliers"):
        data["vehicle_multipliers"][row["vehicle_type"]] = _to_text(row["multiplier"])

    for row in rows("property_discounts"):
        data["property_type_discounts"][row["property_type"]] = _to_text(row["discount"])

    for row in rows("duration_overrides"):
        data["duration_overrides"].append({
            "service": row["service"],
            "tier": row["tier"],
            "bedrooms": _to_int(row["bedrooms"]),
            "bathrooms": _to_int(row["bathrooms"]),
            "property_type": row["property_type"],
            "minutes": _to_int(row["minutes"]),
        })

    for row in rows("photo_requirements"):
        photos = service_entry(row, "photo_requirements")["photo_requirements"]
        scope = str(row.get("scope", "always")).lower()
        if scope == "always":
            photos.setdefault("always", []).append(row["requirement"])
        elif scope in ("tier", "addon"):
            section = photos.setdefault(f"{scope}s", {})
            section.setdefault(row["target"], []).append(row["requirement"])
        else:
            logger.warning(f"Ignoring photo requirement with unknown scope '{scope}': {row}")

    for row in rows("perks"):
        perks = service_entry(row, "perks")["perks"]
        perks.setdefault(row["tier"], {})[row["rule"]] = row["perk"]

    logger.info(f"Read catalog workbook {path.name}: version {data.get('version')}, "
                f"{len(data['services'])} services, {len(data['duration_overrides'])} overrides")
    return data


def write_catalog_workbook(data: Dict[str, Any], path: Path) -> Path:
    """Export a catalog dict (e.g. catalog_v1.json) into the workbook layout"""
    path = Path(path)
    wb = openpyxl.Workbook()
    wb.remove(wb.active)

    sheets = {}
    for name, headers in SHEET_HEADERS.items():
        ws = wb.create_sheet(name)
        ws.append(headers)
        sheets[name] = ws

    nested_lookup = {value: key for key, value in _NESTED_META.items()}
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            continue
        sheets["meta"].append([key, str(value)])
    for section in ("structural", "duration_status", "crew_sizing"):
        for nested_key, value in data.get(section, {}).items():
            meta_key = nested_lookup.get((section, nested_key))
            if meta_key:
                sheets["meta"].append([meta_key, str(value)])

    joined = LIST_SEPARATOR.join
    for service, service_data in data.get("services", {}).items():
        sheets["services"].append([
            service,
            service_data.get("default_tier", ""),
            joined(service_data.get("aliases", [])),
            joined(service_data.get("bag_types", [])),
        ])
        for tier, tier_data in service_data.get("tiers", {}).items():
            sheets["tiers"].append([
                service, tier, str(tier_data.get("payout", "0")),
                tier_data.get("duration"), tier_data.get("processing_hours"),
                "yes" if tier_data.get("public", True) else "no",
                tier_data.get("display_name"),
                joined(tier_data.get("aliases", [])),
                joined(tier_data.get("implies", [])),
            ])
        for addon, addon_data in service_data.get("addons", {}).items():
            sheets["addons"].append([
                service, addon, str(addon_data.get("payout", "0")),
                addon_data.get("duration", 0),
                "yes" if addon_data.get("per_unit") else "no",
                "yes" if addon_data.get("eco") else "no",
                joined(addon_data.get("aliases", [])),
            ])
        photos = service_data.get("photo_requirements", {})
        for requirement in photos.get("always", []):
            sheets["photo_requirements"].append([service, "always", None, requirement])
        for scope in ("tier", "addon"):
            for target, requirements in photos.get(f"{scope}s", {}).items():
                for requirement in requirements:
                    sheets["photo_requirements"].append([service, scope, target, requirement])
        for tier, rules in service_data.get("perks", {}).items():
            for rule, perk in rules.items():
                sheets["perks"].append([service, tier, rule, perk])

    for vehicle_type, multiplier in data.get("vehicle_multipliers", {}).items():
        sheets["vehicle_multipliers"].append([vehicle_type, str(multiplier)])
    for property_type, discount in data.get("property_type_discounts", {}).items():
        sheets["property_discounts"].append([property_type, str(discount)])
    for entry in data.get("duration_overrides", []):
        sheets["duration_overrides"].append([
            entry["service"], entry["tier"], entry["bedrooms"], entry["bathrooms"],
            entry["property_type"], entry["minutes"],
        ])

    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    logger.info(f"Wrote catalog workbook {path}")
    return path
