"""
Rule Catalog - versioned payout/duration tables for every service kind

Consolidates the tier, add-on, vehicle, property-type and override tables into
one data file so a price or duration change is a table edit, not a code change.
Lookups are pure reads. A (service, tier) or (service, add-on) pair the catalog
does not model returns None ("unrated") so callers can tell it apart from a
legitimate zero.
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple
import logging

from ..models import ServiceKind, PropertyType, normalize_property_type

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "catalog_v1.json"


def normalize_name(value: Any) -> str:
    """Case, space and punctuation-insensitive key: 'Bug & Tar Removal' -> 'bugtarremoval'"""
    return "".join(ch for ch in str(value).lower() if ch.isalnum())


def _money(value: Any) -> Decimal:
    return Decimal(str(value))


def _as_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split("|") if part.strip()]
    return [str(part) for part in value]


@dataclass(frozen=True)
class TierRule:
    name: str
    payout: Decimal
    duration: Optional[int] = None
    processing_hours: Optional[int] = None
    public: bool = True
    display_name: Optional[str] = None
    implies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AddOnRule:
    name: str
    payout: Decimal
    duration: int = 0
    per_unit: bool = False
    eco: bool = False


@dataclass
class ServiceRules:
    kind: ServiceKind
    default_tier: str
    tiers: Dict[str, TierRule] = field(default_factory=dict)
    addons: Dict[str, AddOnRule] = field(default_factory=dict)
    # normalized alias -> canonical key in tiers/addons
    tier_aliases: Dict[str, str] = field(default_factory=dict)
    addon_aliases: Dict[str, str] = field(default_factory=dict)
    photo_requirements: Dict[str, Any] = field(default_factory=dict)
    perks: Dict[str, Dict[str, str]] = field(default_factory=dict)
    bag_types: List[str] = field(default_factory=list)


class RuleCatalog:
    """
    Read-only view over one version of the rule tables
    """

    def __init__(self, data: Dict[str, Any], source: Optional[str] = None):
        self.source = source
        self.version = str(data.get("version", "unversioned"))
        self.currency = data.get("currency", "USD")
        self.eco_bonus = _money(data.get("eco_bonus", "0"))
        self.takeover_bonus = _money(data.get("takeover_bonus", "0"))

        structural = data.get("structural", {})
        self.per_extra_bedroom = int(structural.get("per_extra_bedroom", 0))
        self.per_extra_bathroom = int(structural.get("per_extra_bathroom", 0))

        self.crew_sizing = {key: int(value) for key, value in data.get("crew_sizing", {}).items()}
        self.nearing_ratio = _money(data.get("duration_status", {}).get("nearing_ratio", "1.15"))

        self._property_discounts: Dict[PropertyType, Decimal] = {}
        for name, discount in data.get("property_type_discounts", {}).items():
            property_type = normalize_property_type(name)
            if property_type is None:
                raise ValueError(f"Unknown property type in catalog: {name}")
            self._property_discounts[property_type] = _money(discount)

        self._vehicle_multipliers: Dict[str, Tuple[str, Decimal]] = {
            normalize_name(name): (name, _money(multiplier))
            for name, multiplier in data.get("vehicle_multipliers", {}).items()
        }
        self.standard_vehicle = data.get("standard_vehicle", "Sedan")

        self._services: Dict[ServiceKind, ServiceRules] = {}
        self._service_aliases: Dict[str, ServiceKind] = {}
        for service_name, service_data in data.get("services", {}).items():
            rules = self._build_service(service_name, service_data)
            self._services[rules.kind] = rules
            self._service_aliases[normalize_name(rules.kind.value)] = rules.kind
            for alias in _as_list(service_data.get("aliases")):
                self._service_aliases[normalize_name(alias)] = rules.kind

        self._overrides: Dict[Tuple[ServiceKind, str, int, int, PropertyType], int] = {}
        for entry in data.get("duration_overrides", []):
            self._add_override(entry)

        logger.info(f"Rule catalog {self.version} loaded from {source or 'dict'} "
                    f"({len(self._services)} services, {len(self._overrides)} duration overrides)")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, path: Path) -> "RuleCatalog":
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f), source=str(path))

    @classmethod
    def from_xlsx(cls, path: Path) -> "RuleCatalog":
        from .xlsx_catalog_loader import read_catalog_workbook

        return cls(read_catalog_workbook(path), source=str(path))

    @classmethod
    def from_path(cls, path: Path) -> "RuleCatalog":
        path = Path(path)
        if path.suffix.lower() == ".xlsx":
            return cls.from_xlsx(path)
        return cls.from_json(path)

    @classmethod
    def default(cls) -> "RuleCatalog":
        return cls.from_json(DEFAULT_CATALOG_PATH)

    def _build_service(self, service_name: str, service_data: Dict[str, Any]) -> ServiceRules:
        try:
            kind = ServiceKind(service_name)
        except ValueError:
            raise ValueError(f"Unknown service kind in catalog: {service_name}")
        if kind == ServiceKind.UNKNOWN:
            raise ValueError("The Unknown service kind cannot carry rules")

        rules = ServiceRules(kind=kind, default_tier=service_data.get("default_tier", ""))

        for tier_name, tier_data in service_data.get("tiers", {}).items():
            key = normalize_name(tier_name)
            rules.tiers[key] = TierRule(
                name=tier_name,
                payout=_money(tier_data.get("payout", "0")),
                duration=int(tier_data["duration"]) if tier_data.get("duration") is not None else None,
                processing_hours=(int(tier_data["processing_hours"])
                                  if tier_data.get("processing_hours") is not None else None),
                public=bool(tier_data.get("public", True)),
                display_name=tier_data.get("display_name"),
                implies=tuple(_as_list(tier_data.get("implies"))),
            )
            rules.tier_aliases[key] = key
            for alias in _as_list(tier_data.get("aliases")):
                rules.tier_aliases[normalize_name(alias)] = key

        for addon_name, addon_data in service_data.get("addons", {}).items():
            key = normalize_name(addon_name)
            rules.addons[key] = AddOnRule(
                name=addon_name,
                payout=_money(addon_data.get("payout", "0")),
                duration=int(addon_data.get("duration", 0)),
                per_unit=bool(addon_data.get("per_unit", False)),
                eco=bool(addon_data.get("eco", False)),
            )
            rules.addon_aliases[key] = key
            for alias in _as_list(addon_data.get("aliases")):
                rules.addon_aliases[normalize_name(alias)] = key

        if normalize_name(rules.default_tier) not in rules.tiers:
            raise ValueError(f"Default tier '{rules.default_tier}' is not a tier of {kind.value}")

        for tier in rules.tiers.values():
            for implied in tier.implies:
                if normalize_name(implied) not in rules.addon_aliases:
                    raise ValueError(f"Tier {tier.name} implies unknown add-on {implied}")

        rules.photo_requirements = service_data.get("photo_requirements", {})
        rules.perks = service_data.get("perks", {})
        rules.bag_types = list(service_data.get("bag_types", []))
        return rules

    def _add_override(self, entry: Dict[str, Any]) -> None:
        kind = self.resolve_service(entry["service"])
        tier = self.resolve_tier(kind, entry["tier"]) if kind else None
        property_type = normalize_property_type(str(entry["property_type"]))
        if kind is None or tier is None or property_type is None:
            raise ValueError(f"Duration override references unknown rule: {entry}")
        # An override refines a discounted configuration; undiscounted types stay formula-only
        if self.property_discount(property_type) == 0:
            raise ValueError(f"Duration override for undiscounted property type {property_type.value}: {entry}")
        key = (kind, tier, int(entry["bedrooms"]), int(entry["bathrooms"]), property_type)
        self._overrides[key] = int(entry["minutes"])

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    def _rules(self, service: Optional[ServiceKind]) -> Optional[ServiceRules]:
        if service is None:
            return None
        return self._services.get(service)

    def services(self) -> List[ServiceKind]:
        return list(self._services.keys())

    def resolve_service(self, name: Any) -> Optional[ServiceKind]:
        if isinstance(name, ServiceKind):
            return name if name in self._services else None
        return self._service_aliases.get(normalize_name(name))

    def _tier_rule(self, service: ServiceKind, tier: str) -> Optional[TierRule]:
        rules = self._rules(service)
        if rules is None or not tier:
            return None
        key = rules.tier_aliases.get(normalize_name(tier))
        return rules.tiers.get(key) if key else None

    def _addon_rule(self, service: ServiceKind, add_on: str) -> Optional[AddOnRule]:
        rules = self._rules(service)
        if rules is None or not add_on:
            return None
        key = rules.addon_aliases.get(normalize_name(add_on))
        return rules.addons.get(key) if key else None

    def resolve_tier(self, service: ServiceKind, tier: str) -> Optional[str]:
        """Canonical tier name, or None when the tier does not belong to this service"""
        rule = self._tier_rule(service, tier)
        return rule.name if rule else None

    def resolve_add_on(self, service: ServiceKind, add_on: str) -> Optional[str]:
        rule = self._addon_rule(service, add_on)
        return rule.name if rule else None

    def default_tier(self, service: ServiceKind) -> Optional[str]:
        rules = self._rules(service)
        if rules is None:
            return None
        return rules.tiers[normalize_name(rules.default_tier)].name

    # ------------------------------------------------------------------
    # Payout / duration tables
    # ------------------------------------------------------------------

    def base_payout(self, service: ServiceKind, tier: str) -> Optional[Decimal]:
        rule = self._tier_rule(service, tier)
        return rule.payout if rule else None

    def add_on_payout(self, service: ServiceKind, add_on: str, quantity: int = 1) -> Optional[Decimal]:
        rule = self._addon_rule(service, add_on)
        if rule is None:
            return None
        if rule.per_unit:
            return rule.payout * max(int(quantity), 0)
        return rule.payout

    def base_duration(self, service: ServiceKind, tier: str) -> Optional[int]:
        rule = self._tier_rule(service, tier)
        return rule.duration if rule else None

    def add_on_duration(self, service: ServiceKind, add_on: str) -> Optional[int]:
        rule = self._addon_rule(service, add_on)
        return rule.duration if rule else None

    def processing_hours(self, service: ServiceKind, tier: str) -> Optional[int]:
        rule = self._tier_rule(service, tier)
        return rule.processing_hours if rule else None

    def is_public_tier(self, service: ServiceKind, tier: str) -> bool:
        rule = self._tier_rule(service, tier)
        return bool(rule and rule.public)

    def tier_display_name(self, service: ServiceKind, tier: str) -> Optional[str]:
        rule = self._tier_rule(service, tier)
        if rule is None:
            return None
        return rule.display_name or rule.name

    def tiers(self, service: ServiceKind, include_internal: bool = False) -> List[TierRule]:
        """Tiers in catalog order; operator-only tiers only when include_internal"""
        rules = self._rules(service)
        if rules is None:
            return []
        return [tier for tier in rules.tiers.values() if include_internal or tier.public]

    def public_tiers(self, service: ServiceKind) -> List[TierRule]:
        return self.tiers(service, include_internal=False)

    def add_ons(self, service: ServiceKind) -> List[AddOnRule]:
        rules = self._rules(service)
        return list(rules.addons.values()) if rules else []

    def implied_add_ons(self, service: ServiceKind, tier: str) -> List[str]:
        """Canonical add-on names whose effect the tier already includes"""
        rule = self._tier_rule(service, tier)
        if rule is None:
            return []
        return [self.resolve_add_on(service, name) for name in rule.implies]

    def is_eco_add_on(self, service: ServiceKind, add_on: str) -> bool:
        rule = self._addon_rule(service, add_on)
        return bool(rule and rule.eco)

    def is_per_unit_add_on(self, service: ServiceKind, add_on: str) -> bool:
        rule = self._addon_rule(service, add_on)
        return bool(rule and rule.per_unit)

    def vehicle_multiplier(self, vehicle_type: Optional[str]) -> Optional[Decimal]:
        if not vehicle_type:
            vehicle_type = self.standard_vehicle
        entry = self._vehicle_multipliers.get(normalize_name(vehicle_type))
        return entry[1] if entry else None

    def vehicle_types(self) -> List[str]:
        return [name for name, _ in self._vehicle_multipliers.values()]

    def property_discount(self, property_type: Optional[PropertyType]) -> Decimal:
        if property_type is None:
            return Decimal("0")
        return self._property_discounts.get(property_type, Decimal("0"))

    def duration_override(self, service: ServiceKind, tier: str, bedrooms: int, bathrooms: int,
                          property_type: Optional[PropertyType]) -> Optional[int]:
        canonical = self.resolve_tier(service, tier)
        if canonical is None or property_type is None:
            return None
        return self._overrides.get((service, canonical, bedrooms, bathrooms, property_type))

    def bag_types(self, service: ServiceKind = ServiceKind.LAUNDRY_SERVICE) -> List[str]:
        rules = self._rules(service)
        return list(rules.bag_types) if rules else []

    # ------------------------------------------------------------------
    # Job extras
    # ------------------------------------------------------------------

    def photo_requirements(self, service: ServiceKind, tier: str, add_ons: List[str]) -> List[str]:
        rules = self._rules(service)
        if rules is None:
            return []

        config = rules.photo_requirements
        requirements = list(config.get("always", []))

        tier_name = self.resolve_tier(service, tier)
        if tier_name:
            requirements.extend(config.get("tiers", {}).get(tier_name, []))

        addon_config = config.get("addons", {})
        for add_on in add_ons:
            add_on_name = self.resolve_add_on(service, add_on)
            if add_on_name:
                requirements.extend(addon_config.get(add_on_name, []))

        # keep first occurrence order
        return list(dict.fromkeys(requirements))

    def perks(self, service: ServiceKind, tier: str, first_time: bool = False, visit_count: int = 0) -> List[str]:
        rules = self._rules(service)
        tier_name = self.resolve_tier(service, tier) if rules else None
        if not tier_name or tier_name not in rules.perks:
            return []

        tier_perks = rules.perks[tier_name]
        perks = []
        if tier_perks.get("always"):
            perks.append(tier_perks["always"])
        if tier_perks.get("first_time") and first_time:
            perks.append(tier_perks["first_time"])
        if tier_perks.get("every_third") and visit_count > 0 and visit_count % 3 == 0:
            perks.append(tier_perks["every_third"])
        return perks

    def summary(self, include_internal: bool = False) -> Dict[str, Any]:
        """Catalog listing for display; operator-only tiers hidden unless requested"""
        services = {}
        for kind, rules in self._services.items():
            services[kind.value] = {
                "default_tier": self.default_tier(kind),
                "tiers": [
                    {
                        "name": tier.name,
                        "display_name": tier.display_name or tier.name,
                        "payout": str(tier.payout),
                        "duration": tier.duration,
                        "processing_hours": tier.processing_hours,
                        "public": tier.public,
                    }
                    for tier in self.tiers(kind, include_internal=include_internal)
                ],
                "addons": [
                    {
                        "name": add_on.name,
                        "payout": str(add_on.payout),
                        "duration": add_on.duration,
                        "per_unit": add_on.per_unit,
                        "eco": add_on.eco,
                    }
                    for add_on in rules.addons.values()
                ],
            }
        return {
            "version": self.version,
            "currency": self.currency,
            "eco_bonus": str(self.eco_bonus),
            "services": services,
            "vehicle_types": self.vehicle_types(),
            "property_type_discounts": {
                property_type.value: str(discount) for property_type, discount in self._property_discounts.items()
            },
        }


class CatalogLoader:
    """
    Loads the catalog from disk and reloads it when the file changes,
    so table updates are picked up without restarting the service
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DEFAULT_CATALOG_PATH
        self._catalog: Optional[RuleCatalog] = None
        self._mtime: float = 0.0

    def get(self, force_reload: bool = False) -> RuleCatalog:
        """
        Current catalog; a failed reload keeps serving the last good one.
        Only the first load raises.
        """
        try:
            current_mtime = self.path.stat().st_mtime
        except OSError as e:
            if self._catalog is None:
                raise
            logger.error(f"Catalog file {self.path} unreadable ({e}); keeping catalog {self._catalog.version}")
            return self._catalog

        if not force_reload and self._catalog is not None and current_mtime <= self._mtime:
            logger.debug(f"Using cached catalog {self._catalog.version}")
            return self._catalog

        if self._catalog is not None:
            logger.info(f"Catalog file {self.path.name} modified (cached: {self._mtime}, current: {current_mtime}), reloading")

        try:
            catalog = RuleCatalog.from_path(self.path)
        except (ValueError, KeyError, TypeError, OSError) as e:
            if self._catalog is None:
                raise
            logger.error(f"Failed to reload catalog from {self.path}: {e}; keeping catalog {self._catalog.version}")
            # Not retried until the file changes again
            self._mtime = current_mtime
            return self._catalog

        self._catalog = catalog
        self._mtime = current_mtime
        return self._catalog

    def reload(self) -> RuleCatalog:
        return self.get(force_reload=True)
