from typing import Dict, Any, Optional

from ..models import ServiceKind, ServiceLineItem, CrewAssignment
from ..rules import RuleCatalog


class AssignmentEnricher:
    """Enriches a job with crew size, required photos and perks from the catalog"""

    def __init__(self, catalog: RuleCatalog):
        self.catalog = catalog
        # Fallback thresholds if the catalog carries no crew_sizing table
        self.fallback_sizing = {
            "solo_max": 300,
            "large_property_solo_max": 240,
            "dual_max": 480,
            "team_max": 720,
            "large_bedrooms": 4,
            "large_bathrooms": 3,
        }

    def _threshold(self, key: str) -> int:
        return self.catalog.crew_sizing.get(key, self.fallback_sizing[key])

    def is_large_property(self, line_item: ServiceLineItem) -> bool:
        attributes = line_item.attributes
        if line_item.service != ServiceKind.HOME_CLEANING or attributes is None:
            return False
        bedrooms = attributes.bedrooms or 1
        bathrooms = attributes.bathrooms or 1
        return bedrooms >= self._threshold("large_bedrooms") or bathrooms >= self._threshold("large_bathrooms")

    def crew_for(self, line_item: ServiceLineItem, expected_minutes: Optional[int]) -> Optional[CrewAssignment]:
        """Solo, dual or team assignment from on-site minutes"""

        # Laundry minutes are processing time off-site, not labour
        if expected_minutes is None or line_item.service in (ServiceKind.LAUNDRY_SERVICE, ServiceKind.UNKNOWN):
            return None

        large = self.is_large_property(line_item)
        solo_max = self._threshold("large_property_solo_max" if large else "solo_max")

        if expected_minutes <= solo_max:
            return CrewAssignment(
                crew_type="solo", workers=1, max_duration=solo_max, large_property=large,
                reason="Large property - strict solo limit" if large else "Regular property - extended solo limit",
            )
        if expected_minutes <= self._threshold("dual_max"):
            return CrewAssignment(
                crew_type="dual", workers=2, max_duration=self._threshold("dual_max"), large_property=large,
                reason="Large property - requires dual assignment" if large else "Duration exceeds solo limit",
            )
        return CrewAssignment(
            crew_type="team", workers=3, max_duration=self._threshold("team_max"), large_property=large,
            reason="Duration requires team assignment",
        )

    def enrich(self, line_item: ServiceLineItem, expected_minutes: Optional[int],
               first_time: bool = False, visit_count: int = 0) -> Dict[str, Any]:
        """Enrich a line item with the fields a job carries beyond payout and duration"""

        if line_item.service == ServiceKind.UNKNOWN:
            return {"crew": None, "photo_requirements": [], "perks": []}

        return {
            "crew": self.crew_for(line_item, expected_minutes),
            "photo_requirements": self.catalog.photo_requirements(
                line_item.service, line_item.tier, line_item.add_on_names
            ),
            "perks": self.catalog.perks(line_item.service, line_item.tier, first_time=first_time,
                                        visit_count=visit_count),
        }
