"""
Desist - Recipient Directory
Answers "who should be alerted near this location?" from the configured
emergency contacts.
"""

import math
from typing import Any, Dict, Iterable, List, Optional

from .interfaces import Location, Recipient

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def recipient_from_dict(index: int, data: Dict[str, Any]) -> Recipient:
    """Build a Recipient from a config entry. Missing ids fall back to the list position."""
    return Recipient(
        id=str(data.get('id', index)),
        name=data.get('name', f"contact-{index}"),
        phone=data.get('phone'),
        latitude=data.get('latitude'),
        longitude=data.get('longitude'),
        custom_message=data.get('custom_message'),
        priority=data.get('priority', 100),
        active=data.get('active', True),
    )


class ContactDirectory:
    """
    Emergency contacts filtered by distance.

    - Inactive contacts are never returned.
    - Contacts with no known position are always returned (personal
      contacts, not neighbours).
    - With no location, every active contact is returned.
    - Results are ordered by priority (lowest first).
    """

    def __init__(self, recipients: Iterable[Recipient]):
        self.recipients: List[Recipient] = list(recipients)

    @classmethod
    def from_config(cls, contacts: List[Dict[str, Any]]) -> "ContactDirectory":
        return cls(recipient_from_dict(i, c) for i, c in enumerate(contacts))

    async def recipients_near(
        self,
        location: Optional[Location],
        radius_km: float
    ) -> List[Recipient]:
        selected = []
        for recipient in self.recipients:
            if not recipient.active:
                continue
            if location is None or recipient.latitude is None or recipient.longitude is None:
                selected.append(recipient)
                continue
            distance = haversine_km(
                location.latitude, location.longitude,
                recipient.latitude, recipient.longitude
            )
            if distance <= radius_km:
                selected.append(recipient)

        return sorted(selected, key=lambda r: r.priority)
