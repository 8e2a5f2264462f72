"""
Desist - Location
Location source for panic alerts.

A desktop daemon has no GPS, so the configured home position is used.
"""

from typing import Optional

from .errors import PermissionDeniedError
from .interfaces import Location


class ConfiguredLocationProvider:
    """Returns a fixed, user-configured position."""

    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None):
        self.latitude = latitude
        self.longitude = longitude

    async def get_current_position(self) -> Location:
        if self.latitude is None or self.longitude is None:
            raise PermissionDeniedError("No location configured (set home_latitude/home_longitude)")
        return Location(latitude=self.latitude, longitude=self.longitude)
