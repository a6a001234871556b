# safetrip/Services/geofence_evaluator.py
"""
Geofence evaluation.

Pure functions over the fence definitions stored on a session
(see Schemas/geofence.py for the format). No database access.

Rules:
- Circle (GeoJSON Point + radius): great-circle distance to the center,
  compared with the radius in meters.
- Polygon: planar point-in-polygon on (lon, lat) treated as Cartesian
  coordinates, which is accurate enough for city/region sized fences.
  Points on the boundary count as inside.
- safe_zone is violated when the point is OUTSIDE; restricted_area is
  violated when the point is INSIDE.
"""

from math import radians, cos, sin, asin, sqrt
from typing import Any, Dict, Iterable, List

from shapely.geometry import Point, shape

from safetrip.Schemas.geofence import GeofenceResult

EARTH_RADIUS_M = 6371000


def calculate_haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth (meters).
    """
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat/2)**2 + cos(lat1) * cos(lat2) * sin(dlon/2)**2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_M


class GeofenceEvaluator:
    """
    Decides whether a coordinate violates a session's fences.

    Polygons are parsed with shapely on first use and memoized by fence
    name + vertex list, since the same fences are evaluated for every
    sample of a session.
    """

    def __init__(self):
        self._polygon_cache: Dict[str, Any] = {}

    def contains(self, latitude: float, longitude: float, fence: Dict[str, Any]) -> bool:
        """True if the point lies inside (or on the edge of) the fence."""
        geometry = fence.get("geometry") or {}
        geom_type = geometry.get("type")

        if geom_type == "Point":
            center_lon, center_lat = geometry["coordinates"][:2]
            distance = calculate_haversine_distance(latitude, longitude, center_lat, center_lon)
            return distance <= float(fence["radius"])

        if geom_type == "Polygon":
            polygon = self._polygon_for(fence)
            return polygon.covers(Point(longitude, latitude))

        raise ValueError(f"Unsupported fence geometry: {geom_type!r}")

    def evaluate(self, latitude: float, longitude: float, fence: Dict[str, Any]) -> bool:
        """
        Returns:
            True if the point violates the fence.
        """
        inside = self.contains(latitude, longitude, fence)

        if fence.get("type") == "restricted_area":
            return inside
        return not inside

    def check_all(
        self,
        latitude: float,
        longitude: float,
        fences: Iterable[Dict[str, Any]]
    ) -> List[GeofenceResult]:
        """
        Evaluate every fence independently and return only the violated ones.

        Example:
            >>> violations = geofence_evaluator.check_all(40.4168, -3.7038, session.geofences)
            >>> [v.fence_name for v in violations]
            ['Old Town']
        """
        violations = []
        for fence in fences or []:
            if self.evaluate(latitude, longitude, fence):
                violations.append(GeofenceResult(
                    fence_name=fence["name"],
                    kind=fence["type"],
                    is_violated=True
                ))
        return violations

    def _polygon_for(self, fence: Dict[str, Any]):
        key = f"{fence.get('name')}:{fence['geometry']['coordinates']}"
        polygon = self._polygon_cache.get(key)
        if polygon is None:
            polygon = shape(fence["geometry"])
            if len(self._polygon_cache) >= 1000:
                self._polygon_cache.clear()
            self._polygon_cache[key] = polygon
        return polygon


# Global instance (singleton)
geofence_evaluator = GeofenceEvaluator()
