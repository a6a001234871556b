# safetrip/Schemas/geofence.py
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from shapely.geometry import shape


def _check_position(position: Any) -> None:
    if not isinstance(position, (list, tuple)) or len(position) < 2:
        raise ValueError("Each position must be [longitude, latitude]")
    lon, lat = float(position[0]), float(position[1])
    if not (-180 <= lon <= 180) or not (-90 <= lat <= 90):
        raise ValueError(f"Position out of range: [{lon}, {lat}]")


# ============================================
# FENCE DEFINITION
# ============================================
class Geofence_def(BaseModel):
    """
    One named fence attached to a session.

    Geometry follows GeoJSON ([longitude, latitude] order):
    - Polygon: {"type": "Polygon", "coordinates": [[[lon, lat], ...], ...]}
      First ring is the shell, further rings are holes.
    - Circle:  {"type": "Point", "coordinates": [lon, lat]} plus radius (meters)

    type:
    - 'safe_zone': being OUTSIDE is a violation
    - 'restricted_area': being INSIDE is a violation
    """
    model_config = ConfigDict(from_attributes=True)

    name: str = Field(..., min_length=1, max_length=200)
    type: str = Field(..., pattern='^(safe_zone|restricted_area)$')
    geometry: Dict[str, Any] = Field(..., description="GeoJSON Polygon or Point")
    radius: Optional[float] = Field(None, gt=0, description="Circle radius in meters")

    @model_validator(mode="after")
    def _validate_geometry(self):
        geom_type = self.geometry.get("type")
        coordinates = self.geometry.get("coordinates")

        if geom_type == "Point":
            _check_position(coordinates)
            if self.radius is None:
                raise ValueError(f"Circle fence '{self.name}' requires a positive radius")

        elif geom_type == "Polygon":
            if not coordinates or not isinstance(coordinates, list):
                raise ValueError(f"Polygon fence '{self.name}' has no rings")
            for ring in coordinates:
                if not isinstance(ring, list) or len(ring) < 3:
                    raise ValueError(f"Polygon fence '{self.name}' has a ring with fewer than 3 vertices")
                for position in ring:
                    _check_position(position)
            try:
                polygon = shape(self.geometry)
            except Exception as e:
                raise ValueError(f"Polygon fence '{self.name}' is malformed: {e}")
            if not polygon.is_valid:
                raise ValueError(f"Polygon fence '{self.name}' is not a valid polygon")

        else:
            raise ValueError("Fence geometry type must be 'Polygon' or 'Point'")

        return self


# ============================================
# EVALUATION RESULT (not persisted)
# ============================================
class GeofenceResult(BaseModel):
    fence_name: str
    kind: str
    is_violated: bool
