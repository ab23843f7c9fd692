"""
Data model shared by the tide pipeline.

All records are immutable once produced; a new query builds a new snapshot
instead of updating an old one.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .timeutil import decimal_to_time, time_to_decimal


class TideType(str, Enum):
    """Kind of tide extremum."""
    HIGH = "HIGH"
    LOW = "LOW"


@dataclass(frozen=True)
class TideEvent:
    """
    A high or low tide on the local day.

    `time` accepts decimal hours or an "HH:MM" string and is stored as
    decimal hours. `type` accepts a TideType or its string value.
    """
    time: Union[float, str]
    height: float
    type: TideType

    def __post_init__(self):
        object.__setattr__(self, 'time', time_to_decimal(self.time))
        object.__setattr__(self, 'height', float(self.height))
        kind = self.type.value if isinstance(self.type, TideType) else str(self.type).upper()
        object.__setattr__(self, 'type', TideType(kind))

    @property
    def clock(self) -> str:
        return decimal_to_time(self.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.clock,
            "decimal_time": round(self.time, 4),
            "height": round(self.height, 2),
            "type": self.type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TideEvent":
        time = data.get("decimal_time", data.get("time"))
        return cls(time=time, height=data["height"], type=data["type"])


@dataclass(frozen=True)
class CurvePoint:
    """One sample of the synthesized curve."""
    time: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"time": self.time, "height": self.height}


@dataclass(frozen=True)
class CurrentState:
    height: float
    is_rising: bool


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lon: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class Station:
    """
    A tide-measuring station from the catalog.

    `provider_ids` maps a provider key (e.g. "noaa") to the station id that
    provider uses.
    """
    id: str
    name: str
    lat: float
    lon: float
    provider_ids: Dict[str, str] = field(default_factory=dict)

    def provider_id(self, provider_key: str) -> Optional[str]:
        return self.provider_ids.get(provider_key)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lon)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "lat": self.lat,
            "lon": self.lon,
            "provider_ids": dict(self.provider_ids),
        }


@dataclass(frozen=True)
class StationMatch:
    """Result of station resolution."""
    station: Station
    matched_by_name: bool
    distance_km: float


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lon: float
    display_name: str

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lon)


@dataclass(frozen=True)
class SunTimes:
    """Local sunrise and sunset as "HH:MM" (None during polar day or night)."""
    sunrise: Optional[str] = "07:00"
    sunset: Optional[str] = "20:00"

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"sunrise": self.sunrise, "sunset": self.sunset}


@dataclass(frozen=True)
class ResolvedLocation:
    """
    Where the forecast actually comes from.

    `requested_*` describe what the user asked for; `resolved_station` and
    `used_coordinates` describe what the data belongs to. They differ when a
    nearest station or the default location was substituted.
    """
    requested_query: str
    requested_coordinates: Optional[Coordinates]
    location_name: str
    used_coordinates: Coordinates
    is_approximate: bool
    data_source_label: str
    resolved_station: Optional[Station] = None
    station_distance_km: Optional[float] = None
    matched_by_name: bool = False
    disclaimer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requested_query": self.requested_query,
            "requested_coordinates": self.requested_coordinates.to_dict() if self.requested_coordinates else None,
            "location_name": self.location_name,
            "resolved_station": self.resolved_station.to_dict() if self.resolved_station else None,
            "station_distance_km": round(self.station_distance_km, 1) if self.station_distance_km is not None else None,
            "matched_by_name": self.matched_by_name,
            "used_coordinates": self.used_coordinates.to_dict(),
            "is_approximate": self.is_approximate,
            "data_source_label": self.data_source_label,
            "disclaimer": self.disclaimer,
        }


@dataclass(frozen=True)
class TideSnapshot:
    """Everything the presentation layer needs for one query."""
    location: ResolvedLocation
    date: str
    timezone: str
    sun: SunTimes
    tides: List[TideEvent]
    curve: List[CurvePoint]
    current_height: float
    is_rising: bool
    coefficient: int
    stages: List[str] = field(default_factory=list)

    @property
    def is_approximate(self) -> bool:
        return self.location.is_approximate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location.to_dict(),
            "date": self.date,
            "timezone": self.timezone,
            "sun": self.sun.to_dict(),
            "tides": [tide.to_dict() for tide in self.tides],
            "curve": [point.to_dict() for point in self.curve],
            "current_height": self.current_height,
            "is_rising": self.is_rising,
            "coefficient": self.coefficient,
            "stages": list(self.stages),
        }
