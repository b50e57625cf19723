"""Data models for the unified train feed."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .dates import parse_iso


class TrainState(str, Enum):
    """Status as reported (or inferred) by the upstream feed."""
    PREDEPARTURE = "Predeparture"
    ACTIVE = "Active"
    COMPLETED = "Completed"


class TimeStatus(str, Enum):
    """Derived operational status of a train."""
    PREDEPARTURE = "Predeparture"
    ON_TIME = "OnTime"
    DELAYED = "Delayed"
    COMPLETE = "Complete"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Pending:
    """An arrival or departure that has not happened yet."""
    scheduled: Optional[datetime] = None
    estimated: Optional[datetime] = None
    delay: Optional[int] = None  # minutes, positive = late

    @property
    def actual(self) -> None:
        return None

    @property
    def time(self) -> Optional[datetime]:
        return self.estimated or self.scheduled

    @property
    def is_actual(self) -> bool:
        return False


@dataclass(frozen=True)
class Actual:
    """An arrival or departure that has already happened."""
    actual: datetime
    scheduled: Optional[datetime] = None
    delay: Optional[int] = None  # minutes, positive = late

    @property
    def estimated(self) -> None:
        return None

    @property
    def time(self) -> datetime:
        return self.actual

    @property
    def is_actual(self) -> bool:
        return True


StopEvent = Union[Pending, Actual]


@dataclass(frozen=True)
class Stop:
    """A scheduled or observed station visit."""
    code: str
    name: str
    timezone: Optional[str]  # IANA identifier
    arrival: StopEvent = field(default_factory=Pending)
    departure: StopEvent = field(default_factory=Pending)


@dataclass(frozen=True)
class Train:
    """A single train reported by one of the feeds."""
    id: str  # "<agency>/<key>"
    name: str
    number: str
    agency: str
    status: TrainState
    stops: Tuple[Stop, ...]
    updated: Optional[datetime] = None
    coordinates: Optional[Tuple[float, float]] = None  # (lon, lat)
    speed: Optional[float] = None
    heading: Optional[float] = None  # degrees clockwise from north
    alerts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Station:
    """Static reference data for a station."""
    code: str
    name: str
    timezone: Optional[str]
    coordinates: Optional[Tuple[float, float]] = None  # (lon, lat)


@dataclass(frozen=True)
class SegmentProgress:
    """Progress through the train's current segment."""
    fraction: float = 0.0  # 0..1 of the segment traversed
    minutes_remaining: Optional[int] = None  # to departure (at station) or arrival
    at_station: bool = False


@dataclass(frozen=True)
class TrainMeta:
    """Derived status of a train at a point in time."""
    code: TimeStatus
    first_stop: Stop
    last_stop: Stop
    prev_stop: Optional[Stop] = None
    cur_stop: Optional[Stop] = None
    next_stop: Optional[Stop] = None
    prev_index: Optional[int] = None
    cur_index: Optional[int] = None
    next_index: Optional[int] = None
    delay: Optional[int] = None
    progress: SegmentProgress = field(default_factory=SegmentProgress)
    stale: bool = False


@dataclass(frozen=True)
class TrackSnapPosition:
    """A train position adjusted onto the rail corridor."""
    coordinates: Tuple[float, float]  # (lon, lat)
    bearing: Optional[float] = None
    updated: Optional[datetime] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _event_to_dict(event: StopEvent) -> Dict[str, Any]:
    return {
        "scheduled": _iso(event.scheduled),
        "estimated": _iso(event.estimated),
        "actual": _iso(event.actual),
        "delay": event.delay,
    }


def _event_from_dict(data: Optional[Dict[str, Any]]) -> StopEvent:
    data = data or {}
    scheduled = parse_iso(data["scheduled"]) if data.get("scheduled") else None
    delay = data.get("delay")
    if data.get("actual"):
        return Actual(parse_iso(data["actual"]), scheduled=scheduled, delay=delay)
    estimated = parse_iso(data["estimated"]) if data.get("estimated") else None
    return Pending(scheduled=scheduled, estimated=estimated, delay=delay)


def train_to_dict(train: Train) -> Dict[str, Any]:
    """Serialize a train to the outbound JSON shape (ISO-8601 instants)."""
    return {
        "id": train.id,
        "name": train.name,
        "number": train.number,
        "agency": train.agency,
        "status": train.status.value,
        "updated": _iso(train.updated),
        "coordinates": list(train.coordinates) if train.coordinates else None,
        "speed": train.speed,
        "heading": train.heading,
        "alerts": list(train.alerts),
        "stations": [
            {
                "code": stop.code,
                "name": stop.name,
                "timezone": stop.timezone,
                "arrival": _event_to_dict(stop.arrival),
                "departure": _event_to_dict(stop.departure),
            }
            for stop in train.stops
        ],
    }


def train_from_dict(data: Dict[str, Any]) -> Train:
    """Rebuild a train from its outbound JSON shape."""
    stops: List[Stop] = [
        Stop(
            code=s["code"],
            name=s.get("name") or s["code"],
            timezone=s.get("timezone"),
            arrival=_event_from_dict(s.get("arrival")),
            departure=_event_from_dict(s.get("departure")),
        )
        for s in data.get("stations", [])
    ]
    coordinates = data.get("coordinates")
    return Train(
        id=data["id"],
        name=data["name"],
        number=data["number"],
        agency=data.get("agency") or data["id"].split("/")[0],
        status=TrainState(data["status"]),
        stops=tuple(stops),
        updated=parse_iso(data["updated"]) if data.get("updated") else None,
        coordinates=tuple(coordinates) if coordinates else None,
        speed=data.get("speed"),
        heading=data.get("heading"),
        alerts=tuple(data.get("alerts") or ()),
    )
