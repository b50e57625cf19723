"""Via Rail real-time feed fetcher and parser."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from .config import HTTP_TIMEOUT, VIA_FEED_URL
from .dates import delay_minutes, parse_iso, utc_now
from .errors import DecodeError, PartialRecordError, UpstreamUnavailable
from .feed_client import FeedClient
from .models import Actual, Pending, Stop, StopEvent, Train, TrainState
from .stations import StationIndex
from .via_routes import route_name

logger = logging.getLogger(__name__)

AGENCY = "via"

# Value of a stop's "eta" once the train has arrived there
ARRIVED_MARKER = "ARR"


def arrival_event(scheduled: Optional[datetime], estimated: Optional[datetime], arrived: bool) -> StopEvent:
    """
    Build an arrival event.

    An arrived stop promotes its estimate to the actual time; the scheduled
    and estimated values no longer apply.
    """
    delay = delay_minutes(scheduled, estimated)
    if arrived and estimated is not None:
        return Actual(estimated, delay=delay)
    return Pending(scheduled=scheduled, estimated=estimated, delay=delay)


def departure_event(scheduled: Optional[datetime], estimated: Optional[datetime], now: datetime) -> StopEvent:
    """
    Build a departure event.

    A departure whose estimate is at or before now has happened: the
    estimate becomes the actual time and scheduled/estimated are dropped.
    """
    delay = delay_minutes(scheduled, estimated)
    if estimated is not None and estimated <= now:
        return Actual(estimated, delay=delay)
    return Pending(scheduled=scheduled, estimated=estimated, delay=delay)


def english_alert(alert: Dict[str, Any]) -> str:
    """
    Join the English header, description and URL of an alert.

    A field given as a plain string is taken as is; other shapes are skipped.
    """
    if not isinstance(alert, dict):
        return ""
    parts = []
    for field in ("header", "description", "url"):
        value = alert.get(field)
        if isinstance(value, dict):
            value = value.get("en")
        text = value.strip() if isinstance(value, str) else ""
        if text:
            parts.append(text)
    return "\n".join(parts)


class ViaClient:
    """Fetches and normalizes the Via Rail feed."""

    def __init__(
        self,
        stations: Optional[StationIndex] = None,
        url: str = VIA_FEED_URL,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.agency = AGENCY
        self.url = url
        self.stations = stations or StationIndex()
        self.client = FeedClient(AGENCY, session=session, timeout=timeout)

    def get_trains(self, now: Optional[datetime] = None) -> List[Train]:
        """
        Fetch and parse the current feed.

        Returns:
            List of trains, or an empty list if the feed is unavailable.
        """
        try:
            raw = self.client.fetch(self.url)
            data = self.decode(raw)
        except (UpstreamUnavailable, DecodeError) as e:
            logger.warning(f"[{AGENCY}] Feed unavailable this cycle: {e}")
            return []

        trains = self.parse_trains(data, now=now)
        logger.debug(f"[{AGENCY}] Parsed {len(trains)} trains")
        return trains

    @staticmethod
    def decode(raw: bytes) -> Dict[str, Any]:
        """
        Decode the raw feed into its train mapping.

        Raises:
            DecodeError: If the payload is not a JSON object.
        """
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise DecodeError(f"Feed is not JSON: {e}", agency=AGENCY) from e
        if not isinstance(data, dict):
            raise DecodeError("Feed is not a JSON object", agency=AGENCY)
        return data

    def parse_trains(self, data: Dict[str, Any], now: Optional[datetime] = None) -> List[Train]:
        """Parse every train in the feed, dropping the malformed ones."""
        now = now or utc_now()
        trains: List[Train] = []
        for key, info in data.items():
            try:
                trains.append(self.parse_train(key, info, now))
            except (PartialRecordError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"[{AGENCY}] Dropping train {key}: {e}")
        return trains

    def parse_train(self, key: str, info: Dict[str, Any], now: datetime) -> Train:
        """
        Parse a single train entry.

        Args:
            key: Feed key, the train number optionally followed by a day
                suffix, e.g. "2 (13)".
            info: Train object from the feed.
            now: Current time, used to decide which departures happened.

        Raises:
            PartialRecordError: If the train has no usable stops.
        """
        number = str(key).split(" ")[0]
        train_id = f"{AGENCY}/{''.join(str(key).split())}"
        if not isinstance(info, dict):
            raise PartialRecordError(f"{train_id}: train entry is not an object", agency=AGENCY)

        stops: List[Stop] = []
        for entry in info.get("times") or []:
            try:
                stops.append(self._parse_stop(entry, now))
            except (PartialRecordError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"[{AGENCY}] {train_id}: dropping stop: {e}")
        if not stops:
            raise PartialRecordError(f"{train_id}: no usable stops", agency=AGENCY)

        if info.get("arrived"):
            status = TrainState.COMPLETED
        elif info.get("departed"):
            status = TrainState.ACTIVE
        else:
            status = TrainState.PREDEPARTURE

        alerts = tuple(text for text in (english_alert(a) for a in info.get("alerts") or []) if text)

        return Train(
            id=train_id,
            name=route_name(number),
            number=number,
            agency=AGENCY,
            status=status,
            stops=tuple(stops),
            updated=self._parse_updated(train_id, info.get("poll")),
            coordinates=self._parse_coordinates(info),
            speed=self._parse_float(info.get("speed")),
            heading=self._parse_heading(info.get("direction")),
            alerts=alerts,
        )

    def _parse_stop(self, entry: Dict[str, Any], now: datetime) -> Stop:
        if not isinstance(entry, dict):
            raise PartialRecordError(f"Stop entry is not an object: {entry!r}", agency=AGENCY)
        code = entry["code"]
        station = self.stations.get(code)
        tz_name = station.timezone if station else None

        # Per-event objects are preferred; the flat fields cover stops that
        # only report one time (origin and terminus)
        arrival = entry.get("arrival") or {}
        departure = entry.get("departure") or {}
        if not isinstance(arrival, dict) or not isinstance(departure, dict):
            raise PartialRecordError(f"Stop {code}: arrival or departure is not an object", agency=AGENCY)
        flat_scheduled = self._parse_time(entry.get("scheduled"), tz_name)
        flat_estimated = self._parse_time(entry.get("estimated"), tz_name)

        if arrival or not departure:
            arr_scheduled = self._parse_time(arrival.get("scheduled"), tz_name) or flat_scheduled
            arr_estimated = self._parse_time(arrival.get("estimated"), tz_name) or flat_estimated
        else:
            arr_scheduled = arr_estimated = None

        if departure or not arrival:
            dep_scheduled = self._parse_time(departure.get("scheduled"), tz_name) or flat_scheduled
            dep_estimated = self._parse_time(departure.get("estimated"), tz_name) or flat_estimated
        else:
            dep_scheduled = dep_estimated = None

        arrived = entry.get("eta") == ARRIVED_MARKER

        return Stop(
            code=code,
            name=entry.get("station") or (station.name if station else code),
            timezone=tz_name,
            arrival=arrival_event(arr_scheduled, arr_estimated, arrived),
            departure=departure_event(dep_scheduled, dep_estimated, now),
        )

    def _parse_updated(self, train_id: str, value: Optional[str]) -> Optional[datetime]:
        try:
            return self._parse_time(value)
        except PartialRecordError as e:
            logger.warning(f"[{AGENCY}] {train_id}: unparseable poll time: {e}")
            return None

    @staticmethod
    def _parse_time(value: Optional[str], tz_name: Optional[str] = None) -> Optional[datetime]:
        if not value:
            return None
        return parse_iso(value, default_tz=tz_name)

    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def _parse_heading(self, value: Any) -> Optional[float]:
        heading = self._parse_float(value)
        return heading % 360 if heading is not None else None

    def _parse_coordinates(self, info: Dict[str, Any]):
        lng = self._parse_float(info.get("lng"))
        lat = self._parse_float(info.get("lat"))
        if lng is None or lat is None:
            return None
        return (lng, lat)
