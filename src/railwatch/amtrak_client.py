"""Amtrak train map feed fetcher and parser."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from .amtrak_cipher import decrypt_response, self_check
from .config import AMTRAK_FEED_URL, HTTP_TIMEOUT
from .dates import delay_minutes, parse_datetime, resolve_timezone
from .errors import DecodeError, PartialRecordError, UnknownHeading, UnknownTimezoneCode, UpstreamUnavailable
from .feed_client import FeedClient
from .models import Actual, Pending, Stop, StopEvent, Train, TrainState
from .stations import StationIndex

logger = logging.getLogger(__name__)

AGENCY = "amtrak"

HEADINGS = {
    "N": 0.0,
    "NE": 45.0,
    "E": 90.0,
    "SE": 135.0,
    "S": 180.0,
    "SW": 225.0,
    "W": 270.0,
    "NW": 315.0,
}

STATION_KEY = re.compile(r"^Station(\d+)$")


def station_keys(properties: Dict[str, Any]) -> List[str]:
    """
    Get the populated "Station<N>" keys of a train feature in route order.

    Keys are sorted by their numeric suffix, so Station10 follows Station9.
    """
    keyed = []
    for key, value in properties.items():
        match = STATION_KEY.match(key)
        if not match:
            continue
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        keyed.append((int(match.group(1)), key))
    return [key for _, key in sorted(keyed)]


def parse_heading(value: Optional[str]) -> float:
    """
    Convert a compass point ("N", "SW", ...) to degrees.

    Raises:
        UnknownHeading: If the value is not one of the eight points.
    """
    key = (value or "").strip().upper()
    if key not in HEADINGS:
        raise UnknownHeading(value)
    return HEADINGS[key]


class AmtrakClient:
    """Fetches, decrypts and normalizes the Amtrak train map feed."""

    def __init__(
        self,
        stations: Optional[StationIndex] = None,
        url: str = AMTRAK_FEED_URL,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
        check_cipher: bool = True,
    ):
        """
        Initialize the client.

        Args:
            stations: Optional station index used for stop names.
            url: Feed URL.
            session: Optional requests session.
            timeout: HTTP timeout in seconds.
            check_cipher: Run the cipher self-check now, failing fast on
                misconfigured constants.
        """
        if check_cipher:
            self_check()
        self.agency = AGENCY
        self.url = url
        self.stations = stations or StationIndex()
        self.client = FeedClient(AGENCY, session=session, timeout=timeout)

    def get_trains(self) -> List[Train]:
        """
        Fetch and parse the current feed.

        Returns:
            List of trains, or an empty list if the feed is unavailable or
            cannot be decrypted this cycle.
        """
        try:
            raw = self.client.fetch_text(self.url, cache_bust=True)
            collection = decrypt_response(raw)
        except (UpstreamUnavailable, DecodeError) as e:
            logger.warning(f"[{AGENCY}] Feed unavailable this cycle: {e}")
            return []

        trains = self.parse_features(collection)
        logger.debug(f"[{AGENCY}] Parsed {len(trains)} trains")
        return trains

    def parse_features(self, collection: Dict[str, Any]) -> List[Train]:
        """Parse every train feature, dropping the ones that are malformed."""
        trains: List[Train] = []
        for feature in collection.get("features", []):
            try:
                trains.append(self.parse_feature(feature))
            except (PartialRecordError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"[{AGENCY}] Dropping malformed train feature: {e}")
        return trains

    def parse_feature(self, feature: Dict[str, Any]) -> Train:
        """
        Parse a single GeoJSON train feature.

        Raises:
            PartialRecordError: If the train cannot be represented.
        """
        if not isinstance(feature, dict):
            raise PartialRecordError(f"Train feature is not an object: {feature!r}", agency=AGENCY)
        props = feature.get("properties") or {}
        if not isinstance(props, dict):
            raise PartialRecordError("Train feature properties are not an object", agency=AGENCY)
        train_key = props.get("ID") or props.get("OBJECTID")
        if train_key is None:
            raise PartialRecordError("Train feature has no ID", agency=AGENCY)
        train_id = f"{AGENCY}/{train_key}"

        try:
            status = TrainState(props.get("TrainState"))
        except ValueError as e:
            raise PartialRecordError(
                f"{train_id}: unknown train state {props.get('TrainState')!r}", agency=AGENCY
            ) from e

        stops = self._parse_stops(train_id, props)
        if not stops:
            raise PartialRecordError(f"{train_id}: no usable stations", agency=AGENCY)

        status_msg = (props.get("StatusMsg") or "").strip()

        return Train(
            id=train_id,
            name=props.get("RouteName") or "",
            number=str(props.get("TrainNum") or ""),
            agency=AGENCY,
            status=status,
            stops=tuple(stops),
            updated=self._parse_updated(train_id, props),
            coordinates=self._parse_coordinates(feature.get("geometry")),
            speed=self._parse_speed(props.get("Velocity")),
            heading=self._parse_heading(train_id, props.get("Heading")),
            alerts=(status_msg,) if status_msg else (),
        )

    def _parse_stops(self, train_id: str, props: Dict[str, Any]) -> List[Stop]:
        stops: List[Stop] = []
        for key in station_keys(props):
            try:
                raw = props[key]
                data = json.loads(raw) if isinstance(raw, str) else raw
                stops.append(self._parse_stop(data))
            except (PartialRecordError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"[{AGENCY}] {train_id}: dropping stop {key}: {e}")
        return stops

    def _parse_stop(self, data: Dict[str, Any]) -> Stop:
        if not isinstance(data, dict):
            raise PartialRecordError(f"Station entry is not an object: {data!r}", agency=AGENCY)
        code = data["code"]
        station = self.stations.get(code)

        try:
            tz_name: Optional[str] = resolve_timezone(data.get("tz"))
        except UnknownTimezoneCode as e:
            logger.warning(f"[{AGENCY}] Stop {code}: {e}")
            tz_name = station.timezone if station else None

        def parse(field: str):
            value = data.get(field)
            if not value or tz_name is None:
                return None
            return parse_datetime(value, tz_name)

        # The feed omits scheduled arrival when dwell time is zero
        sch_arr = parse("scharr") or parse("schdep")
        sch_dep = parse("schdep")

        return Stop(
            code=code,
            name=station.name if station else code,
            timezone=tz_name,
            arrival=self._event(sch_arr, parse("estarr"), parse("postarr")),
            departure=self._event(sch_dep, parse("estdep"), parse("postdep")),
        )

    @staticmethod
    def _event(scheduled, estimated, posted) -> StopEvent:
        if posted:
            return Actual(posted, scheduled=scheduled, delay=delay_minutes(scheduled, posted))
        return Pending(
            scheduled=scheduled,
            estimated=estimated,
            delay=delay_minutes(scheduled, estimated),
        )

    def _parse_updated(self, train_id: str, props: Dict[str, Any]):
        value = props.get("updated_at")
        if not value:
            return None
        tz_code = props.get("OrigTZ") or props.get("OriginTZ") or "E"
        try:
            return parse_datetime(value, tz_code, hr24=False)
        except (PartialRecordError, UnknownTimezoneCode) as e:
            logger.warning(f"[{AGENCY}] {train_id}: unparseable updated_at: {e}")
            return None

    def _parse_heading(self, train_id: str, value: Optional[str]) -> Optional[float]:
        if not value:
            return None
        try:
            return parse_heading(value)
        except UnknownHeading as e:
            logger.warning(f"[{AGENCY}] {train_id}: {e}")
            return None

    @staticmethod
    def _parse_speed(value: Any) -> Optional[float]:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_coordinates(geometry: Optional[Dict[str, Any]]):
        if not isinstance(geometry, dict) or geometry.get("type") != "Point":
            return None
        coords = geometry.get("coordinates") or []
        if len(coords) < 2 or coords[0] is None or coords[1] is None:
            return None
        return (float(coords[0]), float(coords[1]))
