"""Static station reference data."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .models import Station

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["code", "name", "timezone", "lon", "lat"]


class StationIndex:
    """Indexes stations by code for name, timezone and coordinate lookups."""

    def __init__(self, stations: Iterable[Station] = ()):
        """Initialize the index from Station objects."""
        self.stations: Dict[str, Station] = {}
        for station in stations:
            self.stations[station.code] = station

    @classmethod
    def from_csv(cls, path: str) -> "StationIndex":
        """
        Load stations from a CSV file with columns code,name,timezone,lon,lat.

        Rows without a code are skipped; rows without usable coordinates are
        kept with coordinates set to None.
        """
        logger.info(f"Loading stations from {path}")
        df = pd.read_csv(path, dtype={"code": str, "name": str, "timezone": str})
        return cls.from_dataframe(df)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "StationIndex":
        """Build an index from a DataFrame with the CSV's columns."""
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Station table is missing columns: {missing}")

        df = df.dropna(subset=["code"])
        df = df.assign(
            lon=pd.to_numeric(df["lon"], errors="coerce"),
            lat=pd.to_numeric(df["lat"], errors="coerce"),
        )

        stations: List[Station] = []
        for row in df.itertuples(index=False):
            code = str(row.code).strip()
            if not code:
                continue
            coordinates: Optional[Tuple[float, float]] = None
            if pd.notna(row.lon) and pd.notna(row.lat):
                coordinates = (float(row.lon), float(row.lat))
            stations.append(
                Station(
                    code=code,
                    name=str(row.name).strip() if pd.notna(row.name) else code,
                    timezone=str(row.timezone).strip() if pd.notna(row.timezone) else None,
                    coordinates=coordinates,
                )
            )

        index = cls(stations)
        logger.info(f"Loaded {len(index)} stations")
        return index

    def get(self, code: Optional[str]) -> Optional[Station]:
        if code is None:
            return None
        return self.stations.get(code)

    def coordinates(self, code: Optional[str]) -> Optional[Tuple[float, float]]:
        """Get (lon, lat) for a station code, or None if unknown."""
        station = self.get(code)
        return station.coordinates if station else None

    def __contains__(self, code: object) -> bool:
        return code in self.stations

    def __len__(self) -> int:
        return len(self.stations)
