"""Derived train status: on-time/delayed state and segment progress."""

import math
from datetime import datetime, timedelta
from typing import Optional, Sequence

from .config import (
    LONG_TRIP_DELAY_THRESHOLD,
    LONG_TRIP_HOURS,
    SHORT_TRIP_DELAY_THRESHOLD,
    STALE_AFTER_MINUTES,
)
from .models import SegmentProgress, Stop, StopEvent, TimeStatus, Train, TrainMeta


def arrival_time(stop: Stop) -> Optional[datetime]:
    """Best-known arrival, falling back to departure (origins have no arrival)."""
    return stop.arrival.time or stop.departure.time


def departure_time(stop: Stop) -> Optional[datetime]:
    """Best-known departure, falling back to arrival (termini have no departure)."""
    return stop.departure.time or stop.arrival.time


def scheduled_time(event: StopEvent) -> Optional[datetime]:
    """Scheduled time of an event, reconstructed from its delay when omitted."""
    if event.scheduled is not None:
        return event.scheduled
    if event.time is not None and event.delay is not None:
        return event.time - timedelta(minutes=event.delay)
    return event.time


def trip_duration(stops: Sequence[Stop]) -> Optional[timedelta]:
    """Scheduled end-to-end duration of an itinerary."""
    first, last = stops[0], stops[-1]
    start = scheduled_time(first.departure) or scheduled_time(first.arrival)
    end = scheduled_time(last.arrival) or scheduled_time(last.departure)
    if start is None or end is None:
        return None
    return end - start


def delay_threshold(stops: Sequence[Stop]) -> int:
    """Minutes of delay tolerated before a train counts as delayed."""
    duration = trip_duration(stops)
    if duration is not None and duration > timedelta(hours=LONG_TRIP_HOURS):
        return LONG_TRIP_DELAY_THRESHOLD
    return SHORT_TRIP_DELAY_THRESHOLD


def _minutes_between(start: datetime, end: datetime) -> int:
    return math.ceil((end - start).total_seconds() / 60)


def segment_progress(
    now: datetime,
    prev_stop: Optional[Stop],
    cur_stop: Optional[Stop],
    next_stop: Optional[Stop],
) -> SegmentProgress:
    """
    Progress through the current segment.

    At a station the next segment has not started and the countdown is to
    departure. Between stations the fraction is the elapsed share of the time
    between the previous and next arrivals.
    """
    if cur_stop is not None:
        departure = departure_time(cur_stop)
        minutes = _minutes_between(now, departure) if departure else None
        return SegmentProgress(fraction=0.0, minutes_remaining=minutes, at_station=True)

    if prev_stop is None or next_stop is None:
        return SegmentProgress()

    start = arrival_time(prev_stop)
    end = arrival_time(next_stop)
    if start is None or end is None:
        return SegmentProgress()

    total = (end - start).total_seconds()
    if total <= 0:
        fraction = 1.0
    else:
        fraction = max(0.0, min(1.0, (now - start).total_seconds() / total))
    return SegmentProgress(fraction=fraction, minutes_remaining=_minutes_between(now, end))


def get_train_meta(train: Train, now: datetime) -> TrainMeta:
    """
    Compute the status of a train at a point in time.

    Args:
        train: Train snapshot; must have at least one stop.
        now: Current time (timezone-aware).

    Returns:
        TrainMeta with the status code, surrounding stops, delay and
        segment progress.

    Raises:
        ValueError: If the train has no stops.
    """
    stops = train.stops
    if not stops:
        raise ValueError(f"Train {train.id} has no stops")

    prev_index: Optional[int] = None
    cur_index: Optional[int] = None
    next_index: Optional[int] = None

    for i, stop in enumerate(stops):
        arrival = arrival_time(stop)
        departure = departure_time(stop)
        if departure is not None and departure <= now:
            prev_index = i
        if cur_index is None and arrival is not None and departure is not None and arrival <= now < departure:
            cur_index = i
        if next_index is None and arrival is not None and arrival > now:
            next_index = i

    prev_stop = stops[prev_index] if prev_index is not None else None
    cur_stop = stops[cur_index] if cur_index is not None else None
    next_stop = stops[next_index] if next_index is not None else None

    delay: Optional[int] = None
    if next_stop is None:
        code = TimeStatus.COMPLETE
        delay = stops[-1].arrival.delay
    elif prev_stop is None and next_index == 0:
        code = TimeStatus.PREDEPARTURE
        delay = stops[0].departure.delay
    else:
        relevant = cur_stop or next_stop
        delay = relevant.arrival.delay
        if relevant.arrival.time is None:
            code = TimeStatus.UNKNOWN
        elif (delay or 0) > delay_threshold(stops):
            code = TimeStatus.DELAYED
        else:
            code = TimeStatus.ON_TIME

    stale = (
        train.updated is not None
        and code not in (TimeStatus.PREDEPARTURE, TimeStatus.COMPLETE)
        and now - train.updated > timedelta(minutes=STALE_AFTER_MINUTES)
    )

    return TrainMeta(
        code=code,
        first_stop=stops[0],
        last_stop=stops[-1],
        prev_stop=prev_stop,
        cur_stop=cur_stop,
        next_stop=next_stop,
        prev_index=prev_index,
        cur_index=cur_index,
        next_index=next_index,
        delay=delay,
        progress=segment_progress(now, prev_stop, cur_stop, next_stop),
        stale=stale,
    )
