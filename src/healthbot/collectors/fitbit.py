"""Fitbit Web API fetcher — one date-path request per day in the range.

See: https://dev.fitbit.com/build/reference/web-api/
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable

from healthbot.collectors.base import BaseFetcher
from healthbot.models import HealthReading, ProviderId, ReadingType, TokenRecord, unit_for

# {date} is replaced with YYYY-MM-DD at request time.
_ENDPOINTS: dict[str, str] = {
    "steps": "/1/user/-/activities/date/{date}.json",
    "heart_rate": "/1/user/-/activities/heart/date/{date}/1d.json",
    "sleep": "/1.2/user/-/sleep/date/{date}.json",
}


def _days(range_start: datetime, range_end: datetime) -> list[date]:
    start, end = range_start.date(), range_end.date()
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def _day_timestamp(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=UTC)


class FitbitFetcher(BaseFetcher):
    provider = ProviderId.FITBIT
    display_name = "Fitbit"
    api_base_url = "https://api.fitbit.com"
    supported_kinds = frozenset(_ENDPOINTS)

    async def _fetch(
        self,
        token: TokenRecord,
        kind: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[HealthReading]:
        readings: list[HealthReading] = []
        parser = _PARSERS[kind]
        for day in _days(range_start, range_end):
            data = await self._request("GET", _ENDPOINTS[kind].format(date=day.isoformat()), token)
            if not isinstance(data, dict):
                continue
            readings.extend(self._safe_parse(parser, data, day))
        return readings


# ── Parsers ───────────────────────────────────────────────────


def _parse_steps(data: dict[str, Any], day: date) -> list[HealthReading]:
    steps = (data.get("summary") or {}).get("steps")
    if not steps:
        return []
    return [
        HealthReading(
            source=ProviderId.FITBIT.value,
            timestamp=_day_timestamp(day),
            type=ReadingType.STEPS,
            value=float(steps),
            unit=unit_for(ReadingType.STEPS),
        )
    ]


def _parse_heart_rate(data: dict[str, Any], day: date) -> list[HealthReading]:
    days = data.get("activities-heart") or []
    if not days:
        return []
    resting = (days[0].get("value") or {}).get("restingHeartRate")
    if not resting:
        return []
    return [
        HealthReading(
            source=ProviderId.FITBIT.value,
            timestamp=_day_timestamp(day),
            type=ReadingType.HEART_RATE,
            value=float(resting),
            unit=unit_for(ReadingType.HEART_RATE),
            metadata={"type": "resting"},
        )
    ]


def _parse_sleep(data: dict[str, Any], day: date) -> list[HealthReading]:
    """First sleep log of the day; ``duration`` is in milliseconds."""
    logs = data.get("sleep") or []
    if not logs:
        return []
    duration_ms = logs[0]["duration"]
    return [
        HealthReading(
            source=ProviderId.FITBIT.value,
            timestamp=_day_timestamp(day),
            type=ReadingType.SLEEP,
            value=float(round(duration_ms / 60000)),
            unit=unit_for(ReadingType.SLEEP),
            metadata={"efficiency": logs[0].get("efficiency")},
        )
    ]


_PARSERS: dict[str, Callable[[dict[str, Any], date], list[HealthReading]]] = {
    "steps": _parse_steps,
    "heart_rate": _parse_heart_rate,
    "sleep": _parse_sleep,
}
