"""Oura Ring API v2 fetcher (``usercollection`` endpoints with date-range params)."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from healthbot.collectors.base import BaseFetcher
from healthbot.models import HealthReading, ProviderId, ReadingType, TokenRecord, unit_for


class OuraFetcher(BaseFetcher):
    provider = ProviderId.OURA
    display_name = "Oura"
    api_base_url = "https://api.ouraring.com"
    supported_kinds = frozenset({"sleep", "readiness", "activity"})

    async def _fetch(
        self,
        token: TokenRecord,
        kind: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[HealthReading]:
        data = await self._request(
            "GET",
            f"/v2/usercollection/{kind}",
            token,
            params={
                "start_date": range_start.date().isoformat(),
                "end_date": range_end.date().isoformat(),
            },
        )
        if not isinstance(data, dict):
            return []
        return self._safe_parse(parse_oura_response, data, kind)


def _day(item: dict[str, Any]) -> datetime:
    d = date.fromisoformat(item["day"])
    return datetime(d.year, d.month, d.day, tzinfo=UTC)


def parse_oura_response(data: dict[str, Any], kind: str) -> list[HealthReading]:
    """Map Oura documents onto readings.

    Sleep is reported in minutes (from ``total_sleep_duration`` seconds)
    with the stage durations and score in metadata; readiness and activity
    are daily scores of type ``activity``.
    """
    readings: list[HealthReading] = []
    source = ProviderId.OURA.value

    for item in data.get("data") or []:
        if kind == "sleep":
            total = item.get("total_sleep_duration")
            if not total:
                continue
            readings.append(
                HealthReading(
                    source=source,
                    timestamp=_day(item),
                    type=ReadingType.SLEEP,
                    value=float(round(total / 60)),
                    unit=unit_for(ReadingType.SLEEP),
                    metadata={
                        "score": item.get("score"),
                        "remSleep": item.get("rem_sleep_duration"),
                        "deepSleep": item.get("deep_sleep_duration"),
                    },
                )
            )
        elif kind in ("readiness", "activity"):
            score = item.get("score")
            if not score:
                continue
            metadata: dict[str, Any] = {"type": kind}
            # readiness and activity share day and type; sources keep them apart
            item_source = f"{source}_readiness" if kind == "readiness" else source
            if kind == "activity":
                metadata.update(steps=item.get("steps"), activeCalories=item.get("active_calories"))
            readings.append(
                HealthReading(
                    source=item_source,
                    timestamp=_day(item),
                    type=ReadingType.ACTIVITY,
                    value=float(score),
                    unit=unit_for(ReadingType.ACTIVITY),
                    metadata=metadata,
                )
            )
    return readings
