"""Google Fit REST API fetcher (aggregate dataset query, daily buckets).

See: https://developers.google.com/fit/rest/v1/reference/users/dataset/aggregate
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from healthbot.collectors.base import BaseFetcher
from healthbot.models import HealthReading, ProviderId, ReadingType, TokenRecord, unit_for

_DAY_MILLIS = 86_400_000

_DATA_SOURCES: dict[str, str] = {
    "steps": "derived:com.google.step_count.delta:com.google.android.gms:estimated_steps",
    "heart_rate": "derived:com.google.heart_rate.bpm:com.google.android.gms:merge_heart_rate_bpm",
    "sleep": "derived:com.google.sleep.segment:com.google.android.gms:merged",
    "weight": "derived:com.google.weight:com.google.android.gms:merge_weight",
}


def _millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


class GoogleFitFetcher(BaseFetcher):
    provider = ProviderId.GOOGLE_FIT
    display_name = "Google Fit"
    api_base_url = "https://www.googleapis.com"
    supported_kinds = frozenset(_DATA_SOURCES)

    async def _fetch(
        self,
        token: TokenRecord,
        kind: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[HealthReading]:
        body = {
            "aggregateBy": [{"dataSourceId": _DATA_SOURCES[kind]}],
            "bucketByTime": {"durationMillis": _DAY_MILLIS},
            "startTimeMillis": _millis(range_start),
            "endTimeMillis": _millis(range_end),
        }
        data = await self._request(
            "POST", "/fitness/v1/users/me/dataset:aggregate", token, json=body
        )
        if not isinstance(data, dict):
            return []
        return self._safe_parse(parse_google_fit_response, data, kind)


# com.google.sleep.segment stage codes that are not time asleep
_AWAKE_STAGES = {1: "awake", 3: "out_of_bed"}
_SLEEP_STAGES = {2: "sleep", 4: "light", 5: "deep", 6: "rem"}


def _point_value(point: dict[str, Any], reading_type: ReadingType) -> tuple[float, dict[str, Any]] | None:
    first = point["value"][0]
    if reading_type != ReadingType.SLEEP:
        return float(first.get("intVal") or first.get("fpVal") or 0), {}

    # sleep points carry a stage code; the duration comes from the segment bounds
    stage = int(first.get("intVal") or 0)
    if stage in _AWAKE_STAGES:
        return None
    minutes = (int(point["endTimeNanos"]) - int(point["startTimeNanos"])) / 60e9
    return minutes, {"stage": _SLEEP_STAGES.get(stage, str(stage))}


def parse_google_fit_response(data: dict[str, Any], kind: str) -> list[HealthReading]:
    """Flatten ``bucket[].dataset[].point[]`` into readings.

    Each point contributes its first value (``intVal`` or ``fpVal``),
    timestamped at ``startTimeNanos``.  Sleep segments become their
    duration in minutes, one reading per non-awake segment.
    """
    reading_type = ReadingType(kind)
    readings: list[HealthReading] = []

    for bucket in data.get("bucket") or []:
        for dataset in bucket.get("dataset") or []:
            for point in dataset.get("point") or []:
                if not point.get("value"):
                    continue
                parsed = _point_value(point, reading_type)
                if parsed is None:
                    continue
                value, metadata = parsed
                nanos = int(point["startTimeNanos"])
                readings.append(
                    HealthReading(
                        source=ProviderId.GOOGLE_FIT.value,
                        timestamp=datetime.fromtimestamp(nanos / 1_000_000_000, tz=UTC),
                        type=reading_type,
                        value=value,
                        unit=unit_for(reading_type),
                        metadata=metadata,
                    )
                )
    return readings
