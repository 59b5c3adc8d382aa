"""Catalog of supported devices and services."""

from __future__ import annotations

from dataclasses import dataclass, field

from healthbot.models import ConnectionType

BLUETOOTH_HR_ID = "web_bluetooth_hr"
BLUETOOTH_SCALE_ID = "web_bluetooth_scale"
MANUAL_ENTRY_ID = "manual_entry"


@dataclass(frozen=True)
class DeviceInfo:
    id: str
    name: str
    description: str
    connection_type: ConnectionType
    metrics: tuple[str, ...] = ()
    supported_features: tuple[str, ...] = field(default=())


DEVICES: tuple[DeviceInfo, ...] = (
    DeviceInfo(
        id="google_fit",
        name="Google Fit",
        description="Connect your Google Fit account for activity, heart rate, and sleep data",
        connection_type=ConnectionType.OAUTH,
        metrics=("Steps", "Heart Rate", "Calories", "Distance", "Sleep", "Weight"),
        supported_features=("real-time-sync", "historical-data", "activity-tracking"),
    ),
    DeviceInfo(
        id="fitbit",
        name="Fitbit",
        description="Sync data from your Fitbit device",
        connection_type=ConnectionType.OAUTH,
        metrics=("Steps", "Heart Rate", "Sleep", "SpO2", "Active Minutes", "Calories"),
        supported_features=("real-time-sync", "sleep-tracking", "heart-rate"),
    ),
    DeviceInfo(
        id="oura",
        name="Oura Ring",
        description="Advanced sleep and readiness tracking from Oura",
        connection_type=ConnectionType.OAUTH,
        metrics=("Sleep Score", "Readiness", "HRV", "Body Temperature", "Activity"),
        supported_features=("sleep-tracking", "hrv", "temperature"),
    ),
    DeviceInfo(
        id="withings",
        name="Withings",
        description="Connect Withings smart scales and blood pressure monitors",
        connection_type=ConnectionType.OAUTH,
        metrics=("Weight", "BMI", "Body Fat", "Blood Pressure", "Heart Rate"),
        supported_features=("weight-tracking", "blood-pressure", "body-composition"),
    ),
    DeviceInfo(
        id="strava",
        name="Strava",
        description="Import your running and cycling activities from Strava",
        connection_type=ConnectionType.OAUTH,
        metrics=("Activities", "Distance", "Pace", "Heart Rate", "Power", "Elevation"),
        supported_features=("activity-tracking", "gps-data", "performance-metrics"),
    ),
    DeviceInfo(
        id=BLUETOOTH_HR_ID,
        name="Bluetooth Heart Rate Monitor",
        description="Connect any Bluetooth heart rate monitor directly",
        connection_type=ConnectionType.WEB_BLUETOOTH,
        metrics=("Heart Rate", "RR Interval"),
        supported_features=("real-time-hr", "bluetooth-le"),
    ),
    DeviceInfo(
        id=BLUETOOTH_SCALE_ID,
        name="Bluetooth Smart Scale",
        description="Connect Bluetooth-enabled smart scales",
        connection_type=ConnectionType.WEB_BLUETOOTH,
        metrics=("Weight", "BMI", "Body Fat %"),
        supported_features=("weight-measurement", "bluetooth-le"),
    ),
    DeviceInfo(
        id=MANUAL_ENTRY_ID,
        name="Manual Entry",
        description="Manually log your health metrics",
        connection_type=ConnectionType.MANUAL,
        metrics=("Any Metric",),
        supported_features=("manual-input", "custom-metrics"),
    ),
)


def get_device(device_id: str) -> DeviceInfo | None:
    return next((d for d in DEVICES if d.id == device_id), None)
